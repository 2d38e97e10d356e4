# receiving_hub/routers/arrivals.py
"""
Arrivals Router - expected shipments and their receiving workflow.

Routers only parse, authorize and shape responses; state rules and
transactions live in ArrivalService.
"""
from __future__ import annotations
from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from receiving_hub.auth import get_caller, require_admin
from receiving_hub.database import get_session
from receiving_hub.db_models import ArrivalStatus
from receiving_hub.models import (
    AddProductsIn, ArrivalCreateIn, ArrivalLineOut, ArrivalNumberOut, ArrivalOut,
    ArrivalStatusOut, ArrivalUpdateIn, DeletedArrivalsOut, DeleteManyIn,
    DiscrepancyReport, ScanIn, ScanOut, StartProcessingIn,
)
from receiving_hub.pagination import Page, PageParams, page_params
from receiving_hub.services.arrivals import ArrivalService

router = APIRouter(prefix="/arrivals", tags=["Arrivals"], dependencies=[Depends(get_caller)])


def get_arrival_service(request: Request, db: AsyncSession = Depends(get_session)) -> ArrivalService:
    return ArrivalService.from_settings(db, request.app.state.settings)


# ============================================================================
# Reads
# ============================================================================

@router.get("", response_model=Page[ArrivalOut])
async def list_arrivals(
    search: str = Query("", description="Arrival number, title or supplier id"),
    status: Optional[ArrivalStatus] = Query(None),
    ne: bool = Query(False, description="Match arrivals whose status is NOT the given one"),
    order: Literal["asc", "desc"] = Query("asc", description="Sort by expected date"),
    params: PageParams = Depends(page_params),
    service: ArrivalService = Depends(get_arrival_service),
):
    rows, meta = await service.list(
        params,
        search=search,
        status=status,
        exclude_status=ne,
        descending=order == "desc",
    )
    return Page[ArrivalOut](items=[ArrivalOut.model_validate(a) for a in rows], pagination=meta)


@router.get("/{arrival_number}", response_model=ArrivalOut)
async def get_arrival(arrival_number: str, service: ArrivalService = Depends(get_arrival_service)):
    arrival = await service.get(arrival_number)
    return ArrivalOut.model_validate(arrival)


# ============================================================================
# Create / edit / delete
# ============================================================================

@router.post(
    "",
    status_code=201,
    response_model=ArrivalNumberOut,
    dependencies=[Depends(require_admin)],
)
async def create_arrival(payload: ArrivalCreateIn, service: ArrivalService = Depends(get_arrival_service)):
    """Create an arrival with no product lines yet (status ``not_initiated``)."""
    number = await service.create(payload)
    return ArrivalNumberOut(arrival_number=number)


@router.put("/{arrival_number}", response_model=ArrivalNumberOut)
async def update_arrival(
    arrival_number: str,
    payload: ArrivalUpdateIn,
    service: ArrivalService = Depends(get_arrival_service),
):
    await service.update(arrival_number, payload.changes())
    return ArrivalNumberOut(arrival_number=arrival_number)


@router.delete("/delete-many", response_model=DeletedArrivalsOut, dependencies=[Depends(require_admin)])
async def delete_many_arrivals(payload: DeleteManyIn, service: ArrivalService = Depends(get_arrival_service)):
    deleted = await service.delete_many(payload.arrival_numbers)
    return DeletedArrivalsOut(deleted_arrivals=deleted, count=len(deleted))


@router.delete("/{arrival_number}", response_model=DeletedArrivalsOut, dependencies=[Depends(require_admin)])
async def delete_arrival(arrival_number: str, service: ArrivalService = Depends(get_arrival_service)):
    deleted = await service.delete_one(arrival_number)
    return DeletedArrivalsOut(deleted_arrivals=[deleted], count=1)


@router.post(
    "/{arrival_number}/add-products",
    response_model=ArrivalStatusOut,
    dependencies=[Depends(require_admin)],
)
async def add_products(
    arrival_number: str,
    payload: AddProductsIn,
    service: ArrivalService = Depends(get_arrival_service),
):
    """Replace all expected product lines of the arrival."""
    status = await service.attach_products(arrival_number, payload.arrival_products)
    return ArrivalStatusOut(arrival_number=arrival_number, status=status)


# ============================================================================
# Processing
# ============================================================================

@router.post("/{arrival_number}/start-processing", response_model=ArrivalStatusOut)
async def start_processing(
    arrival_number: str,
    payload: StartProcessingIn,
    service: ArrivalService = Depends(get_arrival_service),
):
    status = await service.start_processing(arrival_number, payload)
    return ArrivalStatusOut(arrival_number=arrival_number, status=status)


@router.post("/{arrival_number}/scan", response_model=ScanOut)
async def scan_product(
    arrival_number: str,
    payload: ScanIn,
    service: ArrivalService = Depends(get_arrival_service),
):
    arrival, line = await service.scan(
        arrival_number,
        product_id=payload.product_id,
        condition_id=payload.condition_id,
        quantity=payload.received_quantity,
    )
    return ScanOut(
        arrival_number=arrival.arrival_number,
        status=arrival.status,
        line=ArrivalLineOut.model_validate(line),
    )


@router.post("/{arrival_number}/finish-processing", response_model=DiscrepancyReport)
async def finish_processing(arrival_number: str, service: ArrivalService = Depends(get_arrival_service)):
    return await service.finish_processing(arrival_number)
