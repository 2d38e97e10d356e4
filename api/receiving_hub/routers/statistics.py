# receiving_hub/routers/statistics.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from receiving_hub.auth import get_caller
from receiving_hub.database import get_session
from receiving_hub.models import ArrivalStatsOut, EntityCountsOut
from receiving_hub.services.statistics import StatisticsService

router = APIRouter(prefix="/statistics", tags=["Statistics"], dependencies=[Depends(get_caller)])


@router.get("/arrivals", response_model=ArrivalStatsOut)
async def arrival_statistics(db: AsyncSession = Depends(get_session)):
    return await StatisticsService(db).arrival_stats()


@router.get("/entities", response_model=EntityCountsOut)
async def entity_statistics(db: AsyncSession = Depends(get_session)):
    return await StatisticsService(db).entity_counts()
