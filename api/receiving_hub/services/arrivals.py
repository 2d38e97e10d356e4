# receiving_hub/services/arrivals.py
"""
Arrival Service - lifecycle of supplier shipments.

Handles:
- Creating arrivals with a unique arrival number
- Replacing the expected product lines of a not-yet-started arrival
- Start / scan / finish processing, with reconciliation at finish
- Deletion and listing

Every state-changing method runs in one transaction: it commits on success
and rolls back completely on any failure.
"""
from __future__ import annotations
import logging
from datetime import datetime
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, Type

from sqlalchemy import delete, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from receiving_hub.database import transaction
from receiving_hub.db_models import (
    Arrival, ArrivalProduct, ArrivalStatus, Condition, Product, Supplier,
)
from receiving_hub.errors import ConflictError, NotFoundError, ValidationFailure
from receiving_hub.models import (
    ArrivalCreateIn, ArrivalProductIn, DiscrepancyReport, StartProcessingIn,
)
from receiving_hub.pagination import PageParams, PaginationMeta, paginate
from receiving_hub.services.arrival_numbers import ArrivalNumberGenerator
from receiving_hub.services.arrival_state import (
    ArrivalAction, ensure_allowed, ensure_deletable, move_to,
)
from receiving_hub.services.reconciliation import LineSnapshot, reconcile
from receiving_hub.settings import Settings

logger = logging.getLogger(__name__)

EXCEEDS_EXPECTED = "Cannot add quantity - would exceed expected quantity"


def _naive(value: datetime) -> datetime:
    # stored as given by the caller, without zone
    return value.replace(tzinfo=None) if value.tzinfo is not None else value


class ArrivalService:
    """Service for the arrival lifecycle."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        numbers: Optional[ArrivalNumberGenerator] = None,
        allow_delete_started: bool = True,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.numbers = numbers or ArrivalNumberGenerator()
        self.allow_delete_started = allow_delete_started
        self.now = now

    @classmethod
    def from_settings(cls, db: AsyncSession, settings: Settings) -> "ArrivalService":
        return cls(
            db,
            numbers=ArrivalNumberGenerator(
                prefix=settings.ARRIVAL_NUMBER_PREFIX,
                max_attempts=settings.ARRIVAL_NUMBER_MAX_ATTEMPTS,
            ),
            allow_delete_started=settings.ALLOW_DELETE_STARTED_ARRIVALS,
        )

    # =========================================================================
    # Lookup helpers
    # =========================================================================

    async def _arrival_for_update(self, arrival_number: str) -> Arrival:
        """Load and row-lock an arrival inside the current transaction."""
        stmt = (
            select(Arrival)
            .where(Arrival.arrival_number == arrival_number)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        arrival = result.scalar_one_or_none()
        if arrival is None:
            raise NotFoundError("Arrival not found", data={"arrival_number": arrival_number})
        return arrival

    async def _require(self, model: Type, entity_id: int, label: str) -> None:
        if await self.db.get(model, entity_id) is None:
            raise NotFoundError(f"{label} not found", data={"id": entity_id})

    async def _require_all(self, model: Type, ids: Iterable[int], label: str) -> None:
        wanted: Set[int] = set(ids)
        if not wanted:
            return
        result = await self.db.execute(select(model.id).where(model.id.in_(wanted)))
        missing = wanted - set(result.scalars())
        if missing:
            raise NotFoundError(f"{label} not found", data={"ids": sorted(missing)})

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, arrival_number: str) -> Arrival:
        stmt = (
            select(Arrival)
            .options(selectinload(Arrival.supplier))
            .options(selectinload(Arrival.lines).selectinload(ArrivalProduct.product))
            .where(Arrival.arrival_number == arrival_number)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        arrival = result.scalar_one_or_none()
        if arrival is None:
            raise NotFoundError("Arrival not found", data={"arrival_number": arrival_number})
        return arrival

    async def list(
        self,
        params: PageParams,
        *,
        search: str = "",
        status: Optional[ArrivalStatus] = None,
        exclude_status: bool = False,
        descending: bool = False,
    ) -> Tuple[List[Arrival], PaginationMeta]:
        stmt = select(Arrival)

        if status is not None:
            stmt = stmt.where(Arrival.status != status if exclude_status else Arrival.status == status)

        search = (search or "").strip()
        if search:
            conditions = [
                Arrival.arrival_number.ilike(f"%{search}%"),
                Arrival.title.ilike(f"%{search}%"),
            ]
            if search.isdigit():
                conditions.append(Arrival.supplier_id == int(search))
            stmt = stmt.where(or_(*conditions))

        order = Arrival.expected_date.desc() if descending else Arrival.expected_date.asc()
        stmt = stmt.order_by(order, Arrival.id)

        return await paginate(
            self.db,
            stmt,
            params,
            options=[
                selectinload(Arrival.supplier),
                selectinload(Arrival.lines).selectinload(ArrivalProduct.product),
            ],
        )

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create(self, data: ArrivalCreateIn) -> str:
        """Create an arrival in ``not_initiated`` and return its generated number."""
        async with transaction(self.db):
            await self._require(Supplier, data.supplier_id, "Supplier")
            number = await self.numbers.generate(self.db)

            fields = data.model_dump()
            fields["expected_date"] = _naive(fields["expected_date"])
            arrival = Arrival(
                arrival_number=number,
                status=ArrivalStatus.not_initiated,
                **fields,
            )
            self.db.add(arrival)
            try:
                await self.db.flush()
            except IntegrityError as e:
                raise ConflictError("Arrival already exists", data={"arrival_number": number}) from e

        logger.info("Arrival %s created for supplier %s", number, data.supplier_id)
        return number

    async def update(self, arrival_number: str, changes: dict) -> Arrival:
        """Apply only the supplied fields to a not-yet-started arrival."""
        async with transaction(self.db):
            arrival = await self._arrival_for_update(arrival_number)
            ensure_allowed(arrival, ArrivalAction.update)

            if "supplier_id" in changes:
                await self._require(Supplier, changes["supplier_id"], "Supplier")

            for name, value in changes.items():
                if name == "expected_date":
                    value = _naive(value)
                setattr(arrival, name, value)
            await self.db.flush()

        logger.info("Arrival %s updated: %s", arrival_number, ", ".join(sorted(changes)) or "no fields")
        return arrival

    async def attach_products(self, arrival_number: str, lines: Sequence[ArrivalProductIn]) -> ArrivalStatus:
        """Replace the arrival's expected product lines; the arrival becomes ``upcoming``."""
        async with transaction(self.db):
            arrival = await self._arrival_for_update(arrival_number)
            ensure_allowed(arrival, ArrivalAction.attach_products)

            await self._require_all(Product, (ln.product_id for ln in lines), "Product")
            await self._require_all(Condition, (ln.condition_id for ln in lines), "Condition")

            await self.db.execute(
                delete(ArrivalProduct).where(ArrivalProduct.arrival_id == arrival.id)
            )
            self.db.add_all([
                ArrivalProduct(
                    arrival_id=arrival.id,
                    product_id=ln.product_id,
                    condition_id=ln.condition_id,
                    expected_quantity=ln.expected_quantity,
                    received_quantity=0,
                )
                for ln in lines
            ])
            move_to(arrival, ArrivalStatus.upcoming)
            await self.db.flush()
            status = arrival.status

        logger.info("Arrival %s: %d product line(s) attached", arrival_number, len(lines))
        return status

    async def start_processing(self, arrival_number: str, totals: StartProcessingIn) -> ArrivalStatus:
        """Record the received shipment totals and move ``upcoming`` -> ``in_progress``."""
        async with transaction(self.db):
            arrival = await self._arrival_for_update(arrival_number)
            ensure_allowed(arrival, ArrivalAction.start)

            arrival.received_pallets = totals.received_pallets
            arrival.received_boxes = totals.received_boxes
            arrival.received_kilograms = totals.received_kilograms
            arrival.received_pieces = totals.received_pieces
            arrival.started_date = self.now()
            move_to(arrival, ArrivalStatus.in_progress)
            await self.db.flush()
            status = arrival.status

        logger.info("Arrival %s processing started (%d boxes received)", arrival_number, totals.received_boxes)
        return status

    async def scan(
        self,
        arrival_number: str,
        product_id: int,
        condition_id: int,
        quantity: int,
    ) -> Tuple[Arrival, ArrivalProduct]:
        """
        Add ``quantity`` to what was received for one product line.

        The ceiling check and the increment are a single conditional UPDATE,
        so two concurrent scans of the same line cannot both pass the check
        on a stale read.
        """
        if quantity <= 0:
            raise ValidationFailure("Scanned quantity must be positive", data={"received_quantity": quantity})

        async with transaction(self.db):
            arrival = await self._arrival_for_update(arrival_number)
            ensure_allowed(arrival, ArrivalAction.scan)

            stmt = (
                select(ArrivalProduct)
                .options(selectinload(ArrivalProduct.product))
                .where(
                    ArrivalProduct.arrival_id == arrival.id,
                    ArrivalProduct.product_id == product_id,
                )
            )
            result = await self.db.execute(stmt)
            line = result.scalar_one_or_none()
            if line is None:
                raise NotFoundError(
                    "Product not found in this arrival",
                    data={"arrival_number": arrival_number, "product_id": product_id},
                )
            await self._require(Condition, condition_id, "Condition")

            result = await self.db.execute(
                update(ArrivalProduct)
                .where(
                    ArrivalProduct.id == line.id,
                    ArrivalProduct.received_quantity + quantity <= ArrivalProduct.expected_quantity,
                )
                .values(
                    received_quantity=ArrivalProduct.received_quantity + quantity,
                    condition_id=condition_id,
                )
            )
            await self.db.refresh(line, attribute_names=["received_quantity", "expected_quantity", "condition_id"])
            if result.rowcount != 1:
                raise ValidationFailure(
                    EXCEEDS_EXPECTED,
                    data={
                        "product_id": product_id,
                        "expected_quantity": line.expected_quantity,
                        "received_quantity": line.received_quantity,
                        "requested": quantity,
                    },
                )

        logger.info(
            "Arrival %s: scanned %d x product %s (%d/%d)",
            arrival_number, quantity, product_id, line.received_quantity, line.expected_quantity,
        )
        return arrival, line

    async def finish_processing(self, arrival_number: str) -> DiscrepancyReport:
        """Reconcile expected vs received and move to a terminal status."""
        async with transaction(self.db):
            arrival = await self._arrival_for_update(arrival_number)
            ensure_allowed(arrival, ArrivalAction.finish)

            stmt = (
                select(ArrivalProduct)
                .options(selectinload(ArrivalProduct.product))
                .where(ArrivalProduct.arrival_id == arrival.id)
                .order_by(ArrivalProduct.id)
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            lines = [LineSnapshot.from_line(ln) for ln in result.scalars()]

            report = reconcile(
                arrival.arrival_number,
                lines,
                expected_boxes=arrival.expected_boxes,
                received_boxes=arrival.received_boxes,
            )
            arrival.finished_date = self.now()
            move_to(arrival, report.status)
            await self.db.flush()

        logger.info("Arrival %s finished as %s", arrival_number, report.status.value)
        return report

    # =========================================================================
    # Deletion
    # =========================================================================

    async def delete_one(self, arrival_number: str) -> str:
        deleted = await self.delete_many([arrival_number])
        return deleted[0]

    async def delete_many(self, arrival_numbers: Sequence[str]) -> List[str]:
        """Delete arrivals and their product lines; returns the numbers actually deleted."""
        wanted = list(dict.fromkeys(arrival_numbers))
        async with transaction(self.db):
            stmt = (
                select(Arrival)
                .where(Arrival.arrival_number.in_(wanted))
                .with_for_update()
                .execution_options(populate_existing=True)
            )
            result = await self.db.execute(stmt)
            arrivals = list(result.scalars())
            if not arrivals:
                message = "Arrival not found" if len(wanted) == 1 else "No arrivals found"
                raise NotFoundError(message, data={"arrival_numbers": wanted})

            for arrival in arrivals:
                ensure_deletable(arrival, self.allow_delete_started)

            ids = [a.id for a in arrivals]
            await self.db.execute(delete(ArrivalProduct).where(ArrivalProduct.arrival_id.in_(ids)))
            await self.db.execute(delete(Arrival).where(Arrival.id.in_(ids)))

        found = {a.arrival_number for a in arrivals}
        deleted = [n for n in wanted if n in found]
        logger.info("Deleted %d arrival(s): %s", len(deleted), ", ".join(deleted))
        return deleted
