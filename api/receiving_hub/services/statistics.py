# receiving_hub/services/statistics.py
"""
Dashboard counts: arrivals per status, and rows per reference table.
"""
from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from receiving_hub.db_models import Arrival, ArrivalStatus, Condition, Product, Supplier
from receiving_hub.models import ArrivalStatsOut, EntityCountsOut


class StatisticsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def arrival_stats(self) -> ArrivalStatsOut:
        stmt = select(Arrival.status, func.count(Arrival.id)).group_by(Arrival.status)
        result = await self.db.execute(stmt)
        counts = {status: int(n) for status, n in result.all()}

        return ArrivalStatsOut(
            total=sum(counts.values()),
            not_initiated=counts.get(ArrivalStatus.not_initiated, 0),
            upcoming=counts.get(ArrivalStatus.upcoming, 0),
            in_progress=counts.get(ArrivalStatus.in_progress, 0),
            finished=counts.get(ArrivalStatus.finished, 0),
            with_discrepancy=counts.get(ArrivalStatus.completed_with_discrepancy, 0),
        )

    async def entity_counts(self) -> EntityCountsOut:
        stmt = select(
            select(func.count(Supplier.id)).scalar_subquery(),
            select(func.count(Product.id)).scalar_subquery(),
            select(func.count(Condition.id)).scalar_subquery(),
        )
        suppliers, products, conditions = (await self.db.execute(stmt)).one()
        return EntityCountsOut(suppliers=suppliers, products=products, conditions=conditions)
