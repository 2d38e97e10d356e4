# receiving_hub/services/arrival_numbers.py
"""
Arrival number generation.

Format: <prefix><13-digit millisecond timestamp><4-digit random>, e.g.
``ARR17293401234565821``. Candidates are checked against existing arrivals in
the caller's transaction; the unique index on ``arrival_number`` remains the
final guard against a concurrent insert of the same value.
"""
from __future__ import annotations
import logging
import random
import time
from typing import Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from receiving_hub.db_models import Arrival
from receiving_hub.errors import ConflictError

logger = logging.getLogger(__name__)


def _now_ms() -> int:
    return int(time.time() * 1000)


class ArrivalNumberGenerator:
    def __init__(
        self,
        prefix: str = "ARR",
        max_attempts: int = 10,
        clock_ms: Callable[[], int] = _now_ms,
        rng: Optional[random.Random] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.prefix = prefix
        self.max_attempts = max_attempts
        self.clock_ms = clock_ms
        self.rng = rng or random.Random()

    def candidate(self) -> str:
        return f"{self.prefix}{self.clock_ms()}{self.rng.randint(1000, 9999)}"

    async def _taken(self, db: AsyncSession, number: str) -> bool:
        stmt = select(Arrival.id).where(Arrival.arrival_number == number)
        result = await db.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def _fallback(self, db: AsyncSession) -> str:
        # monotonic component: one past the highest arrival id
        result = await db.execute(select(func.coalesce(func.max(Arrival.id), 0)))
        next_id = int(result.scalar() or 0) + 1
        return f"{self.prefix}{self.clock_ms()}S{next_id}"

    async def generate(self, db: AsyncSession) -> str:
        for attempt in range(1, self.max_attempts + 1):
            number = self.candidate()
            if not await self._taken(db, number):
                return number
            logger.warning("Arrival number collision on %s (attempt %d/%d)", number, attempt, self.max_attempts)

        number = await self._fallback(db)
        if await self._taken(db, number):
            raise ConflictError("Could not allocate a unique arrival number", data={"last_candidate": number})
        logger.warning("Random arrival numbers exhausted, using sequential %s", number)
        return number
