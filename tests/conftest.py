from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import httpx
import pytest

from receiving_hub.database import Database
from receiving_hub.db_models import Arrival, ArrivalStatus, Condition, Product, Supplier
from receiving_hub.main import create_app
from receiving_hub.models import ArrivalCreateIn
from receiving_hub.services.arrivals import ArrivalService
from receiving_hub.settings import Settings

ADMIN = {"X-User-Id": "u-admin", "X-User-Role": "admin"}
USER = {"X-User-Id": "u-clerk", "X-User-Role": "user"}


def make_settings(tmp_path, **overrides) -> Settings:
    values = dict(
        ENV="development",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'receiving.db'}",
        LOG_DIR=tmp_path / "logs",
    )
    values.update(overrides)
    return Settings(**values)


@pytest.fixture
def settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
async def seed(database):
    """Reference rows every arrival needs: suppliers, products, conditions."""
    async with database.session() as session:
        suppliers = [Supplier(name="Velo Parts s.r.o."), Supplier(name="Northwind Cycles")]
        products = [
            Product(name="Chain 11s", tsku="CH-11", barcode="8590000000011"),
            Product(name="Brake pads", tsku="BP-01"),
            Product(name="Inner tube 29", tsku="IT-29"),
        ]
        conditions = [Condition(name="new"), Condition(name="damaged")]
        session.add_all(suppliers + products + conditions)
        await session.commit()
        return SimpleNamespace(
            supplier_id=suppliers[0].id,
            other_supplier_id=suppliers[1].id,
            product_ids=[p.id for p in products],
            condition_id=conditions[0].id,
            damaged_condition_id=conditions[1].id,
        )


@pytest.fixture
async def arrivals(database):
    """Returns a fresh ArrivalService on its own session per call, like one request each."""
    sessions = []

    def _make(**kwargs) -> ArrivalService:
        session = database.session_factory()
        sessions.append(session)
        return ArrivalService(session, **kwargs)

    yield _make
    for session in sessions:
        await session.close()


@pytest.fixture
def arrival_payload(seed):
    def _payload(**overrides) -> ArrivalCreateIn:
        values = dict(
            title="Spring delivery",
            supplier_id=seed.supplier_id,
            expected_boxes=3,
            expected_pallets=1,
            expected_pieces=40,
            expected_kilograms=Decimal("125.50"),
            expected_date=datetime(2025, 3, 14, 9, 0),
        )
        values.update(overrides)
        return ArrivalCreateIn(**values)

    return _payload


@pytest.fixture
def insert_arrival(database, seed):
    """Insert an arrival row directly, bypassing number generation."""
    async def _insert(number: str, status: ArrivalStatus = ArrivalStatus.not_initiated, **fields) -> int:
        async with database.session() as session:
            arrival = Arrival(
                arrival_number=number,
                title=fields.pop("title", number),
                supplier_id=fields.pop("supplier_id", seed.supplier_id),
                expected_date=fields.pop("expected_date", datetime(2025, 1, 1)),
                expected_boxes=fields.pop("expected_boxes", 1),
                expected_kilograms=fields.pop("expected_kilograms", Decimal("1.00")),
                status=status,
                **fields,
            )
            session.add(arrival)
            await session.commit()
            return arrival.id

    return _insert


@pytest.fixture
def app(settings, database, seed):
    return create_app(settings, database)


@pytest.fixture
async def client(app):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
