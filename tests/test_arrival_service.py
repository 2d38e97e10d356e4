import asyncio
from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from receiving_hub.db_models import ArrivalProduct, ArrivalStatus
from receiving_hub.errors import ForbiddenStateError, NotFoundError, ValidationFailure
from receiving_hub.models import ArrivalProductIn, StartProcessingIn
from receiving_hub.pagination import PageParams

STARTED_AT = datetime(2025, 3, 14, 10, 30)
FINISHED_AT = datetime(2025, 3, 14, 12, 0)


def _lines(seed, *quantities):
    return [
        ArrivalProductIn(product_id=pid, condition_id=seed.condition_id, expected_quantity=qty)
        for pid, qty in zip(seed.product_ids, quantities)
    ]


@pytest.fixture
def upcoming(arrivals, arrival_payload, seed):
    """Create an arrival and attach lines with the given expected quantities."""
    async def _make(*quantities, **payload) -> str:
        number = await arrivals().create(arrival_payload(**payload))
        await arrivals().attach_products(number, _lines(seed, *quantities))
        return number

    return _make


@pytest.fixture
def in_progress(arrivals, upcoming):
    async def _make(*quantities, received_boxes=3, **payload) -> str:
        number = await upcoming(*quantities, **payload)
        await arrivals(now=lambda: STARTED_AT).start_processing(
            number, StartProcessingIn(received_boxes=received_boxes, received_pallets=1)
        )
        return number

    return _make


# ============================================================================
# Create / attach / update
# ============================================================================

async def test_create_starts_not_initiated_without_lines(arrivals, arrival_payload):
    number = await arrivals().create(arrival_payload())

    arrival = await arrivals().get(number)
    assert number.startswith("ARR")
    assert arrival.status == ArrivalStatus.not_initiated
    assert arrival.lines == []
    assert arrival.expected_kilograms == Decimal("125.50")
    assert arrival.supplier.name == "Velo Parts s.r.o."


async def test_create_with_unknown_supplier(arrivals, arrival_payload):
    with pytest.raises(NotFoundError, match="Supplier not found"):
        await arrivals().create(arrival_payload(supplier_id=999))


async def test_attach_products_makes_arrival_upcoming(arrivals, arrival_payload, seed):
    number = await arrivals().create(arrival_payload())

    status = await arrivals().attach_products(number, _lines(seed, 10, 5))

    arrival = await arrivals().get(number)
    assert status == ArrivalStatus.upcoming
    assert arrival.status == ArrivalStatus.upcoming
    assert sorted((ln.product_id, ln.expected_quantity, ln.received_quantity) for ln in arrival.lines) == [
        (seed.product_ids[0], 10, 0),
        (seed.product_ids[1], 5, 0),
    ]


async def test_attach_replaces_previous_lines(arrivals, upcoming, seed):
    number = await upcoming(10, 5)

    replacement = [ArrivalProductIn(product_id=seed.product_ids[2], condition_id=seed.condition_id, expected_quantity=8)]
    status = await arrivals().attach_products(number, replacement)

    arrival = await arrivals().get(number)
    assert status == ArrivalStatus.upcoming
    assert [(ln.product_id, ln.expected_quantity) for ln in arrival.lines] == [(seed.product_ids[2], 8)]


async def test_attach_unknown_product_changes_nothing(arrivals, arrival_payload, seed):
    number = await arrivals().create(arrival_payload())
    bad = _lines(seed, 1) + [ArrivalProductIn(product_id=999, condition_id=seed.condition_id, expected_quantity=1)]

    with pytest.raises(NotFoundError, match="Product not found") as err:
        await arrivals().attach_products(number, bad)

    assert err.value.data == {"ids": [999]}
    arrival = await arrivals().get(number)
    assert arrival.status == ArrivalStatus.not_initiated
    assert arrival.lines == []


async def test_attach_refused_after_start(arrivals, in_progress, seed):
    number = await in_progress(1)
    with pytest.raises(ForbiddenStateError):
        await arrivals().attach_products(number, _lines(seed, 2))


async def test_update_applies_only_supplied_fields(arrivals, upcoming, seed):
    number = await upcoming(1)

    await arrivals().update(number, {"title": "Late spring delivery", "supplier_id": seed.other_supplier_id})

    arrival = await arrivals().get(number)
    assert arrival.title == "Late spring delivery"
    assert arrival.supplier_id == seed.other_supplier_id
    assert arrival.expected_boxes == 3
    assert arrival.status == ArrivalStatus.upcoming


async def test_update_refused_once_in_progress(arrivals, in_progress):
    number = await in_progress(1)
    with pytest.raises(ForbiddenStateError, match="only edit upcoming or not initiated"):
        await arrivals().update(number, {"title": "x"})


async def test_update_unknown_arrival(arrivals):
    with pytest.raises(NotFoundError, match="Arrival not found"):
        await arrivals().update("ARR0", {"title": "x"})


# ============================================================================
# Processing
# ============================================================================

async def test_start_requires_upcoming(arrivals, arrival_payload):
    number = await arrivals().create(arrival_payload())
    with pytest.raises(ForbiddenStateError, match="Only upcoming arrivals can be processed"):
        await arrivals().start_processing(number, StartProcessingIn(received_boxes=1, received_pallets=1))


async def test_start_records_totals_and_time(arrivals, upcoming):
    number = await upcoming(4)

    status = await arrivals(now=lambda: STARTED_AT).start_processing(
        number,
        StartProcessingIn(received_boxes=2, received_pallets=1, received_kilograms=Decimal("80.25")),
    )

    arrival = await arrivals().get(number)
    assert status == ArrivalStatus.in_progress
    assert arrival.started_date == STARTED_AT
    assert (arrival.received_boxes, arrival.received_pallets, arrival.received_pieces) == (2, 1, 0)
    assert arrival.received_kilograms == Decimal("80.25")


async def test_start_twice_is_refused(arrivals, in_progress):
    number = await in_progress(1)
    with pytest.raises(ForbiddenStateError):
        await arrivals().start_processing(number, StartProcessingIn(received_boxes=1, received_pallets=1))


async def test_scan_accumulates_up_to_expected(arrivals, in_progress, seed):
    number = await in_progress(10)
    product = seed.product_ids[0]

    await arrivals().scan(number, product, seed.condition_id, 4)
    arrival, line = await arrivals().scan(number, product, seed.condition_id, 6)

    assert arrival.status == ArrivalStatus.in_progress
    assert (line.received_quantity, line.expected_quantity) == (10, 10)
    assert line.product.tsku == "CH-11"


async def test_scan_over_expected_is_rejected_and_changes_nothing(arrivals, in_progress, seed):
    number = await in_progress(10)
    product = seed.product_ids[0]
    await arrivals().scan(number, product, seed.condition_id, 8)

    with pytest.raises(ValidationFailure, match="Cannot add quantity - would exceed expected quantity") as err:
        await arrivals().scan(number, product, seed.condition_id, 3)

    assert err.value.data["received_quantity"] == 8
    arrival = await arrivals().get(number)
    assert arrival.lines[0].received_quantity == 8


async def test_scan_line_expecting_zero_always_fails(arrivals, in_progress, seed):
    number = await in_progress(0)
    with pytest.raises(ValidationFailure):
        await arrivals().scan(number, seed.product_ids[0], seed.condition_id, 1)


async def test_scan_records_condition(arrivals, in_progress, seed):
    number = await in_progress(5)
    _, line = await arrivals().scan(number, seed.product_ids[0], seed.damaged_condition_id, 1)
    assert line.condition_id == seed.damaged_condition_id


async def test_scan_product_not_in_arrival(arrivals, in_progress, seed):
    number = await in_progress(5)
    with pytest.raises(NotFoundError, match="Product not found in this arrival"):
        await arrivals().scan(number, seed.product_ids[2], seed.condition_id, 1)


async def test_scan_requires_in_progress(arrivals, upcoming, seed):
    number = await upcoming(5)
    with pytest.raises(ForbiddenStateError, match="Only in progress arrivals can be scanned"):
        await arrivals().scan(number, seed.product_ids[0], seed.condition_id, 1)


async def test_finish_without_discrepancies(arrivals, in_progress, seed):
    number = await in_progress(2, received_boxes=3)
    await arrivals().scan(number, seed.product_ids[0], seed.condition_id, 2)

    report = await arrivals(now=lambda: FINISHED_AT).finish_processing(number)

    assert report.status == ArrivalStatus.finished
    assert report.has_discrepancies is False
    arrival = await arrivals().get(number)
    assert arrival.status == ArrivalStatus.finished
    assert arrival.finished_date == FINISHED_AT


async def test_finish_reports_short_products_and_boxes(arrivals, in_progress, seed):
    number = await in_progress(10, 5, received_boxes=2)
    await arrivals().scan(number, seed.product_ids[0], seed.condition_id, 7)
    await arrivals().scan(number, seed.product_ids[1], seed.condition_id, 5)

    report = await arrivals().finish_processing(number)

    assert report.status == ArrivalStatus.completed_with_discrepancy
    [short] = report.discrepancies.products
    assert (short.product_id, short.product_name, short.product_sku) == (seed.product_ids[0], "Chain 11s", "CH-11")
    assert short.difference == -3
    assert report.discrepancies.boxes.difference == -1


async def test_finish_twice_is_refused(arrivals, in_progress):
    number = await in_progress(0)
    await arrivals().finish_processing(number)

    with pytest.raises(ForbiddenStateError, match="Only in progress arrivals can be finished"):
        await arrivals().finish_processing(number)


# ============================================================================
# Concurrency
# ============================================================================

async def test_concurrent_scans_never_pass_expected(arrivals, in_progress, seed):
    number = await in_progress(5)
    product = seed.product_ids[0]

    results = await asyncio.gather(
        *(arrivals().scan(number, product, seed.condition_id, 2) for _ in range(4)),
        return_exceptions=True,
    )

    accepted = [r for r in results if isinstance(r, tuple)]
    refused = [r for r in results if isinstance(r, ValidationFailure)]
    assert len(accepted) + len(refused) == len(results)
    assert len(accepted) == 2

    line = (await arrivals().get(number)).lines[0]
    assert line.received_quantity == 2 * len(accepted)
    assert line.received_quantity <= line.expected_quantity


async def test_concurrent_creates_get_distinct_numbers(arrivals, arrival_payload):
    numbers = await asyncio.gather(*(arrivals().create(arrival_payload()) for _ in range(6)))

    assert len(set(numbers)) == len(numbers)
    _, meta = await arrivals().list(PageParams())
    assert meta.total_items == 6


# ============================================================================
# Deletion
# ============================================================================

async def _line_count(database) -> int:
    async with database.session() as session:
        return (await session.execute(select(func.count(ArrivalProduct.id)))).scalar()


async def test_delete_many_removes_arrivals_and_lines(arrivals, upcoming, database):
    first = await upcoming(1, 2)
    second = await upcoming(3)
    kept = await upcoming(4)

    deleted = await arrivals().delete_many([second, "ARR-missing", first])

    assert deleted == [second, first]
    assert await _line_count(database) == 1
    assert (await arrivals().get(kept)).status == ArrivalStatus.upcoming
    with pytest.raises(NotFoundError):
        await arrivals().get(first)


async def test_delete_many_with_nothing_found(arrivals):
    with pytest.raises(NotFoundError, match="No arrivals found"):
        await arrivals().delete_many(["ARR1", "ARR2"])


async def test_delete_started_arrival_allowed_by_default(arrivals, in_progress):
    number = await in_progress(1)
    assert await arrivals().delete_one(number) == number


async def test_delete_started_arrival_can_be_forbidden(arrivals, in_progress, upcoming):
    started = await in_progress(1)
    pending = await upcoming(1)

    with pytest.raises(ForbiddenStateError):
        await arrivals(allow_delete_started=False).delete_many([pending, started])

    # whole batch rolled back
    assert (await arrivals().get(pending)).status == ArrivalStatus.upcoming


# ============================================================================
# Listing
# ============================================================================

async def test_list_filters_and_orders(arrivals, arrival_payload, seed):
    older = await arrivals().create(arrival_payload(title="Tubes", expected_date=datetime(2025, 1, 5)))
    newer = await arrivals().create(arrival_payload(title="Chains", expected_date=datetime(2025, 2, 5)))
    other = await arrivals().create(
        arrival_payload(title="Pads", supplier_id=seed.other_supplier_id, expected_date=datetime(2025, 3, 5))
    )
    await arrivals().attach_products(newer, _lines(seed, 1))

    rows, meta = await arrivals().list(PageParams(page=1, items_per_page=10), descending=True)
    assert [a.arrival_number for a in rows] == [other, newer, older]
    assert meta.total_items == 3

    rows, _ = await arrivals().list(PageParams(), search="chain")
    assert [a.arrival_number for a in rows] == [newer]

    # a numeric search also matches arrival numbers containing those digits
    key = str(seed.other_supplier_id)
    rows, _ = await arrivals().list(PageParams(), search=key)
    assert other in {a.arrival_number for a in rows}
    assert all(a.supplier_id == seed.other_supplier_id or key in a.arrival_number for a in rows)

    rows, _ = await arrivals().list(PageParams(), status=ArrivalStatus.upcoming)
    assert [a.arrival_number for a in rows] == [newer]

    rows, _ = await arrivals().list(PageParams(), status=ArrivalStatus.upcoming, exclude_status=True)
    assert [a.arrival_number for a in rows] == [older, other]


async def test_list_pagination_meta(arrivals, arrival_payload):
    for day in range(1, 6):
        await arrivals().create(arrival_payload(expected_date=datetime(2025, 4, day)))

    rows, meta = await arrivals().list(PageParams(page=2, items_per_page=2))

    assert len(rows) == 2
    assert meta.model_dump() == {
        "current_page": 2,
        "total_pages": 3,
        "total_items": 5,
        "items_per_page": 2,
        "has_next_page": True,
        "has_previous_page": True,
    }
