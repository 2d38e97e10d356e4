# receiving_hub/services/reconciliation.py
"""
Expected-vs-received reconciliation for a finished arrival.

A single pass over the arrival's product lines plus the shipment box counts:
every non-zero ``received - expected`` is a discrepancy, and any discrepancy
makes the terminal status ``completed_with_discrepancy``.
"""
from __future__ import annotations
from dataclasses import dataclass
from typing import Iterable, List, Optional

from receiving_hub.db_models import ArrivalProduct, ArrivalStatus
from receiving_hub.models import (
    BoxDiscrepancy, Discrepancies, DiscrepancyReport, ProductDiscrepancy,
)


@dataclass(frozen=True)
class LineSnapshot:
    product_id: int
    expected_quantity: int
    received_quantity: int
    product_name: Optional[str] = None
    product_sku: Optional[str] = None

    @classmethod
    def from_line(cls, line: ArrivalProduct) -> "LineSnapshot":
        product = line.product
        return cls(
            product_id=line.product_id,
            expected_quantity=int(line.expected_quantity or 0),
            received_quantity=int(line.received_quantity or 0),
            product_name=product.name if product is not None else None,
            product_sku=product.tsku if product is not None else None,
        )


def product_discrepancies(lines: Iterable[LineSnapshot]) -> List[ProductDiscrepancy]:
    out: List[ProductDiscrepancy] = []
    for line in lines:
        difference = line.received_quantity - line.expected_quantity
        if difference == 0:
            continue
        out.append(ProductDiscrepancy(
            product_id=line.product_id,
            product_name=line.product_name,
            product_sku=line.product_sku,
            expected_quantity=line.expected_quantity,
            received_quantity=line.received_quantity,
            difference=difference,
        ))
    return out


def box_discrepancy(expected_boxes: Optional[int], received_boxes: Optional[int]) -> Optional[BoxDiscrepancy]:
    expected = int(expected_boxes or 0)
    received = int(received_boxes or 0)
    if expected == received:
        return None
    return BoxDiscrepancy(expected_boxes=expected, received_boxes=received, difference=received - expected)


def reconcile(
    arrival_number: str,
    lines: Iterable[LineSnapshot],
    expected_boxes: Optional[int],
    received_boxes: Optional[int],
) -> DiscrepancyReport:
    products = product_discrepancies(lines)
    boxes = box_discrepancy(expected_boxes, received_boxes)
    has_discrepancies = bool(products) or boxes is not None
    status = ArrivalStatus.completed_with_discrepancy if has_discrepancies else ArrivalStatus.finished
    return DiscrepancyReport(
        arrival_number=arrival_number,
        status=status,
        has_discrepancies=has_discrepancies,
        discrepancies=Discrepancies(products=products or None, boxes=boxes),
    )
