from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator, model_validator

from receiving_hub.db_models import ArrivalStatus

# ---------------------------------------------------------
# Inputs
# ---------------------------------------------------------

class _StrictIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

class ArrivalCreateIn(_StrictIn):
    title: str = Field(min_length=1, max_length=200)
    supplier_id: int = Field(gt=0)
    expected_boxes: int = Field(gt=0)
    expected_pallets: int = Field(gt=0)
    expected_pieces: int = Field(gt=0)
    expected_kilograms: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    expected_date: datetime
    notes: Optional[str] = None

class ArrivalUpdateIn(_StrictIn):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    supplier_id: Optional[int] = Field(default=None, gt=0)
    expected_boxes: Optional[int] = Field(default=None, gt=0)
    expected_pallets: Optional[int] = Field(default=None, gt=0)
    expected_pieces: Optional[int] = Field(default=None, gt=0)
    expected_kilograms: Optional[Decimal] = Field(default=None, gt=0, max_digits=10, decimal_places=2)
    expected_date: Optional[datetime] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _no_explicit_nulls(self) -> "ArrivalUpdateIn":
        # only notes may be cleared; everything else is mandatory on the record
        for name in self.model_fields_set:
            if name != "notes" and getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict:
        """Fields the caller actually sent."""
        return self.model_dump(exclude_unset=True)

class ArrivalProductIn(_StrictIn):
    product_id: int = Field(gt=0)
    condition_id: int = Field(gt=0)
    expected_quantity: int = Field(ge=0)

class AddProductsIn(_StrictIn):
    arrival_products: List[ArrivalProductIn] = Field(min_length=1)

    @field_validator("arrival_products")
    @classmethod
    def _unique_products(cls, v: List[ArrivalProductIn]) -> List[ArrivalProductIn]:
        seen = set()
        for line in v:
            if line.product_id in seen:
                raise ValueError(f"product {line.product_id} listed more than once")
            seen.add(line.product_id)
        return v

class StartProcessingIn(_StrictIn):
    received_boxes: int = Field(ge=0)
    received_pallets: int = Field(ge=0)
    received_pieces: int = Field(default=0, ge=0)
    received_kilograms: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)

class ScanIn(_StrictIn):
    product_id: int = Field(gt=0)
    condition_id: int = Field(gt=0)
    received_quantity: int = Field(gt=0, description="Quantity to add to what was already received")

class DeleteManyIn(_StrictIn):
    arrival_numbers: List[str] = Field(min_length=1)

# ---------------------------------------------------------
# Outputs
# ---------------------------------------------------------

class ArrivalNumberOut(BaseModel):
    arrival_number: str

class ArrivalStatusOut(BaseModel):
    arrival_number: str
    status: ArrivalStatus

class DeletedArrivalsOut(BaseModel):
    deleted_arrivals: List[str]
    count: int

class SupplierRefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str

class ProductRefOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    name: str
    tsku: str
    barcode: Optional[str] = None

class ArrivalLineOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    product_id: int
    condition_id: int
    expected_quantity: int
    received_quantity: int
    product: Optional[ProductRefOut] = None

class ArrivalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    arrival_number: str
    title: str
    status: ArrivalStatus
    expected_date: datetime
    started_date: Optional[datetime] = None
    finished_date: Optional[datetime] = None
    expected_pallets: Optional[int] = None
    expected_boxes: int
    expected_kilograms: Decimal
    expected_pieces: Optional[int] = None
    received_pallets: Optional[int] = None
    received_boxes: Optional[int] = None
    received_kilograms: Optional[Decimal] = None
    received_pieces: Optional[int] = None
    notes: Optional[str] = None
    supplier: Optional[SupplierRefOut] = None
    lines: List[ArrivalLineOut] = Field(default_factory=list)

    @field_serializer("expected_kilograms", "received_kilograms")
    def _kilograms(self, v: Optional[Decimal]) -> Optional[float]:
        return float(v) if v is not None else None

class ScanOut(BaseModel):
    arrival_number: str
    status: ArrivalStatus
    line: ArrivalLineOut

class ProductDiscrepancy(BaseModel):
    product_id: int
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    expected_quantity: int
    received_quantity: int
    difference: int

class BoxDiscrepancy(BaseModel):
    expected_boxes: int
    received_boxes: int
    difference: int

class Discrepancies(BaseModel):
    products: Optional[List[ProductDiscrepancy]] = None
    boxes: Optional[BoxDiscrepancy] = None

class DiscrepancyReport(BaseModel):
    arrival_number: str
    status: ArrivalStatus
    has_discrepancies: bool
    discrepancies: Discrepancies

class ArrivalStatsOut(BaseModel):
    total: int = 0
    not_initiated: int = 0
    upcoming: int = 0
    in_progress: int = 0
    finished: int = 0
    with_discrepancy: int = 0

class EntityCountsOut(BaseModel):
    suppliers: int = 0
    products: int = 0
    conditions: int = 0
