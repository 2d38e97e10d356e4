# receiving_hub/db_models.py
"""
SQLAlchemy ORM Models for Receiving Hub.

Reference tables (suppliers, conditions, products) are lookups the arrival
core only reads by id. Arrivals own their product lines.
"""
from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
import enum

from sqlalchemy import (
    String, Integer, BigInteger, Text, DateTime,
    Numeric, ForeignKey, Index, CheckConstraint, UniqueConstraint,
    Enum as SQLEnum, func
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from receiving_hub.database import Base

# BIGINT on PostgreSQL, INTEGER on SQLite (only INTEGER PRIMARY KEY autoincrements there)
BigIntPK = BigInteger().with_variant(Integer(), "sqlite")

# ============================================================================
# ENUMS
# ============================================================================

class ArrivalStatus(str, enum.Enum):
    not_initiated = "not_initiated"
    upcoming = "upcoming"
    in_progress = "in_progress"
    finished = "finished"
    completed_with_discrepancy = "completed_with_discrepancy"

    @property
    def is_terminal(self) -> bool:
        return self in (ArrivalStatus.finished, ArrivalStatus.completed_with_discrepancy)


class UserRole(str, enum.Enum):
    admin = "admin"
    user = "user"


# ============================================================================
# MIXIN for updated_at
# ============================================================================

class TimestampMixin:
    """Mixin for created_at and updated_at columns."""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================================================
# 1. SUPPLIERS
# ============================================================================

class Supplier(TimestampMixin, Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    contact_person: Mapped[Optional[str]] = mapped_column(String(100))
    phone: Mapped[Optional[str]] = mapped_column(String(20))
    email: Mapped[Optional[str]] = mapped_column(String(100))
    address: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    arrivals: Mapped[List["Arrival"]] = relationship(back_populates="supplier")


# ============================================================================
# 2. CONDITIONS
# ============================================================================

class Condition(TimestampMixin, Base):
    __tablename__ = "conditions"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)


# ============================================================================
# 3. PRODUCTS
# ============================================================================

class Product(TimestampMixin, Base):
    __tablename__ = "products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    tsku: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    barcode: Mapped[Optional[str]] = mapped_column(String(100), unique=True)


# ============================================================================
# 4. ARRIVALS
# ============================================================================

class Arrival(TimestampMixin, Base):
    __tablename__ = "arrivals"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    arrival_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    supplier_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("suppliers.id", ondelete="RESTRICT"), nullable=False)
    # naive timestamps: caller's clock at call time
    expected_date: Mapped[datetime] = mapped_column(DateTime(), nullable=False)
    started_date: Mapped[Optional[datetime]] = mapped_column(DateTime())
    finished_date: Mapped[Optional[datetime]] = mapped_column(DateTime())
    status: Mapped[ArrivalStatus] = mapped_column(
        SQLEnum(ArrivalStatus, name="arrival_status"),
        default=ArrivalStatus.not_initiated,
        nullable=False
    )
    expected_pallets: Mapped[Optional[int]] = mapped_column(Integer)
    expected_boxes: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_kilograms: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    expected_pieces: Mapped[Optional[int]] = mapped_column(Integer)
    received_pallets: Mapped[Optional[int]] = mapped_column(Integer)
    received_boxes: Mapped[Optional[int]] = mapped_column(Integer)
    received_kilograms: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2))
    received_pieces: Mapped[Optional[int]] = mapped_column(Integer)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    # Relationships
    supplier: Mapped["Supplier"] = relationship(back_populates="arrivals")
    lines: Mapped[List["ArrivalProduct"]] = relationship(
        back_populates="arrival",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("idx_arrivals_status", "status"),
        Index("idx_arrivals_expected_date", "expected_date"),
        Index("idx_arrivals_supplier", "supplier_id"),
    )


# ============================================================================
# 5. ARRIVAL PRODUCTS (expected product lines of an arrival)
# ============================================================================

class ArrivalProduct(TimestampMixin, Base):
    __tablename__ = "arrival_products"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True)
    arrival_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("arrivals.id", ondelete="CASCADE"), nullable=False)
    product_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("products.id", ondelete="RESTRICT"), nullable=False)
    condition_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("conditions.id", ondelete="RESTRICT"), nullable=False)
    expected_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    received_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    arrival: Mapped["Arrival"] = relationship(back_populates="lines")
    product: Mapped[Optional["Product"]] = relationship()
    condition: Mapped[Optional["Condition"]] = relationship()

    __table_args__ = (
        UniqueConstraint("arrival_id", "product_id", name="uq_arrival_products_product"),
        CheckConstraint("expected_quantity >= 0", name="chk_arrival_products_expected_non_negative"),
        CheckConstraint("received_quantity >= 0", name="chk_arrival_products_received_non_negative"),
        CheckConstraint("received_quantity <= expected_quantity", name="chk_arrival_products_received_ceiling"),
        Index("idx_arrival_products_arrival", "arrival_id"),
    )
