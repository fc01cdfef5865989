"""Database models."""

from __future__ import annotations

import enum
from datetime import date, datetime
from typing import Optional

from sqlalchemy import Boolean, Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class InventoryStatus(str, enum.Enum):
    draft = "draft"
    done = "done"
    canceled = "canceled"
    validated = "validated"


class InventoryType(str, enum.Enum):
    main = "main"
    ward = "ward"


class Medical(Base):
    """A pharmaceutical product kept in stock."""

    __tablename__ = "medicals"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    prod_code: Mapped[str | None] = mapped_column(String(32), unique=True, nullable=True)
    description: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    minimum_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Medical id={self.id} description={self.description!r}>"


class Ward(Base):
    __tablename__ = "wards"

    code: Mapped[str] = mapped_column(String(8), primary_key=True)
    description: Mapped[str] = mapped_column(String(64), nullable=False)


class Supplier(Base):
    __tablename__ = "suppliers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    address: Mapped[str | None] = mapped_column(String(256), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)


class MovementType(Base):
    """Kind of main store movement; ``type`` is ``+`` for charges and ``-`` for discharges."""

    __tablename__ = "movement_types"

    code: Mapped[str] = mapped_column(String(10), primary_key=True)
    description: Mapped[str] = mapped_column(String(64), nullable=False)
    type: Mapped[str] = mapped_column(String(1), nullable=False)


class Lot(Base):
    """A batch of a medical with its own expiry and main store quantity."""

    __tablename__ = "lots"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    medical_id: Mapped[int] = mapped_column(ForeignKey("medicals.id"), nullable=False, index=True)
    preparation_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    main_store_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    medical: Mapped[Medical] = relationship()

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<Lot code={self.code!r} medical={self.medical_id} qty={self.main_store_quantity}>"


class Movement(Base):
    """Main store ledger entry. Rows are only ever appended."""

    __tablename__ = "movements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    medical_id: Mapped[int] = mapped_column(ForeignKey("medicals.id"), nullable=False, index=True)
    type_code: Mapped[str] = mapped_column(ForeignKey("movement_types.code"), nullable=False)
    ward_code: Mapped[str | None] = mapped_column(ForeignKey("wards.code"), nullable=True, index=True)
    lot_code: Mapped[str] = mapped_column(ForeignKey("lots.code"), nullable=False, index=True)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now, index=True)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    supplier_id: Mapped[int | None] = mapped_column(ForeignKey("suppliers.id"), nullable=True)
    reference_number: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    medical: Mapped[Medical] = relationship()
    type: Mapped[MovementType] = relationship()
    ward: Mapped[Optional[Ward]] = relationship()
    lot: Mapped[Lot] = relationship()
    supplier: Mapped[Optional[Supplier]] = relationship()


class MedicalWard(Base):
    """Stock of one lot of a medical held by a ward."""

    __tablename__ = "medical_wards"
    __table_args__ = (UniqueConstraint("ward_code", "medical_id", "lot_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ward_code: Mapped[str] = mapped_column(ForeignKey("wards.code"), nullable=False, index=True)
    medical_id: Mapped[int] = mapped_column(ForeignKey("medicals.id"), nullable=False)
    lot_code: Mapped[str] = mapped_column(ForeignKey("lots.code"), nullable=False)
    in_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    out_quantity: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    medical: Mapped[Medical] = relationship()
    lot: Mapped[Lot] = relationship()

    @property
    def quantity(self) -> float:
        return self.in_quantity - self.out_quantity


class MovementWard(Base):
    """Ward ledger entry: stock consumed inside a ward."""

    __tablename__ = "movement_wards"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ward_code: Mapped[str] = mapped_column(ForeignKey("wards.code"), nullable=False, index=True)
    medical_id: Mapped[int] = mapped_column(ForeignKey("medicals.id"), nullable=False)
    lot_code: Mapped[str] = mapped_column(ForeignKey("lots.code"), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now, index=True)
    quantity: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(String(128), nullable=True)

    medical: Mapped[Medical] = relationship()
    lot: Mapped[Lot] = relationship()


class MedicalInventory(Base):
    """A stock-take of the main store or of one ward."""

    __tablename__ = "medical_inventories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=InventoryStatus.draft.value, index=True)
    inventory_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(50), unique=True, nullable=True)
    inventory_type: Mapped[str] = mapped_column(String(8), nullable=False, default=InventoryType.main.value)
    ward_code: Mapped[str | None] = mapped_column(ForeignKey("wards.code"), nullable=True, index=True)
    destination: Mapped[str | None] = mapped_column(String(8), nullable=True)
    supplier_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    charge_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    discharge_type: Mapped[str | None] = mapped_column(String(10), nullable=True)
    user: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    rows: Mapped[list["MedicalInventoryRow"]] = relationship(
        back_populates="inventory", cascade="all, delete-orphan", order_by="MedicalInventoryRow.id"
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:  # pragma: no cover - debugging helper
        return f"<MedicalInventory reference={self.reference!r} status={self.status}>"


class MedicalInventoryRow(Base):
    """Theoretic and counted quantity of one lot of a medical within an inventory."""

    __tablename__ = "medical_inventory_rows"
    __table_args__ = (UniqueConstraint("inventory_id", "medical_id", "lot_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    inventory_id: Mapped[int] = mapped_column(ForeignKey("medical_inventories.id"), nullable=False, index=True)
    medical_id: Mapped[int] = mapped_column(ForeignKey("medicals.id"), nullable=False)
    lot_code: Mapped[str | None] = mapped_column(ForeignKey("lots.code"), nullable=True)
    theoretic_qty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    real_qty: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    new_lot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    inventory: Mapped[MedicalInventory] = relationship(back_populates="rows")
    medical: Mapped[Medical] = relationship()
    lot: Mapped[Optional[Lot]] = relationship()

    __mapper_args__ = {"version_id_col": version}
