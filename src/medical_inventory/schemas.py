"""Pydantic schemas for API payloads."""

from __future__ import annotations

from datetime import date, datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import InventoryStatus, InventoryType


def _local_naive(value: Optional[datetime]) -> Optional[datetime]:
    """Store datetimes as naive local time, converting values sent with an offset."""

    if value is not None and value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


class MedicalCreate(BaseModel):
    description: str = Field(..., max_length=128)
    prod_code: Optional[str] = Field(None, max_length=32)
    minimum_quantity: float = Field(0.0, ge=0)


class MedicalRead(MedicalCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class WardCreate(BaseModel):
    code: str = Field(..., max_length=8)
    description: str = Field(..., max_length=64)


class WardRead(WardCreate):
    model_config = ConfigDict(from_attributes=True)


class SupplierCreate(BaseModel):
    name: str = Field(..., max_length=128)
    address: Optional[str] = Field(None, max_length=256)
    phone: Optional[str] = Field(None, max_length=32)


class SupplierRead(SupplierCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int


class MovementTypeCreate(BaseModel):
    code: str = Field(..., max_length=10)
    description: str = Field(..., max_length=64)
    type: str = Field(..., max_length=1, description="'+' charges the main store, '-' discharges it")


class MovementTypeRead(MovementTypeCreate):
    model_config = ConfigDict(from_attributes=True)


class NewLot(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)
    preparation_date: Optional[date] = None
    due_date: Optional[date] = None
    cost: Optional[float] = Field(None, ge=0)


class LotCreate(NewLot):
    medical_id: int


class LotRead(LotCreate):
    model_config = ConfigDict(from_attributes=True)

    main_store_quantity: int


class MovementLine(BaseModel):
    medical_id: int
    lot_code: str
    quantity: int = Field(..., gt=0)


class MovementBatch(BaseModel):
    """Several main store movements recorded under one reference number."""

    type_code: str
    reference_number: str = Field(..., min_length=1, max_length=64)
    supplier_id: Optional[int] = None
    ward_code: Optional[str] = None
    date: Optional[datetime] = None
    lines: list[MovementLine] = Field(..., min_length=1)

    normalize_date = field_validator("date")(_local_naive)


class MovementRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    medical_id: int
    type_code: str
    ward_code: Optional[str]
    lot_code: str
    date: datetime
    quantity: int
    supplier_id: Optional[int]
    reference_number: str


class WardMovementCreate(BaseModel):
    ward_code: str
    medical_id: int
    lot_code: str
    quantity: float = Field(..., gt=0)
    description: Optional[str] = Field(None, max_length=128)
    date: Optional[datetime] = None

    normalize_date = field_validator("date")(_local_naive)


class WardMovementRead(WardMovementCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
    date: datetime


class MedicalWardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ward_code: str
    medical_id: int
    lot_code: str
    quantity: float


class InventoryBase(BaseModel):
    reference: Optional[str] = Field(None, max_length=50)
    inventory_date: Optional[datetime] = None
    inventory_type: InventoryType = InventoryType.main
    ward_code: Optional[str] = None
    destination: Optional[str] = None
    supplier_id: Optional[int] = None
    charge_type: Optional[str] = None
    discharge_type: Optional[str] = None
    user: Optional[str] = Field(None, max_length=64)

    normalize_inventory_date = field_validator("inventory_date")(_local_naive)


class InventoryCreate(InventoryBase):
    pass


class InventoryUpdate(BaseModel):
    reference: Optional[str] = Field(None, max_length=50)
    inventory_date: Optional[datetime] = None
    status: Optional[InventoryStatus] = None
    destination: Optional[str] = None
    supplier_id: Optional[int] = None
    charge_type: Optional[str] = None
    discharge_type: Optional[str] = None

    normalize_inventory_date = field_validator("inventory_date")(_local_naive)


class InventoryRead(InventoryBase):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: InventoryStatus
    created_at: datetime
    updated_at: datetime


class InventoryPage(BaseModel):
    items: list[InventoryRead]
    total: int
    page: int
    size: int
    pages: int


class InventoryRowCreate(BaseModel):
    medical_id: int
    lot_code: Optional[str] = None
    new_lot: Optional[NewLot] = Field(None, description="Create this lot together with the row")
    theoretic_qty: float = Field(0.0, ge=0)
    real_qty: float = Field(0.0, ge=0)


class InventoryRowUpdate(BaseModel):
    theoretic_qty: Optional[float] = Field(None, ge=0)
    real_qty: Optional[float] = Field(None, ge=0)


class InventoryRowRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    inventory_id: int
    medical_id: int
    lot_code: Optional[str]
    theoretic_qty: float
    real_qty: float
    new_lot: bool


class MessageRead(BaseModel):
    title: str
    message: str
    severity: str


class DiscrepancyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    kind: Literal["updated", "new_lot", "new_medical"]
    medical_id: int
    medical: str
    lot_code: str
    lot_info: str
    theoretic_qty: Optional[float]
    actual_qty: float


class ReconciliationRead(BaseModel):
    inventory_id: int
    discrepancies: list[DiscrepancyRead]
    messages: list[MessageRead]
