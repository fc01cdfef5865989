"""Database access helpers.

Reference data helpers commit their own work. Inventory and row helpers only
flush so that :mod:`medical_inventory.manager` can group them with ledger
appends in a single transaction.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Generic, Optional, TypeVar

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import models, schemas
from .exceptions import DataValidationError, DuplicateRecordError, ExceptionMessage

T = TypeVar("T")


@dataclass(slots=True)
class Page(Generic[T]):
    """One page of a larger result set."""

    items: list[T]
    total: int
    page: int
    size: int

    @property
    def pages(self) -> int:
        if self.size <= 0:
            return 0
        return -(-self.total // self.size)


def validate_code_description(code: Optional[str], description: Optional[str], *, code_label: str = "code") -> None:
    """Reject blank codes and descriptions, reporting both problems at once."""

    errors: list[ExceptionMessage] = []
    if code is None or not str(code).strip():
        errors.append(ExceptionMessage(f"Please insert a valid {code_label}."))
    if description is None or not description.strip():
        errors.append(ExceptionMessage("Please insert a valid description."))
    if errors:
        raise DataValidationError(errors)


def _commit_new(db: Session, record, label: str):
    db.add(record)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise DuplicateRecordError(f"{label} already exists") from exc
    db.refresh(record)
    return record


# Reference data


def create_medical(db: Session, payload: schemas.MedicalCreate) -> models.Medical:
    if not payload.description or not payload.description.strip():
        raise DataValidationError("Please insert a valid description.")
    medical = models.Medical(
        prod_code=payload.prod_code,
        description=payload.description.strip(),
        minimum_quantity=payload.minimum_quantity,
    )
    return _commit_new(db, medical, f"Medical '{payload.description}'")


def get_medical(db: Session, medical_id: int) -> Optional[models.Medical]:
    return db.get(models.Medical, medical_id)


def list_medicals(db: Session, *, skip: int = 0, limit: int = 50) -> list[models.Medical]:
    statement = select(models.Medical).order_by(models.Medical.description).offset(skip).limit(limit)
    return list(db.scalars(statement))


def create_ward(db: Session, payload: schemas.WardCreate) -> models.Ward:
    validate_code_description(payload.code, payload.description)
    if db.get(models.Ward, payload.code) is not None:
        raise DuplicateRecordError(f"Ward '{payload.code}' already exists")
    return _commit_new(db, models.Ward(code=payload.code, description=payload.description), f"Ward '{payload.code}'")


def get_ward(db: Session, code: Optional[str]) -> Optional[models.Ward]:
    if not code:
        return None
    return db.get(models.Ward, code)


def list_wards(db: Session) -> list[models.Ward]:
    return list(db.scalars(select(models.Ward).order_by(models.Ward.code)))


def create_supplier(db: Session, payload: schemas.SupplierCreate) -> models.Supplier:
    if not payload.name or not payload.name.strip():
        raise DataValidationError("Please insert a valid name.")
    supplier = models.Supplier(name=payload.name.strip(), address=payload.address, phone=payload.phone)
    return _commit_new(db, supplier, f"Supplier '{payload.name}'")


def get_supplier(db: Session, supplier_id: Optional[int]) -> Optional[models.Supplier]:
    if supplier_id is None:
        return None
    return db.get(models.Supplier, supplier_id)


def list_suppliers(db: Session) -> list[models.Supplier]:
    return list(db.scalars(select(models.Supplier).order_by(models.Supplier.name)))


def create_movement_type(db: Session, payload: schemas.MovementTypeCreate) -> models.MovementType:
    errors: list[ExceptionMessage] = []
    try:
        validate_code_description(payload.code, payload.description)
    except DataValidationError as exc:
        errors.extend(exc.messages)
    if payload.type not in {"+", "-"}:
        errors.append(ExceptionMessage("The movement type must be '+' or '-'."))
    if errors:
        raise DataValidationError(errors)
    if db.get(models.MovementType, payload.code) is not None:
        raise DuplicateRecordError(f"Movement type '{payload.code}' already exists")
    movement_type = models.MovementType(code=payload.code, description=payload.description, type=payload.type)
    return _commit_new(db, movement_type, f"Movement type '{payload.code}'")


def get_movement_type(db: Session, code: Optional[str]) -> Optional[models.MovementType]:
    if not code:
        return None
    return db.get(models.MovementType, code)


def list_movement_types(db: Session) -> list[models.MovementType]:
    return list(db.scalars(select(models.MovementType).order_by(models.MovementType.code)))


# Inventories


def new_inventory(db: Session, inventory: models.MedicalInventory) -> models.MedicalInventory:
    db.add(inventory)
    db.flush()
    return inventory


def update_inventory(db: Session, inventory: models.MedicalInventory) -> models.MedicalInventory:
    db.add(inventory)
    db.flush()
    return inventory


def delete_inventory(db: Session, inventory: models.MedicalInventory) -> None:
    db.delete(inventory)
    db.flush()


def reference_exists(db: Session, reference: str) -> bool:
    statement = select(func.count()).select_from(models.MedicalInventory).where(
        models.MedicalInventory.reference == reference
    )
    return db.scalar(statement) > 0


def get_inventory(db: Session, inventory_id: int) -> Optional[models.MedicalInventory]:
    return db.get(models.MedicalInventory, inventory_id)


def get_inventory_by_reference(db: Session, reference: str) -> Optional[models.MedicalInventory]:
    statement = select(models.MedicalInventory).where(models.MedicalInventory.reference == reference)
    return db.scalars(statement).first()


def lock_inventory(db: Session, inventory_id: int) -> Optional[models.MedicalInventory]:
    """Reload an inventory holding a row lock where the database supports one."""

    statement = (
        select(models.MedicalInventory)
        .where(models.MedicalInventory.id == inventory_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return db.scalars(statement).first()


def list_inventories(
    db: Session,
    *,
    status: Optional[str] = None,
    ward_code: Optional[str] = None,
    inventory_type: Optional[str] = None,
) -> list[models.MedicalInventory]:
    statement = select(models.MedicalInventory)
    if status:
        statement = statement.where(models.MedicalInventory.status == status)
    if ward_code:
        statement = statement.where(models.MedicalInventory.ward_code == ward_code)
    if inventory_type:
        statement = statement.where(models.MedicalInventory.inventory_type == inventory_type)
    statement = statement.order_by(models.MedicalInventory.inventory_date.desc(), models.MedicalInventory.id.desc())
    return list(db.scalars(statement))


def _params_statement(date_from: datetime, date_to: datetime, status: Optional[str], inventory_type: Optional[str]):
    statement = select(models.MedicalInventory).where(
        models.MedicalInventory.inventory_date >= date_from,
        models.MedicalInventory.inventory_date < date_to,
    )
    if status:
        statement = statement.where(models.MedicalInventory.status == status)
    if inventory_type:
        statement = statement.where(models.MedicalInventory.inventory_type == inventory_type)
    return statement


def get_inventories_by_params(
    db: Session,
    date_from: datetime,
    date_to: datetime,
    status: Optional[str] = None,
    inventory_type: Optional[str] = None,
) -> list[models.MedicalInventory]:
    statement = _params_statement(date_from, date_to, status, inventory_type).order_by(
        models.MedicalInventory.inventory_date.desc(), models.MedicalInventory.id.desc()
    )
    return list(db.scalars(statement))


def get_inventories_by_params_pageable(
    db: Session,
    date_from: datetime,
    date_to: datetime,
    status: Optional[str],
    inventory_type: Optional[str],
    page: int,
    size: int,
) -> Page[models.MedicalInventory]:
    statement = _params_statement(date_from, date_to, status, inventory_type)
    total = db.scalar(select(func.count()).select_from(statement.subquery()))
    statement = (
        statement.order_by(models.MedicalInventory.inventory_date.desc(), models.MedicalInventory.id.desc())
        .offset(page * size)
        .limit(size)
    )
    return Page(items=list(db.scalars(statement)), total=total or 0, page=page, size=size)


# Inventory rows


def new_inventory_row(db: Session, row: models.MedicalInventoryRow) -> models.MedicalInventoryRow:
    db.add(row)
    db.flush()
    return row


def update_inventory_row(db: Session, row: models.MedicalInventoryRow) -> models.MedicalInventoryRow:
    db.add(row)
    db.flush()
    return row


def delete_inventory_row(db: Session, row: models.MedicalInventoryRow) -> None:
    db.delete(row)
    db.flush()


def get_inventory_row(db: Session, row_id: int) -> Optional[models.MedicalInventoryRow]:
    return db.get(models.MedicalInventoryRow, row_id)


def get_inventory_row_by_lot(
    db: Session, inventory_id: int, medical_id: int, lot_code: str
) -> Optional[models.MedicalInventoryRow]:
    statement = select(models.MedicalInventoryRow).where(
        models.MedicalInventoryRow.inventory_id == inventory_id,
        models.MedicalInventoryRow.medical_id == medical_id,
        models.MedicalInventoryRow.lot_code == lot_code,
    )
    return db.scalars(statement).first()


def get_inventory_rows(db: Session, inventory_id: int) -> list[models.MedicalInventoryRow]:
    statement = (
        select(models.MedicalInventoryRow)
        .where(models.MedicalInventoryRow.inventory_id == inventory_id)
        .order_by(models.MedicalInventoryRow.id)
    )
    return list(db.scalars(statement))
