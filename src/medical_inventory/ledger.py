"""Main store and ward stock ledger.

Movements are only ever appended. Every append keeps the lot main store
quantity and the ward stock in step with the ledger. Functions here flush
but never commit: the caller owns the transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Optional, Sequence

from sqlalchemy import exists, or_, select
from sqlalchemy.orm import Session

from .exceptions import DataValidationError, ExceptionMessage, NotFoundError, ServiceError
from .models import Lot, Medical, MedicalWard, Movement, MovementType, MovementWard

logger = logging.getLogger(__name__)


def ref_no_exists(db: Session, reference: str) -> bool:
    """Return whether any main store movement carries *reference*."""

    return bool(db.scalar(select(exists().where(Movement.reference_number == reference))))


def get_movements(
    db: Session,
    date_from: datetime,
    date_to: datetime,
    *,
    medical_id: Optional[int] = None,
    ward_code: Optional[str] = None,
) -> list[Movement]:
    """Return main store movements with ``date_from <= date < date_to``."""

    statement = select(Movement).where(Movement.date >= date_from, Movement.date < date_to)
    if medical_id is not None:
        statement = statement.where(Movement.medical_id == medical_id)
    if ward_code is not None:
        statement = statement.where(Movement.ward_code == ward_code)
    statement = statement.order_by(Movement.date, Movement.id)
    return list(db.scalars(statement))


def get_movements_by_reference(db: Session, reference: str) -> list[Movement]:
    statement = select(Movement).where(Movement.reference_number == reference).order_by(Movement.id)
    return list(db.scalars(statement))


def get_lot(db: Session, code: str) -> Optional[Lot]:
    return db.get(Lot, code)


def get_lots_by_medical(db: Session, medical_id: int, *, remove_empty: bool = False) -> list[Lot]:
    """Return the lots of a medical, emptied lots included unless *remove_empty*."""

    statement = select(Lot).where(Lot.medical_id == medical_id)
    if remove_empty:
        statement = statement.where(Lot.main_store_quantity > 0)
    statement = statement.order_by(Lot.due_date, Lot.code)
    return list(db.scalars(statement))


def create_lot(
    db: Session,
    medical: Medical,
    code: str,
    *,
    preparation_date: Optional[date] = None,
    due_date: Optional[date] = None,
    cost: Optional[float] = None,
) -> Lot:
    errors: list[ExceptionMessage] = []
    if not code or not code.strip():
        errors.append(ExceptionMessage("Please insert a lot code."))
    if preparation_date and due_date and due_date < preparation_date:
        errors.append(ExceptionMessage("The due date cannot be earlier than the preparation date."))
    if errors:
        raise DataValidationError(errors)
    if db.get(Lot, code) is not None:
        raise DataValidationError(f"Lot {code} already exists.")

    lot = Lot(
        code=code,
        medical=medical,
        preparation_date=preparation_date,
        due_date=due_date,
        cost=cost,
        main_store_quantity=0,
    )
    db.add(lot)
    db.flush()
    return lot


def lot_has_movements(db: Session, lot: Lot) -> bool:
    return bool(
        db.scalar(
            select(
                or_(
                    exists().where(Movement.lot_code == lot.code),
                    exists().where(MovementWard.lot_code == lot.code),
                )
            )
        )
    )


def delete_lot(db: Session, lot: Lot) -> None:
    """Delete a lot that was never moved."""

    if lot_has_movements(db, lot):
        raise ServiceError(f"Lot {lot.code} has movements and cannot be deleted.")
    db.delete(lot)
    db.flush()
    logger.info("Deleted lot %s", lot.code)


def _check_batch(
    db: Session, movements: Sequence[Movement], reference: str, expected_type: str
) -> list[ExceptionMessage]:
    errors: list[ExceptionMessage] = []
    if not reference:
        errors.append(ExceptionMessage("Please insert a reference number."))
    elif ref_no_exists(db, reference):
        errors.append(ExceptionMessage(f"The reference number {reference} is already used."))
    for movement in movements:
        label = movement.medical.description if movement.medical else "?"
        movement_type: Optional[MovementType] = movement.type
        if movement_type is None or movement_type.type != expected_type:
            errors.append(ExceptionMessage(f"{label}: wrong movement type for this operation."))
        if movement.lot is None:
            errors.append(ExceptionMessage(f"{label}: please select a lot."))
        elif movement.medical is not None and movement.lot.medical_id != movement.medical.id:
            errors.append(ExceptionMessage(f"{label}: lot {movement.lot.code} belongs to another medical."))
        if movement.quantity is None or movement.quantity <= 0:
            errors.append(ExceptionMessage(f"{label}: the quantity must be greater than zero."))
        if movement.reference_number != reference:
            errors.append(ExceptionMessage(f"{label}: the movement does not belong to reference {reference}."))
    return errors


def new_charging_movements(db: Session, movements: Sequence[Movement], reference: str) -> list[Movement]:
    """Append a batch of charges to the main store under one reference number."""

    errors = _check_batch(db, movements, reference, "+")
    if errors:
        raise DataValidationError(errors)

    for movement in movements:
        movement.lot.main_store_quantity += movement.quantity
        db.add(movement)
    db.flush()
    logger.info("Charged %d movement(s) with reference %s", len(movements), reference)
    return list(movements)


def new_discharging_movements(db: Session, movements: Sequence[Movement], reference: str) -> list[Movement]:
    """Append a batch of discharges from the main store under one reference number.

    A discharge with a ward moves the stock into that ward.
    """

    errors = _check_batch(db, movements, reference, "-")
    if errors:
        raise DataValidationError(errors)

    requested: dict[str, int] = {}
    for movement in movements:
        requested[movement.lot.code] = requested.get(movement.lot.code, 0) + movement.quantity
    for movement in movements:
        lot = movement.lot
        if requested[lot.code] > lot.main_store_quantity:
            errors.append(
                ExceptionMessage(
                    f"{movement.medical.description}: lot {lot.code} holds {lot.main_store_quantity}, "
                    f"cannot discharge {requested[lot.code]}."
                )
            )
            requested[lot.code] = 0  # report each lot once
    if errors:
        raise DataValidationError(errors)

    for movement in movements:
        movement.lot.main_store_quantity -= movement.quantity
        db.add(movement)
        ward_code = movement.ward.code if movement.ward is not None else movement.ward_code
        if ward_code:
            stock = _medical_ward(db, ward_code, movement.medical.id, movement.lot.code, create=True)
            stock.in_quantity += movement.quantity
    db.flush()
    logger.info("Discharged %d movement(s) with reference %s", len(movements), reference)
    return list(movements)


def _medical_ward(
    db: Session, ward_code: str, medical_id: int, lot_code: str, *, create: bool = False
) -> Optional[MedicalWard]:
    statement = select(MedicalWard).where(
        MedicalWard.ward_code == ward_code,
        MedicalWard.medical_id == medical_id,
        MedicalWard.lot_code == lot_code,
    )
    stock = db.scalars(statement).first()
    if stock is None and create:
        stock = MedicalWard(
            ward_code=ward_code, medical_id=medical_id, lot_code=lot_code, in_quantity=0.0, out_quantity=0.0
        )
        db.add(stock)
        db.flush()
    return stock


def get_medicals_ward(
    db: Session, ward_code: str, medical_id: Optional[int] = None, *, remove_empty: bool = False
) -> list[MedicalWard]:
    """Return the stock a ward holds, per lot."""

    statement = select(MedicalWard).where(MedicalWard.ward_code == ward_code)
    if medical_id is not None:
        statement = statement.where(MedicalWard.medical_id == medical_id)
    if remove_empty:
        statement = statement.where(MedicalWard.in_quantity - MedicalWard.out_quantity > 0)
    statement = statement.order_by(MedicalWard.medical_id, MedicalWard.lot_code)
    return list(db.scalars(statement))


def get_ward_movements(db: Session, ward_code: str, date_from: datetime, date_to: datetime) -> list[MovementWard]:
    statement = (
        select(MovementWard)
        .where(MovementWard.ward_code == ward_code, MovementWard.date >= date_from, MovementWard.date < date_to)
        .order_by(MovementWard.date, MovementWard.id)
    )
    return list(db.scalars(statement))


def new_ward_movement(db: Session, movement: MovementWard) -> MovementWard:
    """Record stock consumed inside a ward."""

    if movement.quantity is None or movement.quantity <= 0:
        raise DataValidationError("The quantity must be greater than zero.")
    stock = _medical_ward(db, movement.ward_code, movement.medical_id, movement.lot_code)
    if stock is None:
        raise NotFoundError(f"Ward {movement.ward_code} holds no stock of lot {movement.lot_code}.")
    if movement.quantity > stock.quantity:
        raise DataValidationError(
            f"Ward {movement.ward_code} holds {stock.quantity:g} of lot {movement.lot_code}, "
            f"cannot use {movement.quantity:g}."
        )
    stock.out_quantity += movement.quantity
    db.add(movement)
    db.flush()
    logger.info("Ward %s used %g of lot %s", movement.ward_code, movement.quantity, movement.lot_code)
    return movement
