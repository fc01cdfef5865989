from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from .. import crud, ledger
from ..database import transaction
from ..dependencies import get_db
from ..models import Movement, MovementWard
from ..schemas import (
    LotCreate,
    LotRead,
    MedicalCreate,
    MedicalRead,
    MedicalWardRead,
    MovementBatch,
    MovementRead,
    MovementTypeCreate,
    MovementTypeRead,
    SupplierCreate,
    SupplierRead,
    WardCreate,
    WardMovementCreate,
    WardMovementRead,
    WardRead,
)

router = APIRouter(tags=["stock"])


@router.post("/medicals", response_model=MedicalRead, status_code=status.HTTP_201_CREATED)
def create_medical(payload: MedicalCreate, db: Session = Depends(get_db)):
    return crud.create_medical(db, payload)


@router.get("/medicals", response_model=list[MedicalRead])
def list_medicals(skip: int = 0, limit: int = 50, db: Session = Depends(get_db)):
    return crud.list_medicals(db, skip=skip, limit=limit)


@router.get("/medicals/{medical_id}/lots", response_model=list[LotRead])
def list_lots(medical_id: int, remove_empty: bool = False, db: Session = Depends(get_db)):
    if not crud.get_medical(db, medical_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medical not found")
    return ledger.get_lots_by_medical(db, medical_id, remove_empty=remove_empty)


@router.post("/lots", response_model=LotRead, status_code=status.HTTP_201_CREATED)
def create_lot(payload: LotCreate, db: Session = Depends(get_db)):
    medical = crud.get_medical(db, payload.medical_id)
    if not medical:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medical not found")
    with transaction(db):
        lot = ledger.create_lot(
            db,
            medical,
            payload.code,
            preparation_date=payload.preparation_date,
            due_date=payload.due_date,
            cost=payload.cost,
        )
    return lot


@router.post("/wards", response_model=WardRead, status_code=status.HTTP_201_CREATED)
def create_ward(payload: WardCreate, db: Session = Depends(get_db)):
    return crud.create_ward(db, payload)


@router.get("/wards", response_model=list[WardRead])
def list_wards(db: Session = Depends(get_db)):
    return crud.list_wards(db)


@router.get("/wards/{ward_code}/stock", response_model=list[MedicalWardRead])
def ward_stock(ward_code: str, medical_id: int | None = None, db: Session = Depends(get_db)):
    if not crud.get_ward(db, ward_code):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ward not found")
    return ledger.get_medicals_ward(db, ward_code, medical_id)


@router.post("/suppliers", response_model=SupplierRead, status_code=status.HTTP_201_CREATED)
def create_supplier(payload: SupplierCreate, db: Session = Depends(get_db)):
    return crud.create_supplier(db, payload)


@router.get("/suppliers", response_model=list[SupplierRead])
def list_suppliers(db: Session = Depends(get_db)):
    return crud.list_suppliers(db)


@router.post("/movement-types", response_model=MovementTypeRead, status_code=status.HTTP_201_CREATED)
def create_movement_type(payload: MovementTypeCreate, db: Session = Depends(get_db)):
    return crud.create_movement_type(db, payload)


@router.get("/movement-types", response_model=list[MovementTypeRead])
def list_movement_types(db: Session = Depends(get_db)):
    return crud.list_movement_types(db)


@router.get("/movements", response_model=list[MovementRead])
def list_movements(
    date_from: datetime,
    date_to: datetime | None = None,
    medical_id: int | None = None,
    ward_code: str | None = None,
    reference: str | None = None,
    db: Session = Depends(get_db),
):
    if reference:
        return ledger.get_movements_by_reference(db, reference)
    return ledger.get_movements(
        db, date_from, date_to or datetime.now(), medical_id=medical_id, ward_code=ward_code
    )


def _batch_movements(db: Session, payload: MovementBatch) -> list[Movement]:
    movement_type = crud.get_movement_type(db, payload.type_code)
    if not movement_type:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Movement type not found")
    supplier = crud.get_supplier(db, payload.supplier_id)
    if payload.supplier_id is not None and not supplier:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Supplier not found")
    ward = crud.get_ward(db, payload.ward_code)
    if payload.ward_code and not ward:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Ward not found")

    movements: list[Movement] = []
    for line in payload.lines:
        medical = crud.get_medical(db, line.medical_id)
        lot = ledger.get_lot(db, line.lot_code)
        if not medical or not lot:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Medical {line.medical_id} or lot {line.lot_code} not found",
            )
        movements.append(
            Movement(
                medical=medical,
                type=movement_type,
                ward=ward,
                lot=lot,
                date=payload.date or datetime.now(),
                quantity=line.quantity,
                supplier=supplier,
                reference_number=payload.reference_number,
            )
        )
    return movements


@router.post("/movements/charges", response_model=list[MovementRead], status_code=status.HTTP_201_CREATED)
def charge(payload: MovementBatch, db: Session = Depends(get_db)):
    movements = _batch_movements(db, payload)
    with transaction(db):
        return ledger.new_charging_movements(db, movements, payload.reference_number)


@router.post("/movements/discharges", response_model=list[MovementRead], status_code=status.HTTP_201_CREATED)
def discharge(payload: MovementBatch, db: Session = Depends(get_db)):
    movements = _batch_movements(db, payload)
    with transaction(db):
        return ledger.new_discharging_movements(db, movements, payload.reference_number)


@router.post("/ward-movements", response_model=WardMovementRead, status_code=status.HTTP_201_CREATED)
def ward_movement(payload: WardMovementCreate, db: Session = Depends(get_db)):
    data = payload.model_dump()
    if data["date"] is None:
        data["date"] = datetime.now()
    with transaction(db):
        return ledger.new_ward_movement(db, MovementWard(**data))


@router.get("/ward-movements", response_model=list[WardMovementRead])
def list_ward_movements(
    ward_code: str, date_from: datetime, date_to: datetime | None = None, db: Session = Depends(get_db)
):
    return ledger.get_ward_movements(db, ward_code, date_from, date_to or datetime.now())
