from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Response, status

from .. import crud, ledger
from ..dependencies import get_manager, pagination_params
from ..exceptions import ServiceError
from ..manager import MedicalInventoryManager, ReconciliationReport
from ..models import InventoryStatus, MedicalInventory, MedicalInventoryRow
from ..schemas import (
    DiscrepancyRead,
    InventoryCreate,
    InventoryPage,
    InventoryRead,
    InventoryRowCreate,
    InventoryRowRead,
    InventoryRowUpdate,
    InventoryUpdate,
    MessageRead,
    MovementRead,
    ReconciliationRead,
)

router = APIRouter(prefix="/inventories", tags=["inventories"])


def _load_inventory(manager: MedicalInventoryManager, inventory_id: int) -> MedicalInventory:
    inventory = manager.get_inventory_by_id(inventory_id)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found")
    return inventory


def _load_row(manager: MedicalInventoryManager, inventory_id: int, row_id: int) -> MedicalInventoryRow:
    row = crud.get_inventory_row(manager.db, row_id)
    if not row or row.inventory_id != inventory_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory row not found")
    return row


@router.post("", response_model=InventoryRead, status_code=status.HTTP_201_CREATED)
def create_inventory(payload: InventoryCreate, manager: MedicalInventoryManager = Depends(get_manager)):
    data = payload.model_dump()
    data["inventory_type"] = payload.inventory_type.value
    inventory = MedicalInventory(**data, status=InventoryStatus.draft.value)
    return manager.new_inventory(inventory)


@router.get("", response_model=InventoryPage)
def list_inventories(
    status_filter: str | None = None,
    inventory_type: str | None = None,
    ward_code: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    pagination: tuple[int, int] = Depends(pagination_params),
    manager: MedicalInventoryManager = Depends(get_manager),
) -> InventoryPage:
    page, size = pagination
    if date_from is not None and date_to is not None:
        result = manager.get_inventory_by_params_pageable(date_from, date_to, status_filter, inventory_type, page, size)
        items, total = result.items, result.total
    else:
        if ward_code:
            inventories = manager.get_inventory_by_status_and_ward(status_filter, ward_code)
        else:
            inventories = manager.get_inventory_by_status_and_type(status_filter, inventory_type)
        total = len(inventories)
        items = inventories[page * size : (page + 1) * size]
    return InventoryPage(
        items=[InventoryRead.model_validate(item) for item in items],
        total=total,
        page=page,
        size=size,
        pages=crud.Page(items=[], total=total, page=page, size=size).pages,
    )


@router.get("/statuses", response_model=list[str])
def list_statuses(manager: MedicalInventoryManager = Depends(get_manager)) -> list[str]:
    return manager.get_status_list()


@router.get("/by-reference/{reference}", response_model=InventoryRead)
def get_inventory_by_reference(reference: str, manager: MedicalInventoryManager = Depends(get_manager)):
    inventory = manager.get_inventory_by_reference(reference)
    if not inventory:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Inventory not found")
    return inventory


@router.get("/{inventory_id}", response_model=InventoryRead)
def get_inventory(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)):
    return _load_inventory(manager, inventory_id)


@router.put("/{inventory_id}", response_model=InventoryRead)
def update_inventory(
    inventory_id: int, payload: InventoryUpdate, manager: MedicalInventoryManager = Depends(get_manager)
):
    inventory = _load_inventory(manager, inventory_id)
    if inventory.status in (InventoryStatus.done.value, InventoryStatus.canceled.value):
        raise ServiceError(f"Inventory {inventory.reference} is {inventory.status} and cannot be changed.")
    if payload.status == InventoryStatus.done:
        raise ServiceError("Confirm the inventory to mark it done.")
    if payload.status == InventoryStatus.validated:
        raise ServiceError("Validate the inventory against the ledger to mark it validated.")
    update_data = payload.model_dump(exclude_unset=True)
    if "status" in update_data and update_data["status"] is not None:
        update_data["status"] = update_data["status"].value
    check_reference = "reference" in update_data and update_data["reference"] != inventory.reference
    for key, value in update_data.items():
        setattr(inventory, key, value)
    return manager.update_inventory(inventory, check_reference=check_reference)


@router.delete("/{inventory_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_inventory(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)) -> Response:
    manager.delete_inventory(_load_inventory(manager, inventory_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{inventory_id}/rows", response_model=list[InventoryRowRead])
def list_rows(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)):
    return manager.get_inventory_rows(_load_inventory(manager, inventory_id))


@router.post("/{inventory_id}/rows", response_model=InventoryRowRead, status_code=status.HTTP_201_CREATED)
def add_row(inventory_id: int, payload: InventoryRowCreate, manager: MedicalInventoryManager = Depends(get_manager)):
    inventory = _load_inventory(manager, inventory_id)
    medical = crud.get_medical(manager.db, payload.medical_id)
    if not medical:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Medical not found")
    lot = None
    if payload.lot_code:
        lot = ledger.get_lot(manager.db, payload.lot_code)
        if not lot:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Lot not found")
    return manager.add_inventory_row(
        inventory,
        medical,
        lot=lot,
        new_lot=payload.new_lot.model_dump() if payload.new_lot else None,
        theoretic_qty=payload.theoretic_qty,
        real_qty=payload.real_qty,
    )


@router.put("/{inventory_id}/rows/{row_id}", response_model=InventoryRowRead)
def update_row(
    inventory_id: int,
    row_id: int,
    payload: InventoryRowUpdate,
    manager: MedicalInventoryManager = Depends(get_manager),
):
    row = _load_row(manager, inventory_id, row_id)
    return manager.update_inventory_row(row, theoretic_qty=payload.theoretic_qty, real_qty=payload.real_qty)


@router.delete("/{inventory_id}/rows/{row_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_row(inventory_id: int, row_id: int, manager: MedicalInventoryManager = Depends(get_manager)) -> Response:
    manager.delete_inventory_row(_load_row(manager, inventory_id, row_id))
    return Response(status_code=status.HTTP_204_NO_CONTENT)


def _report_payload(report: ReconciliationReport) -> ReconciliationRead:
    return ReconciliationRead(
        inventory_id=report.inventory.id,
        discrepancies=[
            DiscrepancyRead(
                kind=item.kind,
                medical_id=item.medical_id,
                medical=item.medical.description,
                lot_code=item.lot_code,
                lot_info=item.lot_info,
                theoretic_qty=item.theoretic_qty,
                actual_qty=item.actual_qty,
            )
            for item in report.discrepancies
        ],
        messages=[MessageRead(**message.as_dict()) for message in report.messages()],
    )


@router.post("/{inventory_id}/reconcile", response_model=ReconciliationRead)
def reconcile(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)) -> ReconciliationRead:
    return _report_payload(manager.reconcile(_load_inventory(manager, inventory_id)))


@router.post("/{inventory_id}/validate", response_model=InventoryRead)
def validate(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)):
    return manager.validate_inventory(_load_inventory(manager, inventory_id))


@router.post("/{inventory_id}/actualize", response_model=InventoryRead)
def actualize(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)):
    return manager.actualize_inventory(_load_inventory(manager, inventory_id))


@router.post("/{inventory_id}/confirm", response_model=list[MovementRead])
def confirm(inventory_id: int, manager: MedicalInventoryManager = Depends(get_manager)):
    return manager.confirm_inventory(_load_inventory(manager, inventory_id))
