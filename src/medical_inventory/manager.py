"""Medical inventory workflow: validation, reconciliation and confirmation.

A stock-take starts as a ``draft`` inventory holding one row per lot with the
quantity the ledger expected (theoretic) and the quantity actually counted
(real). Before confirming, the rows are reconciled against the movements
recorded since the inventory date. Confirmation writes the differences to the
ledger as charge and discharge movements and marks the inventory ``done``,
all in one transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Iterable, Optional, Sequence

from sqlalchemy.orm import Session

from . import crud, ledger
from .config import Settings, get_settings
from .database import transaction
from .exceptions import (
    DataValidationError,
    ExceptionMessage,
    NotFoundError,
    ServiceError,
    SeverityLevel,
)
from .models import (
    InventoryStatus,
    InventoryType,
    Lot,
    Medical,
    MedicalInventory,
    MedicalInventoryRow,
    Movement,
)

logger = logging.getLogger(__name__)

CHARGE_SUFFIX = "-charge"
DISCHARGE_SUFFIX = "-discharge"

_VALIDATE_TITLE = "Validate inventory"

STATUS_LABELS = {
    InventoryStatus.canceled.value: "Canceled",
    InventoryStatus.draft.value: "Draft",
    InventoryStatus.done.value: "Done",
    InventoryStatus.validated.value: "Validated",
}


def charge_reference(reference: str) -> str:
    return f"{reference}{CHARGE_SUFFIX}"


def discharge_reference(reference: str) -> str:
    return f"{reference}{DISCHARGE_SUFFIX}"


def beginning_of_day(value: datetime) -> datetime:
    return datetime.combine(value.date(), time.min)


def beginning_of_next_day(value: datetime) -> datetime:
    return beginning_of_day(value) + timedelta(days=1)


@dataclass(slots=True)
class Discrepancy:
    """A lot whose ledger quantity disagrees with the inventory rows."""

    kind: str  # "updated", "new_lot" or "new_medical"
    medical: Medical
    lot: Lot
    lot_info: str
    actual_qty: float
    theoretic_qty: Optional[float] = None
    row: Optional[MedicalInventoryRow] = None

    @property
    def medical_id(self) -> int:
        return self.medical.id

    @property
    def lot_code(self) -> str:
        return self.lot.code

    def describe(self) -> str:
        if self.kind == "updated":
            return (
                f"{self.medical.description} - lot {self.lot_info}: "
                f"{self.theoretic_qty:g} -> {self.actual_qty:g} ({self.actual_qty - self.theoretic_qty:+g})"
            )
        return f"{self.medical.description} - lot {self.lot_info}: {self.actual_qty:g}"


@dataclass(slots=True)
class ReconciliationReport:
    inventory: MedicalInventory
    discrepancies: list[Discrepancy] = field(default_factory=list)

    def of_kind(self, kind: str) -> list[Discrepancy]:
        return [item for item in self.discrepancies if item.kind == kind]

    @property
    def is_clean(self) -> bool:
        return not self.discrepancies

    def messages(self) -> list[ExceptionMessage]:
        """Aggregate the discrepancies into one informational message per kind."""

        ward = self.inventory.inventory_type == InventoryType.ward.value
        headers = {
            "updated": "Theoretical quantities have been updated for some medicals"
            + (" in the ward" if ward else "")
            + ":",
            "new_lot": "New lots have been added for some medicals" + (" in the ward" if ward else "") + ":",
            "new_medical": "New medicals have been found" + (" in the ward" if ward else "") + ":",
        }
        result: list[ExceptionMessage] = []
        for kind, header in headers.items():
            items = self.of_kind(kind)
            if not items:
                continue
            details = "\n".join(item.describe() for item in items)
            result.append(ExceptionMessage(f"{header}\n\n{details}", title=_VALIDATE_TITLE, severity=SeverityLevel.INFO))
        return result


class MedicalInventoryManager:
    """Business operations on medical inventories bound to one session."""

    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self._status_labels: Optional[dict[str, str]] = None

    # Persistence

    def new_inventory(self, inventory: MedicalInventory) -> MedicalInventory:
        inventory.status = inventory.status or InventoryStatus.draft.value
        inventory.inventory_type = inventory.inventory_type or InventoryType.main.value
        with transaction(self.db):
            self._validate_inventory(inventory)
            self._check_reference(inventory)
            crud.new_inventory(self.db, inventory)
        logger.info("Created inventory %s (%s)", inventory.reference, inventory.inventory_type)
        return inventory

    def update_inventory(self, inventory: MedicalInventory, check_reference: bool = True) -> MedicalInventory:
        with transaction(self.db):
            self._update_inventory(inventory, check_reference)
        return inventory

    def _update_inventory(self, inventory: MedicalInventory, check_reference: bool) -> MedicalInventory:
        self._validate_inventory(inventory)
        if check_reference:
            self._check_reference(inventory)
        return crud.update_inventory(self.db, inventory)

    def reference_exists(self, reference: str) -> bool:
        return crud.reference_exists(self.db, reference)

    def get_inventory_by_status_and_ward(self, status: Optional[str], ward_code: Optional[str]) -> list[MedicalInventory]:
        return crud.list_inventories(self.db, status=status, ward_code=ward_code)

    def get_inventory_by_status_and_type(self, status: Optional[str], inventory_type: Optional[str]) -> list[MedicalInventory]:
        return crud.list_inventories(self.db, status=status, inventory_type=inventory_type)

    def get_inventories(self) -> list[MedicalInventory]:
        return crud.list_inventories(self.db)

    def get_inventory_by_params(
        self,
        date_from: datetime,
        date_to: datetime,
        status: Optional[str] = None,
        inventory_type: Optional[str] = None,
    ) -> list[MedicalInventory]:
        return crud.get_inventories_by_params(
            self.db, beginning_of_day(date_from), beginning_of_next_day(date_to), status, inventory_type
        )

    def get_inventory_by_params_pageable(
        self,
        date_from: datetime,
        date_to: datetime,
        status: Optional[str],
        inventory_type: Optional[str],
        page: int,
        size: int,
    ) -> crud.Page[MedicalInventory]:
        return crud.get_inventories_by_params_pageable(
            self.db, beginning_of_day(date_from), beginning_of_next_day(date_to), status, inventory_type, page, size
        )

    def get_inventory_by_id(self, inventory_id: int) -> Optional[MedicalInventory]:
        return crud.get_inventory(self.db, inventory_id)

    def get_inventory_by_reference(self, reference: str) -> Optional[MedicalInventory]:
        return crud.get_inventory_by_reference(self.db, reference)

    # Rows

    def get_inventory_rows(self, inventory: MedicalInventory) -> list[MedicalInventoryRow]:
        return crud.get_inventory_rows(self.db, inventory.id)

    def add_inventory_row(
        self,
        inventory: MedicalInventory,
        medical: Medical,
        *,
        lot: Optional[Lot] = None,
        new_lot: Optional[dict] = None,
        theoretic_qty: float = 0.0,
        real_qty: float = 0.0,
    ) -> MedicalInventoryRow:
        """Add a row to a draft inventory, creating its lot when *new_lot* is given."""

        with transaction(self.db):
            self._require_status(inventory, InventoryStatus.draft)
            if lot is not None and new_lot is not None:
                raise DataValidationError("Choose an existing lot or a new one, not both.")
            if lot is not None and lot.medical_id != medical.id:
                raise DataValidationError(f"Lot {lot.code} belongs to another medical.")
            if lot is not None and crud.get_inventory_row_by_lot(self.db, inventory.id, medical.id, lot.code):
                raise DataValidationError(
                    f"Lot {lot.code} of {medical.description} is already counted in this inventory."
                )
            created = False
            if new_lot is not None:
                lot = ledger.create_lot(self.db, medical, **new_lot)
                created = True
            row = MedicalInventoryRow(
                inventory=inventory,
                medical=medical,
                lot=lot,
                theoretic_qty=theoretic_qty,
                real_qty=real_qty,
                new_lot=created,
            )
            crud.new_inventory_row(self.db, row)
        return row

    def update_inventory_row(
        self,
        row: MedicalInventoryRow,
        *,
        theoretic_qty: Optional[float] = None,
        real_qty: Optional[float] = None,
    ) -> MedicalInventoryRow:
        with transaction(self.db):
            self._require_status(row.inventory, InventoryStatus.draft, InventoryStatus.validated)
            if theoretic_qty is not None:
                row.theoretic_qty = theoretic_qty
            if real_qty is not None:
                row.real_qty = real_qty
            crud.update_inventory_row(self.db, row)
        return row

    # Validation

    def _validate_inventory(self, inventory: MedicalInventory) -> None:
        errors: list[ExceptionMessage] = []
        tomorrow = datetime.now() + timedelta(days=1)
        if inventory.inventory_date is None:
            errors.append(ExceptionMessage("Please insert a valid inventory date."))
        elif inventory.inventory_date > tomorrow:
            errors.append(ExceptionMessage("The inventory date cannot be in the future."))
        if not inventory.reference or not inventory.reference.strip():
            errors.append(ExceptionMessage("You must enter a reference."))
        if inventory.inventory_type not in {item.value for item in InventoryType}:
            errors.append(ExceptionMessage(f"Unknown inventory type '{inventory.inventory_type}'."))
        elif inventory.inventory_type == InventoryType.ward.value and not inventory.ward_code:
            errors.append(ExceptionMessage("Please select the ward to count."))
        if errors:
            raise DataValidationError(errors)

    def _check_reference(self, inventory: MedicalInventory) -> None:
        reference = inventory.reference
        used_in_ledger = ledger.ref_no_exists(self.db, charge_reference(reference)) or ledger.ref_no_exists(
            self.db, discharge_reference(reference)
        )
        existing = crud.get_inventory_by_reference(self.db, reference)
        if used_in_ledger or (existing is not None and existing.id != inventory.id):
            logger.warning("Reference %s is already in use", reference)
            raise ServiceError("The reference is already used.")

    def _require_status(self, inventory: MedicalInventory, *allowed: InventoryStatus) -> None:
        if inventory.status not in {status.value for status in allowed}:
            raise ServiceError(
                f"Inventory {inventory.reference} is {inventory.status}; "
                f"expected {' or '.join(status.value for status in allowed)}."
            )

    # Reconciliation

    def _lot_info(self, lot: Lot) -> str:
        if self.settings.automatic_lot_in and lot.due_date is not None:
            return lot.due_date.strftime("%d/%m/%Y")
        return lot.code

    def _moved_lots(self, inventory: MedicalInventory) -> list[Lot]:
        """Return the distinct lots moved between the inventory date and now."""

        date_from = inventory.inventory_date
        date_to = datetime.now()
        if inventory.inventory_type == InventoryType.ward.value:
            lots: list[Lot] = [mov.lot for mov in ledger.get_ward_movements(self.db, inventory.ward_code, date_from, date_to)]
            lots.extend(mov.lot for mov in ledger.get_movements(self.db, date_from, date_to, ward_code=inventory.ward_code))
        else:
            lots = [mov.lot for mov in ledger.get_movements(self.db, date_from, date_to)]
        unique: dict[str, Lot] = {}
        for lot in lots:
            unique.setdefault(lot.code, lot)
        return list(unique.values())

    def _current_quantity(self, inventory: MedicalInventory, lot: Lot) -> float:
        """Return the authoritative quantity of *lot* for the stock being counted."""

        if inventory.inventory_type == InventoryType.ward.value:
            stocks = ledger.get_medicals_ward(self.db, inventory.ward_code, lot.medical_id)
            for stock in stocks:
                if stock.lot_code == lot.code:
                    return stock.quantity
            return 0.0
        # emptied lots count too: movements may have discharged them completely
        for candidate in ledger.get_lots_by_medical(self.db, lot.medical_id, remove_empty=False):
            if candidate.code == lot.code:
                return float(candidate.main_store_quantity)
        return 0.0

    def reconcile(
        self, inventory: MedicalInventory, rows: Optional[Sequence[MedicalInventoryRow]] = None
    ) -> ReconciliationReport:
        """Compare *rows* (default: the stored rows) with the ledger since the inventory date."""

        if rows is None:
            rows = self.get_inventory_rows(inventory)
        report = ReconciliationReport(inventory=inventory)
        if inventory.inventory_date is None:
            return report
        inventory_medicals = {_row_medical_id(row) for row in rows}

        for lot in self._moved_lots(inventory):
            actual = self._current_quantity(inventory, lot)
            row = _matching_row(rows, lot)
            if row is not None:
                if actual != row.theoretic_qty:
                    report.discrepancies.append(
                        Discrepancy("updated", lot.medical, lot, self._lot_info(lot), actual, row.theoretic_qty, row)
                    )
            elif lot.medical_id not in inventory_medicals:
                report.discrepancies.append(Discrepancy("new_medical", lot.medical, lot, self._lot_info(lot), actual))
            else:
                report.discrepancies.append(Discrepancy("new_lot", lot.medical, lot, self._lot_info(lot), actual))

        if report.discrepancies:
            logger.info(
                "Inventory %s: %d discrepancy(ies) against the ledger", inventory.reference, len(report.discrepancies)
            )
        return report

    def validate_inventory_rows(
        self, inventory: MedicalInventory, rows: Optional[Sequence[MedicalInventoryRow]] = None
    ) -> None:
        """Raise an informational :class:`DataValidationError` when the ledger moved since the stock-take."""

        messages = self.reconcile(inventory, rows).messages()
        if messages:
            raise DataValidationError(messages)

    def validate_ward_inventory_rows(
        self, inventory: MedicalInventory, rows: Optional[Sequence[MedicalInventoryRow]] = None
    ) -> None:
        if inventory.inventory_type != InventoryType.ward.value:
            raise ServiceError(f"Inventory {inventory.reference} is not a ward inventory.")
        self.validate_inventory_rows(inventory, rows)

    def validate_inventory(self, inventory: MedicalInventory) -> MedicalInventory:
        """Check the stored rows against the ledger and mark the inventory validated."""

        self._require_status(inventory, InventoryStatus.draft, InventoryStatus.validated)
        self.validate_inventory_rows(inventory)
        inventory.status = InventoryStatus.validated.value
        return self.update_inventory(inventory, check_reference=False)

    def actualize_inventory(self, inventory: MedicalInventory) -> MedicalInventory:
        """Bring the stored rows up to date with the ledger since the inventory date."""

        self._require_status(inventory, InventoryStatus.draft, InventoryStatus.validated)
        ward = inventory.inventory_type == InventoryType.ward.value
        with transaction(self.db):
            report = self.reconcile(inventory)
            for item in report.discrepancies:
                if item.row is not None:
                    item.row.theoretic_qty = item.actual_qty
                    if ward:
                        item.row.real_qty = item.actual_qty
                    crud.update_inventory_row(self.db, item.row)
                else:
                    crud.new_inventory_row(
                        self.db,
                        MedicalInventoryRow(
                            inventory=inventory,
                            medical=item.medical,
                            lot=item.lot,
                            theoretic_qty=item.actual_qty,
                            real_qty=item.actual_qty,
                            new_lot=False,
                        ),
                    )
            self._update_inventory(inventory, check_reference=True)
        logger.info("Actualized inventory %s: %d change(s)", inventory.reference, len(report.discrepancies))
        return inventory

    def actualize_ward_inventory(self, inventory: MedicalInventory) -> MedicalInventory:
        if inventory.inventory_type != InventoryType.ward.value:
            raise ServiceError(f"Inventory {inventory.reference} is not a ward inventory.")
        return self.actualize_inventory(inventory)

    # Confirmation

    def confirm_inventory(
        self, inventory: MedicalInventory, rows: Optional[Sequence[MedicalInventoryRow]] = None
    ) -> list[Movement]:
        """Write the counted differences to the ledger and mark the inventory done.

        Charges and discharges are appended as two batches sharing the
        ``-charge`` and ``-discharge`` references. Nothing is kept unless
        everything succeeds.
        """

        with transaction(self.db):
            locked = crud.lock_inventory(self.db, inventory.id)
            if locked is None:
                raise NotFoundError(f"Inventory {inventory.id} not found.")
            inventory = locked
            self._require_status(inventory, InventoryStatus.draft, InventoryStatus.validated)
            if rows is None:
                rows = self.get_inventory_rows(inventory)

            reference = inventory.reference
            charge_ref = charge_reference(reference)
            discharge_ref = discharge_reference(reference)
            used = [ref for ref in (reference, charge_ref, discharge_ref) if ledger.ref_no_exists(self.db, ref)]
            if used:
                logger.warning("Refusing to confirm inventory %s: reference(s) %s already in the ledger", reference, used)
                raise ServiceError("The reference is already used.")

            self.validate_inventory_rows(inventory, rows)

            charges, discharges = self._adjusting_movements(inventory, rows, charge_ref, discharge_ref)
            inserted: list[Movement] = []
            if charges:
                inserted.extend(ledger.new_charging_movements(self.db, charges, charge_ref))
            if discharges:
                inserted.extend(ledger.new_discharging_movements(self.db, discharges, discharge_ref))

            inventory.status = InventoryStatus.done.value
            self._update_inventory(inventory, check_reference=False)

        logger.info(
            "Confirmed inventory %s: %d charge(s), %d discharge(s)", reference, len(charges), len(discharges)
        )
        return inserted

    def _adjusting_movements(
        self,
        inventory: MedicalInventory,
        rows: Iterable[MedicalInventoryRow],
        charge_ref: str,
        discharge_ref: str,
    ) -> tuple[list[Movement], list[Movement]]:
        rows = list(rows)
        deltas = [(row, row.real_qty - row.theoretic_qty) for row in rows]
        needs_charge = any(delta > 0 for _, delta in deltas)
        needs_discharge = any(delta < 0 for _, delta in deltas)

        errors: list[ExceptionMessage] = []
        charge_type = crud.get_movement_type(self.db, inventory.charge_type)
        discharge_type = crud.get_movement_type(self.db, inventory.discharge_type)
        supplier = crud.get_supplier(self.db, inventory.supplier_id)
        ward = crud.get_ward(self.db, inventory.destination)
        if needs_charge and charge_type is None:
            errors.append(ExceptionMessage("Please select a valid charge movement type."))
        if needs_discharge and discharge_type is None:
            errors.append(ExceptionMessage("Please select a valid discharge movement type."))
        if inventory.destination and ward is None:
            errors.append(ExceptionMessage(f"Unknown destination ward '{inventory.destination}'."))
        if inventory.supplier_id is not None and supplier is None:
            errors.append(ExceptionMessage(f"Unknown supplier {inventory.supplier_id}."))
        for row, delta in deltas:
            if delta and row.lot is None:
                errors.append(ExceptionMessage(f"{row.medical.description}: please select a lot."))
            if delta != int(delta):
                errors.append(
                    ExceptionMessage(f"{row.medical.description}: adjustment {delta:g} is not a whole quantity.")
                )
        if errors:
            raise DataValidationError(errors)

        now = datetime.now()
        charges: list[Movement] = []
        discharges: list[Movement] = []
        for row, delta in deltas:
            if delta > 0:
                charges.append(
                    Movement(
                        medical=row.medical,
                        type=charge_type,
                        ward=None,
                        lot=row.lot,
                        date=now,
                        quantity=int(delta),
                        supplier=supplier,
                        reference_number=charge_ref,
                    )
                )
            elif delta < 0:
                discharges.append(
                    Movement(
                        medical=row.medical,
                        type=discharge_type,
                        ward=ward,
                        lot=row.lot,
                        date=now,
                        quantity=int(-delta),
                        supplier=None,
                        reference_number=discharge_ref,
                    )
                )
        return charges, discharges

    # Deletion

    def delete_inventory(self, inventory: MedicalInventory) -> None:
        """Delete a draft inventory and the lots created just for it."""

        with transaction(self.db):
            self._require_status(inventory, InventoryStatus.draft)
            removed = sum(self._discard_new_lot(row) for row in crud.get_inventory_rows(self.db, inventory.id))
            crud.delete_inventory(self.db, inventory)
        logger.info("Deleted inventory %s and %d new lot(s)", inventory.reference, removed)

    def delete_inventory_row(self, row: MedicalInventoryRow) -> None:
        """Remove a row from a draft inventory, and the lot created with it."""

        inventory, row_id = row.inventory, row.id
        with transaction(self.db):
            self._require_status(inventory, InventoryStatus.draft)
            self._discard_new_lot(row)
            inventory.rows.remove(row)
            crud.delete_inventory_row(self.db, row)
        logger.info("Deleted row %s of inventory %s", row_id, inventory.reference)

    def _discard_new_lot(self, row: MedicalInventoryRow) -> bool:
        """Detach and delete the lot created for *row*; return whether it was deleted."""

        lot = row.lot
        if not row.new_lot or lot is None:
            return False
        row.lot = None
        crud.update_inventory_row(self.db, row)
        if ledger.lot_has_movements(self.db, lot):
            logger.info("Keeping lot %s: it has been moved since it was created", lot.code)
            return False
        ledger.delete_lot(self.db, lot)
        return True

    # Status labels

    def get_status_list(self) -> list[str]:
        """Return the status labels, draft first then alphabetical."""

        labels = self._labels()
        draft = labels[InventoryStatus.draft.value]
        return sorted(labels.values(), key=lambda label: (label != draft, label))

    def get_status_by_key(self, key: str) -> str:
        return self._labels().get(key, "")

    def _labels(self) -> dict[str, str]:
        if self._status_labels is None:
            self._status_labels = dict(STATUS_LABELS)
        return self._status_labels


def _matching_row(rows: Iterable[MedicalInventoryRow], lot: Lot) -> Optional[MedicalInventoryRow]:
    for row in rows:
        if row.lot is not None and row.lot.code == lot.code and _row_medical_id(row) == lot.medical_id:
            return row
    return None


def _row_medical_id(row: MedicalInventoryRow) -> int:
    # rows built in memory only carry the relationship until flushed
    return row.medical.id if row.medical is not None else row.medical_id
