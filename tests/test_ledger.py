from datetime import date, datetime, timedelta

import pytest

from medical_inventory import ledger
from medical_inventory.database import transaction
from medical_inventory.exceptions import DataValidationError, NotFoundError, ServiceError
from medical_inventory.models import Movement, MovementWard


def test_charges_and_discharges_keep_lot_quantity(db, make_lot, record_charge, record_discharge, stock):
    lot = make_lot(stock.amoxicillin, "A1")

    record_charge(lot, 10, reference="PO-1")
    record_discharge(lot, 3, reference="DN-1")

    assert lot.main_store_quantity == 7
    assert [m.quantity for m in ledger.get_movements_by_reference(db, "PO-1")] == [10]
    assert ledger.ref_no_exists(db, "PO-1")
    assert [m.quantity for m in ledger.get_movements_by_reference(db, "DN-1")] == [3]


def test_discharge_to_ward_fills_ward_stock(db, make_lot, record_charge, record_discharge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 10)

    record_discharge(lot, 4, ward=stock.ward, reference="DN-1")
    record_discharge(lot, 2, ward=stock.ward, reference="DN-2")

    [ward_stock] = ledger.get_medicals_ward(db, "W1")
    assert (ward_stock.lot_code, ward_stock.in_quantity, ward_stock.quantity) == ("A1", 6, 6)


def test_discharge_cannot_exceed_lot_quantity(db, make_lot, record_charge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 5)
    movements = [
        Movement(medical=stock.amoxicillin, type=stock.discharge_type, lot=lot, date=datetime.now(), quantity=q,
                 reference_number="DN-1")
        for q in (3, 3)
    ]

    with pytest.raises(DataValidationError, match="holds 5, cannot discharge 6"):
        with transaction(db):
            ledger.new_discharging_movements(db, movements, "DN-1")

    assert ledger.get_lot(db, "A1").main_store_quantity == 5
    assert not ledger.ref_no_exists(db, "DN-1")


def test_batch_errors_are_reported_together(db, make_lot, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    movement = Movement(
        medical=stock.paracetamol, type=stock.discharge_type, lot=lot, date=datetime.now(), quantity=0,
        reference_number="OTHER",
    )

    with pytest.raises(DataValidationError) as excinfo:
        with transaction(db):
            ledger.new_charging_movements(db, [movement], "PO-1")

    messages = [item.message for item in excinfo.value.messages]
    assert messages == [
        "Paracetamol 1g: wrong movement type for this operation.",
        "Paracetamol 1g: lot A1 belongs to another medical.",
        "Paracetamol 1g: the quantity must be greater than zero.",
        "Paracetamol 1g: the movement does not belong to reference PO-1.",
    ]


def test_reference_number_is_used_once(db, make_lot, record_charge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 5, reference="PO-1")

    with pytest.raises(DataValidationError, match="PO-1 is already used"):
        record_charge(lot, 5, reference="PO-1")

    assert len(ledger.get_movements_by_reference(db, "PO-1")) == 1
    assert ledger.get_lot(db, "A1").main_store_quantity == 5


def test_movements_are_selected_on_a_half_open_range(db, make_lot, record_charge, stock):
    start = datetime(2024, 3, 1)
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 1, when=start)
    record_charge(lot, 2, when=start + timedelta(days=1))
    record_charge(make_lot(stock.paracetamol, "P1"), 3, when=start)

    found = ledger.get_movements(db, start, start + timedelta(days=1))
    assert sorted(m.quantity for m in found) == [1, 3]
    only_amoxicillin = ledger.get_movements(db, start, start + timedelta(days=2), medical_id=stock.amoxicillin.id)
    assert [m.quantity for m in only_amoxicillin] == [1, 2]


def test_create_lot_validates_and_rejects_duplicates(db, make_lot, stock):
    with pytest.raises(DataValidationError) as excinfo:
        ledger.create_lot(db, stock.amoxicillin, " ", preparation_date=date(2025, 2, 1), due_date=date(2025, 1, 1))
    assert len(excinfo.value.messages) == 2
    db.rollback()

    make_lot(stock.amoxicillin, "A1")
    with pytest.raises(DataValidationError, match="already exists"):
        ledger.create_lot(db, stock.paracetamol, "A1")


def test_lots_by_medical_can_skip_empty_lots(db, make_lot, record_charge, stock):
    full = make_lot(stock.amoxicillin, "A1", due_date=date(2030, 6, 1))
    make_lot(stock.amoxicillin, "A0", due_date=date(2030, 1, 1))
    record_charge(full, 2)

    assert [lot.code for lot in ledger.get_lots_by_medical(db, stock.amoxicillin.id)] == ["A0", "A1"]
    assert [lot.code for lot in ledger.get_lots_by_medical(db, stock.amoxicillin.id, remove_empty=True)] == ["A1"]


def test_delete_lot_refuses_moved_lots(db, make_lot, record_charge, stock):
    moved = make_lot(stock.amoxicillin, "A1")
    unused = make_lot(stock.amoxicillin, "A2")
    record_charge(moved, 1)

    with transaction(db):
        ledger.delete_lot(db, unused)
    assert ledger.get_lot(db, "A2") is None

    with pytest.raises(ServiceError, match="has movements"):
        ledger.delete_lot(db, moved)


def test_ward_movements_consume_ward_stock(db, make_lot, record_charge, record_discharge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 10)
    record_discharge(lot, 4, ward=stock.ward)
    used = MovementWard(ward_code="W1", medical_id=stock.amoxicillin.id, lot_code="A1", quantity=3,
                        date=datetime.now(), description="Patient 42")

    with transaction(db):
        ledger.new_ward_movement(db, used)

    [ward_stock] = ledger.get_medicals_ward(db, "W1", stock.amoxicillin.id)
    assert ward_stock.quantity == 1
    assert [m.quantity for m in ledger.get_ward_movements(db, "W1", datetime.now() - timedelta(hours=1),
                                                            datetime.now() + timedelta(hours=1))] == [3]

    too_much = MovementWard(ward_code="W1", medical_id=stock.amoxicillin.id, lot_code="A1", quantity=2,
                            date=datetime.now())
    with pytest.raises(DataValidationError, match="cannot use 2"):
        ledger.new_ward_movement(db, too_much)


def test_ward_movement_without_stock_is_not_found(db, stock):
    movement = MovementWard(ward_code="W1", medical_id=stock.amoxicillin.id, lot_code="NONE", quantity=1,
                            date=datetime.now())

    with pytest.raises(NotFoundError):
        ledger.new_ward_movement(db, movement)


def test_ward_stock_can_skip_empty_lots(db, make_lot, record_charge, record_discharge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 2)
    record_discharge(lot, 2, ward=stock.ward)
    with transaction(db):
        ledger.new_ward_movement(
            db, MovementWard(ward_code="W1", medical_id=stock.amoxicillin.id, lot_code="A1", quantity=2,
                             date=datetime.now())
        )

    assert len(ledger.get_medicals_ward(db, "W1")) == 1
    assert ledger.get_medicals_ward(db, "W1", remove_empty=True) == []
