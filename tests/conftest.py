import os
import tempfile
from collections.abc import Callable, Generator
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Optional

# The package creates its engine at import time; keep it away from the home directory.
os.environ.setdefault("MEDINV_DB", os.path.join(tempfile.mkdtemp(prefix="medinv-"), "test.sqlite3"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from medical_inventory import crud, ledger, schemas
from medical_inventory.app import create_app
from medical_inventory.config import Settings
from medical_inventory.database import Base, init_database, transaction
from medical_inventory.dependencies import get_db
from medical_inventory.manager import MedicalInventoryManager
from medical_inventory.models import (
    InventoryType,
    Lot,
    Medical,
    MedicalInventory,
    Movement,
    MovementType,
    Supplier,
    Ward,
)

TWO_DAYS_AGO = datetime.now() - timedelta(days=2)
YESTERDAY = datetime.now() - timedelta(days=1)


@dataclass
class StockData:
    amoxicillin: Medical
    paracetamol: Medical
    ibuprofen: Medical
    ward: Ward
    supplier: Supplier
    charge_type: MovementType
    discharge_type: MovementType


@pytest.fixture(name="db_engine")
def db_engine_fixture() -> Generator[Any, None, None]:
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    init_database(engine)
    yield engine
    Base.metadata.drop_all(engine)


@pytest.fixture(name="session_factory")
def session_factory_fixture(db_engine) -> sessionmaker:
    return sessionmaker(bind=db_engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(name="db")
def db_fixture(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(database_path=tmp_path / "unused.sqlite3", automatic_lot_in=False)


@pytest.fixture(name="manager")
def manager_fixture(db: Session, settings: Settings) -> MedicalInventoryManager:
    return MedicalInventoryManager(db, settings)


@pytest.fixture(name="stock")
def stock_fixture(db: Session) -> StockData:
    return StockData(
        amoxicillin=crud.create_medical(db, schemas.MedicalCreate(description="Amoxicillin 500mg", prod_code="AMX500")),
        paracetamol=crud.create_medical(db, schemas.MedicalCreate(description="Paracetamol 1g", prod_code="PCM1000")),
        ibuprofen=crud.create_medical(db, schemas.MedicalCreate(description="Ibuprofen 400mg", prod_code="IBU400")),
        ward=crud.create_ward(db, schemas.WardCreate(code="W1", description="Internal medicine")),
        supplier=crud.create_supplier(db, schemas.SupplierCreate(name="Central Pharma")),
        charge_type=crud.create_movement_type(
            db, schemas.MovementTypeCreate(code="CHG", description="Inventory charge", type="+")
        ),
        discharge_type=crud.create_movement_type(
            db, schemas.MovementTypeCreate(code="DIS", description="Inventory discharge", type="-")
        ),
    )


@pytest.fixture(name="make_lot")
def make_lot_fixture(db: Session) -> Callable[..., Lot]:
    def _make_lot(medical: Medical, code: str, due_date: Optional[date] = None) -> Lot:
        with transaction(db):
            return ledger.create_lot(db, medical, code, due_date=due_date or date(2030, 1, 31))

    return _make_lot


@pytest.fixture(name="record_charge")
def record_charge_fixture(db: Session, stock: StockData) -> Callable[..., Movement]:
    def _charge(lot: Lot, quantity: int, *, when: Optional[datetime] = None, reference: Optional[str] = None) -> Movement:
        when = when or TWO_DAYS_AGO
        reference = reference or f"PO-{lot.code}-{when:%Y%m%d%H%M%S%f}"
        movement = Movement(
            medical=lot.medical,
            type=stock.charge_type,
            lot=lot,
            date=when,
            quantity=quantity,
            supplier=stock.supplier,
            reference_number=reference,
        )
        with transaction(db):
            ledger.new_charging_movements(db, [movement], reference)
        return movement

    return _charge


@pytest.fixture(name="record_discharge")
def record_discharge_fixture(db: Session, stock: StockData) -> Callable[..., Movement]:
    def _discharge(
        lot: Lot,
        quantity: int,
        *,
        when: Optional[datetime] = None,
        reference: Optional[str] = None,
        ward: Optional[Ward] = None,
    ) -> Movement:
        when = when or TWO_DAYS_AGO
        reference = reference or f"DN-{lot.code}-{when:%Y%m%d%H%M%S%f}"
        movement = Movement(
            medical=lot.medical,
            type=stock.discharge_type,
            ward=ward,
            lot=lot,
            date=when,
            quantity=quantity,
            reference_number=reference,
        )
        with transaction(db):
            ledger.new_discharging_movements(db, [movement], reference)
        return movement

    return _discharge


@pytest.fixture(name="make_inventory")
def make_inventory_fixture(manager: MedicalInventoryManager, stock: StockData) -> Callable[..., MedicalInventory]:
    def _make_inventory(
        reference: str,
        *,
        inventory_date: Optional[datetime] = None,
        inventory_type: InventoryType = InventoryType.main,
        ward_code: Optional[str] = None,
    ) -> MedicalInventory:
        inventory = MedicalInventory(
            reference=reference,
            inventory_date=inventory_date or YESTERDAY,
            inventory_type=inventory_type.value,
            ward_code=ward_code,
            destination=stock.ward.code,
            supplier_id=stock.supplier.id,
            charge_type=stock.charge_type.code,
            discharge_type=stock.discharge_type.code,
            user="pharmacist",
        )
        return manager.new_inventory(inventory)

    return _make_inventory


@pytest.fixture(name="client")
def client_fixture(session_factory) -> Generator[TestClient, None, None]:
    app = create_app()

    def get_db_override() -> Generator[Session, None, None]:
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = get_db_override

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
