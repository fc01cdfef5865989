from datetime import timedelta

import pytest
from typer.testing import CliRunner

from medical_inventory import cli, ledger
from medical_inventory.models import InventoryStatus

runner = CliRunner()


@pytest.fixture(autouse=True)
def cli_session(monkeypatch, session_factory, settings):
    monkeypatch.setattr(cli, "SessionLocal", session_factory)
    monkeypatch.setattr(cli, "_resolve_settings", lambda: settings)


@pytest.fixture(name="counted")
def counted_fixture(db, manager, make_inventory, make_lot, record_charge, stock):
    lot = make_lot(stock.amoxicillin, "A1")
    record_charge(lot, 10)
    inventory = make_inventory("INV-1")
    manager.add_inventory_row(inventory, stock.amoxicillin, lot=lot, theoretic_qty=10, real_qty=7)
    db.close()
    return inventory


def test_statuses():
    result = runner.invoke(cli.app, ["statuses"])

    assert result.exit_code == 0
    assert result.output.split() == ["Draft", "Canceled", "Done", "Validated"]


def test_list_inventories(counted):
    result = runner.invoke(cli.app, ["list-inventories", "--status", "draft"])

    assert result.exit_code == 0
    assert "INV-1" in result.output
    assert "Draft" in result.output

    empty = runner.invoke(cli.app, ["list-inventories", "--type", "ward"])
    assert "No inventories found." in empty.output


def test_reconcile_exit_code_reports_notices(counted, record_charge, db):
    clean = runner.invoke(cli.app, ["reconcile", "INV-1"])
    assert clean.exit_code == 0
    assert "No differences" in clean.output

    record_charge(ledger.get_lot(db, "A1"), 1, when=counted.inventory_date + timedelta(hours=1))
    db.close()

    notices = runner.invoke(cli.app, ["reconcile", "INV-1"])
    assert notices.exit_code == 2
    assert "Theoretical quantities have been updated" in notices.output


def test_confirm_prints_movements_and_refuses_second_run(counted, db):
    result = runner.invoke(cli.app, ["confirm", "INV-1"])

    assert result.exit_code == 0, result.output
    assert "INV-1-discharge | lot A1 | 3" in result.output
    assert ledger.get_lot(db, "A1").main_store_quantity == 7

    again = runner.invoke(cli.app, ["confirm", "INV-1"])
    assert again.exit_code == 1
    assert "is done" in again.output


def test_delete_asks_for_confirmation(counted, manager):
    aborted = runner.invoke(cli.app, ["delete", "INV-1"], input="n\n")
    assert aborted.exit_code == 1
    assert manager.get_inventory_by_reference("INV-1").status == InventoryStatus.draft.value

    deleted = runner.invoke(cli.app, ["delete", "INV-1", "--yes"])
    assert deleted.exit_code == 0
    assert "deleted" in deleted.output


def test_unknown_reference():
    result = runner.invoke(cli.app, ["confirm", "NOPE"])

    assert result.exit_code == 1
    assert "Inventory NOPE not found" in result.output


def test_show_paths(settings):
    result = runner.invoke(cli.app, ["show-paths"])

    assert result.exit_code == 0
    assert f"Database: {settings.database_path}" in result.output
    assert "Lots shown by: code" in result.output
