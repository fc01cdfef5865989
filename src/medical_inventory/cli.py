"""Command line interface for the inventory service."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator, Optional

import typer
import uvicorn

from .config import Settings, configure_logging, get_settings
from .database import SessionLocal, init_database
from .exceptions import ServiceError
from .manager import MedicalInventoryManager
from .models import MedicalInventory

app = typer.Typer(help="Manage medical inventories and run the inventory service.")


def _print_header(title: str) -> None:
    typer.secho(title, bold=True, fg=typer.colors.CYAN)


def _resolve_settings() -> Settings:
    settings = get_settings()
    configure_logging(settings.log_level)
    init_database()
    return settings


@contextmanager
def _manager() -> Iterator[MedicalInventoryManager]:
    settings = _resolve_settings()
    with SessionLocal() as session:
        yield MedicalInventoryManager(session, settings)


def _load(manager: MedicalInventoryManager, reference: str) -> MedicalInventory:
    inventory = manager.get_inventory_by_reference(reference)
    if inventory is None:
        typer.secho(f"Inventory {reference} not found", fg=typer.colors.RED)
        raise typer.Exit(code=1)
    return inventory


def _report_error(exc: ServiceError) -> None:
    colour = typer.colors.YELLOW if exc.is_informational else typer.colors.RED
    for message in exc.messages:
        typer.secho(message.message, fg=colour)


@app.command()
def run(
    host: Optional[str] = typer.Option(None, help="Interface the service listens on"),
    port: Optional[int] = typer.Option(None, help="TCP port of the service"),
    reload: Optional[bool] = typer.Option(None, help="Restart on source changes"),
    log_level: Optional[str] = typer.Option(None, help="Log level for the service and Uvicorn"),
) -> None:
    """Serve the inventory API with Uvicorn."""

    settings = _resolve_settings()
    level = log_level or settings.log_level
    configure_logging(level)
    uvicorn.run(
        "medical_inventory.app:create_app",
        factory=True,
        host=host or settings.host,
        port=port or settings.port,
        reload=settings.reload if reload is None else reload,
        log_level=level,
    )


@app.command("init-db")
def init_db() -> None:
    """Create the inventory and ledger tables."""

    settings = _resolve_settings()
    typer.secho(f"Inventory database ready at {settings.database_path}", fg=typer.colors.GREEN)


@app.command("show-paths")
def show_paths() -> None:
    """Print the database location and the lot display mode."""

    settings = _resolve_settings()
    typer.echo(f"Database: {settings.database_path}")
    typer.echo(f"Lots shown by: {'expiry date' if settings.automatic_lot_in else 'code'}")


@app.command()
def statuses() -> None:
    """List the inventory statuses."""

    with _manager() as manager:
        for label in manager.get_status_list():
            typer.echo(label)


@app.command("list-inventories")
def list_inventories(
    status: Optional[str] = typer.Option(None, help="Only inventories in this status"),
    inventory_type: Optional[str] = typer.Option(None, "--type", help="main or ward"),
) -> None:
    """Display inventories stored in the database."""

    with _manager() as manager:
        inventories = manager.get_inventory_by_status_and_type(status, inventory_type)
        if not inventories:
            typer.echo("No inventories found.")
            return
        _print_header("Inventories")
        for inventory in inventories:
            date = inventory.inventory_date.strftime("%d/%m/%Y") if inventory.inventory_date else "-"
            ward = f" | ward={inventory.ward_code}" if inventory.ward_code else ""
            typer.echo(
                f"- {inventory.reference} | {date} | {inventory.inventory_type}{ward} | "
                f"{manager.get_status_by_key(inventory.status)}"
            )


@app.command()
def reconcile(reference: str = typer.Argument(..., help="Inventory reference")) -> None:
    """Compare an inventory with the movements recorded since its date."""

    with _manager() as manager:
        report = manager.reconcile(_load(manager, reference))
        if report.is_clean:
            typer.secho("No differences with the ledger.", fg=typer.colors.GREEN)
            return
        for message in report.messages():
            typer.secho(message.message, fg=typer.colors.YELLOW)
        raise typer.Exit(code=2)


@app.command()
def actualize(reference: str = typer.Argument(..., help="Inventory reference")) -> None:
    """Update the theoretic quantities of an inventory from the ledger."""

    with _manager() as manager:
        try:
            manager.actualize_inventory(_load(manager, reference))
        except ServiceError as exc:
            _report_error(exc)
            raise typer.Exit(code=1) from exc
        typer.secho(f"Inventory {reference} actualized", fg=typer.colors.GREEN)


@app.command()
def confirm(reference: str = typer.Argument(..., help="Inventory reference")) -> None:
    """Record the counted differences in the ledger and close the inventory."""

    with _manager() as manager:
        try:
            movements = manager.confirm_inventory(_load(manager, reference))
        except ServiceError as exc:
            _report_error(exc)
            raise typer.Exit(code=1) from exc
        typer.secho(f"Inventory {reference} confirmed", fg=typer.colors.GREEN)
        for movement in movements:
            typer.echo(f"- {movement.reference_number} | lot {movement.lot_code} | {movement.quantity}")


@app.command()
def delete(
    reference: str = typer.Argument(..., help="Inventory reference"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
) -> None:
    """Delete a draft inventory."""

    with _manager() as manager:
        inventory = _load(manager, reference)
        if not yes:
            typer.confirm(f"Delete inventory {reference}?", abort=True)
        try:
            manager.delete_inventory(inventory)
        except ServiceError as exc:
            _report_error(exc)
            raise typer.Exit(code=1) from exc
        typer.secho(f"Inventory {reference} deleted", fg=typer.colors.GREEN)


def main() -> None:
    """Entry-point for console scripts."""

    app()


if __name__ == "__main__":  # pragma: no cover
    main()
