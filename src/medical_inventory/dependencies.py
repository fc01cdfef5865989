"""Shared FastAPI dependencies."""

from __future__ import annotations

from typing import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from .config import get_settings
from .database import SessionLocal
from .manager import MedicalInventoryManager

MAX_PAGE_SIZE = 200


def get_db() -> Generator[Session, None, None]:
    """Provide a database session for FastAPI routes."""

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_manager(db: Session = Depends(get_db)) -> MedicalInventoryManager:
    return MedicalInventoryManager(db, get_settings())


def pagination_params(page: int = 0, size: int = 50) -> tuple[int, int]:
    return max(page, 0), min(max(size, 1), MAX_PAGE_SIZE)
