from fastapi import APIRouter

from . import inventory, stock

api_router = APIRouter()
api_router.include_router(inventory.router)
api_router.include_router(stock.router)
