# stockcount/api/router.py
from __future__ import annotations

from fastapi import APIRouter

from stockcount.api.routers import inventory_count, inventory_movements
from stockcount.metrics import router as metrics_router

api_router = APIRouter()

api_router.include_router(inventory_count.router)
api_router.include_router(inventory_movements.router)
api_router.include_router(metrics_router, tags=["metrics"])
