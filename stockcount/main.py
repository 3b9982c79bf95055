# stockcount/main.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from stockcount.api.router import api_router
from stockcount.core.config import AppSettings, get_settings
from stockcount.core.logging import setup_logging
from stockcount.db.session import close_engines, get_session_factory
from stockcount.http_problem_handlers import register_exception_handlers
from stockcount.services.inventory_count_service import InventoryCountService

logger = logging.getLogger("stockcount")

VERSION = "1.0.0"


def create_app(
    *,
    settings: Optional[AppSettings] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> FastAPI:
    """
    应用工厂：

    - 测试可注入 settings / session_factory（不走全局引擎）；
    - InventoryCountService 每个 app 一个实例（闸门挂在它上面）。
    """
    settings = settings or get_settings()
    owns_engine = session_factory is None

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        if owns_engine:
            await close_engines()

    app = FastAPI(
        title="stockcount",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.CORS_ORIGINS),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.count_service = InventoryCountService(
        session_factory or get_session_factory(), settings=settings
    )

    register_exception_handlers(app)
    app.include_router(api_router)

    @app.get("/")
    async def root():
        return {"name": "stockcount", "version": VERSION, "env": settings.ENV}

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    return app


def _build_default_app() -> FastAPI:
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
    logger.info("stockcount starting env=%s", settings.ENV)
    return create_app(settings=settings)


# uvicorn stockcount.main:app
app = _build_default_app()
