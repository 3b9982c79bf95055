# stockcount/db/session.py
# 统一的异步引擎 + 会话工厂
from __future__ import annotations

import logging
import re
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from stockcount.core.config import get_settings

log = logging.getLogger("stockcount.db")


def normalize_async_dsn(url: str) -> str:
    """
    DSN 归一：统一到 psycopg3 与 aiosqlite。

    - 两侧多余引号剥掉（有些环境会写成 '"postgresql://..."'）
    - sqlite:///        → sqlite+aiosqlite:///
    - postgres(ql)://    → postgresql+psycopg://
    - +asyncpg           → +psycopg
    """
    url = (url or "").strip()
    if (url.startswith('"') and url.endswith('"')) or (url.startswith("'") and url.endswith("'")):
        url = url[1:-1].strip()
    if not url:
        raise RuntimeError("DATABASE_URL 未设置")

    if url.startswith("sqlite:///"):
        return "sqlite+aiosqlite://" + url[len("sqlite:///") - 1 :]
    if url.startswith("postgresql+asyncpg://") or url.startswith("postgres+asyncpg://"):
        return re.sub(r"^postgres(?:ql)?\+asyncpg://", "postgresql+psycopg://", url)
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql+psycopg://", 1)
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def build_engine(url: str, *, echo: bool = False, **kwargs) -> AsyncEngine:
    dsn = normalize_async_dsn(url)
    if dsn.startswith("sqlite"):
        # SQLite：仅带 check_same_thread，绝不带 server_settings
        kwargs.setdefault("connect_args", {"check_same_thread": False})
    else:
        kwargs.setdefault("pool_pre_ping", True)
    return create_async_engine(dsn, echo=echo, future=True, **kwargs)


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@lru_cache
def get_engine() -> AsyncEngine:
    settings = get_settings()
    engine = build_engine(settings.DATABASE_URL, echo=settings.SQL_ECHO)
    log.info("[DB] Using DSN (async): %s", engine.url.render_as_string(hide_password=True))
    return engine


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return build_session_factory(get_engine())


# ---- 关闭引擎（测试/生命周期） ----
async def close_engines() -> None:
    if get_engine.cache_info().currsize:
        await get_engine().dispose()
