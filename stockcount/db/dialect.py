# stockcount/db/dialect.py
# 幂等写入用的方言 insert：PG / SQLite 均支持 ON CONFLICT DO NOTHING / DO UPDATE
from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["dialect_name", "insert_for"]


def dialect_name(session: AsyncSession) -> str:
    return session.get_bind().dialect.name


def insert_for(session: AsyncSession, entity: Any):
    """
    按当前绑定的方言返回带 on_conflict_* 能力的 insert 构造器。
    其余方言不支持 upsert，直接拒绝，避免静默退化成普通 INSERT。
    """
    name = dialect_name(session)
    if name == "postgresql":
        return postgresql.insert(entity)
    if name == "sqlite":
        return sqlite.insert(entity)
    raise RuntimeError(f"unsupported dialect for idempotent insert: {name}")
