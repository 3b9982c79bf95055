# tests/conftest.py
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import AsyncGenerator

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

# 默认 app 在 import 时就会建引擎；测试里不用它，这里只防止它指向真实库
os.environ.setdefault("DATABASE_URL", "sqlite:///./.stockcount-unused.db")

from stockcount.core.config import AppSettings  # noqa: E402
from stockcount.db.base import Base, init_models  # noqa: E402
from stockcount.db.session import build_engine, build_session_factory  # noqa: E402
from stockcount.main import create_app  # noqa: E402
from stockcount.models.enums import Capability, MovementType  # noqa: E402
from stockcount.models.store import Product, Store, StoreProduct  # noqa: E402
from stockcount.models.user import User  # noqa: E402
from stockcount.services.capability_service import CapabilityService  # noqa: E402
from stockcount.services.inventory_count_service import InventoryCountService  # noqa: E402
from stockcount.services.stock_ledger_service import StockLedgerService  # noqa: E402

# ==========================
# 数据库 DSN：
#   STOCKCOUNT_TEST_DATABASE_URL（PG）优先，否则每用例一个临时 SQLite 文件
# ==========================


@pytest.fixture(scope="function")
def database_url(tmp_path) -> str:
    return os.getenv("STOCKCOUNT_TEST_DATABASE_URL") or f"sqlite:///{tmp_path}/stockcount.db"


# =========================================
# 每用例独立 Engine（NullPool，避免跨 loop）+ 重建 schema
# =========================================
@pytest_asyncio.fixture(scope="function")
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine, None]:
    init_models()
    engine = build_engine(database_url, poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture(scope="function")
def async_session_maker(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(async_engine)


@pytest_asyncio.fixture(scope="function")
async def session(async_session_maker) -> AsyncGenerator[AsyncSession, None]:
    """标准 Session（正常结束 commit，异常 rollback）"""
    async with async_session_maker() as sess:
        try:
            yield sess
            if sess.in_transaction():
                await sess.commit()
        except Exception:
            if sess.in_transaction():
                await sess.rollback()
            raise


# =========================================
# 最小种子数据（每测试一次）
#
#   门店「Tienda Centro」：
#     sp_a  理论 10（INCOMING 10）
#     sp_b  理论 3 （INCOMING 5，SALE 2）
#     sp_c  理论 0 （无台账）
#     sp_inactive 停用，不参与完整性校验
#   门店「Tienda Norte」：sp_other
#   用户：manager（Centro 有 MANAGE_INVENTORY）、clerk（无授权）
# =========================================


@dataclass(frozen=True)
class Seed:
    store_id: int
    other_store_id: int
    sp_a: int
    sp_b: int
    sp_c: int
    sp_inactive: int
    sp_other: int
    manager_id: int
    clerk_id: int


@pytest_asyncio.fixture(scope="function")
async def seed(async_session_maker) -> Seed:
    async with async_session_maker() as sess:
        centro = Store(name="Tienda Centro")
        norte = Store(name="Tienda Norte")
        products = [
            Product(name="Leche entera 1L"),
            Product(name="Pan de molde"),
            Product(name="Café molido 250g"),
            Product(name="Yogur natural"),
        ]
        manager = User(username="ana", name="Ana Pérez")
        clerk = User(username="luis", name="Luis Gómez")
        sess.add_all([centro, norte, *products, manager, clerk])
        await sess.flush()

        sp_a = StoreProduct(store_id=centro.id, product_id=products[0].id)
        sp_b = StoreProduct(store_id=centro.id, product_id=products[1].id)
        sp_c = StoreProduct(store_id=centro.id, product_id=products[2].id)
        sp_inactive = StoreProduct(store_id=centro.id, product_id=products[3].id, is_active=False)
        sp_other = StoreProduct(store_id=norte.id, product_id=products[0].id)
        sess.add_all([sp_a, sp_b, sp_c, sp_inactive, sp_other])
        await sess.flush()

        await CapabilityService().grant(
            sess, manager.id, centro.id, Capability.MANAGE_INVENTORY
        )

        ledger = StockLedgerService()
        for sp_id, mtype, qty in (
            (sp_a.id, MovementType.INCOMING, 10),
            (sp_b.id, MovementType.INCOMING, 5),
            (sp_b.id, MovementType.SALE, 2),
            (sp_other.id, MovementType.INCOMING, 7),
        ):
            await ledger.append_movement(
                sess, store_product_id=sp_id, movement_type=mtype, quantity=qty
            )
        await sess.commit()

        return Seed(
            store_id=centro.id,
            other_store_id=norte.id,
            sp_a=sp_a.id,
            sp_b=sp_b.id,
            sp_c=sp_c.id,
            sp_inactive=sp_inactive.id,
            sp_other=sp_other.id,
            manager_id=manager.id,
            clerk_id=clerk.id,
        )


# =========================================
# 配置 / 门面服务
# =========================================


@pytest.fixture(scope="function")
def settings(database_url: str) -> AppSettings:
    return AppSettings(DATABASE_URL=database_url, ENV="test", COUNT_PREFILL_ZERO_STOCK=False)


@pytest.fixture(scope="function")
def service(async_session_maker, settings: AppSettings, seed: Seed) -> InventoryCountService:
    return InventoryCountService(async_session_maker, settings=settings)


# =========================================
# FastAPI / httpx AsyncClient
# =========================================


@pytest.fixture(scope="function")
def app(async_session_maker, settings: AppSettings, seed: Seed):
    return create_app(settings=settings, session_factory=async_session_maker)


@pytest_asyncio.fixture(scope="function")
async def client(app) -> AsyncGenerator[httpx.AsyncClient, None]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(
        transport=transport,
        base_url="http://testserver",
        timeout=httpx.Timeout(10.0, connect=5.0, read=10.0, write=5.0, pool=5.0),
    ) as c:
        yield c
