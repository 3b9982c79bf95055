# stockcount/services/uow.py
"""
Unit of Work（UoW）——统一管理 AsyncSession 的生命周期与事务边界。

- 传参模式：
    * session 工厂：UnitOfWork(async_sessionmaker)
    * 现成 session：UnitOfWork(async_session)

- 事务语义：
    * 无异常 -> commit
    * 有异常 -> rollback
    * 只有在 UoW 自己创建的 session 上负责 close；
      对于外部传入的现成 session，不负责关闭。
"""

from __future__ import annotations

from contextlib import AbstractAsyncContextManager
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

AsyncSessionFactory = Callable[[], Union[AsyncSession, Awaitable[AsyncSession]]]
SessionOrFactory = Union[AsyncSession, AsyncSessionFactory]


class UnitOfWork(AbstractAsyncContextManager):
    """
    用法：
        async with UnitOfWork(session_factory) as uow:
            await svc.do_something(uow.session)
    """

    def __init__(self, session_or_factory: SessionOrFactory) -> None:
        self._session_or_factory: SessionOrFactory = session_or_factory
        self.session: Optional[AsyncSession] = None
        self._owns_session: bool = False  # 是否由 UoW 自己创建并负责关闭

    async def __aenter__(self) -> "UnitOfWork":
        if isinstance(self._session_or_factory, AsyncSession):
            self.session = self._session_or_factory
            self._owns_session = False
        else:
            factory = self._session_or_factory
            if not callable(factory):
                raise TypeError("UnitOfWork 期望传入 AsyncSession 或 async_session 工厂。")
            maybe_session: Any = factory()
            if isinstance(maybe_session, AsyncSession):
                self.session = maybe_session
            else:
                # 兼容工厂返回 awaitable 的情况
                self.session = await maybe_session
            self._owns_session = True

        if not isinstance(self.session, AsyncSession):
            raise TypeError("使用 async with UnitOfWork(...) 时，需要 AsyncSession。")
        return self

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        if self.session is None:
            return False

        try:
            if exc_type:
                await self.session.rollback()
            else:
                await self.session.commit()
        finally:
            if self._owns_session:
                try:
                    await self.session.close()
                finally:
                    self.session = None
        # False -> 异常继续向外抛
        return False

    async def commit(self) -> None:
        if self.session is not None:
            await self.session.commit()

    async def rollback(self) -> None:
        if self.session is not None:
            await self.session.rollback()
