# stockcount/services/count_locks.py
"""
盘点并发闸门（进程内）：

- 同一 (session, store_product) 的 record_count 串行（upsert 是读-改-写）；
- 不同商品的 record_count 可并行，共享持有会话闸门；
- 关闭独占会话闸门：进行中的 record_count 全部退出后才开始；
  关闭期间新的 record_count / 第二个关闭一律 SessionBusy（拒绝，不排队）。

跨进程的正确性由库层保证（唯一键 upsert + 条件 finalize + 幂等键 +
会话行上的对账关闭占用标记），这里只负责同进程内的排队与互斥。
"""
from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

from stockcount.services.count_errors import SessionBusy


class _SessionGate:
    def __init__(self) -> None:
        self.cond = asyncio.Condition()
        self.readers = 0
        self.closing = False

    @property
    def idle(self) -> bool:
        return self.readers == 0 and not self.closing


class _KeyLock:
    def __init__(self) -> None:
        self.lock = asyncio.Lock()
        self.users = 0


class CountLockRegistry:
    def __init__(self) -> None:
        self._gates: Dict[int, _SessionGate] = {}
        self._keys: Dict[Tuple[int, int], _KeyLock] = {}

    def _gate(self, session_id: int) -> _SessionGate:
        gate = self._gates.get(session_id)
        if gate is None:
            gate = self._gates[session_id] = _SessionGate()
        return gate

    def _drop_gate_if_idle(self, session_id: int, gate: _SessionGate) -> None:
        if gate.idle and self._gates.get(session_id) is gate:
            del self._gates[session_id]

    def is_closing(self, session_id: int) -> bool:
        gate = self._gates.get(int(session_id))
        return bool(gate and gate.closing)

    @asynccontextmanager
    async def shared(self, session_id: int) -> AsyncIterator[None]:
        sid = int(session_id)
        gate = self._gate(sid)
        async with gate.cond:
            if gate.closing:
                raise SessionBusy(sid)
            gate.readers += 1
        try:
            yield
        finally:
            async with gate.cond:
                gate.readers -= 1
                gate.cond.notify_all()
            self._drop_gate_if_idle(sid, gate)

    @asynccontextmanager
    async def exclusive(self, session_id: int) -> AsyncIterator[None]:
        sid = int(session_id)
        gate = self._gate(sid)
        async with gate.cond:
            if gate.closing:
                raise SessionBusy(sid)
            gate.closing = True
            try:
                await gate.cond.wait_for(lambda: gate.readers == 0)
            except BaseException:
                gate.closing = False
                gate.cond.notify_all()
                raise
        try:
            yield
        finally:
            async with gate.cond:
                gate.closing = False
                gate.cond.notify_all()
            self._drop_gate_if_idle(sid, gate)

    @asynccontextmanager
    async def product(self, session_id: int, store_product_id: int) -> AsyncIterator[None]:
        """共享持有会话闸门 + 独占 (session, store_product) 键锁"""
        key = (int(session_id), int(store_product_id))
        async with self.shared(key[0]):
            kl = self._keys.get(key)
            if kl is None:
                kl = self._keys[key] = _KeyLock()
            kl.users += 1
            try:
                async with kl.lock:
                    yield
            finally:
                kl.users -= 1
                if kl.users == 0 and self._keys.get(key) is kl:
                    del self._keys[key]
