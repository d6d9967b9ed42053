import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple


class ConversationLockRegistry:
    """
    One asyncio.Lock per (tenant_id, conversation_id).

    Turns of the same conversation run strictly one after the other,
    turns of different conversations never wait on each other.
    Locks are dropped once nobody holds or waits on them.
    """

    def __init__(self):
        self._locks: Dict[Tuple[str, str], asyncio.Lock] = {}
        self._waiters: Dict[Tuple[str, str], int] = {}

    @asynccontextmanager
    async def hold(self, tenant_id: str, conversation_id: str) -> AsyncIterator[None]:
        key = (tenant_id, conversation_id)
        if key not in self._locks:
            self._locks[key] = asyncio.Lock()
        lock = self._locks[key]
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, tenant_id: str, conversation_id: str) -> bool:
        lock = self._locks.get((tenant_id, conversation_id))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
