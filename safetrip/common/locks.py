"""
Keyed asyncio locks for SafeTrip.

Serializes work per record identity (alert id, agent id) while
letting unrelated records proceed concurrently.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class KeyedLock:
    """키별 asyncio.Lock 관리자 (사용 중인 키만 유지)"""
    
    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}
    
    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """
        키에 대한 락을 획득합니다.
        
        Args:
            key: 직렬화할 레코드 식별자
        """
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]
    
    def __len__(self) -> int:
        return len(self._locks)
