"""Per-proposal mutual exclusion inside one process."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator


class ProposalLocks:
    """One ``asyncio.Lock`` per proposal id currently in use.

    Serializes read-count-then-transition sequences within a process; the
    row lock taken inside the transaction covers other processes. A lock is
    dropped once no task holds it or waits for it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, proposal_id: str) -> AsyncGenerator[None, None]:
        lock = self._locks.setdefault(proposal_id, asyncio.Lock())
        self._users[proposal_id] = self._users.get(proposal_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[proposal_id] -= 1
            if not self._users[proposal_id]:
                del self._users[proposal_id]
                del self._locks[proposal_id]
