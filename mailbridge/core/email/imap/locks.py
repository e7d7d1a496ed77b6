"""Advisory folder locks for the mailbox session."""

import asyncio
from contextlib import asynccontextmanager
from typing import Optional


class FolderLocks:
    """Serialises this process's operations per folder.

    A single IMAP connection has one selected mailbox at a time, so folder
    locks are granted one at a time: holding the lock for ``Sent`` also
    keeps other tasks from selecting ``INBOX`` underneath it. Locks are not
    re-entrant; never resolve a message while holding one.
    """

    def __init__(self):
        self._lock = asyncio.Lock()
        self.current: Optional[str] = None
        self.acquisitions = 0

    @asynccontextmanager
    async def hold(self, folder: str):
        """Hold the lock for ``folder``; released on every exit path."""
        await self._lock.acquire()
        self.current = folder
        self.acquisitions += 1
        try:
            yield folder
        finally:
            self.current = None
            self._lock.release()

    def locked(self) -> bool:
        return self._lock.locked()
