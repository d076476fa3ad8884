import asyncio
import contextlib
from collections.abc import AsyncIterator


class KeyedLocks:
    """
    A registry of named exclusive locks, created lazily on the first use.

    The keys are usually the working directories of the release sets:
    an external tool must never run twice at the same time against the same
    files, since the materialized manifests & values would be overwritten,
    and the tool itself is not safe for concurrent runs in one directory.

    Different keys do not block each other in any way.

    The registry is intended to be shared by all the operations of one process,
    but it is not a singleton: every orchestrator can get its own one
    (e.g. in tests, or for the isolated groups of release sets).
    """

    def __init__(self) -> None:
        super().__init__()
        self._locks: dict[str, asyncio.Lock] = {}

    def __repr__(self) -> str:
        clsname = self.__class__.__name__
        held = sorted(key for key, lock in self._locks.items() if lock.locked())
        return f'<{clsname}: {len(self._locks)} locks, held={held!r}>'

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    async def acquire(self, key: str) -> None:
        """ Wait until the key is free, and then take it. No timeouts. """
        lock = self._locks.setdefault(key, asyncio.Lock())
        await lock.acquire()

    def release(self, key: str) -> None:
        try:
            lock = self._locks[key]
        except KeyError:
            raise RuntimeError(f"The lock {key!r} was never acquired.") from None
        lock.release()

    @contextlib.asynccontextmanager
    async def held(self, key: str) -> AsyncIterator[None]:
        """ Hold the key for the duration of the block, also on errors & cancellations. """
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)
