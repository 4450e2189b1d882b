import asyncio
from typing import Optional


class Locker:
    """
    Single-slot in-flight token.

    The owner calls ``lock()`` before starting an operation and ``unlock()``
    when it is done. Everyone else calls ``wait()`` and then reads the
    owner's outcome instead of repeating the work.
    """

    def __init__(self):
        self._released: Optional[asyncio.Event] = None

    @property
    def is_locked(self) -> bool:
        return self._released is not None

    def lock(self) -> None:
        """Acquire without blocking. Raises if the lock is already held."""
        if self._released is not None:
            raise RuntimeError("Locker is already locked")
        self._released = asyncio.Event()

    def unlock(self) -> None:
        """Release the lock and wake every waiter. Safe to call when unlocked."""
        released, self._released = self._released, None
        if released is not None:
            released.set()

    async def wait(self) -> None:
        """Suspend until the lock is released, without acquiring it."""
        released = self._released
        if released is not None:
            await released.wait()
