"""
Latest-wins signalling between login and the renewal loops.

Each signal travels through a single-slot mailbox. Sending never blocks: when
the slot already holds an unconsumed value, that stale value is discarded and
replaced, so a slow reader only ever sees the most recent occurrence.
"""

import asyncio
import logging
from typing import Dict, Generic, Optional, TypeVar

from chat_shared.models import SignalKind

logger = logging.getLogger(__name__)

T = TypeVar('T')


class SignalSlot(Generic[T]):
    """Capacity-one mailbox with replace-if-full semantics."""

    def __init__(self, name: str = "signal"):
        self.name = name
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=1)

    def send(self, value: T) -> None:
        """Deliver ``value``, replacing any pending one."""
        try:
            self._queue.put_nowait(value)
        except asyncio.QueueFull:
            stale = self.poll()
            logger.debug(f"Replacing pending {self.name} signal: {stale!r}")
            self._queue.put_nowait(value)

    async def receive(self) -> T:
        """Wait for the next value."""
        return await self._queue.get()

    def poll(self) -> Optional[T]:
        """Return the pending value without waiting, or None."""
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    def drain(self) -> None:
        """Discard the pending value, if any."""
        self.poll()

    def pending(self) -> bool:
        return not self._queue.empty()


class SignalCoordinator:
    """One latest-wins slot per signal kind; each slot has a single reader."""

    def __init__(self):
        self._slots: Dict[SignalKind, SignalSlot[str]] = {
            kind: SignalSlot(kind.value) for kind in SignalKind
        }

    def slot(self, kind: SignalKind) -> SignalSlot[str]:
        return self._slots[kind]

    @property
    def login_completed(self) -> SignalSlot[str]:
        return self._slots[SignalKind.LOGIN_COMPLETED]

    @property
    def refresh_cycle_started(self) -> SignalSlot[str]:
        return self._slots[SignalKind.REFRESH_CYCLE_STARTED]

    def emit(self, kind: SignalKind, username: str) -> None:
        self._slots[kind].send(username)
        logger.debug(f"Sent {kind.value} signal for {username}")
