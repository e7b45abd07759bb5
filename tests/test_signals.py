"""
Unit tests for latest-wins signalling.
"""

import asyncio

import pytest

from chat_client.auth.signals import SignalCoordinator, SignalSlot
from chat_shared.models import SignalKind


class TestSignalSlot:
    """Test the single-slot mailbox."""

    @pytest.mark.asyncio
    async def test_send_then_receive(self):
        slot = SignalSlot("test")

        slot.send("alice")

        assert await asyncio.wait_for(slot.receive(), timeout=1) == "alice"
        assert not slot.pending()

    @pytest.mark.asyncio
    async def test_many_sends_wake_once_with_last_value(self):
        slot = SignalSlot("test")

        for name in ("alice", "bob", "carol"):
            slot.send(name)

        assert await asyncio.wait_for(slot.receive(), timeout=1) == "carol"
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(slot.receive(), timeout=0.05)

    @pytest.mark.asyncio
    async def test_send_never_blocks(self):
        slot = SignalSlot("test")

        # No reader at all; every send returns immediately
        for i in range(100):
            slot.send(str(i))

        assert slot.poll() == "99"

    @pytest.mark.asyncio
    async def test_receive_waits_for_send(self):
        slot = SignalSlot("test")
        reader = asyncio.create_task(slot.receive())
        await asyncio.sleep(0)
        assert not reader.done()

        slot.send("alice")

        assert await asyncio.wait_for(reader, timeout=1) == "alice"

    @pytest.mark.asyncio
    async def test_poll_empty_returns_none(self):
        assert SignalSlot("test").poll() is None

    @pytest.mark.asyncio
    async def test_drain_discards_pending(self):
        slot = SignalSlot("test")
        slot.send("stale")

        slot.drain()

        assert not slot.pending()
        assert slot.poll() is None

    @pytest.mark.asyncio
    async def test_drain_empty_is_noop(self):
        slot = SignalSlot("test")
        slot.drain()
        assert not slot.pending()


class TestSignalCoordinator:
    """Test the per-kind slots."""

    @pytest.mark.asyncio
    async def test_kinds_are_independent(self):
        signals = SignalCoordinator()

        signals.emit(SignalKind.LOGIN_COMPLETED, "alice")

        assert signals.refresh_cycle_started.poll() is None
        assert signals.login_completed.poll() == "alice"

    @pytest.mark.asyncio
    async def test_slot_lookup_matches_properties(self):
        signals = SignalCoordinator()

        assert signals.slot(SignalKind.LOGIN_COMPLETED) is signals.login_completed
        assert signals.slot(SignalKind.REFRESH_CYCLE_STARTED) is signals.refresh_cycle_started

    @pytest.mark.asyncio
    async def test_emit_replaces_unconsumed_signal(self):
        signals = SignalCoordinator()

        signals.emit(SignalKind.REFRESH_CYCLE_STARTED, "alice")
        signals.emit(SignalKind.REFRESH_CYCLE_STARTED, "bob")

        assert await signals.refresh_cycle_started.receive() == "bob"
