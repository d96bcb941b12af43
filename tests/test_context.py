from __future__ import annotations

import asyncio

import pytest

from sensorctl.core.context import AxisScale, DeviceContextStore, ScaleParameters
from sensorctl.core.errors import SessionInProgressError

SCALE = ScaleParameters(
    gyroscope=AxisScale(245, 0.00875),
    accelerometer=AxisScale(4, 0.122),
    magnetometer=None,
    hdr_accelerometer=None,
)


def test_updates_keep_the_other_half_of_the_context() -> None:
    store = DeviceContextStore()
    store.update_capabilities("dev", 0x7FF)
    store.update_scale("dev", SCALE)

    context = store.get("dev")
    assert context is not None
    assert context.capabilities == 0x7FF
    assert context.scale == SCALE
    assert "dev" in store
    assert len(store) == 1


def test_unknown_device_has_no_context() -> None:
    store = DeviceContextStore()
    assert store.get("missing") is None
    assert "missing" not in store


def test_expect_capabilities_resolves_on_reply() -> None:
    async def scenario() -> None:
        store = DeviceContextStore()
        waiter = store.expect_capabilities("dev")
        assert store.is_pending("dev")
        store.update_capabilities("dev", 3)
        context = await waiter
        assert context.capabilities == 3
        assert not store.is_pending("dev")

    asyncio.run(scenario())


def test_expect_capabilities_twice_is_rejected() -> None:
    async def scenario() -> None:
        store = DeviceContextStore()
        store.expect_capabilities("dev")
        with pytest.raises(SessionInProgressError):
            store.expect_capabilities("dev")
        store.expect_capabilities("other")

    asyncio.run(scenario())


def test_evict_cancels_pending_rendezvous() -> None:
    async def scenario() -> None:
        store = DeviceContextStore()
        store.update_scale("dev", SCALE)
        waiter = store.expect_capabilities("dev")

        assert store.evict("dev") is True
        assert waiter.cancelled()
        assert "dev" not in store
        assert store.evict("dev") is False

    asyncio.run(scenario())
