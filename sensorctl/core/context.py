"""Per-device session state for streaming decoders."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sensorctl.core.errors import SessionInProgressError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class AxisScale:
    full_scale: int
    sensitivity: float


@dataclass(frozen=True)
class ScaleParameters:
    gyroscope: AxisScale | None
    accelerometer: AxisScale | None
    magnetometer: AxisScale | None
    hdr_accelerometer: AxisScale | None


@dataclass(frozen=True)
class DeviceContext:
    device_id: str
    scale: ScaleParameters | None = None
    capabilities: int | None = None


class DeviceContextStore:
    """Mapping of device id to the configuration learned from control replies.

    Contexts are created on the first reply for a device and replaced on every
    later one. Nothing is evicted automatically; callers that know a device
    went away can call :meth:`evict`.
    """

    def __init__(self) -> None:
        self._contexts: dict[str, DeviceContext] = {}
        self._pending: dict[str, asyncio.Future[DeviceContext]] = {}

    def __contains__(self, device_id: object) -> bool:
        return device_id in self._contexts

    def __len__(self) -> int:
        return len(self._contexts)

    def get(self, device_id: str) -> DeviceContext | None:
        return self._contexts.get(device_id)

    def update_scale(self, device_id: str, scale: ScaleParameters) -> DeviceContext:
        current = self._contexts.get(device_id) or DeviceContext(device_id=device_id)
        context = DeviceContext(device_id=device_id, scale=scale, capabilities=current.capabilities)
        self._contexts[device_id] = context
        return context

    def update_capabilities(self, device_id: str, capabilities: int) -> DeviceContext:
        current = self._contexts.get(device_id) or DeviceContext(device_id=device_id)
        context = DeviceContext(device_id=device_id, scale=current.scale, capabilities=capabilities)
        self._contexts[device_id] = context
        waiter = self._pending.pop(device_id, None)
        if waiter is not None and not waiter.done():
            waiter.set_result(context)
        return context

    def expect_capabilities(self, device_id: str) -> asyncio.Future[DeviceContext]:
        """Register a rendezvous fulfilled by the next capability reply for ``device_id``.

        Must be called from a running event loop, before the query is written,
        so that a fast reply cannot be missed.
        """
        existing = self._pending.get(device_id)
        if existing is not None and not existing.done():
            raise SessionInProgressError(f"A streaming session is already starting for {device_id}")
        waiter: asyncio.Future[DeviceContext] = asyncio.get_running_loop().create_future()
        self._pending[device_id] = waiter
        return waiter

    def is_pending(self, device_id: str) -> bool:
        waiter = self._pending.get(device_id)
        return waiter is not None and not waiter.done()

    def evict(self, device_id: str) -> bool:
        """Forget a device. Returns whether a context existed."""
        waiter = self._pending.pop(device_id, None)
        if waiter is not None and not waiter.done():
            waiter.cancel()
        removed = self._contexts.pop(device_id, None) is not None
        if removed:
            LOGGER.debug("Evicted device context for %s", device_id)
        return removed
