"""Transport interfaces."""

from __future__ import annotations

from typing import Protocol


class WriteChannel(Protocol):
    async def write(
        self,
        device_id: str,
        service_uuid: str,
        characteristic_uuid: str,
        payload: bytes,
    ) -> None:
        """Write payload to a characteristic of a connected device."""
