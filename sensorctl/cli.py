"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import json
import logging

import typer

from sensorctl.core.errors import SensorctlError
from sensorctl.core.model import DecoderDescriptor, ManufacturerCodeMatch, NameMatch, RawFrame, SensorReading
from sensorctl.core.service import SensorService
from sensorctl.transports import ble_gatt

app = typer.Typer(help="Decode BLE sensor advertisements and notification streams")

_REPLAY_DEVICE_ID = "replay"


@app.callback()
def main(verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging")) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


def _build_service() -> SensorService:
    service = SensorService()
    for warning in getattr(service, "load_warnings", ()):
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _parse_hex(value: str, *, context: str) -> bytes:
    try:
        return bytes.fromhex(value.strip().replace(" ", "").replace(":", ""))
    except ValueError:
        raise SensorctlError(f"{context} is not valid hex: '{value}'") from None


def _echo_reading(reading: SensorReading) -> None:
    typer.echo(json.dumps(reading, indent=2, default=str, ensure_ascii=False))


def _describe_match(descriptor: DecoderDescriptor) -> str:
    rule = descriptor.match
    if isinstance(rule, NameMatch):
        return f"name={rule.name}"
    if isinstance(rule, ManufacturerCodeMatch):
        return f"manufacturer={rule.code}"
    return f"service={rule.service_id}"


@app.command("list")
def list_decoders() -> None:
    """List available decoders, their match rule and capabilities."""
    try:
        service = _build_service()
        decoders = service.list_decoders()
        if not decoders:
            typer.echo("No decoders loaded")
            raise typer.Exit(code=1)

        for descriptor in decoders:
            capabilities = ", ".join(sorted(c.value for c in descriptor.capabilities))
            typer.echo(f"{descriptor.id}: {descriptor.name}")
            typer.echo(f"  match: {_describe_match(descriptor)}")
            typer.echo(f"  capabilities: {capabilities}")
            for plottable in descriptor.plottables:
                unit = f" [{plottable.unit}]" if plottable.unit else ""
                typer.echo(f"  plot {plottable.name}{unit}: {', '.join(plottable.fields)}")
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("decode")
def decode(
    payload: str = typer.Argument(..., help="Manufacturer data (or service data with --service-uuid) as hex"),
    decoder: str | None = typer.Option(None, "--decoder", help="Decoder ID; matched automatically if omitted"),
    name: str | None = typer.Option(None, "--name", help="Advertised local name"),
    service_uuid: str | None = typer.Option(None, "--service-uuid", help="Treat PAYLOAD as service data for this UUID"),
) -> None:
    """Decode a single captured advertisement payload."""
    try:
        service = _build_service()
        data = _parse_hex(payload, context="Payload")
        if service_uuid:
            frame = RawFrame(service_data={service_uuid: data}, device_name=name)
        else:
            frame = RawFrame(manufacturer_data=data, device_name=name)

        result = service.decode_advertisement(frame, decoder_id=decoder)
        if result is None:
            typer.echo("Error: No decoder produced a reading for this payload", err=True)
            raise typer.Exit(code=1)
        typer.echo(f"Decoder: {result.descriptor.id}")
        _echo_reading(result.reading)
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("replay")
def replay(
    decoder: str = typer.Argument(..., help="Streaming decoder ID"),
    messages: list[str] = typer.Argument(..., help="Notifications in order, as cmd:HEX or data:HEX"),
) -> None:
    """Feed captured notifications to a streaming decoder and print the latest reading."""
    try:
        service = _build_service()
        spec = service.streaming_decoder(decoder).spec
        channels = {"cmd": spec.command_char_uuid, "data": spec.data_char_uuid}

        latest: SensorReading | None = None
        for message in messages:
            channel, sep, hex_data = message.partition(":")
            if not sep or channel not in channels:
                raise SensorctlError(f"Message '{message}' must look like cmd:HEX or data:HEX")
            reading = service.handle_notification(
                decoder,
                _REPLAY_DEVICE_ID,
                spec.service_uuid,
                channels[channel],
                _parse_hex(hex_data, context=f"Message '{message}'"),
            )
            if reading is not None:
                latest = reading

        if latest is None:
            typer.echo("Error: No reading decoded from the given messages", err=True)
            raise typer.Exit(code=1)
        _echo_reading(latest)
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("scan")
def scan(
    decoder: str | None = typer.Option(None, "--decoder", help="Only report devices matching this decoder"),
    duration: float = typer.Option(10.0, "--duration", help="Scan time in seconds"),
) -> None:
    """Scan for advertisements and print decoded readings."""
    try:
        service = _build_service()
        if decoder:
            service.get_decoder(decoder)

        def _on_frame(address: str, frame: RawFrame) -> None:
            descriptor = service.match(frame)
            if descriptor is None or (decoder and descriptor.id != decoder):
                return
            result = service.decode_advertisement(frame, decoder_id=descriptor.id)
            if result is None:
                return
            typer.echo(f"{address} -> {descriptor.id}")
            _echo_reading(result.reading)

        asyncio.run(ble_gatt.scan(duration, _on_frame))
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("stream")
def stream(
    decoder: str = typer.Argument(..., help="Streaming decoder ID"),
    address: str = typer.Argument(..., help="Device address"),
    duration: float = typer.Option(10.0, "--duration", help="Streaming time in seconds"),
    preview: bool = typer.Option(False, "--preview", help="Use the reduced preview sample rate"),
) -> None:
    """Connect to a device, stream notifications for a while, then stop."""
    try:
        service = _build_service()
        streaming = service.streaming_decoder(decoder)
        asyncio.run(
            ble_gatt.stream(
                address,
                streaming,
                duration_s=duration,
                preview=preview,
                on_reading=_echo_reading,
            )
        )
    except SensorctlError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
