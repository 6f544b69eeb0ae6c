"""Typer CLI entrypoint."""

from __future__ import annotations

import asyncio
import logging
import sys
from pathlib import Path

import typer

from hubadapter.core.descriptor_loader import packaged_documents, validate_descriptor_file
from hubadapter.core.errors import HubAdapterError, ReauthLimitError
from hubadapter.core.service import DriverService
from hubadapter.transports.stdio import run_stdio

app = typer.Typer(help="Smart-home device adapters driven by YAML device-class descriptors")


def _build_service() -> DriverService:
    service = DriverService()
    for warning in service.load_warnings:
        typer.echo(f"Warning: {warning}", err=True)
    return service


def _configure_logging(verbose: bool) -> None:
    # stdout carries the intent channel, so diagnostics go to stderr.
    logging.basicConfig(
        stream=sys.stderr,
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@app.command("list")
def list_classes() -> None:
    """List available device classes and their feature tags."""
    try:
        service = _build_service()
        classes = service.list_classes()
        if not classes:
            typer.echo("No device classes loaded")
            raise typer.Exit(code=1)

        for device_class in classes:
            typer.echo(f"{device_class.id}: {device_class.name} [{device_class.transport.type}]")
            for template in device_class.features:
                typer.echo(f"  {template.name}: {', '.join(template.types)}")
    except HubAdapterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("features")
def list_features(class_id: str = typer.Argument(..., metavar="CLASS", help="Device class ID")) -> None:
    """Show the feature templates a device class installs on its devices."""
    try:
        service = _build_service()
        device_class = service.get_class(class_id)
        typer.echo(f"{device_class.id}: {device_class.name}")
        for template in device_class.features:
            unit = f" [{template.unit}]" if template.unit else ""
            typer.echo(f"  {template.name} ({template.category}){unit}: {', '.join(template.types)}")
        for name, template in sorted(device_class.optional_features.items()):
            typer.echo(f"  {template.name} ({template.category}, optional '{name}'): {', '.join(template.types)}")
    except HubAdapterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("validate")
def validate(path: Path = typer.Argument(..., help="Descriptor YAML file")) -> None:
    """Validate one descriptor file against the schema."""
    try:
        device_class = validate_descriptor_file(path, packaged_documents())
        typer.echo(
            f"OK: {device_class.id} ({len(device_class.features)} features, "
            f"{len(device_class.inbound)} inbound rules, {len(device_class.outbound)} outbound rules)"
        )
    except HubAdapterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


@app.command("run")
def run_adapter(
    class_id: str | None = typer.Option(None, "--class", help="Device class ID (default: match the device)"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Run one adapter, reading host events from stdin and writing intents to stdout."""
    _configure_logging(verbose)
    try:
        service = _build_service()
        if class_id:
            service.get_class(class_id)
        asyncio.run(run_stdio(service, class_id=class_id))
    except ReauthLimitError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=2) from None
    except HubAdapterError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1) from None


def run() -> None:
    app()


if __name__ == "__main__":
    run()
