# src/shipyard/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

import typer

from shipyard.config.loader import load_config, parse_driver_opts
from shipyard.errors import ShipyardError
from shipyard.logging.log import init_logging
from shipyard.machine.fleet import provision_fleet
from shipyard.machine.orchestrator import DockerMachine
from shipyard.observers.dispatcher import EventBus
from shipyard.observers.logger import LoggerObserver


# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Shipyard machine provisioning CLI")


def _provisioner(config: Path, debug: bool) -> DockerMachine:
    logger, run_id, _ = init_logging(verbose=debug)
    cfg = load_config(config)
    bus = EventBus(observers=[LoggerObserver(logger)])
    return DockerMachine(cfg, events=bus, run_id=run_id)


@app.command()
def provision(
    config: Path = typer.Argument(..., help="Installation config YAML"),
    count: int = typer.Option(1, "--count", "-n", min=1, help="Number of machines to create"),
    opt: Optional[List[str]] = typer.Option(
        None,
        "--opt",
        "-o",
        help="Driver option for these machines, key=value (repeatable)",
    ),
    workers: int = typer.Option(4, "--workers", min=1, help="Machines provisioned in parallel"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Create machines and install the registry certificates on each."""
    try:
        driver_opts = parse_driver_opts(opt or [])
        dm = _provisioner(config, debug)
    except ShipyardError as e:
        typer.echo(f"[error] {e}", err=True)
        raise typer.Exit(code=1)

    typer.echo(f"\n[machines] Provisioning {count} machine(s) for {dm.name}...")
    try:
        report = provision_fleet(dm, count, driver_opts, max_workers=workers)
    finally:
        dm.close()

    for m in report.machines:
        typer.echo(f"  {m.name} {m.address}")
    for e in report.errors:
        typer.echo(f"[error] {e}", err=True)
    if not report.ok:
        raise typer.Exit(code=1)


@app.command("delete-all")
def delete_all(
    config: Path = typer.Argument(..., help="Installation config YAML"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Remove every machine of the installation."""
    try:
        dm = _provisioner(config, debug)
        try:
            dm.delete_all()
        finally:
            dm.close()
    except ShipyardError as e:
        typer.echo(f"[error] {e}", err=True)
        raise typer.Exit(code=1)
    typer.echo("[machines] all machines removed")


if __name__ == "__main__":
    app()
