from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from typing import Optional

import typer

from rpc_parity.checks import available_checks
from rpc_parity.config import get_settings
from rpc_parity.infrastructure.record_store import RecordStore
from rpc_parity.reporter import print_summary
from rpc_parity.sampler import run_sampler
from rpc_parity.summary import build_dashboard_payload
from rpc_parity.utils.logging import configure_logging

app = typer.Typer(help="RPC Parity Monitor CLI.")


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"primary={settings.primary_rpc_url} | reference={settings.reference_rpc_url} | "
        f"interval={settings.sample_interval_seconds}s recheck={settings.recovery_delay_seconds}s "
        f"checks={','.join(settings.check_names)} | data={settings.data_file}"
    )


@app.command()
def run(
    iterations: Optional[int] = typer.Option(
        None,
        "--iterations",
        "-n",
        help="Stop after this many iterations (default: run until interrupted).",
    ),
    data_file: Optional[Path] = typer.Option(
        None,
        "--data-file",
        "-d",
        help="Override the samples stream path (default from settings).",
    ),
    checks: Optional[str] = typer.Option(
        None,
        "--checks",
        "-c",
        help="Comma-separated checks to run, or 'list' "
        f"(available: {', '.join(available_checks())}).",
    ),
) -> None:
    """
    Sample both backends and append records until stopped.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    if checks == "list":
        typer.echo("Available checks: " + ", ".join(available_checks()))
        return

    overrides = {}
    if data_file is not None:
        overrides["data_file"] = data_file
    if checks is not None:
        overrides["checks"] = checks
    if overrides:
        settings = settings.model_copy(update=overrides)

    typer.echo(
        f"Sampling primary={settings.primary_rpc_url} against "
        f"reference={settings.reference_rpc_url} -> {settings.data_file}"
    )
    try:
        attempted = asyncio.run(run_sampler(settings, max_iterations=iterations))
    except ValueError as exc:
        typer.echo(str(exc), err=True)
        raise typer.Exit(code=2) from exc
    typer.echo(f"Stopped after {attempted} iteration(s).")


@app.command()
def stats(
    data_file: Optional[Path] = typer.Option(
        None,
        "--data-file",
        "-d",
        help="Samples stream to summarize (default from settings).",
    ),
    as_json: bool = typer.Option(False, "--json", help="Emit the dashboard payload as JSON."),
    max_points: int = typer.Option(500, "--max-points", help="Recent samples to include."),
    recent: int = typer.Option(20, "--recent", help="Recent mismatches/errors to include."),
) -> None:
    """
    Summarize the recorded streams.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)
    store = RecordStore(data_file or settings.data_file)
    payload = build_dashboard_payload(store, max_points=max_points, recent=recent)
    if as_json:
        typer.echo(payload.model_dump_json(indent=2))
        return
    print_summary(payload)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
