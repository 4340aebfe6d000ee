# noqa: D401
"""CLI entry point for the GlowCheck analysis engine."""

from __future__ import annotations

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from glow_common.config import get_settings
from glow_common.logging import configure_logging

from . import __version__
from .cancellation import CancellationToken
from .errors import AnalysisError, ConfigError, NetworkError, ValidationError
from .fingerprint import fingerprint as compute_fingerprint
from .metrics import render_latest
from .orchestrator import build_orchestrator
from .types import ImageRef, ScoreResult

app = typer.Typer(
    name="glowcheck",
    help="GlowCheck - face and outfit analysis from the command line",
    add_completion=False,
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"GlowCheck engine version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-V",
        help="Enable debug logging",
    ),
) -> None:
    """GlowCheck - face and outfit analysis from the command line."""
    configure_logging("DEBUG" if verbose else get_settings().log_level, force=True)


def _load_image(path: Path) -> ImageRef:
    if not path.is_file():
        console.print(f"[red]Error: {path} is not a file[/red]")
        raise typer.Exit(2)
    return ImageRef.from_path(path)


def _render(result: ScoreResult, as_json: bool) -> None:
    if as_json:
        console.print_json(json.dumps(result.dict_for_cache()))
        return

    table = Table(title=f"{result.kind.value.title()} analysis ({result.fingerprint})")
    table.add_column("Score", style="cyan")
    table.add_column("Value", justify="right")
    for name in result.score_fields():
        value = getattr(result, name)
        if value is not None:
            table.add_row(name.replace("_", " "), str(value))
    console.print(table)

    if result.is_fallback:
        console.print("[yellow]Offline estimate: the analysis service was unavailable[/yellow]")
    for tip in result.tips:
        console.print(f"  • {tip}")
    for item in result.improvements:
        console.print(f"  [dim]→ {item}[/dim]")


async def _run(coro_factory) -> ScoreResult:
    token = CancellationToken()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, token.cancel, "interrupted")
    except NotImplementedError:
        pass
    async with build_orchestrator() as engine:
        return await coro_factory(engine, token)


def _execute(coro_factory, as_json: bool) -> None:
    try:
        with console.status("[bold green]Analysing..."):
            result = asyncio.run(_run(coro_factory))
    except ConfigError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(2)
    except ValidationError as e:
        console.print(f"[yellow]{e}. Please retake the photo.[/yellow]")
        raise typer.Exit(3)
    except NetworkError as e:
        label = "Cancelled" if e.aborted else f"Network error ({e.code.value})"
        console.print(f"[red]{label}: {e}[/red]")
        raise typer.Exit(4)
    except AnalysisError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    _render(result, as_json)


@app.command()
def face(
    image: Path = typer.Argument(..., help="Path to a selfie"),
    fallback: bool = typer.Option(False, "--fallback", help="Serve an offline estimate if the service fails"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Analyse facial features in a photo."""
    ref = _load_image(image)
    _execute(
        lambda engine, token: engine.analyze_face(ref, cancel_token=token, allow_fallback=fallback),
        as_json,
    )


@app.command()
def outfit(
    image: Path = typer.Argument(..., help="Path to a full-length photo"),
    event: str = typer.Option("casual-outing", "--event", "-e", help="Event category, e.g. formal-event"),
    fallback: bool = typer.Option(False, "--fallback", help="Serve an offline estimate if the service fails"),
    as_json: bool = typer.Option(False, "--json", help="Print the result as JSON"),
) -> None:
    """Rate an outfit for an event."""
    ref = _load_image(image)
    _execute(
        lambda engine, token: engine.analyze_outfit(
            ref, event, cancel_token=token, allow_fallback=fallback
        ),
        as_json,
    )


@app.command("fingerprint")
def fingerprint_cmd(
    image: Path = typer.Argument(..., help="Path to an image"),
) -> None:
    """Print the content fingerprint of an image."""
    ref = _load_image(image)
    console.print(compute_fingerprint(ref.data, get_settings().fingerprint_sample_size))


@app.command()
def metrics() -> None:
    """Print Prometheus metrics for this process."""
    payload, _ = render_latest()
    console.print(payload.decode("utf-8"), markup=False, highlight=False)


if __name__ == "__main__":
    app()
