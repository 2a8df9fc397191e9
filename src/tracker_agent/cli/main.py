"""CLI commands for Tracker Agent using Typer."""

from __future__ import annotations

import asyncio
import logging
import signal
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from tracker_agent import __version__
from tracker_agent.core.config import Config, get_config
from tracker_agent.core.errors import BackendError, TrackerError
from tracker_agent.core.events import CompositeEventSink, LoggingEventSink, LogLevel

app = typer.Typer(
    name="tracker-agent",
    help="Automatic Freelo time tracking driven by what is on your screen.",
    add_completion=False,
)

console = Console()

LEVEL_STYLES = {
    LogLevel.INFO: "cyan",
    LogLevel.SUCCESS: "green",
    LogLevel.WARNING: "yellow",
    LogLevel.ERROR: "red",
}


def setup_logging(log_level: str, log_file: Path | None = None, stream: bool = True) -> None:
    """Configure logging for the application."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    handlers: list[logging.Handler] = []
    if stream:
        handlers.append(logging.StreamHandler())

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )

    # Reduce noise from external libraries
    for name in ("aiohttp", "anthropic", "httpx", "httpcore", "PIL"):
        logging.getLogger(name).setLevel(logging.WARNING)


class ConsoleEventSink:
    """Prints engine events to the terminal."""

    def __init__(self, out: Console):
        self._console = out

    def log_event(self, level: LogLevel, message: str) -> None:
        level = LogLevel(level)
        style = LEVEL_STYLES[level]
        timestamp = datetime.now().strftime("%H:%M:%S")
        self._console.print(
            f"[dim]{timestamp}[/dim] [{style}]{level.value.upper():<7}[/{style}] {message}",
            highlight=False,
        )

    def tracking_update(
        self,
        application: str,
        activity: str,
        item: str | None,
        timestamp: datetime,
    ) -> None:
        self._console.print(
            Panel(
                f"[bold]{application}[/bold]\n{activity}\n"
                f"Task: [cyan]{item or 'none'}[/cyan]",
                title=f"Now tracking ({timestamp.strftime('%H:%M:%S')})",
                border_style="blue",
                expand=False,
            )
        )


def _apply_overrides(
    config: Config,
    interval: int | None,
    threshold: float | None,
    debug: bool,
) -> Config:
    if interval is not None:
        config = config.model_copy(update={"poll_interval_seconds": interval})
    if threshold is not None:
        matching = config.matching.model_copy(update={"acceptance_threshold": threshold})
        config = config.model_copy(update={"matching": matching})
    if debug:
        ocr = config.ocr.model_copy(update={"save_debug": True})
        config = config.model_copy(update={"ocr": ocr})
    return config


async def _run_until_signalled(config: Config) -> None:
    from tracker_agent.core.engine import TrackingEngine

    sink = CompositeEventSink(ConsoleEventSink(console), LoggingEventSink())
    engine = TrackingEngine(config=config, event_sink=sink)
    stop_requested = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, stop_requested.set)
        except NotImplementedError:
            # Windows: Ctrl+C surfaces as KeyboardInterrupt instead
            pass

    await engine.start()
    try:
        await stop_requested.wait()
    finally:
        console.print("\n[yellow]Stopping tracker...[/yellow]")
        await engine.stop()


@app.command()
def run(
    interval: int = typer.Option(
        None, "--interval", "-i", min=1, help="Seconds between screen samples"
    ),
    threshold: float = typer.Option(
        None, "--threshold", "-t", min=0.0, max=1.0, help="Confidence needed to track a task"
    ),
    debug: bool = typer.Option(
        False, "--debug", help="Save screenshots and OCR text to the debug directory"
    ),
    log_level: str = typer.Option(
        "INFO", "--log-level", "-l", help="Log level (DEBUG, INFO, WARNING, ERROR)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also print logs to stderr"),
) -> None:
    """Run the tracker in the foreground until Ctrl+C."""
    config = _apply_overrides(get_config(), interval, threshold, debug)
    config.ensure_directories()
    setup_logging(log_level, config.log_dir / "tracker-agent.log", stream=verbose)

    console.print("[green]Starting Tracker Agent...[/green]")
    console.print("Press Ctrl+C to stop\n")

    try:
        asyncio.run(_run_until_signalled(config))
    except TrackerError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@app.command()
def tasks() -> None:
    """List open Freelo tasks the tracker can match against."""
    from tracker_agent.backend.freelo_client import FreeloClient

    config = get_config()
    if not config.freelo.has_credentials:
        console.print(
            "[red]Freelo credentials missing.[/red] Set TRACKER_AGENT_FREELO__EMAIL "
            "and TRACKER_AGENT_FREELO__API_KEY."
        )
        raise typer.Exit(1)

    try:
        items = asyncio.run(FreeloClient(config.freelo).list_items())
    except BackendError as e:
        console.print(f"[red]Failed to load tasks: {e}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Open Freelo Tasks ({len(items)})", header_style="bold cyan")
    table.add_column("ID", justify="right")
    table.add_column("Project")
    table.add_column("Task")
    for item in sorted(items, key=lambda i: (i.project_name, i.name)):
        table.add_row(str(item.id), item.project_name, item.name)

    console.print(table)


@app.command()
def configure(
    interval: int = typer.Option(None, "--interval", "-i", min=1, help="Seconds between samples"),
    email: str = typer.Option(None, "--email", "-e", help="Freelo account e-mail"),
    threshold: float = typer.Option(
        None, "--threshold", "-t", min=0.0, max=1.0, help="Acceptance threshold (0-1)"
    ),
    ai_mode: str = typer.Option(None, "--ai-mode", help="AI matcher mode: vision or ocr"),
) -> None:
    """Update and save settings. API keys are read from the environment only."""
    config = get_config()

    if ai_mode is not None and ai_mode not in ("vision", "ocr"):
        console.print("[red]--ai-mode must be 'vision' or 'ocr'[/red]")
        raise typer.Exit(1)

    updates = {}
    if interval is not None:
        updates["poll_interval_seconds"] = interval
    if email is not None:
        updates["freelo"] = config.freelo.model_copy(update={"email": email})
    if threshold is not None or ai_mode is not None:
        matching_updates = {}
        if threshold is not None:
            matching_updates["acceptance_threshold"] = threshold
        if ai_mode is not None:
            matching_updates["ai_mode"] = ai_mode
        updates["matching"] = config.matching.model_copy(update=matching_updates)

    if not updates:
        console.print("[yellow]Nothing to change[/yellow]")
        return

    config = config.model_copy(update=updates)
    config.save()

    console.print(f"[green]Settings saved to {config.config_file}[/green]")


@app.command()
def config_show() -> None:
    """Show current configuration."""
    config = get_config()

    table = Table(title="Tracker Agent Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting")
    table.add_column("Value")

    table.add_row("[bold]Tracking[/bold]", "")
    table.add_row("  Poll Interval", f"{config.poll_interval_seconds}s")
    table.add_row("  Tick Timeout", f"{config.tick_timeout_seconds:.0f}s")

    table.add_row("[bold]Freelo[/bold]", "")
    table.add_row("  API", config.freelo.base_url)
    table.add_row("  E-mail", config.freelo.email or "[yellow]Not Set[/yellow]")
    table.add_row("  API Key", "***" if config.freelo.api_key else "[yellow]Not Set[/yellow]")

    table.add_row("[bold]Matching[/bold]", "")
    ai_enabled = config.matcher_api_key is not None
    table.add_row(
        "  Strategy",
        f"AI ({config.matching.ai_mode})" if ai_enabled else "Heuristic (no Claude API key)",
    )
    table.add_row("  Model", config.matching.model)
    threshold = config.matching.acceptance_threshold
    table.add_row("  Threshold", f"{threshold:.2f}" if threshold is not None else "matcher default")
    table.add_row("  Claude API Key", "***" if ai_enabled else "[yellow]Not Set[/yellow]")

    table.add_row("[bold]Capture[/bold]", "")
    table.add_row("  Max Width", f"{config.capture.max_width}px")
    table.add_row("  OCR Language", config.ocr.language)
    table.add_row("  Debug Dumps", str(config.ocr.save_debug))

    table.add_row("[bold]Paths[/bold]", "")
    table.add_row("  Config File", str(config.config_file))
    table.add_row("  Log Directory", str(config.log_dir))

    console.print(table)


@app.command(name="check-ocr")
def check_ocr() -> None:
    """Check that Tesseract OCR is available."""
    from tracker_agent.trackers.ocr import is_tesseract_installed

    config = get_config()
    if is_tesseract_installed(config.ocr.tesseract_cmd):
        console.print("[green]Tesseract is installed[/green]")
        return

    console.print(
        "[red]Tesseract not found.[/red]\n"
        "  macOS:  brew install tesseract tesseract-lang\n"
        "  Linux:  sudo apt-get install tesseract-ocr tesseract-ocr-eng\n"
        "  Windows: https://github.com/UB-Mannheim/tesseract/wiki"
    )
    raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    console.print(f"Tracker Agent v{__version__}")


if __name__ == "__main__":
    app()
