from __future__ import annotations

import argparse
import logging
from collections.abc import Sequence

from result import Err, Ok
from rich.console import Console
from rich.logging import RichHandler
from rich.markup import escape
from rich.progress import BarColumn, Progress, SpinnerColumn, TaskProgressColumn, TextColumn, TimeElapsedColumn

from duscan.config.defaults import default_config
from duscan.config.loader import CONFIG_PATH, load_config, sample_config_json
from duscan.config.schema import AppConfig, clamp_setting
from duscan.models.scan import ProgressUpdate, ScanResult
from duscan.scan import ScanOrchestrator
from duscan.services.summary import render_summary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130

# How often the main thread wakes up to notice Ctrl+C while waiting.
_POLL_SECONDS = 0.1


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="duscan",
        description="Measure the disk footprint of a directory tree.",
    )
    parser.add_argument("path", nargs="?", help="directory to scan")
    parser.add_argument("--config", default=None, help=f"config file (default: {CONFIG_PATH})")
    parser.add_argument("--top", type=int, default=None, help="rows in the largest-items tables")
    parser.add_argument("-v", "--verbose", action="store_true", help="enable debug logging")
    parser.add_argument("--sample-config", action="store_true", help="print the default config and exit")
    return parser


def _configure_logging(console: Console, verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False)],
    )


def _load(console: Console, path: str | None) -> AppConfig:
    loaded = load_config(path)
    if isinstance(loaded, Err):
        console.print(f"[yellow]{escape(loaded.unwrap_err())} Using defaults.[/yellow]")
        return default_config()
    return loaded.unwrap()


def _run_with_progress(orchestrator: ScanOrchestrator, path: str, console: Console) -> ScanResult:
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=True,
    ) as progress:
        task_id = progress.add_task("Starting", total=100)

        def on_progress(update: ProgressUpdate) -> None:
            progress.update(task_id, completed=update.percentage, description=update.message)

        handle = orchestrator.start(path, on_progress)
        while True:
            try:
                return handle.result(timeout=_POLL_SECONDS)
            except TimeoutError:
                continue
            except KeyboardInterrupt:
                progress.update(task_id, description="Cancelling")
                handle.cancel()
                return handle.join()


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    console = Console()
    _configure_logging(console, args.verbose)

    if args.sample_config:
        console.print_json(sample_config_json())
        return EXIT_OK
    if args.path is None:
        parser.error("the following arguments are required: path")

    config = _load(console, args.config)
    if args.top is not None:
        config.top_count = clamp_setting("top_count", args.top)

    logger.debug("Effective config: %s", config.to_dict())
    orchestrator = ScanOrchestrator.from_config(config)
    result = _run_with_progress(orchestrator, args.path, console)

    if isinstance(result, Ok):
        render_summary(console, result.unwrap(), config.top_count)
        return EXIT_OK

    error = result.unwrap_err()
    if error.cancelled:
        console.print("[yellow]Scan cancelled.[/yellow]")
        return EXIT_CANCELLED
    console.print(f"[red]{escape(error.message)}: {escape(error.path)}[/red]")
    return EXIT_ERROR
