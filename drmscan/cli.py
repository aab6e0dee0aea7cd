"""
drmscan CLI
============

Click-based command-line interface for drmscan.

Usage::

    python -m drmscan inspect game.exe
    python -m drmscan inspect game.exe --pattern denuvo --pattern steam --json
    python -m drmscan detect "/games/Some Game" --exe "/games/Some Game/Game.exe"
    python -m drmscan -c config.toml detect ./game --output report.json

Exit codes:
    0  analysis completed
    1  the target is not a valid image, or the analysis failed
    130  interrupted

References:
    - Click Documentation. https://click.palletsprojects.com/
"""

from __future__ import annotations

import asyncio
import sys
from typing import Optional

import click

from scancore.config import ScanConfig
from scancore.console import ScanConsole
from scancore.logger import ScanLogger
from scancore.models import ScanResult

from drmscan import __version__
from drmscan.core.engine import DrmScanEngine
from drmscan.output.console import DrmScanConsoleOutput
from drmscan.output.report import DrmScanReportGenerator


# ===================================================================== #
#  CLI Group
# ===================================================================== #

@click.group()
@click.option(
    "--config", "-c",
    type=click.Path(exists=True, dir_okay=False),
    default=None,
    help="Path to a drmscan configuration file (TOML).",
)
@click.option(
    "--quiet", "-q",
    is_flag=True,
    default=False,
    help="Suppress banner and informational output.",
)
@click.option(
    "--verbose", "-v",
    is_flag=True,
    default=False,
    help="Enable debug logging, including parser diagnostics.",
)
@click.version_option(__version__, prog_name="drmscan")
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    quiet: bool,
    verbose: bool,
) -> None:
    """drmscan -- PE/COFF protection signal inspector.

    Inspect Windows executables for the signals that identify DRM and
    packers, or classify a whole game installation.
    """
    ctx.ensure_object(dict)
    ctx.obj["config"] = ScanConfig.load(config) if config else ScanConfig.load()
    ctx.obj["quiet"] = quiet
    ctx.obj["verbose"] = verbose


def _prepare(ctx: click.Context, json_output: bool) -> None:
    """Build the console, logger and engine for one subcommand.

    With ``--json`` stdout carries only the report: the banner is skipped
    and console messages go to stderr.
    """
    scan_config: ScanConfig = ctx.obj["config"]
    quiet: bool = ctx.obj["quiet"]
    verbose: bool = ctx.obj["verbose"]
    settings = scan_config.global_settings
    log_level = "DEBUG" if verbose or settings.debug else settings.log_level

    console = ScanConsole(quiet=quiet, stderr=json_output)
    logger = ScanLogger(
        "cli",
        log_level=log_level,
        log_file=settings.log_file,
        json_logs=settings.log_json,
        console_output=verbose or not (quiet or json_output),
    )

    ctx.obj["console"] = console
    ctx.obj["engine"] = DrmScanEngine(scan_config, logger)
    ctx.obj["display"] = DrmScanConsoleOutput(console)
    ctx.obj["reporter"] = DrmScanReportGenerator()

    if not (quiet or json_output):
        console.banner(version=__version__)


def _emit(ctx: click.Context, result: ScanResult, json_output: bool, output_path: Optional[str]) -> None:
    """Write the JSON report and/or echo it, depending on the flags."""
    reporter: DrmScanReportGenerator = ctx.obj["reporter"]
    console: ScanConsole = ctx.obj["console"]

    if json_output:
        click.echo(reporter.render_json(result))
    if output_path:
        path = reporter.generate_json(result, output_path)
        console.success(f"JSON report saved to: {path}")


# ===================================================================== #
#  Subcommands
# ===================================================================== #

@cli.command()
@click.argument("path", type=click.Path(dir_okay=False))
@click.option(
    "--pattern", "-p",
    "patterns",
    multiple=True,
    help="Literal to search for in the file (repeatable, case-insensitive).",
)
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Print the JSON report to stdout instead of tables.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the JSON report to this file.",
)
@click.pass_context
def inspect(
    ctx: click.Context,
    path: str,
    patterns: tuple[str, ...],
    json_output: bool,
    output_path: Optional[str],
) -> None:
    """Inspect one PE image: headers, sections, imports, overlay, entropy.

    PATH is the executable or DLL to read.  It is never loaded or run.
    """
    _prepare(ctx, json_output)
    engine: DrmScanEngine = ctx.obj["engine"]
    display: DrmScanConsoleOutput = ctx.obj["display"]
    console: ScanConsole = ctx.obj["console"]

    try:
        result = asyncio.run(engine.inspect_async(path, patterns))
    except KeyboardInterrupt:
        console.warning("Analysis interrupted by user.")
        sys.exit(130)

    if not json_output:
        display.display_inspection(result)
    _emit(ctx, result, json_output, output_path)

    if "image" not in result.metadata:
        sys.exit(1)


@cli.command()
@click.argument("game_dir", type=click.Path(file_okay=False))
@click.option(
    "--exe", "-e",
    "main_exe",
    type=click.Path(dir_okay=False),
    default=None,
    help="Main game executable, analysed first.",
)
@click.option(
    "--json", "json_output",
    is_flag=True,
    default=False,
    help="Print the JSON report to stdout instead of tables.",
)
@click.option(
    "--output", "-o",
    "output_path",
    type=click.Path(dir_okay=False),
    default=None,
    help="Write the JSON report to this file.",
)
@click.pass_context
def detect(
    ctx: click.Context,
    game_dir: str,
    main_exe: Optional[str],
    json_output: bool,
    output_path: Optional[str],
) -> None:
    """Classify the DRM of a game installation.

    GAME_DIR is the root folder of the installed game.
    """
    _prepare(ctx, json_output)
    engine: DrmScanEngine = ctx.obj["engine"]
    display: DrmScanConsoleOutput = ctx.obj["display"]
    console: ScanConsole = ctx.obj["console"]

    try:
        with console.status(f"Scanning {game_dir}..."):
            result = engine.detect(game_dir, main_exe)
    except KeyboardInterrupt:
        console.warning("Analysis interrupted by user.")
        sys.exit(130)

    if not json_output:
        display.display_detection(result)
    _emit(ctx, result, json_output, output_path)

    if result.metadata.get("drm_analysis", {}).get("analysis_errors"):
        sys.exit(1)


# ---------------------------------------------------------------------------
# Module entry point
# ---------------------------------------------------------------------------

def main() -> None:
    """Entry point for the ``drmscan`` console script."""
    cli(obj={})


if __name__ == "__main__":
    main()
