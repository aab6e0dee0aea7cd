"""
ScanCore Console Interface
===========================

Rich-powered console abstraction providing a consistent presentation layer
for every drmscan command: banner, section headers, severity-coloured
messages, tables, and status spinners.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Generator, Sequence

from rich.align import Align
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

_SCAN_THEME = Theme(
    {
        "scan.banner": "bold bright_cyan",
        "scan.section": "bold bright_magenta",
        "scan.success": "bold green",
        "scan.warning": "bold yellow",
        "scan.error": "bold red",
        "scan.info": "bold bright_blue",
        "scan.dim": "dim white",
        "scan.critical": "bold white on red",
        "scan.high": "bold red",
        "scan.medium": "bold yellow",
        "scan.low": "bold bright_cyan",
        "scan.informational": "bold bright_blue",
    }
)

_SEVERITY_STYLES: dict[str, str] = {
    "CRITICAL": "scan.critical",
    "HIGH": "scan.high",
    "MEDIUM": "scan.medium",
    "LOW": "scan.low",
    "INFO": "scan.informational",
}

_TAGLINE = "PE/COFF protection signal inspector"


class ScanConsole:
    """Unified console interface for drmscan output.

    Usage::

        con = ScanConsole()
        con.banner()
        con.section("Sections")
        con.success("Inspection complete")
    """

    def __init__(self, *, quiet: bool = False, record: bool = False, stderr: bool = False) -> None:
        """Initialise the console.

        Args:
            quiet:  Suppress all output (useful in library / test mode).
            record: Enable Rich recording for text / HTML export.
            stderr: Write to stderr, leaving stdout for machine output.
        """
        self._console = Console(
            theme=_SCAN_THEME,
            quiet=quiet,
            record=record,
            stderr=stderr,
            highlight=False,
        )

    @property
    def rich(self) -> Console:
        """Direct access to the underlying Rich Console instance."""
        return self._console

    def banner(self, version: str = "1.0.0") -> None:
        """Display the drmscan banner."""
        text = Text.from_markup(
            "[scan.banner]drmscan[/scan.banner]\n"
            f"[scan.dim]{_TAGLINE}  |  v{version}[/scan.dim]"
        )
        self._console.print(
            Panel(Align.center(text), border_style="bright_cyan", padding=(0, 2))
        )

    def section(self, title: str) -> None:
        """Print a prominent section header."""
        self._console.rule(f"  {title}  ", style="scan.section", characters="─")
        self._console.print()

    # ------------------------------------------------------------------ #
    #  Message helpers (severity-coloured)
    # ------------------------------------------------------------------ #

    def success(self, message: str) -> None:
        self._console.print(f"[scan.success][✔] SUCCESS:[/scan.success] {message}")

    def warning(self, message: str) -> None:
        self._console.print(f"[scan.warning][⚠] WARNING:[/scan.warning] {message}")

    def error(self, message: str) -> None:
        self._console.print(f"[scan.error][✘] ERROR:[/scan.error] {message}")

    def info(self, message: str) -> None:
        self._console.print(f"[scan.info][ℹ] INFO:[/scan.info] {message}")

    def critical(self, message: str) -> None:
        self._console.print(f"[scan.critical][☠] CRITICAL: {message}[/scan.critical]")

    # ------------------------------------------------------------------ #
    #  Tables
    # ------------------------------------------------------------------ #

    def table(
        self,
        title: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
        *,
        caption: str | None = None,
        styles: Sequence[str] | None = None,
    ) -> None:
        """Render a styled Rich table.

        Args:
            title:    Table title.
            columns:  Column header labels.
            rows:     Iterable of row tuples; each element is stringified.
            caption:  Optional footer caption.
            styles:   Optional per-column Rich style strings.
        """
        tbl = Table(
            title=title,
            caption=caption,
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=True,
            padding=(0, 1),
        )
        for idx, col_name in enumerate(columns):
            style = styles[idx] if styles and idx < len(styles) else ""
            tbl.add_column(col_name, style=style)

        for row in rows:
            tbl.add_row(*(str(cell) for cell in row))

        self._console.print(tbl)

    def findings_table(self, findings: Sequence[Any]) -> None:
        """Render a findings table with severity colouring.

        Expects objects with ``severity``, ``title``, and ``description``
        attributes (e.g. :class:`scancore.models.Finding`).
        """
        tbl = Table(
            title="Findings",
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=True,
            padding=(0, 1),
        )
        tbl.add_column("#", style="dim", width=4, justify="right")
        tbl.add_column("Severity", width=12)
        tbl.add_column("Title")
        tbl.add_column("Description", ratio=2)

        for idx, finding in enumerate(findings, start=1):
            sev = getattr(finding, "severity", "INFO")
            sev_name = sev.value if hasattr(sev, "value") else str(sev).upper()
            sev_style = _SEVERITY_STYLES.get(sev_name, "")
            sev_cell = f"[{sev_style}]{sev_name}[/{sev_style}]" if sev_style else sev_name
            tbl.add_row(
                str(idx),
                sev_cell,
                str(getattr(finding, "title", "")),
                str(getattr(finding, "description", "")),
            )

        self._console.print(tbl)

    @contextmanager
    def status(self, message: str = "Working...") -> Generator[Any, None, None]:
        """Context-manager showing a spinner with a status message."""
        with self._console.status(
            f"[scan.info]{message}[/scan.info]",
            spinner="dots",
            spinner_style="bright_cyan",
        ) as status_obj:
            yield status_obj

    # ------------------------------------------------------------------ #
    #  Utility
    # ------------------------------------------------------------------ #

    def print(self, *args: Any, **kwargs: Any) -> None:
        """Proxy to :meth:`rich.console.Console.print`."""
        self._console.print(*args, **kwargs)

    def blank(self, count: int = 1) -> None:
        """Print *count* blank lines."""
        for _ in range(count):
            self._console.print()

    def divider(self, style: str = "dim") -> None:
        """Print a thin horizontal rule."""
        self._console.rule(style=style)

    def export_text(self) -> str:
        """Export recorded console output as plain text (requires ``record=True``)."""
        return self._console.export_text()
