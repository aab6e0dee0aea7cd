"""
drmscan Console Output
=======================

Rich-powered terminal display for drmscan results: image header panel,
section table with entropy bars, import listing, detected protections,
and the emulator compatibility verdict.

Renders from :class:`~scancore.models.ScanResult` metadata so the same
payload drives both the terminal and the JSON report.

References:
    - Rich library: https://github.com/Textualize/rich
"""

from __future__ import annotations

from typing import Any

from rich.panel import Panel
from rich.table import Table

from scancore.console import ScanConsole
from scancore.models import ScanResult, Severity

from drmscan.core.models import DrmType


# ---------------------------------------------------------------------------
# Colour helpers
# ---------------------------------------------------------------------------

_ENTROPY_COLOUR_THRESHOLDS: list[tuple[float, str]] = [
    (1.0, "bright_green"),
    (4.5, "green"),
    (6.5, "yellow"),
    (7.0, "bright_yellow"),
    (7.5, "red"),
    (8.1, "bright_red"),
]

_MAX_FUNCTIONS_SHOWN: int = 50


def _entropy_colour(entropy: float) -> str:
    """Return a Rich colour name for the given entropy value."""
    for threshold, colour in _ENTROPY_COLOUR_THRESHOLDS:
        if entropy < threshold:
            return colour
    return "bright_red"


def _entropy_bar(entropy: float, width: int = 20) -> str:
    """Render a text-based entropy bar.

    Args:
        entropy: Entropy value in [0.0, 8.0].
        width: Character width of the bar.

    Returns:
        Coloured bar string with Rich markup.
    """
    fraction = min(entropy / 8.0, 1.0)
    filled = int(fraction * width)
    empty = width - filled
    colour = _entropy_colour(entropy)
    return f"[{colour}]{'#' * filled}[/{colour}][dim]{'.' * empty}[/dim]"


def _score_colour(score: float) -> str:
    """Colour for a compatibility score in [0, 1]; higher is better."""
    if score >= 0.9:
        return "bright_green"
    elif score >= 0.6:
        return "yellow"
    elif score >= 0.3:
        return "red"
    return "bright_red"


# ---------------------------------------------------------------------------
# DrmScanConsoleOutput
# ---------------------------------------------------------------------------

class DrmScanConsoleOutput:
    """Rich terminal display for drmscan results.

    Usage::

        output = DrmScanConsoleOutput()
        output.display_inspection(engine.inspect("game.exe"))
        output.display_detection(engine.detect("/games/SomeGame"))
    """

    def __init__(self, console: ScanConsole | None = None) -> None:
        self._console: ScanConsole = console or ScanConsole()

    # ------------------------------------------------------------------ #
    #  Inspection
    # ------------------------------------------------------------------ #

    def display_inspection(self, scan: ScanResult) -> None:
        """Display the result of inspecting one image."""
        self._console.section("Image Inspection")

        meta = scan.metadata
        if "invalid_image" in meta:
            invalid = meta["invalid_image"]
            self._console.error(
                f"{invalid.get('path', scan.target)}: {invalid.get('detail') or 'not a PE image'}"
            )
        elif "image" in meta:
            image = meta["image"]
            self.display_header(image)
            entropies = {
                row["name"]: row for row in meta.get("section_entropy", [])
            }
            self.display_sections(image.get("sections", []), entropies)
            self.display_imports(
                image.get("imported_libraries", []),
                image.get("imported_functions", []),
            )
            hits = meta.get("pattern_hits", {})
            if hits:
                self.display_pattern_hits(hits)

        if scan.findings:
            self._console.findings_table(scan.findings)
        self._console.info(scan.summary)
        self._console.divider()

    def display_header(self, image: dict[str, Any]) -> None:
        """Display the image metadata panel."""
        size = image.get("file_size", 0)
        overlay = image.get("overlay_size", 0)
        bitness = image.get("bitness", 32)
        lines: list[str] = [
            f"[bold]File:[/bold]     {image.get('path', '')}",
            f"[bold]Size:[/bold]     {size:,} bytes ({size / 1024:.1f} KiB)",
            f"[bold]Format:[/bold]   {'PE32+' if bitness == 64 else 'PE32'} ({bitness}-bit)",
            f"[bold]Sections:[/bold] {len(image.get('sections', []))}",
            f"[bold]Overlay:[/bold]  {overlay:,} bytes",
        ]
        panel = Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Image Information[/bold bright_cyan]",
            border_style="bright_cyan",
            padding=(1, 2),
        )
        self._console.rich.print(panel)
        self._console.blank()

    def display_sections(
        self,
        sections: list[dict[str, Any]],
        entropies: dict[str, dict[str, Any]],
    ) -> None:
        """Display the section table with entropy visualisation."""
        if not sections:
            return
        self._console.section("Sections")

        tbl = Table(
            border_style="bright_cyan",
            header_style="bold bright_magenta",
            show_lines=True,
            padding=(0, 1),
        )
        tbl.add_column("#", style="dim", width=4, justify="right")
        tbl.add_column("Name", style="bold", min_width=8)
        tbl.add_column("VAddr", justify="right")
        tbl.add_column("VSize", justify="right")
        tbl.add_column("Raw Offset", justify="right")
        tbl.add_column("Raw Size", justify="right")
        tbl.add_column("Flags")
        tbl.add_column("Entropy", justify="right")
        tbl.add_column("Entropy Bar", min_width=22)

        for i, sec in enumerate(sections, 1):
            row = entropies.get(sec.get("name", ""), {})
            if row:
                entropy = float(row.get("entropy", 0.0))
                colour = _entropy_colour(entropy)
                entropy_cell = f"[{colour}]{entropy:.3f}[/{colour}]"
                bar = _entropy_bar(entropy)
                flags = row.get("flags", "")
            else:
                entropy_cell, bar, flags = "-", "", ""
            tbl.add_row(
                str(i),
                sec.get("name") or "<unnamed>",
                f"0x{sec.get('virtual_address', 0):x}",
                f"{sec.get('virtual_size', 0):,}",
                f"0x{sec.get('raw_data_pointer', 0):x}",
                f"{sec.get('raw_data_size', 0):,}",
                flags,
                entropy_cell,
                bar,
            )

        self._console.rich.print(tbl)
        self._console.blank()

    def display_imports(self, libraries: list[str], functions: list[str]) -> None:
        """List imported DLLs and a sample of by-name function imports."""
        self._console.section("Imports")
        if not libraries:
            self._console.info("No imports found")
            return

        self._console.table(
            f"Imported Libraries ({len(libraries)})",
            ["Library"],
            [(lib,) for lib in sorted(libraries)],
            styles=["bright_cyan"],
        )
        if functions:
            shown = sorted(functions)[:_MAX_FUNCTIONS_SHOWN]
            caption = None
            if len(functions) > len(shown):
                caption = f"{len(functions) - len(shown)} more not shown"
            self._console.table(
                f"Imported Functions ({len(functions)})",
                ["Function"],
                [(fn,) for fn in shown],
                caption=caption,
            )
        self._console.blank()

    def display_pattern_hits(self, hits: dict[str, bool]) -> None:
        rows = [
            (literal, "[scan.success]found[/scan.success]" if found else "[scan.dim]absent[/scan.dim]")
            for literal, found in hits.items()
        ]
        self._console.table("Pattern Search", ["Literal", "Result"], rows)
        self._console.blank()

    # ------------------------------------------------------------------ #
    #  Detection
    # ------------------------------------------------------------------ #

    def display_detection(self, scan: ScanResult) -> None:
        """Display the DRM classification of a game installation."""
        self._console.section("DRM Detection")

        analysis = scan.metadata.get("drm_analysis", {})
        detected = analysis.get("detected", [])

        if detected:
            tbl = Table(
                title="Detected Protections",
                border_style="bright_cyan",
                header_style="bold bright_magenta",
                show_lines=True,
                padding=(0, 1),
            )
            tbl.add_column("DRM", style="bold")
            tbl.add_column("Confidence")
            tbl.add_column("Evidence", ratio=2)
            for drm in detected:
                drm_type = DrmType(drm["type"])
                confidence = drm.get("confidence", 2)
                tbl.add_row(
                    drm_type.display_name,
                    {1: "low", 2: "medium", 3: "high"}.get(confidence, str(confidence)),
                    drm.get("evidence", ""),
                )
            self._console.rich.print(tbl)
            self._console.blank()
        else:
            self._console.success("No DRM detected")

        self.display_compatibility(analysis)

        for note in analysis.get("analysis_notes", []):
            self._console.info(note)
        for error in analysis.get("analysis_errors", []):
            self._console.error(error)
        if scan.highest_severity is Severity.CRITICAL:
            self._console.critical("Protection cannot be bypassed; the game is not packageable")

        if scan.findings:
            self._console.findings_table(scan.findings)
        self._console.divider()

    def display_compatibility(self, analysis: dict[str, Any]) -> None:
        """Display the compatibility score and packaging recommendation."""
        score = float(analysis.get("compatibility_score", 0.0))
        colour = _score_colour(score)
        bar_width = 40
        filled = int(score * bar_width)
        bar = f"[{colour}]{'#' * filled}[/{colour}][dim]{'.' * (bar_width - filled)}[/dim]"

        lines: list[str] = [
            f"[bold]Score:[/bold]          [{colour}]{score:.0%}[/{colour}]",
            f"  {bar}",
            f"[bold]Recommendation:[/bold] {analysis.get('recommendation', '')}",
            f"[bold]Executables:[/bold]    {analysis.get('executables_analyzed', 0)}",
        ]
        if analysis.get("compatibility_reason"):
            lines.append(f"[bold]Reason:[/bold]         {analysis['compatibility_reason']}")
        if analysis.get("requires_launcher"):
            lines.append("[scan.warning]Launcher may be required[/scan.warning]")
        if analysis.get("requires_online"):
            lines.append("[scan.warning]Online connection may be required[/scan.warning]")

        panel = Panel(
            "\n".join(lines),
            title="[bold bright_cyan]Compatibility[/bold bright_cyan]",
            border_style=colour,
            padding=(0, 2),
        )
        self._console.rich.print(panel)
        self._console.blank()
