"""
drmscan Report Generator
=========================

Writes drmscan results as structured JSON for machine consumption and
downstream tooling.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from scancore.models import ScanResult


REPORT_VERSION: str = "1.0.0"


class DrmScanReportGenerator:
    """Serialises :class:`ScanResult` objects to JSON.

    Usage::

        generator = DrmScanReportGenerator()
        generator.generate_json(scan, "output/game.json")
    """

    def build(self, scan: ScanResult) -> dict[str, Any]:
        """Report payload as a JSON-compatible dictionary."""
        return {
            "report_type": scan.tool_name.replace(".", "_"),
            "version": REPORT_VERSION,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "target": scan.target,
            "summary": scan.summary,
            "duration_seconds": scan.duration_seconds,
            "severity_counts": scan.severity_counts,
            "findings": [f.model_dump(mode="json") for f in scan.findings],
            "analysis": scan.metadata,
        }

    def render_json(self, scan: ScanResult) -> str:
        return json.dumps(self.build(scan), indent=2, ensure_ascii=False, default=str)

    def generate_json(self, scan: ScanResult, output_path: str | Path) -> str:
        """Write the JSON report to *output_path*.

        Returns:
            The absolute path of the generated report.
        """
        path = Path(output_path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w", encoding="utf-8") as f:
            f.write(self.render_json(scan))

        return str(path.resolve())
