"""
ScanCore Data Models
=====================

Pydantic v2 models shared by every drmscan command: individual findings
and the aggregated scan result that the console and report layers render.

References:
    - Pydantic v2 documentation. https://docs.pydantic.dev/latest/
"""

from __future__ import annotations

import datetime as _dt
import json as _json
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utcnow() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


# ========================== Enumerations ===================================


class Severity(str, Enum):
    """Finding severity level.

    Attributes:
        CRITICAL: Protection that blocks packaging outright.
        HIGH:     Protection that very likely blocks packaging.
        MEDIUM:   Needs manual review or a non-standard bypass.
        LOW:      Minor signal, usually harmless.
        INFO:     Informational observation.
    """

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


# ========================== Core Models ====================================


class Finding(BaseModel):
    """A single observation produced by a drmscan command.

    Attributes:
        severity:       Qualitative severity rating.
        title:          Short, descriptive finding title.
        description:    Detailed explanation of the finding.
        evidence:       Raw data supporting the finding (JSON-encoded if structured).
        recommendation: Suggested next step.
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        extra="ignore",
    )

    severity: Severity = Field(..., description="Severity level of this finding")
    title: str = Field(..., min_length=1, max_length=256, description="Short title")
    description: str = Field(..., min_length=1, description="Detailed explanation")
    evidence: str = Field(default="", description="Supporting evidence")
    recommendation: str = Field(default="", description="Suggested next step")

    @field_validator("evidence", mode="before")
    @classmethod
    def _coerce_evidence(cls, v: Any) -> str:
        """Auto-convert non-string evidence (dict, list) to JSON string."""
        if isinstance(v, str):
            return v
        if isinstance(v, (dict, list)):
            return _json.dumps(v, ensure_ascii=False, default=str)
        return str(v)


class ScanResult(BaseModel):
    """Aggregated result of a single drmscan run.

    Attributes:
        tool_name:  Name of the command that produced the result.
        target:     File or directory that was analysed.
        start_time: UTC timestamp when the run started.
        end_time:   UTC timestamp when the run ended.
        findings:   Individual findings.
        summary:    Human-readable summary text.
        metadata:   Raw analysis payload (descriptor, detector result, ...).
    """

    model_config = ConfigDict(validate_assignment=True, extra="ignore")

    tool_name: str = Field(..., min_length=1)
    target: str = Field(..., min_length=1)
    start_time: _dt.datetime = Field(default_factory=_utcnow)
    end_time: Optional[_dt.datetime] = None
    findings: list[Finding] = Field(default_factory=list)
    summary: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def duration_seconds(self) -> float | None:
        """Elapsed time in seconds, or ``None`` if *end_time* is unset."""
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    @property
    def severity_counts(self) -> dict[str, int]:
        """Count of findings grouped by severity."""
        counts: dict[str, int] = {s.value: 0 for s in Severity}
        for finding in self.findings:
            counts[finding.severity.value] += 1
        return counts

    @property
    def highest_severity(self) -> Severity | None:
        """The most severe finding, or ``None`` when the list is empty."""
        if not self.findings:
            return None
        order = list(Severity)
        return min((f.severity for f in self.findings), key=order.index)

    @property
    def finding_count(self) -> int:
        return len(self.findings)

    def add_finding(self, finding: Finding) -> None:
        """Append a finding to the scan result."""
        self.findings.append(finding)

    def finalize(self, summary: str | None = None) -> ScanResult:
        """Mark the run as complete by setting *end_time* and *summary*.

        If *summary* is ``None`` a default is generated from severity counts.

        Returns:
            ``self`` for fluent chaining.
        """
        self.end_time = _utcnow()
        if summary is not None:
            self.summary = summary
        else:
            parts = [f"{sev}: {cnt}" for sev, cnt in self.severity_counts.items() if cnt]
            self.summary = (
                f"Scan complete. Findings: {len(self.findings)} "
                f"({', '.join(parts) if parts else 'none'})"
            )
        return self
