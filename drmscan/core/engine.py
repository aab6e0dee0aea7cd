"""
drmscan Analysis Engine
========================

Orchestrates the two drmscan workflows and turns their raw output into
:class:`~scancore.models.ScanResult` objects for the console and report
layers.

Inspection Pipeline (single image):
    1. Parse headers, section table, imports and overlay
    2. Compute per-section entropy (optional)
    3. Search the file for caller-supplied literals
    4. Generate findings

Detection Pipeline (game directory):
    1. Run :class:`DrmDetector` over the installation
    2. Emit one finding per detected protection, rated by its bypass route
    3. Summarise compatibility with a Steam emulator

The parsing core never logs; the engine hands it :meth:`ScanLogger.debug`
as the diagnostic sink so contained failures land in the log.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Sequence, Union

from scancore.config import ScanConfig
from scancore.logger import ScanLogger
from scancore.models import Finding, ScanResult, Severity

from drmscan.analyzers.drm_detector import DrmDetector
from drmscan.analyzers.entropy_map import classify_entropy, compute_section_entropies
from drmscan.analyzers.patterns import contains_pattern
from drmscan.core.models import (
    BypassRecommendation,
    DrmAnalysisResult,
    ImageDescriptor,
    InvalidImage,
    InvalidReason,
    Section,
)
from drmscan.parsers.pe_parser import analyze, describe_characteristics


# ---------------------------------------------------------------------------
# Severity by bypass route
# ---------------------------------------------------------------------------

_BYPASS_SEVERITY: dict[BypassRecommendation, Severity] = {
    BypassRecommendation.NONE: Severity.INFO,
    BypassRecommendation.GOLDBERG: Severity.LOW,
    BypassRecommendation.GOLDBERG_EXPERIMENTAL: Severity.MEDIUM,
    BypassRecommendation.CREAM_API: Severity.MEDIUM,
    BypassRecommendation.MANUAL_PATCH: Severity.HIGH,
    BypassRecommendation.NOT_POSSIBLE: Severity.CRITICAL,
}

_BYPASS_ADVICE: dict[BypassRecommendation, str] = {
    BypassRecommendation.NONE: "No action required.",
    BypassRecommendation.GOLDBERG: "Replace the Steam API DLLs with the Goldberg emulator.",
    BypassRecommendation.GOLDBERG_EXPERIMENTAL: (
        "Try the experimental Goldberg build; the executable may still be bound to Steam."
    ),
    BypassRecommendation.CREAM_API: "Use CreamAPI to unlock DLC ownership checks.",
    BypassRecommendation.MANUAL_PATCH: "Manual analysis and patching of the executable is required.",
    BypassRecommendation.NOT_POSSIBLE: "No practical bypass exists; the game cannot be packaged.",
}


# ---------------------------------------------------------------------------
# DrmScanEngine
# ---------------------------------------------------------------------------

class DrmScanEngine:
    """Runs drmscan inspections and detections.

    Usage::

        engine = DrmScanEngine()
        scan = engine.inspect("game.exe", patterns=["denuvo"])
        print(scan.summary)

    Or with a wall-clock bound::

        scan = await engine.inspect_async("game.exe", timeout=10.0)
    """

    def __init__(
        self,
        config: ScanConfig | None = None,
        logger: ScanLogger | None = None,
    ) -> None:
        """Initialise the engine.

        Args:
            config: drmscan configuration.  Defaults are used if not provided.
            logger: Logger instance.  A new one is created if not provided.
        """
        self._config: ScanConfig = config or ScanConfig()
        self._logger: ScanLogger = logger or ScanLogger("engine")
        self._detector: DrmDetector = DrmDetector(self._config.drmscan, self._logger)

    @property
    def config(self) -> ScanConfig:
        return self._config

    # ------------------------------------------------------------------ #
    #  Single-image inspection
    # ------------------------------------------------------------------ #

    def inspect(
        self,
        path: Union[str, Path],
        patterns: Sequence[str] = (),
    ) -> ScanResult:
        """Parse one image and report its protection signals.

        Args:
            path: PE file to inspect.
            patterns: Extra literals to search for, on top of the
                      configured ``extra_patterns``.

        Returns:
            ScanResult whose metadata holds the image descriptor (or the
            rejection), per-section entropy, and pattern hits.
        """
        target = str(path)
        scan = ScanResult(tool_name="drmscan.inspect", target=target)
        self._logger.info(f"Inspecting {target}")

        try:
            with self._logger.operation("inspect"), self._logger.timed(f"inspect {target}"):
                outcome = analyze(target, self._logger.debug)

                if isinstance(outcome, InvalidImage):
                    scan.metadata = {"invalid_image": outcome.model_dump(mode="json")}
                    scan.add_finding(self._invalid_image_finding(outcome))
                    return scan.finalize(f"Not a PE image: {outcome.detail}")

                entropies = self._section_entropies(outcome)
                hits = self._pattern_hits(outcome, [*self._config.drmscan.extra_patterns, *patterns])

                scan.metadata = {
                    "image": outcome.model_dump(mode="json"),
                    "architecture": outcome.architecture,
                    "section_entropy": [
                        {
                            "name": section.name,
                            "entropy": round(entropy, 4),
                            "classification": classify_entropy(entropy),
                            "flags": describe_characteristics(section.characteristics),
                        }
                        for section, entropy in entropies
                    ],
                    "pattern_hits": hits,
                }
                for finding in self._image_findings(outcome, entropies, hits):
                    scan.add_finding(finding)

            summary = " | ".join([
                f"PE {outcome.architecture}",
                f"Sections: {len(outcome.sections)}",
                f"Libraries: {len(outcome.imported_libraries)}",
                f"Functions: {len(outcome.imported_functions)}",
                f"Overlay: {outcome.overlay_size:,} bytes",
                f"Findings: {scan.finding_count}",
            ])
            scan.finalize(summary)
            self._logger.info(scan.summary)

        except Exception as exc:
            scan.finalize(f"Analysis failed: {exc}")
            self._logger.exception(scan.summary)

        return scan

    async def inspect_async(
        self,
        path: Union[str, Path],
        patterns: Sequence[str] = (),
        timeout: float | None = None,
    ) -> ScanResult:
        """Run :meth:`inspect` in the default executor with a time limit.

        Args:
            path: PE file to inspect.
            patterns: Extra literals to search for.
            timeout: Seconds before giving up; defaults to
                     ``analysis_timeout`` from the configuration.

        Returns:
            The inspection result, or a result whose summary reports the
            timeout.  The worker thread is not interrupted; it finishes in
            the background.
        """
        limit = self._config.drmscan.analysis_timeout if timeout is None else timeout
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(None, self.inspect, path, tuple(patterns)),
                timeout=limit,
            )
        except asyncio.TimeoutError:
            scan = ScanResult(tool_name="drmscan.inspect", target=str(path))
            scan.finalize("Analysis timed out")
            self._logger.error(f"Analysis of {path} timed out after {limit:.1f}s")
            return scan

    # ------------------------------------------------------------------ #
    #  Game-directory detection
    # ------------------------------------------------------------------ #

    def detect(
        self,
        game_path: Union[str, Path],
        main_exe: Union[str, Path, None] = None,
    ) -> ScanResult:
        """Classify the protection of a whole game installation.

        Args:
            game_path: Root folder of the installation.
            main_exe: Executable to analyse first.

        Returns:
            ScanResult with one finding per detected protection and the
            full :class:`DrmAnalysisResult` under ``metadata["drm_analysis"]``.
        """
        target = str(game_path)
        scan = ScanResult(tool_name="drmscan.detect", target=target)

        with self._logger.operation("detect"), self._logger.timed(f"detect {target}"):
            analysis = self._detector.analyze(game_path, main_exe)

        scan.metadata = {
            "drm_analysis": analysis.model_dump(mode="json"),
            "primary_drm": analysis.primary_drm.value,
        }
        for finding in self._drm_findings(analysis):
            scan.add_finding(finding)

        if analysis.analysis_errors:
            summary = f"Analysis incomplete: {'; '.join(analysis.analysis_errors)}"
        else:
            summary = " | ".join([
                f"Primary DRM: {analysis.primary_drm.display_name}",
                f"Executables: {analysis.executables_analyzed}",
                f"Compatibility: {analysis.compatibility_score:.0%}",
                f"Recommendation: {analysis.recommendation.value}",
            ])
        scan.finalize(summary)
        self._logger.info(scan.summary)
        return scan

    # ------------------------------------------------------------------ #
    #  Helpers
    # ------------------------------------------------------------------ #

    def _section_entropies(self, image: ImageDescriptor) -> list[tuple[Section, float]]:
        if not self._config.drmscan.compute_entropy:
            return []
        return compute_section_entropies(image, self._logger.debug)

    def _pattern_hits(self, image: ImageDescriptor, patterns: Sequence[str]) -> dict[str, bool]:
        hits: dict[str, bool] = {}
        for literal in patterns:
            if literal and literal not in hits:
                hits[literal] = contains_pattern(image, literal, True, self._logger.debug)
        return hits

    @staticmethod
    def _invalid_image_finding(invalid: InvalidImage) -> Finding:
        if invalid.reason == InvalidReason.RESOURCE:
            return Finding(
                severity=Severity.HIGH,
                title="File could not be read",
                description=f"{invalid.path}: {invalid.detail or 'unreadable'}",
                evidence={"reason": invalid.reason.value, "detail": invalid.detail},
                recommendation="Check that the file exists and is readable.",
            )
        return Finding(
            severity=Severity.INFO,
            title="Not a PE image",
            description=f"{invalid.path} is not a Portable Executable: {invalid.detail or 'rejected'}",
            evidence={"reason": invalid.reason.value, "detail": invalid.detail},
        )

    def _image_findings(
        self,
        image: ImageDescriptor,
        entropies: list[tuple[Section, float]],
        hits: dict[str, bool],
    ) -> list[Finding]:
        """Findings derived from a parsed image's signals."""
        cfg = self._config.drmscan
        findings: list[Finding] = []

        if image.overlay_size > cfg.large_overlay_bytes:
            findings.append(Finding(
                severity=Severity.MEDIUM,
                title="Large overlay",
                description=(
                    f"{image.overlay_size:,} bytes follow the last section; "
                    "the executable may be packed or carry an embedded payload."
                ),
                evidence={"overlay_size": image.overlay_size, "file_size": image.file_size},
                recommendation="Inspect the overlay before packaging.",
            ))

        high_entropy = [
            (section, entropy) for section, entropy in entropies
            if entropy > cfg.high_entropy_threshold
        ]
        if high_entropy:
            findings.append(Finding(
                severity=Severity.MEDIUM,
                title="High-entropy sections",
                description=(
                    f"{len(high_entropy)} section(s) above entropy "
                    f"{cfg.high_entropy_threshold:.1f}: "
                    + ", ".join(f"{s.name or '<unnamed>'} ({e:.2f})" for s, e in high_entropy[:5])
                ),
                evidence=[
                    {"name": s.name, "entropy": round(e, 4)} for s, e in high_entropy
                ],
                recommendation="Encrypted or compressed code often indicates a protector.",
            ))

        matched = [literal for literal, found in hits.items() if found]
        if matched:
            findings.append(Finding(
                severity=Severity.INFO,
                title="Pattern matches",
                description="Literal(s) found in file: " + ", ".join(matched),
                evidence={"patterns": matched},
            ))

        return findings

    @staticmethod
    def _drm_findings(analysis: DrmAnalysisResult) -> list[Finding]:
        findings: list[Finding] = []
        for drm in analysis.detected:
            bypass = drm.recommended_bypass
            findings.append(Finding(
                severity=_BYPASS_SEVERITY.get(bypass, Severity.HIGH),
                title=f"{drm.display_name} detected",
                description=drm.evidence or drm.display_name,
                evidence={
                    "type": drm.type.value,
                    "confidence": drm.confidence.name,
                    "bypass": bypass.value,
                },
                recommendation=_BYPASS_ADVICE.get(bypass, ""),
            ))
        return findings
