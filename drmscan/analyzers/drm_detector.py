"""
DRM Detector
=============

Classifies the copy protection of a game installation from the signals
exposed by the PE reader: imported DLLs and functions, section names,
overlay size, section entropy, and literal strings in the file, plus a
handful of well-known files in the game directory.

Detection Pipeline:
    1. Pick the executables worth inspecting (largest first, launchers kept)
    2. Classify each executable from its imports, sections and strings
    3. Look for Steam API DLLs shipped next to the game
    4. Look for DRM trigger files and launcher executables
    5. Score compatibility with a Steam emulator

Every detection records the first piece of evidence that triggered it.
Failures are collected in :attr:`DrmAnalysisResult.analysis_errors`; the
detector itself never raises for a bad game directory.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Union

from scancore.config import DrmScanConfig
from scancore.logger import ScanLogger

from drmscan.analyzers.entropy_map import compute_section_entropies
from drmscan.analyzers.patterns import contains_pattern
from drmscan.core.models import (
    DrmAnalysisResult,
    DrmConfidence,
    DrmType,
    ImageDescriptor,
)
from drmscan.parsers.pe_parser import analyze


# ---------------------------------------------------------------------------
# Signature tables
# ---------------------------------------------------------------------------

# Executables whose lower-cased file name contains one of these are helpers,
# installers or redistributables rather than the game.
_SKIPPED_EXE_FRAGMENTS: tuple[str, ...] = (
    "unins",
    "redist",
    "setup",
    "vcredist",
    "dxsetup",
    "directx",
    "reporter",
)
_SKIPPED_EXE_PREFIXES: tuple[str, ...] = ("crashhandler", "unitycrashhandler")

_LAUNCHER_STEM_FRAGMENTS: tuple[str, ...] = ("launcher", "start")

STEAM_API_DLLS: tuple[str, ...] = ("steam_api.dll", "steam_api64.dll")
STEAM_CLIENT_DLLS: tuple[str, ...] = ("steamclient.dll", "steamclient64.dll")
VMPROTECT_SDK_DLLS: tuple[str, ...] = ("vmprotectsdk32.dll", "vmprotectsdk64.dll")
EOS_DLLS: tuple[str, ...] = ("eossdk-win64-shipping.dll", "eossdk-win32-shipping.dll")
EA_DLLS: tuple[str, ...] = ("origin.dll", "eadesktopbridge.dll")
UBISOFT_DLLS: tuple[str, ...] = ("uplay_r1_loader.dll", "upc.dll")

DENUVO_SECTION_FRAGMENTS: tuple[str, ...] = (".arch", "denuvo")
DENUVO_STRINGS: tuple[str, ...] = ("denuvo", "irdeto")
THEMIDA_SECTION_FRAGMENTS: tuple[str, ...] = ("themida", "winlicen", ".taggant")
THEMIDA_STRINGS: tuple[str, ...] = ("themida", "winlicense")
SECUROM_STRINGS: tuple[str, ...] = ("securom", "sony dadc")

ONLINE_ONLY_INDICATORS: tuple[str, ...] = (
    "onlineauthentication",
    "connectionrequired",
    "offlineprohibited",
)

_MIB: int = 1024 * 1024


# ---------------------------------------------------------------------------
# DrmDetector
# ---------------------------------------------------------------------------

class DrmDetector:
    """Detects DRM and packer protections across a game installation.

    Usage::

        detector = DrmDetector()
        result = detector.analyze("/games/SomeGame")
        print(result.primary_drm.display_name, result.compatibility_score)
    """

    def __init__(
        self,
        config: DrmScanConfig | None = None,
        logger: ScanLogger | None = None,
    ) -> None:
        self._config: DrmScanConfig = config or DrmScanConfig()
        self._logger: ScanLogger = logger or ScanLogger("detector", console_output=False)

    # ------------------------------------------------------------------ #
    #  Public API
    # ------------------------------------------------------------------ #

    def analyze(
        self,
        game_path: Union[str, Path],
        main_exe: Union[str, Path, None] = None,
    ) -> DrmAnalysisResult:
        """Analyse a game installation and collect every DRM signal.

        Args:
            game_path: Root folder of the installation.
            main_exe: Executable to analyse first, if it exists.

        Returns:
            A :class:`DrmAnalysisResult` with compatibility already computed.
        """
        result = DrmAnalysisResult()
        root = Path(game_path)
        if not root.is_dir():
            result.analysis_errors.append(f"Game directory not found: {root}")
            return result

        try:
            executables = self.find_game_executables(root)
            if main_exe is not None and Path(main_exe).is_file():
                main = Path(main_exe).resolve()
                executables = [main] + [exe for exe in executables if exe.resolve() != main]

            result.executables_analyzed = len(executables)
            self._logger.info(f"Analysing {len(executables)} executable(s) under {root}")

            for exe_path in executables:
                self.analyze_executable(exe_path, result)

            self.check_steam_api_presence(root, result)
            self.check_drm_files(root, result)
            result.calculate_compatibility()
        except Exception as exc:
            result.analysis_errors.append(f"Analysis failed: {exc}")
            self._logger.exception(f"DRM analysis of {root} failed")

        return result

    def find_game_executables(self, game_path: Path) -> list[Path]:
        """Executables most likely to carry the game's protection.

        Helpers and installers are skipped; the remainder is ordered by size
        (largest first), truncated to ``max_executables``, and any launcher
        candidates beyond the cut are appended.
        """
        candidates: list[tuple[int, Path]] = []
        try:
            for exe in _walk_files(game_path):
                name = exe.name.lower()
                if not name.endswith(".exe") or _is_helper_executable(name):
                    continue
                try:
                    size = exe.stat().st_size
                except OSError:
                    size = 0
                candidates.append((size, exe))
        except OSError as exc:
            self._logger.error(f"Error finding game executables: {exc}")
            return []

        candidates.sort(key=lambda item: item[0], reverse=True)
        ordered = [exe for _size, exe in candidates]

        selected = ordered[: self._config.max_executables]
        for exe in ordered:
            if _is_launcher_candidate(exe) and exe not in selected:
                selected.append(exe)
        return selected

    def analyze_executable(self, exe_path: Path, result: DrmAnalysisResult) -> None:
        """Add the detections for one executable to *result*."""
        outcome = analyze(exe_path, self._logger.debug)
        if not isinstance(outcome, ImageDescriptor):
            self._logger.debug(f"Skipping {exe_path}: {outcome.detail}")
            return

        pe = outcome
        file_name = exe_path.name

        if _imports_any(pe, STEAM_API_DLLS):
            result.add_drm(
                DrmType.STEAM_STUB, f"Steam API imports in {file_name}", DrmConfidence.HIGH
            )
            result.has_steamworks_integration = True
            if pe.find_section(".bind") is not None:
                result.add_drm(DrmType.STEAM_CEG, f"Steam CEG detected in {file_name}")

        if self._has_denuvo_pattern(pe):
            result.add_drm(DrmType.DENUVO, f"Denuvo Anti-Tamper in {file_name}")

        if _has_vmprotect_pattern(pe):
            result.add_drm(DrmType.VMPROTECT, f"VMProtect in {file_name}")

        if self._has_themida_pattern(pe):
            result.add_drm(DrmType.THEMIDA, f"Themida/WinLicense in {file_name}")

        if self._has_securom_pattern(pe, exe_path):
            result.add_drm(DrmType.SECUROM, f"SecuROM in {file_name}")

        if _imports_any(pe, EOS_DLLS):
            result.add_drm(
                DrmType.EPIC_ONLINE_SERVICES,
                f"Epic Online Services in {file_name}",
                DrmConfidence.HIGH,
            )

        if _imports_any(pe, EA_DLLS):
            result.add_drm(
                DrmType.EA_ORIGIN, f"EA Origin/App in {file_name}", DrmConfidence.HIGH
            )

        if _imports_any(pe, UBISOFT_DLLS):
            result.add_drm(
                DrmType.UBISOFT_CONNECT, f"Ubisoft Connect in {file_name}", DrmConfidence.HIGH
            )

        if _has_online_only_pattern(pe):
            result.requires_online = True

        if pe.overlay_size > self._config.large_overlay_bytes:
            result.analysis_notes.append(
                f"{file_name} has large overlay ({pe.overlay_size // _MIB}MB) - may be packed"
            )

        if self._config.compute_entropy:
            threshold = self._config.high_entropy_threshold
            for section, entropy in compute_section_entropies(pe, self._logger.debug):
                if entropy > threshold:
                    result.analysis_notes.append(
                        f"{file_name} section {section.name or '<unnamed>'} has "
                        f"entropy {entropy:.2f} - may be packed or encrypted"
                    )

    def check_steam_api_presence(self, game_path: Path, result: DrmAnalysisResult) -> None:
        """Record Steam API and Steam client DLLs found on disk.

        Most games load ``steam_api`` dynamically, so a DLL next to the game
        counts as Steamworks integration even without a PE import.
        """
        try:
            files = list(_walk_files(game_path))
        except OSError as exc:
            self._logger.debug(f"Could not scan {game_path} for Steam DLLs: {exc}")
            return

        for dll in STEAM_API_DLLS:
            matches = [str(f) for f in files if f.name.lower() == dll]
            if matches:
                result.steam_api_paths.extend(matches)
                result.has_steamworks_integration = True
                result.add_drm(
                    DrmType.STEAM_STUB, f"Steam API found: {dll}", DrmConfidence.HIGH
                )

        for dll in STEAM_CLIENT_DLLS:
            result.steam_api_paths.extend(str(f) for f in files if f.name.lower() == dll)

    def check_drm_files(self, game_path: Path, result: DrmAnalysisResult) -> None:
        """Detect Denuvo trigger files and launcher executables by name."""
        try:
            for path in _walk_files(game_path):
                name = path.name.lower()
                if "denuvo" in name:
                    result.add_drm(DrmType.DENUVO, f"Denuvo file: {name}")
                if "launcher" in name and name.endswith(".exe"):
                    result.requires_launcher = True
                    result.analysis_notes.append(f"Game may require launcher: {name}")
        except OSError as exc:
            self._logger.debug(f"Could not scan DRM files in {game_path}: {exc}")

    # ------------------------------------------------------------------ #
    #  Pattern checks that read file contents
    # ------------------------------------------------------------------ #

    def _contains_any(self, pe: ImageDescriptor, literals: tuple[str, ...]) -> bool:
        return any(
            contains_pattern(pe, literal, True, self._logger.debug) for literal in literals
        )

    def _has_denuvo_pattern(self, pe: ImageDescriptor) -> bool:
        if _section_name_contains(pe, DENUVO_SECTION_FRAGMENTS):
            return True
        return self._contains_any(pe, DENUVO_STRINGS)

    def _has_themida_pattern(self, pe: ImageDescriptor) -> bool:
        if _section_name_contains(pe, THEMIDA_SECTION_FRAGMENTS):
            return True
        return self._contains_any(pe, THEMIDA_STRINGS)

    def _has_securom_pattern(self, pe: ImageDescriptor, exe_path: Path) -> bool:
        try:
            if any(p.suffix.lower() == ".cms" for p in exe_path.parent.iterdir()):
                return True
        except OSError as exc:
            self._logger.debug(f"Could not list {exe_path.parent}: {exc}")
        return self._contains_any(pe, SECUROM_STRINGS)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _walk_files(root: Path) -> Iterator[Path]:
    """Yield every regular file below *root*, recursively.

    ``os.walk`` swallows per-directory permission errors; a missing root is
    reported as :class:`FileNotFoundError`.
    """
    if not root.is_dir():
        raise FileNotFoundError(f"Game directory not found: {root}")
    for dirpath, _dirnames, filenames in os.walk(root):
        for filename in filenames:
            yield Path(dirpath) / filename


def _is_helper_executable(name: str) -> bool:
    return any(fragment in name for fragment in _SKIPPED_EXE_FRAGMENTS) or name.startswith(
        _SKIPPED_EXE_PREFIXES
    )


def _is_launcher_candidate(exe: Path) -> bool:
    stem = exe.stem.lower()
    return stem == "game" or any(fragment in stem for fragment in _LAUNCHER_STEM_FRAGMENTS)


def _imports_any(pe: ImageDescriptor, dlls: tuple[str, ...]) -> bool:
    return any(pe.imports_library(dll) for dll in dlls)


def _section_name_contains(pe: ImageDescriptor, fragments: tuple[str, ...]) -> bool:
    for section in pe.sections:
        name = section.name.lower()
        if any(fragment in name for fragment in fragments):
            return True
    return False


def _has_vmprotect_pattern(pe: ImageDescriptor) -> bool:
    if _section_name_contains(pe, ("vmp",)):
        return True
    return _imports_any(pe, VMPROTECT_SDK_DLLS)


def _has_online_only_pattern(pe: ImageDescriptor) -> bool:
    return any(
        indicator in function.lower()
        for function in pe.imported_functions
        for indicator in ONLINE_ONLY_INDICATORS
    )
