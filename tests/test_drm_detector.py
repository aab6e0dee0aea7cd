"""Tests for DRM classification and the compatibility rules."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from scancore.config import DrmScanConfig

from drmscan.analyzers.drm_detector import DrmDetector
from drmscan.core.models import (
    BypassRecommendation,
    DetectedDrm,
    DrmAnalysisResult,
    DrmConfidence,
    DrmType,
    PackageRecommendation,
)


@pytest.fixture
def detector(quiet_logger) -> DrmDetector:
    return DrmDetector(DrmScanConfig(), quiet_logger)


@pytest.fixture
def game_dir(tmp_path):
    path = tmp_path / "Game"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# Compatibility rules
# ---------------------------------------------------------------------------

class TestCompatibility:

    def test_nothing_detected_without_steam(self):
        result = DrmAnalysisResult()
        result.calculate_compatibility()

        assert result.compatibility_score == 1.0
        assert result.is_goldberg_compatible
        assert result.recommendation == PackageRecommendation.DIRECT_COPY
        assert result.compatibility_reason == "No DRM detected - likely compatible"

    def test_nothing_detected_with_steamworks(self):
        result = DrmAnalysisResult(has_steamworks_integration=True)
        result.calculate_compatibility()

        assert result.recommendation == PackageRecommendation.GOLDBERG

    def test_plain_steam(self):
        result = DrmAnalysisResult(has_steamworks_integration=True)
        result.add_drm(DrmType.STEAM_STUB, "Steam API imports in game.exe")
        result.calculate_compatibility()

        assert result.compatibility_score == pytest.approx(0.95)
        assert result.recommendation == PackageRecommendation.GOLDBERG

    def test_steam_ceg(self):
        result = DrmAnalysisResult(has_steamworks_integration=True)
        result.add_drm(DrmType.STEAM_STUB, "imports")
        result.add_drm(DrmType.STEAM_CEG, ".bind")
        result.calculate_compatibility()

        assert result.compatibility_score == pytest.approx(0.7)
        assert result.compatibility_reason.startswith("Steam CEG")

    def test_denuvo_blocks(self):
        result = DrmAnalysisResult(has_steamworks_integration=True)
        result.add_drm(DrmType.STEAM_STUB, "imports")
        result.add_drm(DrmType.DENUVO, "section")
        result.calculate_compatibility()

        assert result.compatibility_score == 0.0
        assert not result.is_goldberg_compatible
        assert result.recommendation == PackageRecommendation.NOT_PACKAGEABLE

    @pytest.mark.parametrize(
        "drm_type", [DrmType.THEMIDA, DrmType.EA_ORIGIN, DrmType.UBISOFT_CONNECT]
    )
    def test_other_blockers(self, drm_type):
        result = DrmAnalysisResult()
        result.add_drm(drm_type, "evidence")
        result.calculate_compatibility()

        assert result.compatibility_score == pytest.approx(0.1)
        assert result.recommendation == PackageRecommendation.NOT_PACKAGEABLE

    def test_vmprotect_needs_review(self):
        result = DrmAnalysisResult()
        result.add_drm(DrmType.VMPROTECT, "section")
        result.calculate_compatibility()

        assert result.compatibility_score == pytest.approx(0.2)
        assert result.recommendation == PackageRecommendation.MANUAL_REVIEW

    def test_score_is_clamped(self):
        result = DrmAnalysisResult(requires_online=True, requires_launcher=True)
        result.add_drm(DrmType.VMPROTECT, "section")
        result.add_drm(DrmType.EPIC_ONLINE_SERVICES, "imports")
        result.calculate_compatibility()

        assert result.compatibility_score == 0.0
        assert result.compatibility_reason.endswith("May require launcher bypass.")

    def test_online_and_launcher_penalties(self):
        result = DrmAnalysisResult(
            has_steamworks_integration=True, requires_online=True, requires_launcher=True
        )
        result.add_drm(DrmType.STEAM_STUB, "imports")
        result.calculate_compatibility()

        assert result.compatibility_score == pytest.approx(0.65)


class TestResultModel:

    def test_first_evidence_wins(self):
        result = DrmAnalysisResult()
        result.add_drm(DrmType.DENUVO, "first", DrmConfidence.HIGH)
        result.add_drm(DrmType.DENUVO, "second")

        assert len(result.detected) == 1
        assert result.detected[0].evidence == "first"
        assert result.detected[0].confidence == DrmConfidence.HIGH

    def test_primary_drm_is_most_restrictive(self):
        result = DrmAnalysisResult()
        assert result.primary_drm == DrmType.NONE

        result.add_drm(DrmType.DENUVO, "x")
        result.add_drm(DrmType.STEAM_STUB, "y")
        assert result.primary_drm == DrmType.DENUVO

    def test_bypass_and_display_name(self):
        drm = DetectedDrm(type=DrmType.STEAM_STUB)

        assert drm.recommended_bypass == BypassRecommendation.GOLDBERG
        assert drm.display_name == "Steam API"
        assert DetectedDrm(type=DrmType.DENUVO).recommended_bypass == BypassRecommendation.NOT_POSSIBLE


# ---------------------------------------------------------------------------
# Executable selection
# ---------------------------------------------------------------------------

class TestFindExecutables:

    def test_helpers_are_skipped_and_launchers_kept(self, game_dir, quiet_logger):
        for name, size in [
            ("big.exe", 5000),
            ("medium.exe", 3000),
            ("unins000.exe", 9000),
            ("vcredist_x64.exe", 9000),
            ("UnityCrashHandler64.exe", 9000),
            ("CrashReporter.exe", 9000),
            ("start_game.exe", 10),
            ("readme.txt", 9000),
        ]:
            (game_dir / name).write_bytes(b"\x00" * size)

        detector = DrmDetector(DrmScanConfig(max_executables=1), quiet_logger)
        found = [p.name for p in detector.find_game_executables(game_dir)]

        assert found == ["big.exe", "start_game.exe"]

    def test_nested_directories_are_searched(self, game_dir, detector):
        nested = game_dir / "Binaries" / "Win64"
        nested.mkdir(parents=True)
        (nested / "Game-Win64-Shipping.exe").write_bytes(b"\x00" * 10)

        found = detector.find_game_executables(game_dir)

        assert [p.name for p in found] == ["Game-Win64-Shipping.exe"]


# ---------------------------------------------------------------------------
# End-to-end classification
# ---------------------------------------------------------------------------

class TestAnalyze:

    def test_empty_directory(self, game_dir, detector):
        result = detector.analyze(game_dir)

        assert result.detected == []
        assert result.executables_analyzed == 0
        assert result.recommendation == PackageRecommendation.DIRECT_COPY

    def test_missing_directory_is_reported(self, tmp_path, detector):
        result = detector.analyze(tmp_path / "missing")

        assert result.analysis_errors
        assert result.detected == []

    def test_steam_api_import(self, game_dir, detector, pe_file, section_spec):
        pe_file(
            "game.exe", game_dir,
            bitness=64,
            sections=[section_spec(".text", b"\xc3" * 32)],
            imports={"steam_api64.dll": ["SteamAPI_Init"]},
        )

        result = detector.analyze(game_dir)

        assert result.has(DrmType.STEAM_STUB)
        assert result.detected[0].evidence == "Steam API imports in game.exe"
        assert result.has_steamworks_integration
        assert result.executables_analyzed == 1
        assert result.compatibility_score == pytest.approx(0.95)

    def test_steam_ceg_bind_section(self, game_dir, detector, pe_file, section_spec):
        pe_file(
            "game.exe", game_dir,
            sections=[section_spec(".text", b"\xc3"), section_spec(".bind", b"\x00" * 16)],
            imports={"steam_api.dll": ["SteamAPI_Init"]},
        )

        result = detector.analyze(game_dir)

        assert result.has(DrmType.STEAM_CEG)
        assert result.primary_drm == DrmType.STEAM_CEG
        assert result.compatibility_score == pytest.approx(0.7)

    def test_denuvo_section(self, game_dir, detector, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".arch", b"\x00" * 16)])

        result = detector.analyze(game_dir)

        assert result.has(DrmType.DENUVO)
        assert not result.is_goldberg_compatible

    def test_denuvo_literal(self, game_dir, detector, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".rdata", b"Irdeto Anti-Tamper")])

        result = detector.analyze(game_dir)

        assert result.has(DrmType.DENUVO)

    def test_denuvo_file_name(self, game_dir, detector):
        (game_dir / "denuvo64.dll").write_bytes(b"\x00")

        result = detector.analyze(game_dir)

        assert result.detected[0].type == DrmType.DENUVO
        assert result.detected[0].evidence == "Denuvo file: denuvo64.dll"

    def test_vmprotect_section(self, game_dir, detector, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".vmp0", b"\x00")])

        result = detector.analyze(game_dir)

        assert result.has(DrmType.VMPROTECT)
        assert result.recommendation == PackageRecommendation.MANUAL_REVIEW

    def test_vmprotect_sdk_import(self, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir, imports={"VMProtectSDK64.dll": ["VMProtectBegin"]})

        assert detector.analyze(game_dir).has(DrmType.VMPROTECT)

    def test_themida_literal(self, game_dir, detector, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".data", b"Themida")])

        result = detector.analyze(game_dir)

        assert result.has(DrmType.THEMIDA)
        assert result.compatibility_score == pytest.approx(0.1)

    def test_securom_cms_file(self, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir)
        (game_dir / "paul.cms").write_bytes(b"\x00")

        assert detector.analyze(game_dir).has(DrmType.SECUROM)

    def test_securom_cms_file_in_upper_case(self, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir)
        (game_dir / "PAUL.CMS").write_bytes(b"\x00")

        assert detector.analyze(game_dir).has(DrmType.SECUROM)

    @pytest.mark.parametrize(
        ("dll", "drm_type"),
        [
            ("EOSSDK-Win64-Shipping.dll", DrmType.EPIC_ONLINE_SERVICES),
            ("EADesktopBridge.dll", DrmType.EA_ORIGIN),
            ("uplay_r1_loader.dll", DrmType.UBISOFT_CONNECT),
        ],
    )
    def test_store_imports(self, game_dir, detector, pe_file, dll, drm_type):
        pe_file("game.exe", game_dir, imports={dll: ["Init"]})

        result = detector.analyze(game_dir)

        assert result.has(drm_type)
        assert result.detected[0].confidence == DrmConfidence.HIGH

    def test_online_only_function(self, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir, imports={"auth.dll": ["Check_OnlineAuthentication"]})

        assert detector.analyze(game_dir).requires_online

    def test_launcher_executable(self, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir, imports={"steam_api.dll": ["SteamAPI_Init"]})
        pe_file("GameLauncher.exe", game_dir)

        result = detector.analyze(game_dir)

        assert result.requires_launcher
        assert "Game may require launcher: gamelauncher.exe" in result.analysis_notes
        assert result.compatibility_score == pytest.approx(0.85)

    def test_steam_dlls_on_disk(self, game_dir, detector):
        (game_dir / "steam_api64.dll").write_bytes(b"\x00")
        bin_dir = game_dir / "bin"
        bin_dir.mkdir()
        (bin_dir / "steamclient64.dll").write_bytes(b"\x00")

        result = detector.analyze(game_dir)

        assert result.has(DrmType.STEAM_STUB)
        assert result.has_steamworks_integration
        assert sorted(Path(p).name for p in result.steam_api_paths) == [
            "steam_api64.dll",
            "steamclient64.dll",
        ]

    def test_large_overlay_note(self, game_dir, quiet_logger, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".text", b"\xc3")], overlay=b"\x00" * 4096)
        detector = DrmDetector(DrmScanConfig(large_overlay_bytes=1024), quiet_logger)

        result = detector.analyze(game_dir)

        assert any("large overlay" in note for note in result.analysis_notes)

    def test_high_entropy_note(self, game_dir, detector, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".enc", os.urandom(8192))])

        result = detector.analyze(game_dir)

        assert any(".enc has entropy" in note for note in result.analysis_notes)

    def test_entropy_can_be_disabled(self, game_dir, quiet_logger, pe_file, section_spec):
        pe_file("game.exe", game_dir, sections=[section_spec(".enc", os.urandom(8192))])
        detector = DrmDetector(DrmScanConfig(compute_entropy=False), quiet_logger)

        assert detector.analyze(game_dir).analysis_notes == []

    def test_main_exe_is_analysed_first(self, tmp_path, game_dir, detector, pe_file):
        pe_file("game.exe", game_dir)
        outside = pe_file("other.exe", tmp_path / "elsewhere", imports={"steam_api.dll": ["X"]})

        result = detector.analyze(game_dir, main_exe=outside)

        assert result.executables_analyzed == 2
        assert result.detected[0].evidence == "Steam API imports in other.exe"

    def test_relative_main_exe_is_not_analysed_twice(self, game_dir, detector, pe_file, monkeypatch):
        pe_file("game.exe", game_dir)
        monkeypatch.chdir(game_dir)

        result = detector.analyze(game_dir, main_exe="game.exe")

        assert result.executables_analyzed == 1

    def test_invalid_executables_are_skipped(self, game_dir, detector):
        (game_dir / "broken.exe").write_bytes(b"MZ" + b"\x00" * 10)

        result = detector.analyze(game_dir)

        assert result.executables_analyzed == 1
        assert result.detected == []
        assert result.analysis_errors == []
