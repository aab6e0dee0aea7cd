"""Command-line interface tests driven through Click's runner."""

from __future__ import annotations

import json

from click.testing import CliRunner

from drmscan import __version__
from drmscan.cli import cli


def _invoke(*args: str):
    return CliRunner().invoke(cli, ["-q", *args], obj={})


def test_version():
    result = CliRunner().invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert __version__ in result.output


def test_inspect_json(pe_file, section_spec):
    path = pe_file(
        sections=[section_spec(".text", b"\x90" * 64)],
        imports={"KERNEL32.dll": ["ExitProcess"]},
    )

    result = _invoke("inspect", str(path), "--json", "-p", "exitprocess")

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["report_type"] == "drmscan_inspect"
    image = report["analysis"]["image"]
    assert image["bitness"] == 32
    assert "kernel32.dll" in image["imported_libraries"]
    assert report["analysis"]["pattern_hits"] == {"exitprocess": True}


def test_inspect_invalid_image_exits_one(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_bytes(b"plain text, not an executable" * 4)

    result = _invoke("inspect", str(path), "--json")

    assert result.exit_code == 1
    report = json.loads(result.output)
    assert report["analysis"]["invalid_image"]["reason"] == "structural"


def test_inspect_writes_report(pe_file, section_spec, tmp_path):
    path = pe_file(sections=[section_spec(".text", b"\xcc" * 16)])
    out = tmp_path / "reports" / "sample.json"

    result = _invoke("inspect", str(path), "--output", str(out))

    assert result.exit_code == 0, result.output
    saved = json.loads(out.read_text(encoding="utf-8"))
    assert saved["target"] == str(path)


def test_detect_json(pe_file, section_spec, tmp_path):
    game = tmp_path / "game"
    pe_file(
        "Game.exe",
        directory=game,
        sections=[section_spec(".text", b"\x90" * 32)],
        imports={"steam_api64.dll": ["SteamAPI_Init"]},
    )

    result = _invoke("detect", str(game), "--json")

    assert result.exit_code == 0, result.output
    report = json.loads(result.output)
    assert report["report_type"] == "drmscan_detect"
    assert report["analysis"]["primary_drm"] == "steam_stub"


def test_detect_missing_directory_exits_one(tmp_path):
    result = _invoke("detect", str(tmp_path / "nowhere"), "--json")

    assert result.exit_code == 1
    report = json.loads(result.output)
    assert report["analysis"]["drm_analysis"]["analysis_errors"]


def test_detect_table_output(pe_file, section_spec, tmp_path):
    game = tmp_path / "game"
    pe_file("Game.exe", directory=game, sections=[section_spec(".text", b"\x90")])

    result = _invoke("detect", str(game))

    assert result.exit_code == 0, result.output


def test_inspect_json_without_quiet_is_pure_json(pe_file, section_spec):
    path = pe_file(sections=[section_spec(".text", b"\x90" * 16)])

    result = CliRunner().invoke(cli, ["inspect", str(path), "--json"], obj={})

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["target"] == str(path)


def test_detect_json_without_quiet_is_pure_json(pe_file, section_spec, tmp_path):
    game = tmp_path / "game"
    pe_file("Game.exe", directory=game, sections=[section_spec(".text", b"\x90")])

    result = CliRunner().invoke(cli, ["detect", str(game), "--json"], obj={})

    assert result.exit_code == 0, result.output
    assert json.loads(result.stdout)["report_type"] == "drmscan_detect"


def test_table_output_shows_banner(pe_file, section_spec):
    path = pe_file(sections=[section_spec(".text", b"\x90" * 16)])

    result = CliRunner().invoke(cli, ["inspect", str(path)], obj={})

    assert result.exit_code == 0, result.output
    assert "PE/COFF protection signal inspector" in result.stdout
