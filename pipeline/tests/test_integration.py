"""Integration tests for the full pipeline: PGN repertoire -> statistics -> merge -> report"""

import json
import logging
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import AnalysisConfig
from conftest import FakeSource
from export import load_snapshot
from merge_engine import merge
from models import Classification
from repertoire import load_pgn_repertoire
from report import missing_lines, san_line, summarize
from stats_builder import StatsTreeBuilder

WHITE_PGN = "1. e4 e5 2. Nf3 Nc6 3. Bb5 *\n"

DATABASE = {
    "": {"e4": 600, "d4": 400},
    "e4": {"e5": 300, "c5": 250, "a6": 50},
    "d4": {"d5": 400},
    "e4 e5": {"Nf3": 300},
    "e4 c5": {"Nf3": 250},
    "e4 a6": {},
    "d4 d5": {},
    "e4 e5 Nf3": {"Nc6": 200, "Nf6": 100},
    "e4 c5 Nf3": {},
}


@pytest.fixture
def pgn_file(tmp_path):
    path = tmp_path / "white.pgn"
    path.write_text(WHITE_PGN, encoding="utf-8")
    return path


@pytest.mark.asyncio
async def test_full_pipeline_finds_gaps_in_white_repertoire(pgn_file):
    config = AnalysisConfig(epsilon=0.01, tau_high=0.1, max_plies=4, player_color="white")
    repertoire = load_pgn_repertoire(pgn_file)
    source = FakeSource(DATABASE)

    result = await StatsTreeBuilder(source, config).build(repertoire.root.key, repertoire)
    assert result.errors == []
    assert len(source.calls) == 9

    scored = merge(result.tree, repertoire, config)
    missing = missing_lines(scored)
    assert [san_line(r.path) for r in missing] == ["1. e4 c5", "1. e4 e5 2. Nf3 Nf6"]
    assert missing[0].reach_probability == pytest.approx(250 / 600)
    assert missing[1].reach_probability == pytest.approx(0.5 * 100 / 300)

    by_path = {n.path: n for n in scored.traverse()}
    assert by_path[("e2e4",)].reach_probability == 1.0
    assert by_path[("d2d4",)].classification == Classification.NEGLIGIBLE
    assert by_path[("e2e4", "a7a6")].classification == Classification.UNKNOWN
    assert by_path[("e2e4", "e7e5", "g1f3", "b8c6")].classification == Classification.COVERED

    summary = summarize(scored)
    assert summary.by_classification[Classification.MISSING].count == 2
    assert summary.unprepared_positions is not None


@pytest.mark.asyncio
async def test_partial_failure_still_produces_report(pgn_file):
    config = AnalysisConfig(epsilon=0.01, tau_high=0.1, max_plies=4, player_color="white")
    repertoire = load_pgn_repertoire(pgn_file)
    source = FakeSource(DATABASE, failing=["e4 c5"])

    result = await StatsTreeBuilder(source, config).build(repertoire.root.key, repertoire)
    scored = merge(result.tree, repertoire, config)

    assert result.failed_paths == [("e2e4", "c7c5")]
    by_path = {n.path: n for n in scored.traverse()}
    assert by_path[("e2e4", "c7c5")].classification == Classification.UNKNOWN
    assert [r.path for r in missing_lines(scored)] == [("e2e4", "e7e5", "g1f3", "g8f6")]


def run_cli(argv, source):
    import analyze

    with patch.object(sys, "argv", ["analyze.py"] + argv), \
         patch("analyze.LichessExplorer", return_value=source):
        analyze.main()


def test_cli_report_exports_and_snapshot_diff(pgn_file, tmp_path, capsys):
    snapshot = tmp_path / "snapshot.json"
    tree_json = tmp_path / "tree.json"
    common = ["-r", str(pgn_file), "--color", "white", "--epsilon", "0.01",
              "--tau-high", "0.1", "--max-plies", "4"]

    run_cli(common + ["--worst", "5", "--json", str(tree_json), "--snapshot", str(snapshot)],
            FakeSource(DATABASE))
    out = capsys.readouterr().out
    assert "## Repertoire Statistics ##" in out
    assert "1. e4 c5" in out
    assert "Saved 2 ranked lines" in out
    assert json.loads(tree_json.read_text())["root"]["children"][0]["san"] == "e4"
    assert [r.path for r in load_snapshot(snapshot)][0] == ("e2e4", "c7c5")

    changed = dict(DATABASE)
    changed["e4"] = {"e5": 300, "c5": 50, "a6": 250}
    changed["e4 a6"] = {"Nf3": 250}
    changed["e4 a6 Nf3"] = {}
    run_cli(common + ["--previous", str(snapshot)], FakeSource(changed))
    out = capsys.readouterr().out
    assert "## Changes since previous snapshot ##" in out
    assert "new:      1. e4 a6" in out


def test_cli_rejects_inconsistent_thresholds(pgn_file, capsys):
    with pytest.raises(SystemExit) as exc:
        run_cli(["-r", str(pgn_file), "--tau-low", "0.5", "--tau-high", "0.1"], FakeSource(DATABASE))
    assert exc.value.code == 2
    assert "Invalid configuration" in capsys.readouterr().err


def test_resolve_to_files_walks_directories(tmp_path):
    from analyze import log_level, resolve_to_files

    (tmp_path / "sub").mkdir()
    (tmp_path / "a.pgn").write_text("*")
    (tmp_path / "sub" / "b.pgn").write_text("*")
    files = resolve_to_files([tmp_path])
    assert [f.name for f in files] == ["a.pgn", "b.pgn"]
    assert log_level(0) == logging.WARNING
    assert log_level(2) == logging.DEBUG
