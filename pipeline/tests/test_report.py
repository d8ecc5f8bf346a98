"""Tests for report.py"""

import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from config import AnalysisConfig
from conftest import FakeSource
from merge_engine import merge
from models import Classification
from position_key import START_KEY
from repertoire import add_line, new_repertoire
from report import (
    ReportRow,
    average_book_length,
    costly_choices,
    diff_reports,
    missing_lines,
    narrowing_candidates,
    overprepared_lines,
    own_positions,
    san_line,
    summarize,
)
from stats_builder import build_stats_tree


def analyse(lines, repertoire_lines=(), **config_kwargs):
    config = AnalysisConfig(**config_kwargs)
    repertoire = new_repertoire()
    for line in repertoire_lines:
        add_line(repertoire, line.split())
    stats = build_stats_tree(FakeSource(lines), config, START_KEY, repertoire).tree
    return merge(stats, repertoire, config)


def row(path, reach, classification=Classification.MISSING):
    return ReportRow(path=tuple(path), fen=START_KEY.fen, reach_probability=reach, classification=classification)


def test_san_line():
    assert san_line(("e2e4", "e7e5", "g1f3")) == "1. e4 e5 2. Nf3"
    assert san_line(()) == ""


def test_missing_lines_most_frequent_first():
    scored = analyse(
        {
            "": {"e4": 500, "d4": 300, "c4": 200},
            "e4": {"e5": 300, "c5": 200},
            "d4": {"d5": 300},
            "c4": {"e5": 200},
        },
        epsilon=0.01, tau_high=0.1, max_plies=2,
    )
    rows = missing_lines(scored)
    assert rows[0].path == ("e2e4",)
    assert rows[1].path == ("d2d4",)
    reaches = [r.reach_probability for r in rows]
    assert reaches == sorted(reaches, reverse=True)
    assert all(r.classification == Classification.MISSING for r in rows)
    assert len(missing_lines(scored, 2)) == 2


def test_equal_reach_prefers_shorter_line():
    scored = analyse(
        {"": {"e4": 500, "d4": 500}, "e4": {"e5": 500}, "d4": {"d5": 500}},
        repertoire_lines=["e4"],
        epsilon=0.01, tau_high=0.1, max_plies=2,
    )
    rows = missing_lines(scored)
    # all three are reached half the time
    assert [r.path for r in rows] == [("d2d4",), ("d2d4", "d7d5"), ("e2e4", "e7e5")]


def test_overprepared_lines_least_frequent_first():
    scored = analyse(
        {"": {"e4": 9980, "a3": 5, "h3": 15}, "e4": {"e5": 9980}, "a3": {"e5": 5}, "h3": {"e5": 15}},
        repertoire_lines=["a3", "h3"],
        epsilon=0.0001, tau_low=0.002, max_plies=2,
    )
    rows = overprepared_lines(scored)
    assert [r.path for r in rows] == [("a2a3",), ("h2h3",)]
    assert rows[0].reach_probability == pytest.approx(0.0005)


def test_summarize_counts_and_reach_mass():
    scored = analyse(
        {"": {"e4": 600, "d4": 400}},
        repertoire_lines=["d4"],
        epsilon=0.01, tau_high=0.5, max_plies=1,
    )
    summary = summarize(scored)
    assert summary.by_classification[Classification.MISSING].count == 1
    assert summary.by_classification[Classification.MISSING].reach_mass == pytest.approx(0.6)
    assert summary.by_classification[Classification.COVERED].count == 2
    assert summary.repertoire_positions == 1
    assert summary.average_book_length is None


BOOK = {
    "": {"e4": 1000},
    "e4": {"e5": 600, "c5": 400},
    "e4 e5": {"Nf3": 600},
    "e4 c5": {"Nf3": 400},
}


def test_own_positions_and_average_book_length():
    scored = analyse(BOOK, repertoire_lines=["e4 e5 Nf3"], player_color="white", epsilon=0.01, max_plies=3)

    paths = {n.path for n in own_positions(scored)}
    assert paths == {(), ("e2e4", "e7e5"), ("e2e4", "c7c5")}
    # out of book after 1. e4 c5 (one full move) 40% of the time
    assert average_book_length(scored) == pytest.approx(0.4)

    summary = summarize(scored)
    assert summary.repertoire_positions == 2
    assert summary.unprepared_positions == 1
    assert summary.average_book_length == pytest.approx(0.4)


def test_own_positions_requires_a_color():
    scored = analyse(BOOK, repertoire_lines=["e4"], epsilon=0.01, max_plies=1)
    with pytest.raises(ValueError):
        list(own_positions(scored))
    assert {n.path for n in own_positions(scored, "white")} == {()}


CHOICES = {
    "": {"e4": 500, "d4": 300, "c4": 200},
    "e4": {"e5": 500},
    "d4": {"d5": 300},
    "c4": {"e5": 200},
    "e4 e5": {"Nf3": 400, "Nc3": 100},
    "d4 d5": {"c4": 300},
    "c4 e5": {"Nc3": 200},
}


def test_narrowing_and_costly_choices():
    scored = analyse(
        CHOICES,
        repertoire_lines=["e4 e5 Nf3", "e4 e5 Nc3", "d4"],
        player_color="white", epsilon=0.01, max_plies=3,
    )

    narrowing = narrowing_candidates(scored)
    assert [r.path for r in narrowing] == [("e2e4", "e7e5"), ()]
    assert narrowing[0].prepared_moves == 2

    costly = costly_choices(scored)
    assert [r.path for r in costly] == [(), ("e2e4", "e7e5")]
    assert costly_choices(scored, limit=1)[0].path == ()


def test_diff_reports():
    a, b, c, d = row(["e2e4"], 0.5), row(["d2d4"], 0.3), row(["c2c4"], 0.1), row(["g1f3"], 0.05)
    diff = diff_reports([a, b, c], [b, a, d])

    assert diff.added == [d]
    assert diff.resolved == [c]
    assert [(ch.path, ch.old_rank, ch.new_rank) for ch in diff.rank_changes] == [
        (("d2d4",), 1, 0),
        (("e2e4",), 0, 1),
    ]


def test_report_row_dict_round_trip():
    original = ReportRow(("e2e4",), START_KEY.fen, 0.25, Classification.OVERPREPARED, 2)
    assert ReportRow.from_dict(original.to_dict()) == original
