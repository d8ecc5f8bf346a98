"""Pytest configuration and shared statistics-source doubles."""

import asyncio
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from errors import DataSourceError
from models import MoveStat, PositionStats, StatsRequest
from position_key import START_KEY, PositionKey, apply_move


def pytest_configure(config):
    config.addinivalue_line(
        "markers", "network: mark test as requiring the live Lichess explorer (skipped by default)"
    )


def key_for_line(line: str) -> PositionKey:
    """Key reached by a space separated SAN line from the start ('' is the start)."""
    key = START_KEY
    for san in line.split():
        _, key = apply_move(key, san)
    return key


def make_record(key: PositionKey, counts: dict[str, int], total: int | None = None) -> PositionStats:
    moves = []
    for san, count in counts.items():
        label, child = apply_move(key, san)
        moves.append(MoveStat(label, child, count))
    if total is None:
        total = sum(counts.values())
    return PositionStats(key=key, total_games=total, moves=tuple(moves))


class FakeSource:
    """
    Async statistics source serving canned records.

    lines maps a SAN line to {san: games}; totals overrides total_games per line;
    failing lines raise DataSourceError; delays (seconds) per line simulate latency.
    """

    def __init__(self, lines, totals=None, failing=(), delays=None):
        totals = totals or {}
        self.records = {}
        for line, counts in lines.items():
            key = key_for_line(line)
            self.records[key] = make_record(key, counts, totals.get(line))
        self.failing = {key_for_line(line) for line in failing}
        self.delays = {key_for_line(line): d for line, d in (delays or {}).items()}
        self.calls: list[StatsRequest] = []
        self.active = 0
        self.peak = 0

    async def __call__(self, request: StatsRequest) -> PositionStats:
        self.calls.append(request)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(self.delays.get(request.key, 0))
            if request.key in self.failing:
                raise DataSourceError(f"boom at {request.key}")
            if request.key not in self.records:
                raise DataSourceError(f"no record for {request.key}")
            return self.records[request.key]
        finally:
            self.active -= 1

    def requested_keys(self) -> list[PositionKey]:
        return [r.key for r in self.calls]


@pytest.fixture
def line_key():
    return key_for_line


@pytest.fixture
def record():
    return make_record


@pytest.fixture
def fake_source():
    return FakeSource
