"""
Report Generator

Read-only rankings and summaries over a ScoredTree:
- missing lines (frequent positions absent from the repertoire)
- overprepared lines (prepared positions almost never reached)
- per-classification counts and reach mass
- positions where the player prepares several moves (narrowing / costly)
- average number of full moves the player stays in book
- diff of two ranked snapshots
"""

import sys
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent))
from merge_engine import ScoredTree
from models import Classification, ScoredNode
from position_key import START_KEY, PositionKey


def san_line(path: Iterable[str], start: PositionKey = START_KEY) -> str:
    """Render a UCI move path as numbered SAN, e.g. '1. e4 e5 2. Nf3'."""
    board = start.board()
    moves = [chess.Move.from_uci(uci) for uci in path]
    if not moves:
        return ""
    return board.variation_san(moves)


@dataclass(frozen=True)
class ReportRow:
    """One ranked position: the shape handed to renderers and stored in snapshots."""

    path: tuple[str, ...]
    fen: str
    reach_probability: float
    classification: Classification
    prepared_moves: int = 0

    @property
    def depth(self) -> int:
        return len(self.path)

    @classmethod
    def from_node(cls, node: ScoredNode) -> "ReportRow":
        return cls(
            path=node.path,
            fen=node.key.fen,
            reach_probability=node.reach_probability,
            classification=node.classification,
            prepared_moves=len(node.prepared_moves),
        )

    def to_dict(self) -> dict:
        return {
            "path": list(self.path),
            "fen": self.fen,
            "reach_probability": self.reach_probability,
            "classification": self.classification.value,
            "prepared_moves": self.prepared_moves,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ReportRow":
        return cls(
            path=tuple(data["path"]),
            fen=data["fen"],
            reach_probability=float(data["reach_probability"]),
            classification=Classification(data["classification"]),
            prepared_moves=int(data.get("prepared_moves", 0)),
        )


@dataclass
class ClassSummary:
    count: int = 0
    reach_mass: float = 0.0


@dataclass
class Summary:
    by_classification: dict[Classification, ClassSummary] = field(
        default_factory=lambda: {c: ClassSummary() for c in Classification}
    )
    repertoire_positions: int = 0
    unprepared_positions: int | None = None
    average_book_length: float | None = None


def _rank(rows: list[ReportRow], limit: int | None) -> list[ReportRow]:
    return rows[:limit] if limit is not None else rows


def missing_lines(scored: ScoredTree, limit: int | None = None) -> list[ReportRow]:
    """Missing nodes, most likely first; ties go to the shorter line."""
    rows = [
        ReportRow.from_node(n)
        for n in scored.traverse()
        if n.classification == Classification.MISSING
    ]
    rows.sort(key=lambda r: (-r.reach_probability, r.depth, r.path))
    return _rank(rows, limit)


def overprepared_lines(scored: ScoredTree, limit: int | None = None) -> list[ReportRow]:
    """Overprepared nodes, least likely first."""
    rows = [
        ReportRow.from_node(n)
        for n in scored.traverse()
        if n.classification == Classification.OVERPREPARED
    ]
    rows.sort(key=lambda r: (r.reach_probability, r.depth, r.path))
    return _rank(rows, limit)


def _side(scored: ScoredTree, color: str | None) -> str:
    color = color or scored.config.player_color
    if color not in ("white", "black"):
        raise ValueError("A player color ('white' or 'black') is required")
    return "w" if color == "white" else "b"


def own_positions(scored: ScoredTree, color: str | None = None) -> Iterator[ScoredNode]:
    """
    Positions where the player is to move and is, or just was, in book: prepared
    positions, and database replies to a prepared move.
    """
    side = _side(scored, color)
    stack: list[tuple[ScoredNode | None, ScoredNode]] = [(None, scored.root)]
    while stack:
        parent, node = stack.pop()
        if node.key.side_to_move == side and (
            node.in_repertoire or (parent is not None and parent.in_repertoire)
        ):
            yield node
        stack.extend((node, child) for child in reversed(node.children))


def average_book_length(scored: ScoredTree, color: str | None = None) -> float:
    """Expected number of full moves the player stays within the repertoire."""
    return sum(
        (node.depth // 2) * node.reach_probability
        for node in own_positions(scored, color)
        if not node.prepared_moves
    )


def narrowing_candidates(
    scored: ScoredTree, color: str | None = None, limit: int | None = None
) -> list[ReportRow]:
    """Positions with several prepared moves, ordered by reach per prepared move (ascending)."""
    rows = [ReportRow.from_node(n) for n in own_positions(scored, color) if len(n.prepared_moves) > 1]
    rows.sort(key=lambda r: (r.reach_probability / r.prepared_moves, r.depth, r.path))
    return _rank(rows, limit)


def costly_choices(
    scored: ScoredTree, color: str | None = None, limit: int | None = None
) -> list[ReportRow]:
    """Positions with several prepared moves, ordered by reach x prepared moves (descending)."""
    rows = [ReportRow.from_node(n) for n in own_positions(scored, color) if len(n.prepared_moves) > 1]
    rows.sort(key=lambda r: (-r.reach_probability * r.prepared_moves, r.depth, r.path))
    return _rank(rows, limit)


def summarize(scored: ScoredTree) -> Summary:
    summary = Summary()
    for node in scored.traverse():
        entry = summary.by_classification[node.classification]
        entry.count += 1
        entry.reach_mass += node.reach_probability

    if scored.config.player_color is None:
        summary.repertoire_positions = sum(1 for n in scored.traverse() if n.prepared_moves)
        return summary

    positions = list(own_positions(scored))
    summary.repertoire_positions = sum(1 for n in positions if n.prepared_moves)
    summary.unprepared_positions = sum(1 for n in positions if not n.prepared_moves)
    summary.average_book_length = average_book_length(scored)
    return summary


@dataclass(frozen=True)
class RankChange:
    path: tuple[str, ...]
    old_rank: int
    new_rank: int
    old_reach: float
    new_reach: float


@dataclass
class ReportDiff:
    added: list[ReportRow] = field(default_factory=list)
    resolved: list[ReportRow] = field(default_factory=list)
    rank_changes: list[RankChange] = field(default_factory=list)


def diff_reports(old_rows: list[ReportRow], new_rows: list[ReportRow]) -> ReportDiff:
    """Compare two ranked lists (e.g. missing lines from two database snapshots) by path."""
    old_rank = {row.path: (i, row) for i, row in enumerate(old_rows)}
    new_rank = {row.path: (i, row) for i, row in enumerate(new_rows)}
    diff = ReportDiff()
    diff.added = [row for row in new_rows if row.path not in old_rank]
    diff.resolved = [row for row in old_rows if row.path not in new_rank]
    for path, (i, new_row) in new_rank.items():
        if path not in old_rank:
            continue
        j, old_row = old_rank[path]
        if i != j:
            diff.rank_changes.append(
                RankChange(path, j, i, old_row.reach_probability, new_row.reach_probability)
            )
    diff.rank_changes.sort(key=lambda c: c.new_rank)
    return diff
