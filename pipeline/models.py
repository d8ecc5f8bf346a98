"""Data models for the repertoire analysis pipeline."""

import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import ExplorerFilter
from position_key import PositionKey


class Classification(str, Enum):
    COVERED = "covered"
    MISSING = "missing"
    OVERPREPARED = "overprepared"
    UNKNOWN = "unknown"
    NEGLIGIBLE = "negligible"


class ExpansionStatus(str, Enum):
    UNEXPANDED = "unexpanded"  # reach known, statistics never requested
    EXPANDED = "expanded"
    UNTRUSTED = "untrusted"  # fetched, fewer games than min_games
    EMPTY = "empty"  # fetched, zero games
    PRUNED = "pruned"  # reach below epsilon
    FAILED = "failed"
    CANCELLED = "cancelled"


# Statuses under which the node's own statistics are unusable for classification.
UNKNOWN_STATUSES = frozenset(
    {
        ExpansionStatus.EMPTY,
        ExpansionStatus.PRUNED,
        ExpansionStatus.FAILED,
        ExpansionStatus.CANCELLED,
    }
)


@dataclass(frozen=True)
class MoveStat:
    """One candidate move from a position, as reported by the data source."""

    move: str
    resulting_key: PositionKey
    game_count: int


@dataclass(frozen=True)
class PositionStats:
    """Aggregate move frequencies for one position under the configured filter."""

    key: PositionKey
    total_games: int
    moves: tuple[MoveStat, ...] = ()

    @property
    def move_counts(self) -> dict[str, int]:
        return {m.move: m.game_count for m in self.moves}


@dataclass(frozen=True)
class StatsRequest:
    """Request handed to the statistics data source."""

    key: PositionKey
    path: tuple[str, ...]
    filter: ExplorerFilter

    @property
    def color_to_move(self) -> str:
        return "white" if self.key.side_to_move == "w" else "black"


@dataclass
class StatsPayload:
    """Statistics-tree node payload."""

    total_games: int = 0
    move_counts: dict[str, int] = field(default_factory=dict)
    status: ExpansionStatus = ExpansionStatus.UNEXPANDED
    reach_probability: float = 0.0
    error: str | None = None

    @property
    def has_record(self) -> bool:
        """Statistics for this position were fetched and their move split is usable."""
        return self.status == ExpansionStatus.EXPANDED


@dataclass
class RepertoirePayload:
    """Repertoire-tree node payload: membership only."""

    is_terminal_prepared: bool = False


@dataclass(eq=False)
class ScoredNode:
    """Merged view of one (path, position) with derived reach and classification."""

    key: PositionKey
    path: tuple[str, ...]
    reach_probability: float
    classification: Classification
    stats: StatsPayload | None = None
    repertoire: RepertoirePayload | None = None
    reach_known: bool = True
    children: list["ScoredNode"] = field(default_factory=list)

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def move(self) -> str | None:
        return self.path[-1] if self.path else None

    @property
    def in_repertoire(self) -> bool:
        return self.repertoire is not None

    @property
    def in_statistics(self) -> bool:
        return self.stats is not None

    @property
    def prepared_moves(self) -> list[str]:
        return [c.move for c in self.children if c.in_repertoire]
