"""Immutable configuration values threaded through every analysis call."""

from dataclasses import dataclass, field
from typing import Literal

DEFAULT_TIME_CONTROLS = ("blitz", "rapid", "classical")


@dataclass(frozen=True)
class ExplorerFilter:
    """Database filter. Opaque to the tree builder, forwarded with every request."""

    time_controls: tuple[str, ...] = DEFAULT_TIME_CONTROLS
    rating_min: int | None = None
    rating_max: int | None = None

    def __post_init__(self):
        if (
            self.rating_min is not None
            and self.rating_max is not None
            and self.rating_min > self.rating_max
        ):
            raise ValueError(f"rating_min {self.rating_min} > rating_max {self.rating_max}")


@dataclass(frozen=True)
class AnalysisConfig:
    """
    Thresholds, limits and filter for one analysis run.

    epsilon       expansion threshold on absolute reach probability
    tau_high      reach at or above which an unprepared position is Missing
    tau_low       reach at or below which a prepared position is Overprepared
    min_games     positions with fewer games do not get their move split trusted
    """

    epsilon: float = 0.0005
    tau_high: float = 0.01
    tau_low: float = 0.001
    min_games: int = 0
    filter: ExplorerFilter = field(default_factory=ExplorerFilter)
    max_concurrency: int = 4
    max_requests: int | None = None
    time_budget: float | None = None
    max_plies: int | None = None
    root_probability: float = 1.0
    depth_distinct: bool = False
    player_color: Literal["white", "black"] | None = None

    def __post_init__(self):
        for name in ("epsilon", "tau_high", "tau_low", "root_probability"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {value}")
        if self.tau_low > self.tau_high:
            raise ValueError(f"tau_low {self.tau_low} > tau_high {self.tau_high}")
        if self.min_games < 0:
            raise ValueError("min_games must be non-negative")
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        if self.max_requests is not None and self.max_requests < 0:
            raise ValueError("max_requests must be non-negative")
        if self.player_color not in (None, "white", "black"):
            raise ValueError(f"player_color must be 'white' or 'black', got {self.player_color!r}")

    @property
    def player_side(self) -> str | None:
        """Player color as a FEN side-to-move letter."""
        if self.player_color is None:
            return None
        return "w" if self.player_color == "white" else "b"
