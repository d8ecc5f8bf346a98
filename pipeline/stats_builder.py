"""
Statistics Tree Builder

Grows the statistics Move Tree from per-position move-frequency records,
level by level from the starting position. A child is only expanded (its
own record fetched) while its absolute reach probability stays above
epsilon, or when its path belongs to the repertoire being analysed.

Fetches of one level run concurrently, bounded by a semaphore. Children are
inserted after the whole level has completed, in the order the records list
them, so the tree shape never depends on network timing.

A failed fetch marks that branch and the build moves on. A request/time
budget or an explicit cancel() stops new fetches; whatever was built so far
is returned.
"""

import asyncio
import inspect
import logging
import sys
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import AnalysisConfig
from errors import DataSourceError, InconsistentTranspositionError, TreeMismatchError
from models import ExpansionStatus, PositionStats, RepertoirePayload, StatsPayload, StatsRequest
from move_tree import MoveTree, TreeNode
from position_key import START_KEY, PositionKey

logger = logging.getLogger(__name__)

StatsSource = Callable[[StatsRequest], PositionStats | Awaitable[PositionStats]]


@dataclass
class BuildResult:
    """Statistics tree plus everything that went wrong while building it."""

    tree: MoveTree[StatsPayload]
    requests: int = 0
    cancelled: bool = False
    errors: list[Exception] = field(default_factory=list)

    @property
    def failed_paths(self) -> list[tuple[str, ...]]:
        return [
            path
            for path, node in self.tree.traverse_depth_first()
            if node.payload.status == ExpansionStatus.FAILED
        ]


def new_stats_tree(root_key: PositionKey = START_KEY) -> MoveTree[StatsPayload]:
    return MoveTree(root_key, StatsPayload)


def validate_record(record: PositionStats) -> None:
    """Reject records whose counts cannot be turned into probabilities."""
    if record.total_games < 0:
        raise DataSourceError(f"Negative total_games {record.total_games}", record.key)
    for stat in record.moves:
        if stat.game_count < 0 or stat.game_count > record.total_games:
            raise DataSourceError(
                f"Move {stat.move} has {stat.game_count} games out of {record.total_games}",
                record.key,
            )
    played = sum(stat.game_count for stat in record.moves)
    if played > record.total_games:
        logger.warning(
            "Move counts at %s sum to %d, more than total_games %d",
            record.key, played, record.total_games,
        )


def apply_record(
    tree: MoveTree[StatsPayload],
    node: TreeNode[StatsPayload],
    record: PositionStats,
    config: AnalysisConfig,
) -> list[TreeNode[StatsPayload]]:
    """
    Copy a fetched record onto node and create its children.

    Returns the created children (none for empty or untrusted positions).
    Raises InconsistentTranspositionError before touching the tree if the
    record maps one move to two different positions.
    """
    payload = node.payload
    payload.total_games = record.total_games
    if record.total_games == 0:
        payload.status = ExpansionStatus.EMPTY
        return []
    if record.total_games < config.min_games:
        payload.status = ExpansionStatus.UNTRUSTED
        return []

    targets: dict[str, PositionKey] = {}
    for stat in record.moves:
        child_key = (
            stat.resulting_key.with_depth(node.depth + 1)
            if config.depth_distinct
            else stat.resulting_key.without_depth()
        )
        seen = targets.setdefault(stat.move, child_key)
        if seen != child_key:
            raise InconsistentTranspositionError(node.path, stat.move, seen, child_key)

    payload.move_counts = record.move_counts
    children = []
    for stat in record.moves:
        child = tree.get_or_create_child(node, stat.move, targets[stat.move])
        child.payload.reach_probability = (
            payload.reach_probability * stat.game_count / record.total_games
        )
        children.append(child)
    payload.status = ExpansionStatus.EXPANDED
    return children


class StatsTreeBuilder:
    """Builds one statistics tree per build() call from a data source."""

    def __init__(self, source: StatsSource, config: AnalysisConfig):
        self._source = source
        self._source_is_async = inspect.iscoroutinefunction(source) or inspect.iscoroutinefunction(
            getattr(source, "__call__", None)
        )
        self._config = config
        self._records: dict[PositionKey, asyncio.Task] = {}
        self._semaphore: asyncio.Semaphore | None = None
        self._deadline: float | None = None
        self._requests = 0
        self._cancelled = False

    @property
    def requests(self) -> int:
        return self._requests

    def cancel(self) -> None:
        """Stop issuing fetches. The running build returns its partial tree."""
        self._cancelled = True

    def _budget_exhausted(self) -> bool:
        if self._cancelled:
            return True
        config = self._config
        if config.max_requests is not None and self._requests >= config.max_requests:
            logger.warning("Request budget of %d exhausted", config.max_requests)
            self._cancelled = True
        elif self._deadline is not None and time.monotonic() >= self._deadline:
            logger.warning("Time budget of %.1fs exhausted", config.time_budget)
            self._cancelled = True
        return self._cancelled

    async def _request(self, node: TreeNode[StatsPayload]) -> PositionStats | DataSourceError | None:
        """Fetch one record. None means the fetch was never issued (cancelled)."""
        async with self._semaphore:
            if self._budget_exhausted():
                return None
            self._requests += 1
            request = StatsRequest(node.key.without_depth(), node.path, self._config.filter)
            logger.debug("Fetching statistics for %s", " ".join(node.path) or "<root>")
            try:
                if self._source_is_async:
                    record = self._source(request)
                else:
                    # blocking source: keep the event loop free
                    record = await asyncio.to_thread(self._source, request)
                if inspect.isawaitable(record):
                    record = await record
                validate_record(record)
            except DataSourceError as e:
                if e.key is None:
                    e.key = request.key
                return e
            except Exception as e:
                error = DataSourceError(f"Statistics source failed: {e}", request.key)
                error.__cause__ = e
                return error
            return record

    async def _fetch(self, node: TreeNode[StatsPayload]) -> PositionStats | DataSourceError | None:
        # Transposed positions share one request and one record.
        memo_key = node.key.without_depth()
        task = self._records.get(memo_key)
        if task is None:
            task = asyncio.create_task(self._request(node))
            self._records[memo_key] = task
        return await task

    def _should_expand(self, child: TreeNode[StatsPayload], in_repertoire: bool) -> bool:
        config = self._config
        if config.max_plies is not None and child.depth >= config.max_plies:
            return False
        return in_repertoire or child.payload.reach_probability > config.epsilon

    def _settle(
        self,
        tree: MoveTree[StatsPayload],
        node: TreeNode[StatsPayload],
        rep_node: TreeNode[RepertoirePayload] | None,
        outcome: PositionStats | DataSourceError | None,
        result: BuildResult,
    ) -> list[tuple[TreeNode[StatsPayload], TreeNode[RepertoirePayload] | None]]:
        """Record a fetch outcome on node and return the children to expand next."""
        payload = node.payload
        line = " ".join(node.path) or "<root>"
        if outcome is None:
            payload.status = ExpansionStatus.CANCELLED
            return []
        if isinstance(outcome, DataSourceError):
            payload.status = ExpansionStatus.FAILED
            payload.error = str(outcome)
            # transposed nodes share one memoized failure
            if not any(e is outcome for e in result.errors):
                result.errors.append(outcome)
            logger.warning("Statistics unavailable for %s: %s", line, outcome)
            return []

        try:
            children = apply_record(tree, node, outcome, self._config)
        except InconsistentTranspositionError as e:
            payload.status = ExpansionStatus.FAILED
            payload.error = str(e)
            result.errors.append(e)
            logger.error("Corrupt statistics for %s: %s", line, e)
            return []

        if payload.status == ExpansionStatus.EMPTY:
            logger.info("No games reach %s", line)

        expand = []
        for child in children:
            rep_child = rep_node.child(child.path[-1]) if rep_node is not None else None
            if self._should_expand(child, rep_child is not None):
                expand.append((child, rep_child))
            elif child.payload.reach_probability <= self._config.epsilon:
                child.payload.status = ExpansionStatus.PRUNED
        return expand

    async def build(
        self,
        root_key: PositionKey = START_KEY,
        repertoire: MoveTree[RepertoirePayload] | None = None,
    ) -> BuildResult:
        """
        Build the statistics tree from root_key.

        Paths present in repertoire are expanded whatever their reach.
        Raises TreeMismatchError if repertoire is rooted elsewhere.
        """
        config = self._config
        if config.depth_distinct and root_key.depth is None:
            root_key = root_key.with_depth(0)
        if repertoire is not None and repertoire.root.key != root_key:
            raise TreeMismatchError(
                f"Repertoire root {repertoire.root.key} differs from statistics root {root_key}"
            )

        tree = new_stats_tree(root_key)
        tree.root.payload.reach_probability = config.root_probability
        result = BuildResult(tree)

        self._records = {}
        self._requests = 0
        self._cancelled = False
        self._semaphore = asyncio.Semaphore(config.max_concurrency)
        self._deadline = (
            time.monotonic() + config.time_budget if config.time_budget is not None else None
        )

        frontier = [(tree.root, repertoire.root if repertoire is not None else None)]
        ply = 0
        while frontier:
            logger.info("Expanding %d positions at ply %d", len(frontier), ply)
            outcomes = await asyncio.gather(*(self._fetch(node) for node, _ in frontier))
            next_frontier = []
            for (node, rep_node), outcome in zip(frontier, outcomes):
                next_frontier.extend(self._settle(tree, node, rep_node, outcome, result))
            frontier = next_frontier
            ply += 1

        result.requests = self._requests
        result.cancelled = self._cancelled
        logger.info(
            "Statistics tree: %d nodes, %d requests, %d errors%s",
            len(tree), self._requests, len(result.errors),
            " (cancelled)" if self._cancelled else "",
        )
        return result


def build_stats_tree(
    source: StatsSource,
    config: AnalysisConfig,
    root_key: PositionKey = START_KEY,
    repertoire: MoveTree[RepertoirePayload] | None = None,
) -> BuildResult:
    """Synchronous wrapper around StatsTreeBuilder.build."""
    return asyncio.run(StatsTreeBuilder(source, config).build(root_key, repertoire))
