"""
Merge & Propagation Engine

Joins the statistics tree and the repertoire tree into one read-only scored
tree. Both trees are walked in lock-step from the common root; every node
present in either tree gets a path-dependent reach probability and a
classification.

reach(child) = reach(parent) * games(move) / total_games(parent)

When a path has no usable statistics record for a position but the same
position was expanded on another path (a transposition), the walk continues
with that shared record. Reach stays path-dependent.
"""

import logging
import sys
from collections import defaultdict
from collections.abc import Iterator
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import AnalysisConfig
from errors import InconsistentTranspositionError, TreeMismatchError
from models import (
    UNKNOWN_STATUSES,
    Classification,
    ExpansionStatus,
    RepertoirePayload,
    ScoredNode,
    StatsPayload,
)
from move_tree import MoveTree, TreeNode
from position_key import PositionKey

logger = logging.getLogger(__name__)


class ScoredTree:
    """Result of a merge: scored root plus a key index over all path instances."""

    def __init__(self, root: ScoredNode, config: AnalysisConfig, index: dict[PositionKey, list[ScoredNode]]):
        self.root = root
        self.config = config
        self._index = index

    def traverse(self) -> Iterator[ScoredNode]:
        """Pre-order walk, children in merge order."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def find_by_key(self, key: PositionKey) -> list[ScoredNode]:
        return list(self._index.get(key, ()))

    def transpositions(self) -> dict[PositionKey, list[ScoredNode]]:
        """Positions reached by more than one path."""
        return {key: nodes for key, nodes in self._index.items() if len(nodes) > 1}

    def transposition_links(self) -> list[tuple[tuple[str, ...], tuple[str, ...]]]:
        """Pairwise links between paths reaching the same position."""
        links = []
        for nodes in self.transpositions().values():
            for i in range(len(nodes)):
                for j in range(i + 1, len(nodes)):
                    links.append((nodes[i].path, nodes[j].path))
        return links

    def __len__(self) -> int:
        return sum(len(nodes) for nodes in self._index.values())


class _Merger:
    def __init__(
        self,
        stats: MoveTree[StatsPayload],
        repertoire: MoveTree[RepertoirePayload],
        config: AnalysisConfig,
    ):
        self.stats = stats
        self.repertoire = repertoire
        self.config = config
        self.index: dict[PositionKey, list[ScoredNode]] = defaultdict(list)

    def record_source(
        self,
        key: PositionKey,
        s_node: TreeNode[StatsPayload] | None,
        on_path: frozenset[TreeNode[StatsPayload]],
    ) -> TreeNode[StatsPayload] | None:
        """
        Node whose move distribution applies at key: this path's, else a transposition's.

        Records already used above on the current path are skipped, so a line
        repeating an earlier position does not walk into itself.
        """
        if s_node is not None and s_node.payload.has_record:
            return s_node
        candidates = [
            n for n in self.stats.find_by_key(key) if n.payload.has_record and n not in on_path
        ]
        if not candidates:
            return None
        return min(candidates, key=lambda n: (n.depth, n.path))

    def classify(
        self,
        s_node: TreeNode[StatsPayload] | None,
        source: TreeNode[StatsPayload] | None,
        in_repertoire: bool,
        reach: float,
        known: bool,
        repertoire_max_below: float,
    ) -> Classification:
        config = self.config
        if not known:
            return Classification.UNKNOWN
        if s_node is not None and s_node.payload.status in UNKNOWN_STATUSES and source is None:
            return Classification.UNKNOWN
        if in_repertoire:
            if reach <= config.tau_low and repertoire_max_below <= config.tau_low:
                return Classification.OVERPREPARED
            return Classification.COVERED
        if reach >= config.tau_high:
            return Classification.MISSING
        return Classification.NEGLIGIBLE

    def score(
        self,
        key: PositionKey,
        path: tuple[str, ...],
        s_node: TreeNode[StatsPayload] | None,
        r_node: TreeNode[RepertoirePayload] | None,
        reach: float,
        known: bool,
        on_path: frozenset[TreeNode[StatsPayload]] = frozenset(),
    ) -> tuple[ScoredNode, float]:
        """
        Score one path instance and its subtree.

        Returns the scored node and the highest reach among repertoire nodes
        strictly below it.
        """
        if s_node is not None and s_node.payload.status == ExpansionStatus.EMPTY and path:
            reach = 0.0
        source = self.record_source(key, s_node, on_path)
        if source is not None:
            on_path = on_path | {source}
        stats_payload = s_node.payload if s_node is not None else (source.payload if source else None)
        node = ScoredNode(
            key=key,
            path=path,
            reach_probability=reach,
            classification=Classification.UNKNOWN,
            stats=stats_payload,
            repertoire=r_node.payload if r_node is not None else None,
            reach_known=known,
        )
        self.index[key].append(node)

        stats_moves = source.moves if source is not None else []
        rep_moves = r_node.moves if r_node is not None else []
        seen = set(stats_moves)
        moves = stats_moves + [m for m in rep_moves if m not in seen]

        own_turn = (
            self.config.player_side is not None
            and key.side_to_move == self.config.player_side
            and bool(rep_moves)
        )

        repertoire_max_below = 0.0
        for move in moves:
            s_child = source.child(move) if source is not None else None
            r_child = r_node.child(move) if r_node is not None else None
            if s_child is not None and r_child is not None and s_child.key != r_child.key:
                raise InconsistentTranspositionError(path, move, s_child.key, r_child.key)
            child_key = s_child.key if s_child is not None else r_child.key

            if own_turn:
                child_reach = reach / len(rep_moves) if r_child is not None else 0.0
                child_known = known
            elif s_child is not None:
                counts = source.payload
                child_reach = reach * counts.move_counts.get(move, 0) / counts.total_games
                child_known = known
            else:
                # Deviation from known database lines: upper bound only.
                child_reach = reach
                child_known = False

            child, child_max = self.score(
                child_key, path + (move,), s_child, r_child, child_reach, child_known, on_path
            )
            node.children.append(child)
            if child.in_repertoire:
                repertoire_max_below = max(repertoire_max_below, child.reach_probability)
            repertoire_max_below = max(repertoire_max_below, child_max)

        node.classification = self.classify(
            s_node, source, r_node is not None, reach, known, repertoire_max_below
        )
        return node, repertoire_max_below


def merge(
    stats: MoveTree[StatsPayload],
    repertoire: MoveTree[RepertoirePayload],
    config: AnalysisConfig,
) -> ScoredTree:
    """
    Merge a built statistics tree with a repertoire tree. Inputs are not modified.

    Raises TreeMismatchError when the roots differ.
    """
    if stats.root.key != repertoire.root.key:
        raise TreeMismatchError(
            f"Statistics root {stats.root.key} differs from repertoire root {repertoire.root.key}"
        )
    merger = _Merger(stats, repertoire, config)
    root, _ = merger.score(
        stats.root.key, (), stats.root, repertoire.root, config.root_probability, True
    )
    scored = ScoredTree(root, config, dict(merger.index))
    logger.info(
        "Scored %d path instances over %d positions", len(scored), len(merger.index)
    )
    return scored
