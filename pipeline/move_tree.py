"""
Move Tree

Append-only ordered tree of positions reachable by sequential moves from a
fixed start. Generic over the payload stored at each node (statistics for
the database tree, membership for the repertoire tree).

Nodes are addressed by their move path from the root. A PositionKey index
(key -> nodes) sits next to the path structure so transposed positions can
be looked up without walking the tree.
"""

import sys
from collections import defaultdict
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, TypeVar

sys.path.insert(0, str(Path(__file__).resolve().parent))
from errors import InconsistentTranspositionError
from position_key import PositionKey

P = TypeVar("P")


@dataclass(frozen=True)
class MoveEdge:
    """Directed edge labeled with a move, from a parent key to a child key."""

    move: str
    parent: PositionKey
    child: PositionKey


class TreeNode(Generic[P]):
    """One visited position. Hashes by identity."""

    __slots__ = ("key", "payload", "path", "_children")

    def __init__(self, key: PositionKey, payload: P, path: tuple[str, ...] = ()):
        self.key = key
        self.payload = payload
        self.path = path
        self._children: dict[str, tuple[MoveEdge, "TreeNode[P]"]] = {}

    @property
    def depth(self) -> int:
        return len(self.path)

    @property
    def children(self) -> list[tuple[MoveEdge, "TreeNode[P]"]]:
        """Children in insertion order."""
        return list(self._children.values())

    @property
    def moves(self) -> list[str]:
        return list(self._children)

    @property
    def is_leaf(self) -> bool:
        return not self._children

    def child(self, move: str) -> "TreeNode[P] | None":
        entry = self._children.get(move)
        return entry[1] if entry else None

    def __repr__(self) -> str:
        line = " ".join(self.path) or "<root>"
        return f"TreeNode({line!r}, {self.key})"


class MoveTree(Generic[P]):
    """Tree rooted at a fixed position, grown by get_or_create_child only."""

    def __init__(self, root_key: PositionKey, payload_factory: Callable[[], P]):
        self._payload_factory = payload_factory
        self.root: TreeNode[P] = TreeNode(root_key, payload_factory())
        self._by_key: dict[PositionKey, list[TreeNode[P]]] = defaultdict(list)
        self._by_key[root_key].append(self.root)
        self._size = 1

    def get_or_create_child(
        self, parent: TreeNode[P], move_label: str, resulting_key: PositionKey
    ) -> TreeNode[P]:
        """
        Return the child of parent reached by move_label, creating it if needed.

        Idempotent for identical arguments. Raises InconsistentTranspositionError
        when the move is already recorded as leading to a different key.
        """
        existing = parent._children.get(move_label)
        if existing is not None:
            edge, node = existing
            if edge.child != resulting_key:
                raise InconsistentTranspositionError(
                    parent.path, move_label, edge.child, resulting_key
                )
            return node

        node = TreeNode(resulting_key, self._payload_factory(), parent.path + (move_label,))
        parent._children[move_label] = (MoveEdge(move_label, parent.key, resulting_key), node)
        self._by_key[resulting_key].append(node)
        self._size += 1
        return node

    def traverse_depth_first(self) -> Iterator[tuple[tuple[str, ...], TreeNode[P]]]:
        """Pre-order walk yielding (path, node); children in insertion order."""
        stack = [self.root]
        while stack:
            node = stack.pop()
            yield node.path, node
            stack.extend(child for _, child in reversed(node.children))

    def find_by_key(self, key: PositionKey) -> set[TreeNode[P]]:
        """All nodes sharing key (one per path). Empty set if never seen."""
        return set(self._by_key.get(key, ()))

    def node_at(self, path: Iterable[str]) -> TreeNode[P] | None:
        node = self.root
        for move in path:
            node = node.child(move)
            if node is None:
                return None
        return node

    def keys(self) -> set[PositionKey]:
        return set(self._by_key)

    def __contains__(self, key: PositionKey) -> bool:
        return key in self._by_key

    def __len__(self) -> int:
        return self._size
