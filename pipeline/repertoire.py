"""
Repertoire Tree

The player's prepared lines as a Move Tree whose nodes carry membership only.
Lines can be added move list by move list, or imported from PGN files
including every variation.

Usage:
  tree = load_pgn_repertoire("white.pgn")
"""

import logging
import sys
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import TextIO

import chess
import chess.pgn

sys.path.insert(0, str(Path(__file__).resolve().parent))
from errors import InvalidPositionError
from models import RepertoirePayload
from move_tree import MoveTree, TreeNode
from position_key import START_KEY, PositionKey, apply_move, canonicalize

logger = logging.getLogger(__name__)


def new_repertoire(
    root_key: PositionKey = START_KEY, depth_distinct: bool = False
) -> MoveTree[RepertoirePayload]:
    if depth_distinct and root_key.depth is None:
        root_key = root_key.with_depth(0)
    return MoveTree(root_key, RepertoirePayload)


def add_line(tree: MoveTree[RepertoirePayload], moves: Iterable[str]) -> TreeNode[RepertoirePayload]:
    """
    Add a prepared line (SAN or UCI moves) from the root. Returns its last node.

    The whole line is validated before the tree is touched, so an illegal move
    leaves the tree unchanged. Raises IllegalMoveError.
    """
    steps = []
    key = tree.root.key
    for move in moves:
        label, key = apply_move(key, move)
        steps.append((label, key))

    node = tree.root
    for label, key in steps:
        node.payload.is_terminal_prepared = False
        node = tree.get_or_create_child(node, label, key)
    if node.is_leaf:
        node.payload.is_terminal_prepared = True
    return node


def iter_pgn_lines(game: chess.pgn.Game) -> Iterator[list[str]]:
    """Yield every root-to-leaf line of a PGN game as UCI moves, main line first."""
    stack = [(game, [])]
    while stack:
        node, line = stack.pop()
        if not node.variations:
            yield line
            continue
        for variation in reversed(node.variations):
            stack.append((variation, line + [variation.move.uci()]))


def load_pgn_repertoire(
    source: str | Path | TextIO,
    tree: MoveTree[RepertoirePayload] | None = None,
    depth_distinct: bool = False,
) -> MoveTree[RepertoirePayload]:
    """
    Import all games of a PGN file (path or text stream) into a repertoire tree.

    Games that start from another position than the tree root, or that contain
    illegal moves, are skipped with a warning.
    """
    if tree is None:
        tree = new_repertoire(depth_distinct=depth_distinct)
    if isinstance(source, (str, Path)):
        with open(source, encoding="utf-8", errors="replace") as f:
            return load_pgn_repertoire(f, tree)

    root = tree.root.key.without_depth()
    imported = 0
    index = 0
    while True:
        game = chess.pgn.read_game(source)
        if game is None:
            break
        index += 1
        if game.errors:
            logger.warning("Skipping game %d: %s", index, game.errors[0])
            continue
        try:
            start = canonicalize(game.board())
        except InvalidPositionError as e:
            logger.warning("Skipping game %d: %s", index, e)
            continue
        if start != root:
            logger.warning("Skipping game %d: starts from %s, not %s", index, start, root)
            continue
        for line in iter_pgn_lines(game):
            if line:
                add_line(tree, line)
        imported += 1

    logger.info("Imported %d of %d games; repertoire has %d positions", imported, index, len(tree))
    return tree
