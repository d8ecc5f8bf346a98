"""
Export of scored trees and ranked lines

Formats: json (nested scored tree), csv (one row per scored node),
pgn (ranked lines as variations), snapshot (ranked rows for later diffing)
"""

import csv
import json
import sys
from collections import defaultdict
from dataclasses import asdict
from pathlib import Path

import chess
import chess.pgn

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import AnalysisConfig, ExplorerFilter
from merge_engine import ScoredTree
from models import Classification, ExpansionStatus, RepertoirePayload, ScoredNode, StatsPayload
from position_key import PositionKey, canonicalize
from report import ReportRow, san_line

SNAPSHOT_VERSION = 1


def node_to_dict(node: ScoredNode, board: chess.Board) -> dict:
    """Convert a scored node and its subtree; board is the position before node.move."""
    out = {
        "fen": node.key.fen,
        "reach_probability": node.reach_probability,
        "classification": node.classification.value,
        "in_repertoire": node.in_repertoire,
    }
    if node.move is not None:
        move = chess.Move.from_uci(node.move)
        out["uci"] = node.move
        out["san"] = board.san(move)
        board.push(move)
    if not node.reach_known:
        out["reach_upper_bound"] = True
    if node.stats is not None:
        out["total_games"] = node.stats.total_games
        out["status"] = node.stats.status.value
    if node.repertoire is not None and node.repertoire.is_terminal_prepared:
        out["terminal"] = True
    if node.children:
        out["children"] = [node_to_dict(child, board) for child in node.children]
    if node.move is not None:
        board.pop()
    return out


def export_json(scored: ScoredTree, output_path: Path) -> int:
    """Write the nested scored tree. Returns the number of nodes written."""
    data = {
        "root": node_to_dict(scored.root, scored.root.key.board()),
        "config": asdict(scored.config),
    }
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return len(scored)


def node_from_dict(
    data: dict, path: tuple[str, ...], index: dict, depth_distinct: bool = False
) -> ScoredNode:
    """Rebuild a scored node and its subtree from node_to_dict output."""
    stats = None
    if "status" in data:
        stats = StatsPayload(
            total_games=data.get("total_games", 0), status=ExpansionStatus(data["status"])
        )
    repertoire = None
    if data.get("in_repertoire"):
        repertoire = RepertoirePayload(is_terminal_prepared=data.get("terminal", False))
    node = ScoredNode(
        key=canonicalize(data["fen"], depth=len(path) if depth_distinct else None),
        path=path,
        reach_probability=data["reach_probability"],
        classification=Classification(data["classification"]),
        stats=stats,
        repertoire=repertoire,
        reach_known=not data.get("reach_upper_bound", False),
    )
    index[node.key].append(node)
    node.children = [
        node_from_dict(child, path + (child["uci"],), index, depth_distinct)
        for child in data.get("children", [])
    ]
    return node


def config_from_dict(data: dict) -> AnalysisConfig:
    values = dict(data)
    explorer_filter = values.pop("filter", None)
    if explorer_filter is not None:
        explorer_filter = dict(explorer_filter)
        explorer_filter["time_controls"] = tuple(explorer_filter["time_controls"])
        values["filter"] = ExplorerFilter(**explorer_filter)
    return AnalysisConfig(**values)


def load_json(path: Path) -> ScoredTree:
    """Read a tree written by export_json back into a ScoredTree."""
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    config = config_from_dict(data["config"])
    index = defaultdict(list)
    root = node_from_dict(data["root"], (), index, config.depth_distinct)
    return ScoredTree(root, config, dict(index))


def export_csv(scored: ScoredTree, output_path: Path) -> int:
    """Export all scored nodes to CSV, pre-order."""
    fields = ["path", "line", "fen", "depth", "reach_probability", "classification",
              "in_repertoire", "total_games", "status"]
    start = scored.root.key
    count = 0
    with open(output_path, "w", encoding="utf-8", newline="") as f:
        w = csv.writer(f)
        w.writerow(fields)
        for node in scored.traverse():
            w.writerow([
                " ".join(node.path),
                san_line(node.path, start),
                node.key.fen,
                node.depth,
                f"{node.reach_probability:.8f}",
                node.classification.value,
                node.in_repertoire,
                node.stats.total_games if node.stats is not None else "",
                node.stats.status.value if node.stats is not None else "",
            ])
            count += 1
    return count


def rows_to_game(rows: list[ReportRow], start: PositionKey, event: str) -> chess.pgn.Game:
    """Merge ranked lines into one game; the first row becomes the main line."""
    game = chess.pgn.Game.from_board(start.board())
    game.headers["Event"] = event
    game.headers["Result"] = "*"
    for row in rows:
        node = game
        for uci in row.path:
            move = chess.Move.from_uci(uci)
            if node.has_variation(move):
                node = node.variation(move)
            else:
                node = node.add_variation(move)
        node.comment = f"{row.classification.value} {row.reach_probability:.4%}"
    return game


def export_pgn(rows: list[ReportRow], output_path: Path, start: PositionKey, event: str) -> int:
    """Write ranked lines as a PGN study. Returns the number of lines written."""
    game = rows_to_game(rows, start, event)
    with open(output_path, "w", encoding="utf-8") as f:
        print(game, file=f, end="\n\n")
    return len(rows)


def write_snapshot(rows: list[ReportRow], output_path: Path) -> int:
    with open(output_path, "w", encoding="utf-8") as f:
        json.dump({"version": SNAPSHOT_VERSION, "rows": [r.to_dict() for r in rows]}, f, indent=2)
    return len(rows)


def load_snapshot(path: Path) -> list[ReportRow]:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    if data.get("version") != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version {data.get('version')!r} in {path}")
    return [ReportRow.from_dict(r) for r in data["rows"]]
