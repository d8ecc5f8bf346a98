"""
FastAPI query API over an exported repertoire analysis

Serves a tree written by `analyze.py --json` (path in REPERTOIRE_ANALYSIS).

Endpoints:
  GET /summary  - Counts and reach mass per classification
  GET /missing?limit=...  - Most frequent positions missing from the repertoire
  GET /overprepared?limit=...  - Least frequent prepared positions
  GET /node/fen/{fen}  - Every path reaching a position (transpositions)
  POST /node/pgn  - Walk the tree by SAN moves
"""

import os
import re
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import chess
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from errors import InvalidPositionError
from export import load_json
from merge_engine import ScoredTree
from models import ScoredNode
from position_key import canonicalize
from report import ReportRow, missing_lines, overprepared_lines, san_line, summarize

app = FastAPI(title="Repertoire Analysis API", version="1.0.0")


class PgnWalkRequest(BaseModel):
    moves: str  # e.g. "1.e4 c5 2.Nf3"


def get_analysis() -> ScoredTree:
    path = os.environ.get("REPERTOIRE_ANALYSIS")
    if not path or not Path(path).exists():
        raise HTTPException(status_code=503, detail="No analysis loaded (set REPERTOIRE_ANALYSIS)")
    return load_json(Path(path))


def row_to_response(row: ReportRow, scored: ScoredTree) -> dict:
    out = row.to_dict()
    out["line"] = san_line(row.path, scored.root.key)
    return out


def node_to_response(node: ScoredNode, scored: ScoredTree) -> dict:
    """Convert a scored node to an API response dict."""
    board = chess.Board(node.key.fen)
    children = []
    for child in node.children:
        children.append({
            "uci": child.move,
            "san": board.san(chess.Move.from_uci(child.move)),
            "reach_probability": child.reach_probability,
            "classification": child.classification.value,
            "in_repertoire": child.in_repertoire,
        })
    return {
        "path": list(node.path),
        "line": san_line(node.path, scored.root.key),
        "fen": node.key.fen,
        "reach_probability": node.reach_probability,
        "reach_known": node.reach_known,
        "classification": node.classification.value,
        "in_repertoire": node.in_repertoire,
        "total_games": node.stats.total_games if node.stats is not None else None,
        "children": children,
    }


@app.get("/summary")
def get_summary():
    scored = get_analysis()
    summary = summarize(scored)
    return {
        "by_classification": {
            c.value: {"count": s.count, "reach_mass": s.reach_mass}
            for c, s in summary.by_classification.items()
        },
        "repertoire_positions": summary.repertoire_positions,
        "unprepared_positions": summary.unprepared_positions,
        "average_book_length": summary.average_book_length,
    }


@app.get("/missing")
def get_missing(limit: int = Query(20, ge=1, le=500)):
    scored = get_analysis()
    return [row_to_response(r, scored) for r in missing_lines(scored, limit)]


@app.get("/overprepared")
def get_overprepared(limit: int = Query(20, ge=1, le=500)):
    scored = get_analysis()
    return [row_to_response(r, scored) for r in overprepared_lines(scored, limit)]


@app.get("/node/fen/{fen:path}")
def get_nodes_by_fen(fen: str):
    """All path instances of a position."""
    fen = fen.replace("_", " ")
    try:
        key = canonicalize(fen)
    except InvalidPositionError as e:
        raise HTTPException(status_code=400, detail=str(e))
    scored = get_analysis()
    nodes = scored.find_by_key(key)
    if not nodes:
        raise HTTPException(status_code=404, detail="Position not in analysis")
    return [node_to_response(n, scored) for n in nodes]


@app.post("/node/pgn")
def walk_pgn(body: PgnWalkRequest):
    """Walk the scored tree by a SAN move sequence, return the final node."""
    moves = re.sub(r"\d+\.(\.\.)?\s*", "", body.moves).split()
    scored = get_analysis()
    board = scored.root.key.board()
    node = scored.root
    for san in moves:
        try:
            uci = board.parse_san(san).uci()
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid move: {san}")
        board.push_uci(uci)
        node = next((c for c in node.children if c.move == uci), None)
        if node is None:
            raise HTTPException(status_code=404, detail="Line not in analysis")
    return node_to_response(node, scored)


@app.get("/health")
def health():
    return {"status": "ok"}
