#!/usr/bin/env python3
"""
Repertoire analysis against the Lichess opening explorer

Builds the repertoire tree from PGN files, expands database statistics around
it, merges both and prints the most important gaps and the least useful
preparation.

Usage:
  python analyze.py -r white.pgn --color white --best 10 --worst 5
  python analyze.py -r repertoire/ --color black --snapshot now.json --previous last.json
  LICHESS_TOKEN=xxx python analyze.py -r white.pgn  # for higher rate limit
"""

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path

import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import DEFAULT_TIME_CONTROLS, AnalysisConfig, ExplorerFilter
from errors import RepertoireAnalysisError
from export import export_csv, export_json, export_pgn, load_snapshot, write_snapshot
from lichess_explorer import LichessExplorer, lichess_token
from merge_engine import ScoredTree, merge
from models import Classification, RepertoirePayload
from move_tree import MoveTree
from position_key import PositionKey
from repertoire import load_pgn_repertoire, new_repertoire
from report import (
    ReportRow,
    costly_choices,
    diff_reports,
    missing_lines,
    narrowing_candidates,
    overprepared_lines,
    san_line,
    summarize,
)
from stats_builder import BuildResult, StatsTreeBuilder

logger = logging.getLogger(__name__)


def log_level(verbosity: int) -> int:
    if verbosity <= 0:
        return logging.WARNING
    if verbosity == 1:
        return logging.INFO
    return logging.DEBUG


def resolve_to_files(paths: list[Path]) -> list[Path]:
    """Expand directories into the files they contain, recursively."""
    files = []
    for path in paths:
        if path.is_dir():
            logger.info("'%s' is a directory; importing all files from within", path)
            files.extend(resolve_to_files(sorted(path.iterdir())))
        else:
            files.append(path)
    return files


def config_from_args(args: argparse.Namespace) -> AnalysisConfig:
    return AnalysisConfig(
        epsilon=args.epsilon,
        tau_high=args.tau_high,
        tau_low=args.tau_low,
        min_games=args.min_games,
        filter=ExplorerFilter(
            time_controls=tuple(s for s in args.speeds.split(",") if s),
            rating_min=args.rating_min,
            rating_max=args.rating_max,
        ),
        max_concurrency=args.concurrency,
        max_requests=args.max_requests,
        time_budget=args.time_budget,
        max_plies=args.max_plies,
        player_color=args.color,
    )


def load_repertoire(paths: list[Path]) -> MoveTree[RepertoirePayload]:
    tree = new_repertoire()
    for path in resolve_to_files(paths):
        if not path.exists():
            print(f"Warning: {path} not found", file=sys.stderr)
            continue
        load_pgn_repertoire(path, tree)
    return tree


def format_row(row: ReportRow, start: PositionKey) -> str:
    odds = f"once in ~{1 / row.reach_probability:.0f} games" if row.reach_probability > 0 else "never"
    line = san_line(row.path, start) or "<start>"
    return f"{line}\n    reached {row.reach_probability:.4%} ({odds})\n    {row.fen}"


def print_section(title: str, hint: str, rows: list[ReportRow], start: PositionKey) -> None:
    print()
    print(f"## {title} ##")
    print(hint)
    print()
    for row in rows:
        print(format_row(row, start))
        if row.prepared_moves > 1:
            print(f"    {row.prepared_moves} moves prepared")


def print_report(scored: ScoredTree, result: BuildResult, args: argparse.Namespace) -> None:
    start = scored.root.key
    summary = summarize(scored)

    print()
    print("## Repertoire Statistics ##")
    print(f"Statistics requests: {result.requests}" + (" (budget exhausted)" if result.cancelled else ""))
    for classification in Classification:
        entry = summary.by_classification[classification]
        print(f"{classification.value:>13}: {entry.count:6d} positions, reach mass {entry.reach_mass:.4f}")
    print(f"Your repertoire spans {summary.repertoire_positions} positions")
    if summary.average_book_length is not None:
        print(f"Average moves you stay in book per game: {summary.average_book_length:.5f}")
        print(f"You have {summary.unprepared_positions} unprepared positions")
    failed = result.failed_paths
    if failed:
        print(f"{len(failed)} branches could not be analysed (classified unknown):")
        for path in failed:
            print(f"    {san_line(path, start) or '<start>'}")

    if args.best > 0:
        print_section(
            "Positions you are most likely to encounter where you are out-of-book",
            "Consider adding these to your repertoire",
            missing_lines(scored, args.best), start,
        )
    if args.worst > 0:
        print_section(
            "Positions you are least likely to encounter where you have a line prepared",
            "Consider removing these from your repertoire",
            overprepared_lines(scored, args.worst), start,
        )
    if scored.config.player_color is not None:
        if args.most > 0:
            print_section(
                "Positions where your prepared moves are least likely to be used",
                "Consider reducing the number of different moves you play here",
                narrowing_candidates(scored, limit=args.most), start,
            )
        if args.costly > 0:
            print_section(
                "Most frequent positions where you have more than one move prepared",
                "Reducing your options here would reduce your workload the most",
                costly_choices(scored, limit=args.costly), start,
            )


def print_diff(previous: list[ReportRow], current: list[ReportRow], start: PositionKey) -> None:
    diff = diff_reports(previous, current)
    print()
    print("## Changes since previous snapshot ##")
    for row in diff.added:
        print(f"  new:      {san_line(row.path, start)} ({row.reach_probability:.4%})")
    for row in diff.resolved:
        print(f"  resolved: {san_line(row.path, start)}")
    for change in diff.rank_changes:
        print(
            f"  moved:    {san_line(change.path, start)} "
            f"#{change.old_rank + 1} -> #{change.new_rank + 1}"
        )


async def analyze(config: AnalysisConfig, repertoire: MoveTree[RepertoirePayload]) -> tuple[ScoredTree, BuildResult]:
    async with httpx.AsyncClient(timeout=30.0) as session:
        explorer = LichessExplorer(session, token=lichess_token())
        builder = StatsTreeBuilder(explorer, config)
        result = await builder.build(repertoire.root.key, repertoire)
    return merge(result.tree, repertoire, config), result


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Find gaps and overpreparation in an opening repertoire")
    parser.add_argument("-r", "--repertoire", type=Path, nargs="+", required=True,
                        help="PGN files or directories with your repertoire")
    parser.add_argument("--color", choices=["white", "black"], default=None,
                        help="Side the repertoire is played with")
    parser.add_argument("--epsilon", type=float, default=0.0005)
    parser.add_argument("--tau-high", type=float, default=0.01)
    parser.add_argument("--tau-low", type=float, default=0.001)
    parser.add_argument("--min-games", type=int, default=0)
    parser.add_argument("--speeds", default=",".join(DEFAULT_TIME_CONTROLS))
    parser.add_argument("--rating-min", type=int, default=None)
    parser.add_argument("--rating-max", type=int, default=None)
    parser.add_argument("--concurrency", type=int, default=4)
    parser.add_argument("--max-requests", type=int, default=None)
    parser.add_argument("--time-budget", type=float, default=None, help="Seconds")
    parser.add_argument("--max-plies", type=int, default=None)
    parser.add_argument("--best", type=int, default=10, help="Missing positions to show")
    parser.add_argument("--worst", type=int, default=0, help="Overprepared positions to show")
    parser.add_argument("--most", type=int, default=0, help="Positions with many prepared moves to show")
    parser.add_argument("--costly", type=int, default=0, help="Expensive choices to show")
    parser.add_argument("--json", type=Path, default=None)
    parser.add_argument("--csv", type=Path, default=None)
    parser.add_argument("--pgn", type=Path, default=None, help="Write missing lines as PGN")
    parser.add_argument("--snapshot", type=Path, default=None, help="Write missing lines for later diffing")
    parser.add_argument("--previous", type=Path, default=None, help="Snapshot to diff against")
    parser.add_argument("-v", "--verbose", action="count", default=0)
    return parser.parse_args()


def main():
    started = time.monotonic()
    args = parse_args()
    logging.basicConfig(level=log_level(args.verbose), format="%(levelname)s - %(message)s")

    try:
        config = config_from_args(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(2)

    repertoire = load_repertoire(args.repertoire)
    try:
        scored, result = asyncio.run(analyze(config, repertoire))
    except RepertoireAnalysisError as e:
        print(f"Analysis failed: {e}", file=sys.stderr)
        sys.exit(1)

    print_report(scored, result, args)
    start = scored.root.key
    missing = missing_lines(scored)
    if args.previous:
        print_diff(load_snapshot(args.previous), missing, start)
    if args.json:
        n = export_json(scored, args.json)
        print(f"Exported {n} nodes to {args.json}")
    if args.csv:
        n = export_csv(scored, args.csv)
        print(f"Exported {n} rows to {args.csv}")
    if args.pgn:
        n = export_pgn(missing, args.pgn, start, "Repertoire gaps")
        print(f"Exported {n} lines to {args.pgn}")
    if args.snapshot:
        n = write_snapshot(missing, args.snapshot)
        print(f"Saved {n} ranked lines to {args.snapshot}")

    logger.info("Total runtime: %.2f s", time.monotonic() - started)


if __name__ == "__main__":
    main()
