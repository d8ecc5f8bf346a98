#!/usr/bin/env python3
"""
Statistics source backed by the Lichess Opening Explorer

Turns explorer responses into PositionStats records for the statistics tree
builder. Counts are white + draws + black games under the configured filter.

Usage:
  LICHESS_TOKEN=xxx python lichess_explorer.py --fen "<fen>"
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path

import chess
import httpx

sys.path.insert(0, str(Path(__file__).resolve().parent))
from config import ExplorerFilter
from errors import DataSourceError, InvalidPositionError
from models import MoveStat, PositionStats, StatsRequest
from position_key import PositionKey, canonicalize, parse_move

logger = logging.getLogger(__name__)

LICHESS_API = "https://explorer.lichess.ovh/lichess"
RATING_BUCKETS = (0, 1000, 1200, 1400, 1600, 1800, 2000, 2200, 2500)
MAX_MOVES = 20
MAX_RETRIES = 3
RETRY_DELAY = 10.0


def lichess_token() -> str | None:
    return os.environ.get("LICHESS_TOKEN")


def rating_buckets(rating_min: int | None, rating_max: int | None) -> list[int]:
    """Explorer rating buckets overlapping [rating_min, rating_max]."""
    selected = []
    for i, low in enumerate(RATING_BUCKETS):
        high = RATING_BUCKETS[i + 1] if i + 1 < len(RATING_BUCKETS) else None
        if rating_max is not None and low > rating_max:
            continue
        if rating_min is not None and high is not None and high <= rating_min:
            continue
        selected.append(low)
    return selected


def explorer_params(fen: str, explorer_filter: ExplorerFilter, max_moves: int = MAX_MOVES) -> dict:
    params = {
        "variant": "standard",
        "fen": fen,
        "moves": max_moves,
        "speeds": ",".join(explorer_filter.time_controls),
    }
    if explorer_filter.rating_min is not None or explorer_filter.rating_max is not None:
        buckets = rating_buckets(explorer_filter.rating_min, explorer_filter.rating_max)
        params["ratings"] = ",".join(str(b) for b in buckets)
    return params


async def lichess_explorer_moves(
    fen: str,
    session: httpx.AsyncClient,
    explorer_filter: ExplorerFilter,
    token: str | None = None,
    max_moves: int = MAX_MOVES,
) -> dict:
    """Fetch explorer statistics for a position. Raises httpx.HTTPStatusError on failure."""
    headers = {"Authorization": f"Bearer {token}"} if token else None
    resp = await session.get(
        LICHESS_API, params=explorer_params(fen, explorer_filter, max_moves), headers=headers
    )
    resp.raise_for_status()
    return resp.json()


def parse_explorer_response(key: PositionKey, data: dict) -> PositionStats:
    """Convert an explorer JSON payload into a PositionStats record."""
    total = data.get("white", 0) + data.get("draws", 0) + data.get("black", 0)
    moves = []
    for move_data in data.get("moves", []):
        san = move_data.get("san") or move_data.get("uci")
        if not san:
            continue
        board = key.board()
        try:
            move = parse_move(board, san)
            board.push(move)
            child_key = canonicalize(board)
        except InvalidPositionError as e:
            raise DataSourceError(f"Explorer returned unplayable move {san}: {e}", key) from e
        count = move_data.get("white", 0) + move_data.get("draws", 0) + move_data.get("black", 0)
        moves.append(MoveStat(move.uci(), child_key, count))
    return PositionStats(key=key, total_games=total, moves=tuple(moves))


class LichessExplorer:
    """
    Async statistics source. Call with a StatsRequest.

    HTTP 429 responses are retried after retry_delay seconds, up to max_retries
    times. Responses are memoized per position and filter for the lifetime of
    the instance.
    """

    def __init__(
        self,
        session: httpx.AsyncClient,
        token: str | None = None,
        max_moves: int = MAX_MOVES,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
    ):
        self.session = session
        self.token = token
        self.max_moves = max_moves
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._memo: dict[tuple[PositionKey, ExplorerFilter], PositionStats] = {}

    async def __call__(self, request: StatsRequest) -> PositionStats:
        memo_key = (request.key, request.filter)
        if memo_key in self._memo:
            return self._memo[memo_key]

        attempt = 0
        while True:
            try:
                data = await lichess_explorer_moves(
                    request.key.fen, self.session, request.filter, self.token, self.max_moves
                )
                break
            except httpx.HTTPStatusError as e:
                if e.response.status_code == 429 and attempt < self.max_retries:
                    attempt += 1
                    logger.warning(
                        "Rate limited (429); retry %d/%d in %.0fs",
                        attempt, self.max_retries, self.retry_delay,
                    )
                    await asyncio.sleep(self.retry_delay)
                    continue
                raise DataSourceError(
                    f"Explorer returned HTTP {e.response.status_code} for {request.key}", request.key
                ) from e
            except httpx.HTTPError as e:
                raise DataSourceError(f"Explorer request failed for {request.key}: {e}", request.key) from e
            except ValueError as e:
                raise DataSourceError(f"Explorer sent invalid JSON for {request.key}", request.key) from e

        record = parse_explorer_response(request.key, data)
        self._memo[memo_key] = record
        return record


async def main_async():
    parser = argparse.ArgumentParser()
    parser.add_argument("--fen", default=chess.STARTING_FEN)
    parser.add_argument("--speeds", default="blitz,rapid,classical")
    parser.add_argument("--rating-min", type=int, default=None)
    parser.add_argument("--rating-max", type=int, default=None)
    args = parser.parse_args()

    key = canonicalize(args.fen)
    explorer_filter = ExplorerFilter(
        time_controls=tuple(args.speeds.split(",")),
        rating_min=args.rating_min,
        rating_max=args.rating_max,
    )
    async with httpx.AsyncClient(timeout=30.0) as session:
        explorer = LichessExplorer(session, token=lichess_token())
        try:
            record = await explorer(StatsRequest(key, (), explorer_filter))
        except DataSourceError as e:
            print(f"API error: {e}", file=sys.stderr)
            sys.exit(1)
    print(f"{record.total_games} games")
    for stat in record.moves:
        share = stat.game_count / record.total_games if record.total_games else 0.0
        print(f"  {stat.move:6} {stat.game_count:>10} {share:7.2%}")


def main():
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
