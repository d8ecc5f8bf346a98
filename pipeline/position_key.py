"""
Position Key Model

Canonical, transposition-aware identity of a chess position. Two keys are
equal when they describe the same board occupancy, side to move, castling
rights and (legal) en-passant target, whatever move order produced them.
Move counters are never part of the key. In depth-distinct mode the ply
depth is part of the key as well.
"""

import sys
from dataclasses import dataclass, replace
from pathlib import Path

import chess

sys.path.insert(0, str(Path(__file__).resolve().parent))
from errors import IllegalMoveError, InvalidPositionError

# Status bits that indicate a structurally broken position. Reachability and
# full rule validation are the caller's concern.
STRUCTURAL_STATUS = (
    chess.STATUS_EMPTY
    | chess.STATUS_NO_WHITE_KING
    | chess.STATUS_NO_BLACK_KING
    | chess.STATUS_TOO_MANY_KINGS
    | chess.STATUS_PAWNS_ON_BACKRANK
    | chess.STATUS_OPPOSITE_CHECK
    | chess.STATUS_BAD_CASTLING_RIGHTS
    | chess.STATUS_INVALID_EP_SQUARE
)


@dataclass(frozen=True)
class PositionKey:
    """Immutable, hashable position identity."""

    placement: str
    side_to_move: str  # "w" or "b"
    castling: str  # X-FEN castling letters or "-"
    ep_square: str | None = None
    depth: int | None = None

    @property
    def fen(self) -> str:
        """Full FEN with neutral move counters, suitable for explorer requests."""
        return f"{self.short_fen} 0 1"

    @property
    def short_fen(self) -> str:
        return f"{self.placement} {self.side_to_move} {self.castling} {self.ep_square or '-'}"

    @property
    def turn(self) -> chess.Color:
        return chess.WHITE if self.side_to_move == "w" else chess.BLACK

    def board(self) -> chess.Board:
        return chess.Board(self.fen)

    def with_depth(self, depth: int) -> "PositionKey":
        return replace(self, depth=depth)

    def without_depth(self) -> "PositionKey":
        return replace(self, depth=None)

    def __str__(self) -> str:
        if self.depth is None:
            return self.short_fen
        return f"{self.short_fen} @{self.depth}"


def canonicalize(state: chess.Board | str, depth: int | None = None) -> PositionKey:
    """
    Build the canonical key for a board state (a chess.Board or a FEN string).

    Raises InvalidPositionError for unparsable FENs and structurally invalid
    positions (missing kings, pawns on the back rank, ...).
    """
    if isinstance(state, str):
        try:
            board = chess.Board(state)
        except ValueError as e:
            raise InvalidPositionError(f"Invalid FEN '{state}': {e}") from e
    elif isinstance(state, chess.Board):
        board = state
    else:
        raise InvalidPositionError(f"Cannot canonicalize {type(state).__name__}")

    status = board.status() & STRUCTURAL_STATUS
    if status:
        raise InvalidPositionError(
            f"Invalid position '{board.fen()}' (status {chess.Status(status)!r})"
        )

    ep_square = None
    if board.ep_square is not None and board.has_legal_en_passant():
        ep_square = chess.square_name(board.ep_square)

    return PositionKey(
        placement=board.board_fen(),
        side_to_move="w" if board.turn == chess.WHITE else "b",
        castling=board.castling_xfen(),
        ep_square=ep_square,
        depth=depth,
    )


def parse_move(board: chess.Board, move: str) -> chess.Move:
    """Parse a UCI or SAN move in the given position."""
    try:
        parsed = board.parse_uci(move)
    except ValueError:
        try:
            parsed = board.parse_san(move)
        except chess.AmbiguousMoveError as e:
            raise IllegalMoveError(board.fen(), move, "ambiguous") from e
        except ValueError as e:
            raise IllegalMoveError(board.fen(), move) from e
    if not parsed:
        raise IllegalMoveError(board.fen(), move, "a null move")
    return parsed


def apply_move(key: PositionKey, move: str) -> tuple[str, PositionKey]:
    """
    Play a SAN or UCI move from key. Returns (uci_label, child_key).

    The child key carries depth + 1 when the parent key carries a depth.
    """
    board = key.board()
    parsed = parse_move(board, move)
    label = parsed.uci()
    board.push(parsed)
    child_depth = key.depth + 1 if key.depth is not None else None
    return label, canonicalize(board, depth=child_depth)


def start_key(depth_distinct: bool = False) -> PositionKey:
    """Key of the standard starting position."""
    return canonicalize(chess.STARTING_FEN, depth=0 if depth_distinct else None)


START_KEY = start_key()
