"""Exception taxonomy for repertoire analysis."""


class RepertoireAnalysisError(Exception):
    """Base class for all analysis errors."""


class InvalidPositionError(RepertoireAnalysisError):
    """Board state violates basic chess invariants (caller bug)."""


class IllegalMoveError(InvalidPositionError):
    """Move is illegal or ambiguous in the given position."""

    def __init__(self, fen: str, move: str, reason: str = "illegal"):
        self.fen = fen
        self.move = move
        self.reason = reason
        super().__init__(f"Move '{move}' is {reason} in position '{fen}'")


class InconsistentTranspositionError(RepertoireAnalysisError):
    """The same move from the same node resolved to two different positions."""

    def __init__(self, path: tuple[str, ...], move: str, existing, resulting):
        self.path = path
        self.move = move
        self.existing = existing
        self.resulting = resulting
        line = " ".join(path) or "<root>"
        super().__init__(
            f"Move '{move}' after '{line}' leads to {resulting}, "
            f"but was already recorded as leading to {existing}"
        )


class DataSourceError(RepertoireAnalysisError):
    """Fetching statistics for a position failed."""

    def __init__(self, message: str, key=None):
        self.key = key
        super().__init__(message)


class TreeMismatchError(RepertoireAnalysisError):
    """Statistics and repertoire trees are not rooted at the same position."""
