"""
Custom exceptions for the rating engine with operator-friendly messages.

Validation failures (bad input) and sequencing failures (wrong call order)
are separate branches so callers can tell them apart.
"""

from typing import List, Optional


class RatingEngineError(Exception):
    """Base exception for rating engine errors."""
    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class RatingValidationError(RatingEngineError):
    """Raised when match or command input fails validation."""
    def __init__(self, reason: str):
        super().__init__(
            f"Validation failed: {reason}",
            f"❌ {reason}"
        )
        self.reason = reason


class InvalidScopeError(RatingValidationError):
    """Raised when a scope combines a season with no competition."""
    def __init__(self, season_id, competition_id=None):
        super().__init__(
            f"Season {season_id} cannot be scoped without a competition (competition_id={competition_id})"
        )
        self.season_id = season_id


class MatchSequencingError(RatingEngineError):
    """Raised when a caller invokes an operation out of order."""
    pass


class MatchAlreadyAppliedError(MatchSequencingError):
    """Raised when a match is applied twice without a revert in between."""
    def __init__(self, match_id: int):
        super().__init__(
            f"Match {match_id} is already applied; revert it before applying again",
            "❌ This match has already been rated. Revert it first to correct the result."
        )
        self.match_id = match_id


class SnapshotConflictError(MatchSequencingError):
    """Raised when applying a match would overwrite its recorded snapshots."""
    def __init__(self, match_id: int, scope_key: Optional[str] = None):
        where = f" in scope {scope_key}" if scope_key else ""
        super().__init__(
            f"Match {match_id} still has rating snapshots{where}; revert it before applying again",
            "❌ This match still has recorded rating changes. Revert it first."
        )
        self.match_id = match_id
        self.scope_key = scope_key


class CascadeError(RatingEngineError):
    """Raised when a storage failure aborts a scope pass mid-cascade."""
    def __init__(self, match_id: int, failed_scope: str, committed_scopes: List[str], details: Optional[str] = None):
        super().__init__(
            f"Cascade for match {match_id} failed in scope {failed_scope} "
            f"(committed: {committed_scopes or 'none'}): {details}",
            "❌ Rating update partially failed. Revert the match and apply it again."
        )
        self.match_id = match_id
        self.failed_scope = failed_scope
        self.committed_scopes = committed_scopes


class RatingStorageError(RatingEngineError):
    """Raised when an administrative command fails in the storage layer."""
    def __init__(self, operation: str, details: str = None):
        super().__init__(
            f"Database error during {operation}: {details}",
            "❌ Database error occurred. Please try again later."
        )
        self.operation = operation
