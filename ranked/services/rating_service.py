"""
Rating service facade.

Single entry point for collaborators: consumes match-finalized events and
administrative commands, and exposes the read APIs. Every mutation clears
the leaderboard cache once it completes, including partial cascades.
"""

from typing import Any, Dict, List, Optional, Union

from ranked.config import Config
from ranked.data_models.leaderboard import LeaderboardPage, RankContext, PlayerScopeRating, RatingHistoryEntry
from ranked.data_models.rating import (
    MatchFinalizedEvent, CascadeResult, RevertResult, RecomputeResult, ResetResult
)
from ranked.data_models.scope import ScopeKey
from ranked.database.database import Database
from ranked.database.match_operations import MatchOperations
from ranked.database.models import AppliedState, TeamColor, RatingAuditLog
from ranked.operations.admin_operations import AdminOperations
from ranked.operations.rating_operations import RatingOperations
from ranked.services.leaderboard import LeaderboardService
from ranked.utils.exceptions import CascadeError
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


class RatingService:
    """Facade over the cascade, admin commands and read APIs of one database."""

    def __init__(self, database: Database, cache_ttl: Optional[int] = None):
        self.db = database
        self.match_ops = MatchOperations(database)
        self.rating_ops = RatingOperations(database, self.match_ops)
        self.admin_ops = AdminOperations(database, self.match_ops)
        self.leaderboard_service = LeaderboardService(database.session_factory, cache_ttl=cache_ttl)
        self.logger = logger

    # ============================================================================
    # Consumed events
    # ============================================================================

    async def handle_match_finalized(self, event: Union[MatchFinalizedEvent, Dict[str, Any]]) -> CascadeResult:
        """
        Apply a match-finalized event to every scope of the match.

        Args:
            event: MatchFinalizedEvent or its JSON-compatible dict form

        Raises:
            RatingValidationError: If the event is invalid
            MatchAlreadyAppliedError: If the match is already applied
            CascadeError: If a scope pass failed after earlier ones committed
        """
        if isinstance(event, dict):
            event = MatchFinalizedEvent.from_dict(event)
        try:
            result = await self.rating_ops.apply_match(event)
        except CascadeError:
            # Committed scopes changed ratings even though the cascade failed
            await self.leaderboard_service.clear_cache()
            raise
        await self.leaderboard_service.clear_cache()
        return result

    async def assign_rosters(self, match_id: int, rosters: Dict[TeamColor, List[int]]) -> None:
        """Store a match's rosters ahead of finalization"""
        await self.match_ops.assign_rosters(match_id, rosters)

    # ============================================================================
    # Administrative commands
    # ============================================================================

    async def revert(self, match_id: int, reason: Optional[str] = None,
                     performed_by: Optional[str] = None) -> RevertResult:
        result = await self.admin_ops.revert_match(match_id, reason=reason, performed_by=performed_by)
        if not result.noop:
            await self.leaderboard_service.clear_cache()
        return result

    async def recompute(self, scope: ScopeKey, reason: Optional[str] = None,
                        performed_by: Optional[str] = None) -> RecomputeResult:
        result = await self.admin_ops.recompute_scope(scope, reason=reason, performed_by=performed_by)
        await self.leaderboard_service.clear_cache()
        return result

    async def reset_scope(self, scope: ScopeKey, reason: Optional[str] = None,
                          performed_by: Optional[str] = None) -> ResetResult:
        result = await self.admin_ops.reset_scope(scope, reason=reason, performed_by=performed_by)
        await self.leaderboard_service.clear_cache()
        return result

    async def bulk_delete(self, scope: ScopeKey, player_ids: List[int], reason: Optional[str] = None,
                          performed_by: Optional[str] = None) -> int:
        deleted = await self.admin_ops.bulk_delete_ratings(
            scope, player_ids, reason=reason, performed_by=performed_by
        )
        await self.leaderboard_service.clear_cache()
        return deleted

    async def audit_log(self, limit: int = 50, action_type: Optional[str] = None) -> List[RatingAuditLog]:
        return await self.admin_ops.get_audit_log(limit=limit, action_type=action_type)

    # ============================================================================
    # Read APIs
    # ============================================================================

    async def leaderboard(
        self,
        scope: ScopeKey,
        limit: int = 10,
        min_matches_played: int = 0,
        page: int = 1
    ) -> LeaderboardPage:
        return await self.leaderboard_service.get_page(
            scope, page=page, page_size=limit, min_matches_played=min_matches_played
        )

    async def rank_context(
        self,
        scope: ScopeKey,
        player_id: int,
        window: int = Config.RANK_CONTEXT_WINDOW,
        min_matches_played: int = 0
    ) -> Optional[RankContext]:
        return await self.leaderboard_service.get_rank_context(
            scope, player_id, window=window, min_matches_played=min_matches_played
        )

    async def player_ratings(self, player_id: int, modality=None, category=None) -> List[PlayerScopeRating]:
        return await self.leaderboard_service.get_player_ratings(player_id, modality=modality, category=category)

    async def player_history(self, player_id: int, scope: Optional[ScopeKey] = None,
                             limit: int = Config.PLAYER_HISTORY_LIMIT) -> List[RatingHistoryEntry]:
        return await self.leaderboard_service.get_player_history(player_id, scope=scope, limit=limit)

    async def match_snapshots(self, match_id: int) -> List[RatingHistoryEntry]:
        return await self.leaderboard_service.get_match_snapshots(match_id)

    async def get_applied_state(self, match_id: int) -> AppliedState:
        return await self.match_ops.get_state(match_id)
