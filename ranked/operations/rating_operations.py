"""
Rating Operations Module

Applies one finalized match to every ranking scope it belongs to (the cascade).

The scopes are computed up front as an explicit ordered list (global, then
competition, then season) and applied one after another. Each scope pass:
- runs under that scope's lock so overlapping cascades cannot interleave
- runs in its own transaction, so a pass is all-or-nothing
- reads only its own scope's PlayerRating rows; scopes never feed each other

The whole cascade holds the match lock, which revert also takes, so a revert
never sees a match that is only partly applied.

A failure in a later pass leaves earlier passes committed; the match stays
APPLIED and must be reverted before it is applied again.
"""

from typing import Dict, List, Optional, Set
from datetime import datetime, timezone
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ranked.config import Config
from ranked.data_models.rating import (
    MatchFinalizedEvent, PlayerRatingInput, MatchRatingResult,
    ScopeApplication, CascadeResult
)
from ranked.data_models.scope import ScopeKey
from ranked.database.match_operations import MatchOperations
from ranked.database.models import PlayerRating, MatchSnapshot, TeamColor, AppliedState
from ranked.constants import MultiplierConstants
from ranked.utils.elo import EloCalculator
from ranked.utils.exceptions import (
    RatingValidationError, MatchAlreadyAppliedError, CascadeError, SnapshotConflictError
)
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


class RatingOperations:
    """
    ApplyCascade: orchestrates the EloCalculator across the scopes of one match.
    """

    def __init__(self, database, match_ops: Optional[MatchOperations] = None):
        """Initialize with database instance and optional shared match operations"""
        self.db = database
        self.match_ops = match_ops or MatchOperations(database)
        self.scope_locks = database.scope_locks
        self.logger = logger

    # ============================================================================
    # Validation
    # ============================================================================

    def _validate_event(self, event: MatchFinalizedEvent) -> None:
        """Validate a finalized match before anything is mutated"""
        if event.match_id is None:
            raise RatingValidationError("Match event has no match_id")
        self.match_ops.validate_rosters(event.rosters)

    def _resolve_afk_players(self, event: MatchFinalizedEvent) -> Set[int]:
        """AFK ids restricted to rostered players; unknown ids are ignored"""
        rostered = set(event.all_player_ids)
        requested = set(event.afk_player_ids)
        ignored = requested - rostered
        if ignored:
            self.logger.warning(
                f"Match {event.match_id}: ignoring AFK ids not on either roster: {sorted(ignored)}"
            )
        return requested & rostered

    def _resolve_global_multiplier(self, event: MatchFinalizedEvent) -> float:
        if event.global_multiplier is not None:
            return EloCalculator.validate_multiplier(event.global_multiplier)
        return EloCalculator.resolve_global_multiplier(event.origin)

    # ============================================================================
    # ApplyCascade
    # ============================================================================

    async def apply_match(self, event: MatchFinalizedEvent) -> CascadeResult:
        """
        Apply a finalized match to the global, competition and season scopes.

        Args:
            event: Finalized match with rosters, outcome and AFK set

        Returns:
            CascadeResult with one committed application per scope

        Raises:
            RatingValidationError: If the event is invalid (nothing is mutated)
            InvalidScopeError: If a season is given without a competition
            MatchAlreadyAppliedError: If the match is already applied (nothing is mutated)
            SnapshotConflictError: If snapshots of the match still exist (nothing is mutated)
            CascadeError: If a scope pass fails; earlier passes remain committed
        """
        scopes = event.scopes()
        self._validate_event(event)
        afk_players = self._resolve_afk_players(event)
        global_multiplier = self._resolve_global_multiplier(event)

        async with self.scope_locks.hold_match(event.match_id):
            state = await self.match_ops.get_state(event.match_id)
            if state == AppliedState.APPLIED:
                raise MatchAlreadyAppliedError(event.match_id)
            if await self.match_ops.count_snapshots(event.match_id):
                raise SnapshotConflictError(event.match_id)

            await self.match_ops.mark_applied(
                event.match_id,
                modality=event.modality,
                category=event.category,
                competition_id=event.competition_id,
                season_id=event.season_id
            )

            applications = await self._run_cascade(event, scopes, afk_players, global_multiplier)

        self.logger.info(
            f"Applied match {event.match_id} to {len(applications)} scope(s) "
            f"({', '.join(a.scope.level for a in applications)}); "
            f"winner={event.winner_color.value if event.winner_color else 'draw'}, "
            f"afk={sorted(afk_players)}"
        )
        return CascadeResult(match_id=event.match_id, applications=applications)

    async def _run_cascade(
        self,
        event: MatchFinalizedEvent,
        scopes: List[ScopeKey],
        afk_players: Set[int],
        global_multiplier: float
    ) -> List[ScopeApplication]:
        """One locked transaction per scope, in cascade order"""
        applications: List[ScopeApplication] = []
        for scope in scopes:
            multiplier = global_multiplier if scope.is_global else MultiplierConstants.DEFAULT
            try:
                async with self.scope_locks.hold(scope):
                    async with self.db.transaction() as session:
                        result = await self._apply_scope_pass(
                            session, event, scope, afk_players, multiplier
                        )
                        if scope.is_global:
                            await self.match_ops.upsert_rosters(event.match_id, event.rosters, session)
                            await session.flush()
                            await self.match_ops.set_average_pre_ratings(
                                event.match_id, result.team_averages, session
                            )
            except Exception as e:
                committed = [a.scope.storage_key for a in applications]
                self.logger.error(
                    f"Cascade for match {event.match_id} failed in scope {scope.storage_key} "
                    f"after committing {committed}: {e}"
                )
                raise CascadeError(event.match_id, scope.storage_key, committed, str(e))

            applications.append(ScopeApplication(scope=scope, result=result))
            self.logger.debug(
                f"Match {event.match_id} applied to scope {scope.storage_key}: "
                f"{[(p.player_id, p.delta) for p in result.players]}"
            )

        return applications

    async def _load_or_create_ratings(
        self,
        session: AsyncSession,
        scope: ScopeKey,
        player_ids: List[int]
    ) -> Dict[int, PlayerRating]:
        """Lock the scope's rating rows for these players, creating defaults for newcomers"""
        result = await session.execute(
            select(PlayerRating)
            .where(
                PlayerRating.scope_key == scope.storage_key,
                PlayerRating.player_id.in_(player_ids)
            )
            .with_for_update()
        )
        ratings = {r.player_id: r for r in result.scalars().all()}

        missing = [pid for pid in player_ids if pid not in ratings]
        for player_id in missing:
            rating = PlayerRating(
                player_id=player_id,
                rating=Config.STARTING_RATING,
                matches_played=0,
                wins=0,
                last_delta=0.0,
                **scope.column_values()
            )
            session.add(rating)
            ratings[player_id] = rating

        if missing:
            await session.flush()
            self.logger.debug(f"Created {len(missing)} default rating(s) in scope {scope.storage_key}")

        return ratings

    async def _apply_scope_pass(
        self,
        session: AsyncSession,
        event: MatchFinalizedEvent,
        scope: ScopeKey,
        afk_players: Set[int],
        multiplier: float
    ) -> MatchRatingResult:
        """
        Rate the match in one scope and write ratings plus snapshots inside the caller's transaction.

        Snapshots are immutable once written; a pass over a scope that already
        holds this match's snapshots raises before anything is changed.
        """
        existing = await session.scalar(
            select(func.count(MatchSnapshot.id)).where(
                MatchSnapshot.match_id == event.match_id,
                MatchSnapshot.scope_key == scope.storage_key
            )
        )
        if existing:
            raise SnapshotConflictError(event.match_id, scope.storage_key)

        ratings = await self._load_or_create_ratings(session, scope, event.all_player_ids)

        inputs = {
            color: [
                PlayerRatingInput(
                    player_id=pid,
                    rating=ratings[pid].rating,
                    matches_played=ratings[pid].matches_played
                )
                for pid in event.rosters[color]
            ]
            for color in TeamColor
        }

        result = EloCalculator.calculate_match(
            inputs,
            winner_color=event.winner_color,
            afk_player_ids=afk_players,
            multiplier=multiplier
        )

        applied_at = datetime.now(timezone.utc)
        for player in result.players:
            rating = ratings[player.player_id]
            rating.rating = player.post
            rating.matches_played = (rating.matches_played or 0) + 1
            if player.win and not player.is_afk:
                rating.wins = (rating.wins or 0) + 1
            rating.last_delta = player.delta
            rating.updated_at = applied_at

            session.add(MatchSnapshot(
                match_id=event.match_id,
                player_id=player.player_id,
                team_color=player.team_color,
                pre_rating=player.pre,
                post_rating=player.post,
                delta=player.delta,
                win=player.win,
                is_afk=player.is_afk,
                k_factor=player.k_factor,
                multiplier=result.multiplier,
                created_at=applied_at,
                **scope.column_values()
            ))

        return result
