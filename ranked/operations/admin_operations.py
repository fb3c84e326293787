"""
Admin Operations Module

This module provides the administrative rating commands:
- Match revert by replaying recorded snapshot deltas in reverse
- Scope recompute from snapshot history
- Scope reset and bulk deletion of rating rows
- Audit logging for every administrative command

Every command serializes on the affected scope's lock, and writes to one
scope happen in one transaction.
"""

import json
from collections import defaultdict
from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from sqlalchemy import select, func, delete as sql_delete
from sqlalchemy.ext.asyncio import AsyncSession

from ranked.config import Config
from ranked.constants import AuditActions, ScopeLevel
from ranked.data_models.rating import RevertResult, RecomputeResult, ResetResult
from ranked.data_models.scope import ScopeKey
from ranked.database.match_operations import MatchOperations
from ranked.database.models import PlayerRating, MatchSnapshot, RatingAuditLog, AppliedState
from ranked.utils.elo import EloCalculator
from ranked.utils.exceptions import RatingEngineError, RatingValidationError, RatingStorageError
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


class AdminOperations:
    """
    Revert, recompute, reset and bulk delete for rating scopes.
    """

    def __init__(self, database, match_ops: Optional[MatchOperations] = None):
        """Initialize with database instance and optional shared match operations"""
        self.db = database
        self.match_ops = match_ops or MatchOperations(database)
        self.scope_locks = database.scope_locks
        self.logger = logger

    async def _create_audit_log(
        self,
        session: AsyncSession,
        action_type: str,
        scope_key: Optional[str] = None,
        match_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None,
        affected_players_count: int = 0
    ) -> None:
        """
        Create an audit log entry for an administrative command.

        Args:
            session: Database session of the command's transaction
            action_type: One of AuditActions
            scope_key: Storage key of the affected scope, if any
            match_id: Affected match, if any
            details: Additional details stored as JSON
            reason: Operator-provided reason
            performed_by: Operator identifier
            affected_players_count: Number of players affected
        """
        session.add(RatingAuditLog(
            action_type=action_type,
            scope_key=scope_key,
            match_id=match_id,
            details=json.dumps(details or {}),
            reason=reason,
            performed_by=performed_by,
            affected_players_count=affected_players_count
        ))
        self.logger.info(
            f"Rating audit log created: {action_type} by {performed_by or 'system'} "
            f"on scope={scope_key} match={match_id}"
        )

    @staticmethod
    def _scope_order(scope: ScopeKey) -> int:
        return ScopeLevel.ORDERED.index(scope.level)

    # ============================================================================
    # Revert
    # ============================================================================

    async def revert_match(
        self,
        match_id: int,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None
    ) -> RevertResult:
        """
        Undo a match's effect in every scope it touched.

        Recorded snapshot deltas are subtracted as stored; nothing is
        recomputed. A match with no snapshots that is not applied is a no-op.
        Holds the match lock, so a revert issued during an apply waits for
        the cascade to finish and then undoes all of it.

        Args:
            match_id: Match to revert
            reason: Operator-provided reason for the audit log
            performed_by: Operator identifier for the audit log

        Returns:
            RevertResult describing what was undone

        Raises:
            RatingStorageError: If the storage layer fails
        """
        try:
            async with self.scope_locks.hold_match(match_id):
                async with self.db.get_session() as session:
                    result = await session.execute(
                        select(MatchSnapshot).where(MatchSnapshot.match_id == match_id)
                    )
                    snapshots = result.scalars().all()
                    state = await self.match_ops.get_state(match_id, session=session)

                if not snapshots and state != AppliedState.APPLIED:
                    self.logger.info(f"Revert of match {match_id} is a no-op (state={state.value}, no snapshots)")
                    return RevertResult(match_id=match_id, noop=True)

                scopes: Dict[str, ScopeKey] = {}
                for snapshot in snapshots:
                    scopes.setdefault(snapshot.scope_key, ScopeKey.from_row(snapshot))

                reverted = 0
                affected = set()
                for scope in sorted(scopes.values(), key=self._scope_order):
                    async with self.scope_locks.hold(scope):
                        async with self.db.transaction() as s:
                            count, players = await self._revert_scope(s, match_id, scope)
                    reverted += count
                    affected.update(players)

                async with self.db.transaction() as s:
                    rosters_deleted = await self.match_ops.delete_rosters(match_id, s)
                    await self.match_ops.mark_reverted(match_id, session=s)
                    await self._create_audit_log(
                        s,
                        AuditActions.REVERT,
                        match_id=match_id,
                        details={
                            'scopes': list(scopes.keys()),
                            'snapshots_reverted': reverted,
                            'rosters_deleted': rosters_deleted,
                            'previous_state': state.value
                        },
                        reason=reason,
                        performed_by=performed_by,
                        affected_players_count=len(affected)
                    )

            self.logger.info(
                f"Reverted match {match_id}: {reverted} snapshot(s) across {len(scopes)} scope(s), "
                f"{len(affected)} player(s) affected"
            )
            return RevertResult(
                match_id=match_id,
                noop=False,
                snapshots_reverted=reverted,
                scope_keys=list(scopes.keys()),
                affected_players=sorted(affected)
            )

        except RatingEngineError:
            raise
        except Exception as e:
            self.logger.error(f"Revert of match {match_id} failed: {e}")
            raise RatingStorageError("match revert", str(e))

    async def _revert_scope(self, session: AsyncSession, match_id: int, scope: ScopeKey):
        """Subtract this match's recorded deltas in one scope and drop its snapshots"""
        result = await session.execute(
            select(MatchSnapshot).where(
                MatchSnapshot.match_id == match_id,
                MatchSnapshot.scope_key == scope.storage_key
            )
        )
        snapshots = result.scalars().all()
        if not snapshots:
            return 0, []

        player_ids = [s.player_id for s in snapshots]
        ratings_result = await session.execute(
            select(PlayerRating)
            .where(
                PlayerRating.scope_key == scope.storage_key,
                PlayerRating.player_id.in_(player_ids)
            )
            .with_for_update()
        )
        ratings = {r.player_id: r for r in ratings_result.scalars().all()}

        now = datetime.now(timezone.utc)
        for snapshot in snapshots:
            rating = ratings.get(snapshot.player_id)
            if rating is None:
                self.logger.warning(
                    f"No rating row for player {snapshot.player_id} in scope {scope.storage_key}; "
                    f"skipping revert of match {match_id} for that player"
                )
                continue

            rating.rating = EloCalculator.round_rating(rating.rating - snapshot.delta)
            rating.matches_played = max(0, (rating.matches_played or 0) - 1)
            wins = rating.wins or 0
            if snapshot.counts_as_win:
                wins = max(0, wins - 1)
            rating.wins = min(wins, rating.matches_played)
            rating.updated_at = now

        await session.execute(
            sql_delete(MatchSnapshot)
            .where(
                MatchSnapshot.match_id == match_id,
                MatchSnapshot.scope_key == scope.storage_key
            )
            .execution_options(synchronize_session=False)
        )
        return len(snapshots), player_ids

    # ============================================================================
    # Recompute
    # ============================================================================

    async def recompute_scope(
        self,
        scope: ScopeKey,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None
    ) -> RecomputeResult:
        """
        Rebuild every PlayerRating row of a scope from its snapshot history.

        Snapshots are replayed in application order (created_at, then id)
        starting from the default rating. Idempotent and safe to re-run
        after an abort, since it runs in one transaction.

        Raises:
            RatingStorageError: If the storage layer fails
        """
        try:
            async with self.scope_locks.hold(scope):
                async with self.db.transaction() as session:
                    result = await session.execute(
                        select(MatchSnapshot)
                        .where(MatchSnapshot.scope_key == scope.storage_key)
                        .order_by(MatchSnapshot.created_at.asc(), MatchSnapshot.id.asc())
                    )
                    snapshots = result.scalars().all()

                    # Player order of first appearance keeps insertion order stable
                    rebuilt: Dict[int, Dict[str, Any]] = {}
                    for snapshot in snapshots:
                        state = rebuilt.setdefault(snapshot.player_id, {
                            'rating': Config.STARTING_RATING,
                            'matches_played': 0,
                            'wins': 0,
                            'last_delta': 0.0,
                        })
                        state['rating'] = EloCalculator.round_rating(state['rating'] + snapshot.delta)
                        state['matches_played'] += 1
                        if snapshot.counts_as_win:
                            state['wins'] += 1
                        state['last_delta'] = snapshot.delta

                    await session.execute(
                        sql_delete(PlayerRating)
                        .where(PlayerRating.scope_key == scope.storage_key)
                        .execution_options(synchronize_session=False)
                    )
                    # Flush the delete before re-inserting under the same unique key
                    await session.flush()

                    for player_id, state in rebuilt.items():
                        session.add(PlayerRating(player_id=player_id, **state, **scope.column_values()))

                    await self._create_audit_log(
                        session,
                        AuditActions.RECOMPUTE,
                        scope_key=scope.storage_key,
                        details={'snapshots_replayed': len(snapshots), 'players_rebuilt': len(rebuilt)},
                        reason=reason,
                        performed_by=performed_by,
                        affected_players_count=len(rebuilt)
                    )

            self.logger.info(
                f"Recomputed scope {scope.storage_key}: {len(rebuilt)} player(s) "
                f"from {len(snapshots)} snapshot(s)"
            )
            return RecomputeResult(scope=scope, players_rebuilt=len(rebuilt), snapshots_replayed=len(snapshots))

        except RatingEngineError:
            raise
        except Exception as e:
            self.logger.error(f"Recompute of scope {scope.storage_key} failed: {e}")
            raise RatingStorageError("scope recompute", str(e))

    # ============================================================================
    # Reset and bulk delete
    # ============================================================================

    async def reset_scope(
        self,
        scope: ScopeKey,
        reason: Optional[str] = None,
        performed_by: Optional[str] = None
    ) -> ResetResult:
        """
        Delete every rating row and snapshot of a scope.

        Matches left without snapshots in any scope move to REVERTED so they
        may be applied again.

        Raises:
            RatingStorageError: If the storage layer fails
        """
        try:
            async with self.scope_locks.hold(scope):
                async with self.db.transaction() as session:
                    match_result = await session.execute(
                        select(MatchSnapshot.match_id)
                        .where(MatchSnapshot.scope_key == scope.storage_key)
                        .distinct()
                    )
                    match_ids = list(match_result.scalars().all())

                    ratings_result = await session.execute(
                        sql_delete(PlayerRating)
                        .where(PlayerRating.scope_key == scope.storage_key)
                        .execution_options(synchronize_session=False)
                    )
                    snapshots_result = await session.execute(
                        sql_delete(MatchSnapshot)
                        .where(MatchSnapshot.scope_key == scope.storage_key)
                        .execution_options(synchronize_session=False)
                    )
                    ratings_deleted = ratings_result.rowcount or 0
                    snapshots_deleted = snapshots_result.rowcount or 0

                    orphaned = []
                    if match_ids:
                        remaining_result = await session.execute(
                            select(MatchSnapshot.match_id)
                            .where(MatchSnapshot.match_id.in_(match_ids))
                            .distinct()
                        )
                        remaining = set(remaining_result.scalars().all())
                        orphaned = [m for m in match_ids if m not in remaining]

                    matches_reverted = await self.match_ops.mark_many_reverted(orphaned, session)

                    await self._create_audit_log(
                        session,
                        AuditActions.RESET_SCOPE,
                        scope_key=scope.storage_key,
                        details={
                            'ratings_deleted': ratings_deleted,
                            'snapshots_deleted': snapshots_deleted,
                            'matches_reverted': matches_reverted
                        },
                        reason=reason,
                        performed_by=performed_by,
                        affected_players_count=ratings_deleted
                    )

            self.logger.info(
                f"Reset scope {scope.storage_key}: {ratings_deleted} rating(s), "
                f"{snapshots_deleted} snapshot(s) deleted; {matches_reverted} match(es) reverted"
            )
            return ResetResult(
                scope=scope,
                ratings_deleted=ratings_deleted,
                snapshots_deleted=snapshots_deleted,
                matches_reverted=matches_reverted
            )

        except RatingEngineError:
            raise
        except Exception as e:
            self.logger.error(f"Reset of scope {scope.storage_key} failed: {e}")
            raise RatingStorageError("scope reset", str(e))

    async def bulk_delete_ratings(
        self,
        scope: ScopeKey,
        player_ids: List[int],
        reason: Optional[str] = None,
        performed_by: Optional[str] = None
    ) -> int:
        """
        Delete the listed players' rating rows in a scope. Snapshots are kept,
        so a later recompute restores the rows.

        Returns:
            Number of rating rows deleted

        Raises:
            RatingValidationError: If no player ids are given
            RatingStorageError: If the storage layer fails
        """
        player_ids = sorted(set(player_ids or []))
        if not player_ids:
            raise RatingValidationError("Bulk delete requires at least one player id")

        try:
            async with self.scope_locks.hold(scope):
                async with self.db.transaction() as session:
                    result = await session.execute(
                        sql_delete(PlayerRating)
                        .where(
                            PlayerRating.scope_key == scope.storage_key,
                            PlayerRating.player_id.in_(player_ids)
                        )
                        .execution_options(synchronize_session=False)
                    )
                    deleted = result.rowcount or 0

                    await self._create_audit_log(
                        session,
                        AuditActions.BULK_DELETE,
                        scope_key=scope.storage_key,
                        details={'requested_player_ids': player_ids[:50], 'deleted': deleted},
                        reason=reason,
                        performed_by=performed_by,
                        affected_players_count=deleted
                    )

            self.logger.info(
                f"Bulk deleted {deleted} rating(s) in scope {scope.storage_key} "
                f"({len(player_ids)} player(s) requested)"
            )
            return deleted

        except RatingEngineError:
            raise
        except Exception as e:
            self.logger.error(f"Bulk delete in scope {scope.storage_key} failed: {e}")
            raise RatingStorageError("rating bulk delete", str(e))

    # ============================================================================
    # Audit
    # ============================================================================

    async def get_audit_log(self, limit: int = 50, action_type: Optional[str] = None) -> List[RatingAuditLog]:
        """Most recent audit entries, newest first"""
        async with self.db.get_session() as session:
            query = select(RatingAuditLog)
            if action_type:
                query = query.where(RatingAuditLog.action_type == action_type)
            query = query.order_by(RatingAuditLog.id.desc()).limit(limit)
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_scope_snapshots(self, scope: ScopeKey) -> int:
        """Number of snapshots stored in a scope"""
        async with self.db.get_session() as session:
            count = await session.scalar(
                select(func.count(MatchSnapshot.id)).where(MatchSnapshot.scope_key == scope.storage_key)
            )
            return count or 0
