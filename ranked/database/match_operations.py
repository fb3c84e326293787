"""
Match Operations Module

This module provides the storage-level primitives the rating engine needs from
the match aggregate without owning the match record itself:

- Applied-state tracking (NOT_APPLIED -> APPLIED -> REVERTED) with an atomic
  compare-and-set into APPLIED, so a match can never be rated twice
- TeamRoster storage for the two colored rosters of a match

Apply and revert are the only legal transitions; both live here so callers
never duplicate ad hoc boolean checks.
"""

from typing import Dict, List, Optional
from datetime import datetime, timezone
from contextlib import asynccontextmanager
from sqlalchemy import select, update, func, delete as sql_delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ranked.config import Config
from ranked.database.models import MatchRatingState, AppliedState, TeamRoster, TeamColor, MatchSnapshot
from ranked.utils.exceptions import RatingValidationError, MatchAlreadyAppliedError, MatchSequencingError
from ranked.utils.logger import setup_logger

logger = setup_logger(__name__)


class MatchOperations:
    """
    Applied-state and roster primitives for rated matches.

    Every method accepts an optional session so it can join a caller's
    transaction; without one it manages its own.
    """

    def __init__(self, database):
        """Initialize with database instance"""
        self.db = database
        self.logger = logger

    @asynccontextmanager
    async def _get_session_context(self, session: Optional[AsyncSession] = None):
        """
        Provides a session context. Uses the provided session if available,
        otherwise creates and manages a new transaction.
        """
        if session:
            # If a session is provided, we do not manage its lifecycle
            yield session
        else:
            async with self.db.transaction() as new_session:
                yield new_session

    # ============================================================================
    # Applied-state
    # ============================================================================

    async def get_state(self, match_id: int, session: Optional[AsyncSession] = None) -> AppliedState:
        """Current applied-state of a match; unknown matches are NOT_APPLIED"""
        async with self._get_session_context(session) as s:
            state = await s.scalar(
                select(MatchRatingState.applied_state).where(MatchRatingState.match_id == match_id)
            )
            return state or AppliedState.NOT_APPLIED

    async def count_snapshots(self, match_id: int, session: Optional[AsyncSession] = None) -> int:
        """Snapshots recorded for a match across all scopes"""
        async with self._get_session_context(session) as s:
            count = await s.scalar(
                select(func.count(MatchSnapshot.id)).where(MatchSnapshot.match_id == match_id)
            )
            return count or 0

    async def _ensure_state_row(self, match_id: int) -> None:
        """Create the NOT_APPLIED state row for a match if it does not exist yet"""
        try:
            async with self.db.transaction() as session:
                existing = await session.scalar(
                    select(MatchRatingState.id).where(MatchRatingState.match_id == match_id)
                )
                if existing is None:
                    session.add(MatchRatingState(match_id=match_id, applied_state=AppliedState.NOT_APPLIED))
        except IntegrityError:
            # A concurrent caller inserted the row first
            self.logger.debug(f"State row for match {match_id} created concurrently")

    async def mark_applied(
        self,
        match_id: int,
        modality=None,
        category=None,
        competition_id: Optional[int] = None,
        season_id: Optional[int] = None
    ) -> None:
        """
        Atomically transition a match into APPLIED.

        The transition is a single conditional UPDATE; exactly one of any number
        of concurrent callers observes a changed row.

        Raises:
            MatchAlreadyAppliedError: If the match is already APPLIED
        """
        await self._ensure_state_row(match_id)

        async with self.db.transaction() as session:
            result = await session.execute(
                update(MatchRatingState)
                .where(
                    MatchRatingState.match_id == match_id,
                    MatchRatingState.applied_state != AppliedState.APPLIED
                )
                .values(
                    applied_state=AppliedState.APPLIED,
                    applied_at=datetime.now(timezone.utc),
                    modality=modality,
                    category=category,
                    competition_id=competition_id,
                    season_id=season_id
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise MatchAlreadyAppliedError(match_id)

        self.logger.info(f"Match {match_id} marked as applied")

    async def mark_reverted(self, match_id: int, session: Optional[AsyncSession] = None) -> bool:
        """
        Transition an APPLIED match into REVERTED.

        Returns:
            True if the match was APPLIED and is now REVERTED
        """
        async with self._get_session_context(session) as s:
            result = await s.execute(
                update(MatchRatingState)
                .where(
                    MatchRatingState.match_id == match_id,
                    MatchRatingState.applied_state == AppliedState.APPLIED
                )
                .values(applied_state=AppliedState.REVERTED, reverted_at=datetime.now(timezone.utc))
                .execution_options(synchronize_session=False)
            )
            changed = result.rowcount == 1

        if changed:
            self.logger.info(f"Match {match_id} marked as reverted")
        return changed

    async def mark_many_reverted(self, match_ids: List[int], session: AsyncSession) -> int:
        """Move every listed APPLIED match to REVERTED; returns how many changed"""
        if not match_ids:
            return 0
        result = await session.execute(
            update(MatchRatingState)
            .where(
                MatchRatingState.match_id.in_(match_ids),
                MatchRatingState.applied_state == AppliedState.APPLIED
            )
            .values(applied_state=AppliedState.REVERTED, reverted_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    # ============================================================================
    # Rosters
    # ============================================================================

    @staticmethod
    def validate_rosters(rosters: Dict[TeamColor, List[int]]) -> None:
        """
        Validate a pair of colored rosters.

        Raises:
            RatingValidationError: If the combined roster is empty, a side is over
                the cap, a player is listed twice or on both sides
        """
        rojo = list(rosters.get(TeamColor.ROJO, []))
        azul = list(rosters.get(TeamColor.AZUL, []))

        if not rojo and not azul:
            raise RatingValidationError("Combined roster is empty; there is nothing to rate")

        for color, players in ((TeamColor.ROJO, rojo), (TeamColor.AZUL, azul)):
            if len(players) > Config.MAX_PLAYERS_PER_SIDE:
                raise RatingValidationError(
                    f"Roster '{color.value}' has {len(players)} players "
                    f"(maximum {Config.MAX_PLAYERS_PER_SIDE} per side)"
                )
            if len(set(players)) != len(players):
                raise RatingValidationError(f"Roster '{color.value}' lists a player more than once")

        both_sides = set(rojo) & set(azul)
        if both_sides:
            raise RatingValidationError(f"Players on both sides: {sorted(both_sides)}")

    async def assign_rosters(
        self,
        match_id: int,
        rosters: Dict[TeamColor, List[int]],
        session: Optional[AsyncSession] = None
    ) -> None:
        """
        Store the two colored rosters of a match ahead of finalization.

        Raises:
            RatingValidationError: If the rosters are invalid
            MatchSequencingError: If the match is currently applied
        """
        rosters = {TeamColor.normalize(c): list(p) for c, p in rosters.items()}
        self.validate_rosters(rosters)

        async with self._get_session_context(session) as s:
            if await self.get_state(match_id, session=s) == AppliedState.APPLIED:
                raise MatchSequencingError(
                    f"Rosters of match {match_id} cannot change while it is applied; revert it first"
                )
            await self.upsert_rosters(match_id, rosters, s)

        self.logger.info(
            f"Assigned rosters for match {match_id}: "
            f"{len(rosters.get(TeamColor.ROJO, []))} rojo, {len(rosters.get(TeamColor.AZUL, []))} azul"
        )

    async def upsert_rosters(self, match_id: int, rosters: Dict[TeamColor, List[int]], session: AsyncSession) -> None:
        """Insert or replace both roster rows of a match inside the caller's transaction"""
        result = await session.execute(select(TeamRoster).where(TeamRoster.match_id == match_id))
        existing = {r.color: r for r in result.scalars().all()}

        for color in TeamColor:
            players = list(rosters.get(color, []))
            roster = existing.get(color)
            if roster is None:
                roster = TeamRoster(match_id=match_id, color=color)
                session.add(roster)
            roster.players = players
            roster.average_pre_rating = None

    async def get_rosters(self, match_id: int, session: Optional[AsyncSession] = None) -> Dict[TeamColor, List[int]]:
        """Stored rosters of a match; colors without a row map to an empty list"""
        async with self._get_session_context(session) as s:
            result = await s.execute(select(TeamRoster).where(TeamRoster.match_id == match_id))
            rosters = {color: [] for color in TeamColor}
            for roster in result.scalars().all():
                rosters[roster.color] = roster.players
            return rosters

    async def set_average_pre_ratings(
        self,
        match_id: int,
        averages: Dict[TeamColor, float],
        session: AsyncSession
    ) -> None:
        """Record each color's informational average pre-match rating"""
        for color, average in averages.items():
            await session.execute(
                update(TeamRoster)
                .where(TeamRoster.match_id == match_id, TeamRoster.color == color)
                .values(average_pre_rating=average)
                .execution_options(synchronize_session=False)
            )

    async def delete_rosters(self, match_id: int, session: AsyncSession) -> int:
        """Delete both roster rows of a match; returns how many were removed"""
        result = await session.execute(
            sql_delete(TeamRoster)
            .where(TeamRoster.match_id == match_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
