"""
Leaderboard service for the rating engine read APIs.

Provides per-scope leaderboard pages with caching, rank context around a
player, and per-player rating and history views.
"""

from typing import Optional, List, Tuple
import asyncio
import time
import logging

from sqlalchemy import select, func

from ranked.config import Config
from ranked.services.base import BaseService
from ranked.data_models.leaderboard import (
    LeaderboardPage, LeaderboardEntry, RankContext, PlayerScopeRating, RatingHistoryEntry
)
from ranked.data_models.scope import ScopeKey
from ranked.database.models import PlayerRating, MatchSnapshot, Modality, Category
from ranked.utils.exceptions import RatingValidationError
from ranked.utils.ranking import RankingUtility

logger = logging.getLogger(__name__)


class LeaderboardService(BaseService):
    """Service for leaderboard queries and ranking with caching."""

    def __init__(self, session_factory, cache_ttl: Optional[int] = None):
        super().__init__(session_factory)
        # TTL cache for leaderboard pages
        self._cache = {}
        self._cache_timestamps = {}
        self._cache_ttl = Config.LEADERBOARD_CACHE_TTL if cache_ttl is None else cache_ttl
        self._cache_max_size = 500
        self._cache_lock = asyncio.Lock()

    async def _get_cached(self, key: str):
        async with self._cache_lock:
            timestamp = self._cache_timestamps.get(key)
            if timestamp is None or time.time() - timestamp >= self._cache_ttl:
                return None
            return self._cache[key]

    async def _store_cached(self, key: str, value) -> None:
        async with self._cache_lock:
            current_time = time.time()
            expired_keys = [
                k for k, timestamp in self._cache_timestamps.items()
                if current_time - timestamp >= self._cache_ttl
            ]
            for k in expired_keys:
                self._cache.pop(k, None)
                self._cache_timestamps.pop(k, None)

            # Enforce size limit by removing oldest entries
            if len(self._cache) >= self._cache_max_size:
                oldest = sorted(self._cache_timestamps.items(), key=lambda x: x[1])
                for k, _ in oldest[:len(self._cache) - self._cache_max_size + 1]:
                    self._cache.pop(k, None)
                    self._cache_timestamps.pop(k, None)

            self._cache[key] = value
            self._cache_timestamps[key] = current_time

    async def clear_cache(self):
        """Clears the entire leaderboard cache."""
        async with self._cache_lock:
            self._cache.clear()
            self._cache_timestamps.clear()
        logger.debug("Leaderboard cache cleared.")

    @staticmethod
    def _to_entry(row) -> LeaderboardEntry:
        return LeaderboardEntry(
            rank=row.rank,
            player_id=row.player_id,
            rating=row.rating,
            matches_played=row.matches_played,
            wins=row.wins,
            last_delta=row.last_delta,
            win_rate=round(float(row.win_rate or 0.0), 1)
        )

    # ============================================================================
    # Leaderboard
    # ============================================================================

    async def get_page(
        self,
        scope: ScopeKey,
        page: int = 1,
        page_size: int = 10,
        min_matches_played: int = 0
    ) -> LeaderboardPage:
        """
        Get one page of a scope's leaderboard.

        Rows are ordered by rating descending with ties broken by insertion
        order; rank numbers are global across pages.

        Raises:
            RatingValidationError: If the paging parameters are out of range
        """
        RankingUtility.validate_pagination(page, page_size)
        RankingUtility.validate_min_matches(min_matches_played)

        cache_key = f"leaderboard:{scope.storage_key}:{min_matches_played}:{page}:{page_size}"
        cached = await self._get_cached(cache_key)
        if cached is not None:
            return cached

        async def query(session) -> Tuple[int, List[LeaderboardEntry]]:
            ranking_cte = RankingUtility.create_rating_ranking_cte(scope, min_matches_played)
            total_count = await session.scalar(select(func.count()).select_from(ranking_cte))

            offset = (page - 1) * page_size
            result = await session.execute(
                select(ranking_cte).order_by(ranking_cte.c.rank).limit(page_size).offset(offset)
            )
            return total_count or 0, [self._to_entry(row) for row in result]

        total_count, entries = await self.run_read("leaderboard query", query)

        leaderboard_page = LeaderboardPage(
            scope=scope,
            entries=entries,
            current_page=page,
            page_size=page_size,
            total_pages=(total_count + page_size - 1) // page_size if total_count > 0 else 1,
            total_players=total_count,
            min_matches_played=min_matches_played
        )
        await self._store_cached(cache_key, leaderboard_page)
        return leaderboard_page

    async def get_rank_context(
        self,
        scope: ScopeKey,
        player_id: int,
        window: int = Config.RANK_CONTEXT_WINDOW,
        min_matches_played: int = 0
    ) -> Optional[RankContext]:
        """
        Get a player's leaderboard entry with up to `window` entries above and below.

        Returns:
            RankContext, or None if the player is not ranked in the scope
        """
        if not isinstance(window, int) or window < 0:
            raise RatingValidationError("window must be a non-negative integer")
        RankingUtility.validate_min_matches(min_matches_played)

        async def query(session) -> Optional[RankContext]:
            ranking_cte = RankingUtility.create_rating_ranking_cte(scope, min_matches_played)
            player_row = (await session.execute(
                select(ranking_cte).where(ranking_cte.c.player_id == player_id)
            )).first()
            if player_row is None:
                return None

            result = await session.execute(
                select(ranking_cte)
                .where(ranking_cte.c.rank.between(player_row.rank - window, player_row.rank + window))
                .order_by(ranking_cte.c.rank)
            )
            entries = [self._to_entry(row) for row in result]
            player = self._to_entry(player_row)
            return RankContext(
                scope=scope,
                player=player,
                above=[e for e in entries if e.rank < player.rank],
                below=[e for e in entries if e.rank > player.rank],
                total_players=player_row.total_players
            )

        return await self.run_read("rank context query", query)

    # ============================================================================
    # Player views
    # ============================================================================

    async def get_player_ratings(
        self,
        player_id: int,
        modality: Optional[Modality] = None,
        category: Optional[Category] = None
    ) -> List[PlayerScopeRating]:
        """A player's ratings in every scope, global scopes first"""
        async def query(session) -> List[PlayerScopeRating]:
            stmt = select(PlayerRating).where(PlayerRating.player_id == player_id)
            if modality is not None:
                stmt = stmt.where(PlayerRating.modality == Modality.normalize(modality))
            if category is not None:
                stmt = stmt.where(PlayerRating.category == Category.normalize(category))
            stmt = stmt.order_by(
                PlayerRating.competition_id.is_not(None),
                PlayerRating.competition_id,
                PlayerRating.season_id.is_not(None),
                PlayerRating.season_id,
                PlayerRating.id
            )
            result = await session.execute(stmt)
            return [
                PlayerScopeRating(
                    scope=ScopeKey.from_row(r),
                    rating=r.rating,
                    matches_played=r.matches_played,
                    wins=r.wins,
                    last_delta=r.last_delta,
                    is_provisional=r.is_provisional
                )
                for r in result.scalars().all()
            ]

        return await self.run_read("player ratings query", query)

    @staticmethod
    def _to_history_entry(snapshot: MatchSnapshot) -> RatingHistoryEntry:
        return RatingHistoryEntry(
            match_id=snapshot.match_id,
            player_id=snapshot.player_id,
            scope=ScopeKey.from_row(snapshot),
            team_color=snapshot.team_color,
            pre_rating=snapshot.pre_rating,
            post_rating=snapshot.post_rating,
            delta=snapshot.delta,
            win=snapshot.win,
            is_afk=snapshot.is_afk,
            k_factor=snapshot.k_factor,
            multiplier=snapshot.multiplier,
            created_at=snapshot.created_at
        )

    async def get_player_history(
        self,
        player_id: int,
        scope: Optional[ScopeKey] = None,
        limit: int = Config.PLAYER_HISTORY_LIMIT
    ) -> List[RatingHistoryEntry]:
        """A player's snapshots, newest first, optionally limited to one scope"""
        if not isinstance(limit, int) or limit < 1:
            raise RatingValidationError("limit must be a positive integer")
        limit = min(limit, Config.PLAYER_HISTORY_LIMIT)

        async def query(session) -> List[RatingHistoryEntry]:
            stmt = select(MatchSnapshot).where(MatchSnapshot.player_id == player_id)
            if scope is not None:
                stmt = stmt.where(MatchSnapshot.scope_key == scope.storage_key)
            stmt = stmt.order_by(MatchSnapshot.created_at.desc(), MatchSnapshot.id.desc()).limit(limit)
            result = await session.execute(stmt)
            return [self._to_history_entry(s) for s in result.scalars().all()]

        return await self.run_read("player history query", query)

    async def get_match_snapshots(self, match_id: int) -> List[RatingHistoryEntry]:
        """Every snapshot of one match, in application order"""
        async def query(session) -> List[RatingHistoryEntry]:
            result = await session.execute(
                select(MatchSnapshot)
                .where(MatchSnapshot.match_id == match_id)
                .order_by(MatchSnapshot.created_at, MatchSnapshot.id)
            )
            return [self._to_history_entry(s) for s in result.scalars().all()]

        return await self.run_read("match snapshots query", query)
