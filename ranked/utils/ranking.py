"""
Shared ranking utilities for the leaderboard and rank context queries.

Both read APIs rank through the same CTE so a player's rank is identical in
every view of a scope.
"""

from sqlalchemy import select, func, case
from sqlalchemy.sql import Select

from ranked.config import Config
from ranked.data_models.scope import ScopeKey
from ranked.database.models import PlayerRating
from ranked.utils.exceptions import RatingValidationError


class RankingUtility:
    """Shared ranking logic for consistent CTE pattern usage."""

    @staticmethod
    def create_rating_ranking_cte(scope: ScopeKey, min_matches_played: int = 0) -> Select:
        """
        Create a CTE ranking every rated player of one scope.

        Ranks are ROW_NUMBER over rating descending, ties broken by row id
        ascending (insertion order), so ranks are dense and stable.
        """
        order = (PlayerRating.rating.desc(), PlayerRating.id.asc())
        query = (
            select(
                PlayerRating.id.label('rating_id'),
                PlayerRating.player_id,
                PlayerRating.rating,
                PlayerRating.matches_played,
                PlayerRating.wins,
                PlayerRating.last_delta,
                case(
                    (PlayerRating.matches_played > 0, PlayerRating.wins * 100.0 / PlayerRating.matches_played),
                    else_=0.0
                ).label('win_rate'),
                func.row_number().over(order_by=order).label('rank'),
                func.count(PlayerRating.id).over().label('total_players')
            )
            .where(PlayerRating.scope_key == scope.storage_key)
        )
        if min_matches_played:
            query = query.where(PlayerRating.matches_played >= min_matches_played)

        return query.cte('ranked_ratings')

    @staticmethod
    def validate_pagination(page: int, page_size: int) -> None:
        """Validate leaderboard paging parameters."""
        if not isinstance(page, int) or isinstance(page, bool) or page < 1:
            raise RatingValidationError("page must be a positive integer")
        if (not isinstance(page_size, int) or isinstance(page_size, bool)
                or page_size < 1 or page_size > Config.LEADERBOARD_MAX_PAGE_SIZE):
            raise RatingValidationError(
                f"page_size must be between 1 and {Config.LEADERBOARD_MAX_PAGE_SIZE}"
            )

    @staticmethod
    def validate_min_matches(min_matches_played: int) -> None:
        if not isinstance(min_matches_played, int) or min_matches_played < 0:
            raise RatingValidationError("min_matches_played must be a non-negative integer")
