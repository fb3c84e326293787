"""
Leaderboard data models for the read APIs.

Provides immutable data transfer objects for leaderboard pages, rank
context and per-player rating views.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from ranked.data_models.scope import ScopeKey
from ranked.database.models import TeamColor


@dataclass(frozen=True)
class LeaderboardEntry:
    """Single leaderboard row."""
    rank: int
    player_id: int
    rating: float
    matches_played: int
    wins: int
    last_delta: float
    win_rate: float


@dataclass(frozen=True)
class LeaderboardPage:
    """Paginated leaderboard data."""
    scope: ScopeKey
    entries: List[LeaderboardEntry]
    current_page: int
    page_size: int
    total_pages: int
    total_players: int
    min_matches_played: int = 0


@dataclass(frozen=True)
class RankContext:
    """A player's leaderboard position with its neighbours."""
    scope: ScopeKey
    player: LeaderboardEntry
    above: List[LeaderboardEntry] = field(default_factory=list)
    below: List[LeaderboardEntry] = field(default_factory=list)
    total_players: int = 0

    @property
    def entries(self) -> List[LeaderboardEntry]:
        """Neighbourhood in rank order, the player included"""
        return self.above + [self.player] + self.below


@dataclass(frozen=True)
class PlayerScopeRating:
    """One player's rating in one scope."""
    scope: ScopeKey
    rating: float
    matches_played: int
    wins: int
    last_delta: float
    is_provisional: bool


@dataclass(frozen=True)
class RatingHistoryEntry:
    """One snapshot from a player's rating history."""
    match_id: int
    player_id: int
    scope: ScopeKey
    team_color: TeamColor
    pre_rating: float
    post_rating: float
    delta: float
    win: bool
    is_afk: bool
    k_factor: Optional[int]
    multiplier: float
    created_at: Optional[datetime]
