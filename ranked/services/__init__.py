"""
Services package for the rating engine.
"""

from .base import BaseService
from .leaderboard import LeaderboardService
from .rating_service import RatingService

__all__ = ['BaseService', 'LeaderboardService', 'RatingService']
