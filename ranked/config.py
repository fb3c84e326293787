import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """Rating engine configuration settings"""

    # Database settings
    DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///ranked.db')

    # Logging settings
    DEBUG = os.getenv('DEBUG', 'False').lower() == 'true'
    LOG_DIR = os.getenv('LOG_DIR', 'logs')
    LOG_TO_FILE = os.getenv('LOG_TO_FILE', 'True').lower() == 'true'

    # Rating settings
    STARTING_RATING = 1500.0
    MAX_PLAYERS_PER_SIDE = 9

    # Elo calculation settings
    K_FACTOR_PROVISIONAL = 32  # First 30 matches
    K_FACTOR_STANDARD = 24     # Established players
    K_FACTOR_MASTER = 16       # Established players above the master threshold
    PROVISIONAL_MATCH_COUNT = 30
    MASTER_RATING_THRESHOLD = 2400

    # AFK penalty settings
    AFK_REFERENCE_K_FACTOR = 32
    AFK_MINIMUM_PENALTY = 15
    AFK_PENALTY_FACTOR = 2

    # Rounding applied to every delta and rating
    RATING_DECIMALS = 1

    # Read API settings
    LEADERBOARD_CACHE_TTL = int(os.getenv('LEADERBOARD_CACHE_TTL', 60))
    LEADERBOARD_MAX_PAGE_SIZE = 100
    RANK_CONTEXT_WINDOW = 3
    PLAYER_HISTORY_LIMIT = 50

    @classmethod
    def get_async_database_url(cls, database_url: str = None) -> str:
        """Return the configured URL with an async driver for sqlite"""
        url = database_url or cls.DATABASE_URL
        if url.startswith('sqlite:///'):
            url = url.replace('sqlite:///', 'sqlite+aiosqlite:///')
        return url

    @classmethod
    def validate(cls):
        """Validate that the rating configuration is coherent"""
        if not cls.DATABASE_URL:
            raise ValueError("DATABASE_URL is required")
        if not (cls.K_FACTOR_PROVISIONAL >= cls.K_FACTOR_STANDARD >= cls.K_FACTOR_MASTER > 0):
            raise ValueError("K factors must be positive and non-increasing (provisional >= standard >= master)")
        if cls.PROVISIONAL_MATCH_COUNT < 0:
            raise ValueError("PROVISIONAL_MATCH_COUNT cannot be negative")
        if cls.MAX_PLAYERS_PER_SIDE < 1:
            raise ValueError("MAX_PLAYERS_PER_SIDE must be at least 1")
        if cls.AFK_MINIMUM_PENALTY <= 0 or cls.AFK_PENALTY_FACTOR < 1:
            raise ValueError("AFK penalty must be strictly more punishing than a loss")
