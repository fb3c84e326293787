"""Pytest configuration and fixtures."""

import os

# Keep test runs from writing dated log files into the working tree
os.environ.setdefault('LOG_TO_FILE', 'false')

import pytest
from sqlalchemy import select, func

from ranked.data_models.rating import MatchFinalizedEvent
from ranked.data_models.scope import ScopeKey
from ranked.database.database import Database
from ranked.database.models import Modality, Category, TeamColor, PlayerRating
from ranked.services.rating_service import RatingService


@pytest.fixture
async def db(tmp_path):
    """Fresh file-backed SQLite database per test."""
    database = Database(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    await database.initialize()
    yield database
    await database.close()


@pytest.fixture
async def service(db):
    """Rating service facade with caching disabled."""
    return RatingService(db, cache_ttl=0)


@pytest.fixture
def global_scope():
    return ScopeKey(Modality.FOAM, Category.MIXTO)


@pytest.fixture
def make_event():
    """Factory for finalized match events in the Foam/Mixto scopes."""
    def _make(match_id, rojo, azul, winner="rojo", afk=None, competition_id=None,
              season_id=None, multiplier=None, origin=None):
        return MatchFinalizedEvent(
            match_id=match_id,
            modality=Modality.FOAM,
            category=Category.MIXTO,
            rosters={TeamColor.ROJO: list(rojo), TeamColor.AZUL: list(azul)},
            winner_color=winner,
            afk_player_ids=list(afk or []),
            competition_id=competition_id,
            season_id=season_id,
            global_multiplier=multiplier,
            origin=origin
        )
    return _make


@pytest.fixture
def get_rating(db):
    """Async lookup of one player's PlayerRating row in a scope, or None."""
    async def _get(scope: ScopeKey, player_id: int):
        async with db.get_session() as session:
            return await session.scalar(
                select(PlayerRating).where(
                    PlayerRating.scope_key == scope.storage_key,
                    PlayerRating.player_id == player_id
                )
            )
    return _get


@pytest.fixture
def count_rows(db):
    """Async row count of a model, optionally filtered by scope."""
    async def _count(model, scope: ScopeKey = None):
        async with db.get_session() as session:
            query = select(func.count()).select_from(model)
            if scope is not None:
                query = query.where(model.scope_key == scope.storage_key)
            return await session.scalar(query)
    return _count
