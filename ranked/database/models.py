import json
from sqlalchemy import (
    Column, Integer, String, DateTime, Boolean, Text, Float,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Index
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
from enum import Enum
from typing import List

from ranked.utils.exceptions import RatingValidationError

Base = declarative_base()


class NormalizedEnum(Enum):
    """Enum that accepts loosely formatted input values"""

    @classmethod
    def normalize(cls, value):
        """
        Resolve a member from a member, a value or a case-insensitive name.

        Raises:
            RatingValidationError: If the value matches no member
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            candidate = value.strip().lower()
            for member in cls:
                if candidate in (member.value.lower(), member.name.lower()):
                    return member
        allowed = ", ".join(m.value for m in cls)
        raise RatingValidationError(f"Invalid {cls.__name__.lower()} '{value}' (expected one of: {allowed})")


class Modality(NormalizedEnum):
    FOAM = "Foam"
    CLOTH = "Cloth"

class Category(NormalizedEnum):
    MASCULINO = "Masculino"
    FEMENINO = "Femenino"
    MIXTO = "Mixto"
    LIBRE = "Libre"

class TeamColor(NormalizedEnum):
    ROJO = "rojo"
    AZUL = "azul"

    @property
    def opponent(self) -> 'TeamColor':
        return TeamColor.AZUL if self is TeamColor.ROJO else TeamColor.ROJO

class AppliedState(Enum):
    """Rating state of a match: NOT_APPLIED -> APPLIED -> REVERTED -> APPLIED ..."""
    NOT_APPLIED = "not_applied"
    APPLIED = "applied"
    REVERTED = "reverted"

class MatchOrigin(NormalizedEnum):
    """Where a finalized match came from, used to weight the global scope"""
    VERIFIED_COMPETITION = "verified_competition"
    UNVERIFIED_COMPETITION = "unverified_competition"
    PLAZA_OFFICIAL = "plaza_official"
    PLAZA = "plaza"


class PlayerRating(Base):
    """
    Current rating and career counters of one player in one ranking scope.

    The scope is stored both decomposed (for filtering) and as a canonical
    scope_key string, which carries the uniqueness guarantee because SQL
    unique constraints treat NULL competition/season ids as distinct.
    """
    __tablename__ = 'player_ratings'

    id = Column(Integer, primary_key=True)
    player_id = Column(Integer, nullable=False, index=True)

    # Scope
    scope_key = Column(String(160), nullable=False)
    competition_id = Column(Integer, nullable=True, index=True)
    season_id = Column(Integer, nullable=True, index=True)
    modality = Column(SQLEnum(Modality), nullable=False)
    category = Column(SQLEnum(Category), nullable=False)

    # Rating state
    rating = Column(Float, nullable=False, default=1500.0)
    matches_played = Column(Integer, nullable=False, default=0)
    wins = Column(Integer, nullable=False, default=0)
    last_delta = Column(Float, nullable=False, default=0.0)

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint('player_id', 'scope_key', name='uq_player_rating_scope'),
        CheckConstraint('matches_played >= 0', name='non_negative_matches_check'),
        CheckConstraint('wins >= 0 AND wins <= matches_played', name='wins_within_matches_check'),
        Index('ix_player_ratings_scope_rating', 'scope_key', 'rating'),
    )

    @property
    def is_provisional(self) -> bool:
        from ranked.config import Config
        return (self.matches_played or 0) < Config.PROVISIONAL_MATCH_COUNT

    def __repr__(self):
        return f"<PlayerRating(player_id={self.player_id}, scope='{self.scope_key}', rating={self.rating})>"


class MatchSnapshot(Base):
    """
    Immutable record of one match's effect on one player in one scope.

    Snapshots are the ground truth for revert and recompute; their numbers
    are replayed, never re-derived.
    """
    __tablename__ = 'match_snapshots'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, nullable=False, index=True)
    player_id = Column(Integer, nullable=False, index=True)

    # Scope
    scope_key = Column(String(160), nullable=False)
    competition_id = Column(Integer, nullable=True)
    season_id = Column(Integer, nullable=True)
    modality = Column(SQLEnum(Modality), nullable=False)
    category = Column(SQLEnum(Category), nullable=False)

    # Recorded effect
    team_color = Column(SQLEnum(TeamColor), nullable=False)
    pre_rating = Column(Float, nullable=False)
    post_rating = Column(Float, nullable=False)
    delta = Column(Float, nullable=False)
    win = Column(Boolean, nullable=False, default=False)
    is_afk = Column(Boolean, nullable=False, default=False)
    k_factor = Column(Integer, nullable=True)
    multiplier = Column(Float, nullable=False, default=1.0)

    # Application time, set by the engine with microsecond resolution for replay ordering
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint('match_id', 'player_id', 'scope_key', name='uq_snapshot_match_player_scope'),
        Index('ix_match_snapshots_scope_created', 'scope_key', 'created_at'),
    )

    @property
    def counts_as_win(self) -> bool:
        """A recorded win only counts toward the wins counter when the player was present"""
        return bool(self.win) and not self.is_afk

    def __repr__(self):
        return (
            f"<MatchSnapshot(match_id={self.match_id}, player_id={self.player_id}, "
            f"scope='{self.scope_key}', delta={self.delta}, afk={self.is_afk})>"
        )


class TeamRoster(Base):
    """Players assigned to one color of a match"""
    __tablename__ = 'team_rosters'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, nullable=False, index=True)
    color = Column(SQLEnum(TeamColor), nullable=False)
    player_ids = Column(Text, nullable=False, default="[]")  # JSON list, order preserved
    average_pre_rating = Column(Float, nullable=True)  # Informational, from the global pass

    # Metadata
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    __table_args__ = (UniqueConstraint('match_id', 'color', name='uq_roster_match_color'),)

    @property
    def players(self) -> List[int]:
        return json.loads(self.player_ids or "[]")

    @players.setter
    def players(self, value: List[int]):
        self.player_ids = json.dumps(list(value))

    def __repr__(self):
        return f"<TeamRoster(match_id={self.match_id}, color={self.color.value}, players={len(self.players)})>"


class MatchRatingState(Base):
    """
    Applied-state of a match as seen by the rating engine.

    Apply and revert are the only transitions; the transition into APPLIED
    is a conditional update so concurrent cascades cannot both win it.
    """
    __tablename__ = 'match_rating_states'

    id = Column(Integer, primary_key=True)
    match_id = Column(Integer, nullable=False, unique=True, index=True)
    applied_state = Column(SQLEnum(AppliedState), nullable=False, default=AppliedState.NOT_APPLIED)

    # Context of the latest application
    modality = Column(SQLEnum(Modality), nullable=True)
    category = Column(SQLEnum(Category), nullable=True)
    competition_id = Column(Integer, nullable=True)
    season_id = Column(Integer, nullable=True)

    # Timing
    applied_at = Column(DateTime, nullable=True)
    reverted_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MatchRatingState(match_id={self.match_id}, state={self.applied_state.value})>"


class RatingAuditLog(Base):
    """Audit trail for administrative rating commands"""
    __tablename__ = 'rating_audit_log'

    id = Column(Integer, primary_key=True)
    action_type = Column(String(50), nullable=False, index=True)
    scope_key = Column(String(160), nullable=True)
    match_id = Column(Integer, nullable=True)
    details = Column(Text)  # JSON
    reason = Column(Text, nullable=True)
    performed_by = Column(String(100), nullable=True)
    affected_players_count = Column(Integer, default=0)
    created_at = Column(DateTime, default=func.now())

    def __repr__(self):
        return f"<RatingAuditLog(action='{self.action_type}', scope='{self.scope_key}', match_id={self.match_id})>"
