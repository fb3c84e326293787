"""
Rating data models for the cascade, revert and recompute workflows.

Provides the finalized-match input consumed from collaborators and the
immutable result objects returned by each engine operation.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from ranked.data_models.scope import ScopeKey
from ranked.database.models import Modality, Category, TeamColor, MatchOrigin
from ranked.utils.exceptions import RatingValidationError

DRAW_VALUES = ("draw", "empate", "tie")


@dataclass
class MatchFinalizedEvent:
    """A finalized match as delivered by the external match aggregate."""
    match_id: int
    modality: Modality
    category: Category
    rosters: Dict[TeamColor, List[int]]
    winner_color: Optional[TeamColor] = None  # None means the match was a draw
    afk_player_ids: List[int] = field(default_factory=list)
    competition_id: Optional[int] = None
    season_id: Optional[int] = None
    global_multiplier: Optional[float] = None
    origin: Optional[MatchOrigin] = None

    def __post_init__(self):
        self.modality = Modality.normalize(self.modality)
        self.category = Category.normalize(self.category)
        if self.winner_color is not None:
            self.winner_color = TeamColor.normalize(self.winner_color)
        if self.origin is not None:
            self.origin = MatchOrigin.normalize(self.origin)
        self.rosters = {
            TeamColor.normalize(color): list(players or [])
            for color, players in (self.rosters or {}).items()
        }
        for color in TeamColor:
            self.rosters.setdefault(color, [])
        self.afk_player_ids = list(self.afk_player_ids or [])

    @property
    def is_draw(self) -> bool:
        return self.winner_color is None

    @property
    def all_player_ids(self) -> List[int]:
        return self.rosters[TeamColor.ROJO] + self.rosters[TeamColor.AZUL]

    def scopes(self) -> List[ScopeKey]:
        return ScopeKey.cascade_for(self.modality, self.category, self.competition_id, self.season_id)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MatchFinalizedEvent':
        """
        Build an event from a JSON-compatible payload.

        Accepts either `winner_color` ("rojo"/"azul"/"draw") or `draw: true`.
        """
        for key in ('match_id', 'modality', 'category', 'rosters'):
            if key not in data:
                raise RatingValidationError(f"Missing '{key}' in match event")

        winner = data.get('winner_color')
        if data.get('draw') or (isinstance(winner, str) and winner.strip().lower() in DRAW_VALUES):
            winner = None
        elif winner is None:
            raise RatingValidationError("Match event needs a 'winner_color' or 'draw: true'")

        try:
            match_id = int(data['match_id'])
            rosters = {color: [int(p) for p in players] for color, players in data['rosters'].items()}
            afk_player_ids = [int(p) for p in data.get('afk_player_ids') or []]
            competition_id = _optional_int(data.get('competition_id'))
            season_id = _optional_int(data.get('season_id'))
        except (TypeError, ValueError, AttributeError) as e:
            raise RatingValidationError(f"Malformed id in match event: {e}")

        return cls(
            match_id=match_id,
            modality=data['modality'],
            category=data['category'],
            rosters=rosters,
            winner_color=winner,
            afk_player_ids=afk_player_ids,
            competition_id=competition_id,
            season_id=season_id,
            global_multiplier=data.get('global_multiplier'),
            origin=data.get('origin'),
        )


def _optional_int(value: Any) -> Optional[int]:
    return None if value is None else int(value)


@dataclass(frozen=True)
class PlayerRatingInput:
    """Pre-match state of one player in the scope being rated."""
    player_id: int
    rating: float
    matches_played: int


@dataclass(frozen=True)
class PlayerRatingResult:
    """Computed effect of a match on one player in one scope."""
    player_id: int
    team_color: TeamColor
    pre: float
    post: float
    delta: float
    k_factor: int
    is_afk: bool
    win: bool


@dataclass(frozen=True)
class MatchRatingResult:
    """RatingEngine output for one match in one scope."""
    team_averages: Dict[TeamColor, float]
    expected_scores: Dict[TeamColor, float]
    multiplier: float
    players: List[PlayerRatingResult]

    def by_player(self) -> Dict[int, PlayerRatingResult]:
        return {p.player_id: p for p in self.players}


@dataclass(frozen=True)
class ScopeApplication:
    """One committed scope pass of a cascade."""
    scope: ScopeKey
    result: MatchRatingResult


@dataclass(frozen=True)
class CascadeResult:
    """Result of applying one finalized match to all of its scopes."""
    match_id: int
    applications: List[ScopeApplication]

    @property
    def scopes(self) -> List[ScopeKey]:
        return [a.scope for a in self.applications]

    def for_scope(self, scope: ScopeKey) -> Optional[MatchRatingResult]:
        for application in self.applications:
            if application.scope == scope:
                return application.result
        return None


@dataclass(frozen=True)
class RevertResult:
    """Result of reverting one match across every scope it touched."""
    match_id: int
    noop: bool
    snapshots_reverted: int = 0
    scope_keys: List[str] = field(default_factory=list)
    affected_players: List[int] = field(default_factory=list)


@dataclass(frozen=True)
class RecomputeResult:
    """Result of rebuilding one scope from its snapshot history."""
    scope: ScopeKey
    players_rebuilt: int
    snapshots_replayed: int


@dataclass(frozen=True)
class ResetResult:
    """Result of deleting every rating row of one scope."""
    scope: ScopeKey
    ratings_deleted: int
    snapshots_deleted: int
    matches_reverted: int
