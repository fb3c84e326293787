"""
Ranking scope identity.

A ScopeKey names one independent rating universe. A player's rating in one
scope is never derived from their rating in another.
"""

from dataclasses import dataclass
from typing import Optional, List, Dict, Any

from ranked.constants import ScopeLevel, StorageKeyConstants
from ranked.database.models import Modality, Category
from ranked.utils.exceptions import InvalidScopeError, RatingValidationError


@dataclass(frozen=True)
class ScopeKey:
    """(competition_id?, season_id?, modality, category); no ids means the global scope."""
    modality: Modality
    category: Category
    competition_id: Optional[int] = None
    season_id: Optional[int] = None

    def __post_init__(self):
        object.__setattr__(self, 'modality', Modality.normalize(self.modality))
        object.__setattr__(self, 'category', Category.normalize(self.category))
        if self.season_id is not None and self.competition_id is None:
            raise InvalidScopeError(self.season_id)

    @classmethod
    def global_scope(cls, modality, category) -> 'ScopeKey':
        return cls(modality=modality, category=category)

    @classmethod
    def cascade_for(
        cls,
        modality,
        category,
        competition_id: Optional[int] = None,
        season_id: Optional[int] = None
    ) -> List['ScopeKey']:
        """
        Ordered scopes a finalized match is applied to.

        Global always; competition when a competition is given; season when
        both a competition and a season are given.

        Raises:
            InvalidScopeError: If a season is given without a competition
        """
        if season_id is not None and competition_id is None:
            raise InvalidScopeError(season_id)

        scopes = [cls(modality=modality, category=category)]
        if competition_id is not None:
            scopes.append(cls(modality=modality, category=category, competition_id=competition_id))
            if season_id is not None:
                scopes.append(cls(
                    modality=modality, category=category,
                    competition_id=competition_id, season_id=season_id
                ))
        return scopes

    @property
    def level(self) -> str:
        if self.competition_id is None:
            return ScopeLevel.GLOBAL
        if self.season_id is None:
            return ScopeLevel.COMPETITION
        return ScopeLevel.SEASON

    @property
    def is_global(self) -> bool:
        return self.level == ScopeLevel.GLOBAL

    @property
    def storage_key(self) -> str:
        """Canonical string used as the uniqueness key in storage"""
        wildcard = StorageKeyConstants.WILDCARD
        parts = [
            wildcard if self.competition_id is None else str(self.competition_id),
            wildcard if self.season_id is None else str(self.season_id),
            self.modality.value,
            self.category.value,
        ]
        return StorageKeyConstants.SEPARATOR.join(parts)

    def column_values(self) -> Dict[str, Any]:
        """Column values for rows stored in this scope"""
        return {
            'scope_key': self.storage_key,
            'competition_id': self.competition_id,
            'season_id': self.season_id,
            'modality': self.modality,
            'category': self.category,
        }

    @classmethod
    def from_row(cls, row) -> 'ScopeKey':
        """Rebuild the scope of a stored PlayerRating or MatchSnapshot row"""
        return cls(
            modality=row.modality,
            category=row.category,
            competition_id=row.competition_id,
            season_id=row.season_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'competition_id': self.competition_id,
            'season_id': self.season_id,
            'modality': self.modality.value,
            'category': self.category.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ScopeKey':
        if 'modality' not in data or 'category' not in data:
            raise RatingValidationError("Scope requires 'modality' and 'category'")
        return cls(
            modality=data['modality'],
            category=data['category'],
            competition_id=data.get('competition_id'),
            season_id=data.get('season_id'),
        )

    def __str__(self):
        return self.storage_key
