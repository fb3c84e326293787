"""Tests for ScopeKey and the match-finalized event model."""

import pytest

from ranked.constants import ScopeLevel
from ranked.data_models.rating import MatchFinalizedEvent
from ranked.data_models.scope import ScopeKey
from ranked.database.models import Modality, Category, TeamColor, MatchOrigin
from ranked.utils.exceptions import InvalidScopeError, RatingValidationError


class TestScopeKey:

    def test_global_scope(self):
        scope = ScopeKey.global_scope("foam", "mixto")
        assert scope.modality is Modality.FOAM
        assert scope.category is Category.MIXTO
        assert scope.is_global
        assert scope.level == ScopeLevel.GLOBAL
        assert scope.storage_key == "*:*:Foam:Mixto"

    def test_storage_keys_are_distinct_per_level(self):
        keys = {
            ScopeKey(Modality.CLOTH, Category.LIBRE).storage_key,
            ScopeKey(Modality.CLOTH, Category.LIBRE, competition_id=7).storage_key,
            ScopeKey(Modality.CLOTH, Category.LIBRE, competition_id=7, season_id=2).storage_key,
        }
        assert keys == {"*:*:Cloth:Libre", "7:*:Cloth:Libre", "7:2:Cloth:Libre"}

    def test_season_without_competition_rejected(self):
        with pytest.raises(InvalidScopeError):
            ScopeKey(Modality.FOAM, Category.MIXTO, season_id=3)

    def test_unknown_modality_rejected(self):
        with pytest.raises(RatingValidationError):
            ScopeKey("Latex", Category.MIXTO)

    def test_cascade_order(self):
        scopes = ScopeKey.cascade_for(Modality.FOAM, Category.MIXTO, competition_id=4, season_id=9)
        assert [s.level for s in scopes] == list(ScopeLevel.ORDERED)
        assert scopes[1].competition_id == 4 and scopes[1].season_id is None

    def test_cascade_without_competition_is_global_only(self):
        scopes = ScopeKey.cascade_for(Modality.FOAM, Category.MIXTO)
        assert len(scopes) == 1 and scopes[0].is_global

    def test_cascade_rejects_orphan_season(self):
        with pytest.raises(InvalidScopeError):
            ScopeKey.cascade_for(Modality.FOAM, Category.MIXTO, season_id=1)

    def test_dict_round_trip_and_hashing(self):
        scope = ScopeKey(Modality.FOAM, Category.FEMENINO, competition_id=1, season_id=2)
        assert ScopeKey.from_dict(scope.to_dict()) == scope
        assert len({scope, ScopeKey.from_dict(scope.to_dict())}) == 1


class TestMatchFinalizedEvent:

    def test_from_dict_normalizes_values(self):
        event = MatchFinalizedEvent.from_dict({
            'match_id': "12",
            'modality': "cloth",
            'category': "FEMENINO",
            'rosters': {'rojo': [1, 2], 'azul': ["3"]},
            'winner_color': "Azul",
            'afk_player_ids': [2],
            'origin': "plaza_official",
        })
        assert event.match_id == 12
        assert event.modality is Modality.CLOTH
        assert event.category is Category.FEMENINO
        assert event.rosters[TeamColor.AZUL] == [3]
        assert event.winner_color is TeamColor.AZUL
        assert event.origin is MatchOrigin.PLAZA_OFFICIAL
        assert event.all_player_ids == [1, 2, 3]

    @pytest.mark.parametrize("payload", [{'winner_color': "draw"}, {'winner_color': "Empate"}, {'draw': True}])
    def test_draw_forms(self, payload):
        data = {'match_id': 1, 'modality': "Foam", 'category': "Mixto", 'rosters': {'rojo': [1], 'azul': [2]}}
        data.update(payload)
        assert MatchFinalizedEvent.from_dict(data).is_draw

    def test_missing_outcome_rejected(self):
        with pytest.raises(RatingValidationError):
            MatchFinalizedEvent.from_dict({
                'match_id': 1, 'modality': "Foam", 'category': "Mixto", 'rosters': {'rojo': [1]}
            })

    @pytest.mark.parametrize("overrides", [
        {'match_id': "abc"},
        {'rosters': {'rojo': ["one"], 'azul': [2]}},
        {'afk_player_ids': ["x"]},
        {'competition_id': "league"},
        {'rosters': [1, 2]},
    ])
    def test_malformed_ids_rejected(self, overrides):
        data = {
            'match_id': 1, 'modality': "Foam", 'category': "Mixto",
            'rosters': {'rojo': [1], 'azul': [2]}, 'winner_color': "rojo",
        }
        data.update(overrides)
        with pytest.raises(RatingValidationError):
            MatchFinalizedEvent.from_dict(data)

    def test_numeric_string_scope_ids_accepted(self):
        event = MatchFinalizedEvent.from_dict({
            'match_id': 1, 'modality': "Foam", 'category': "Mixto",
            'rosters': {'rojo': [1], 'azul': [2]}, 'winner_color': "rojo",
            'competition_id': "5", 'season_id': "6",
        })
        assert (event.competition_id, event.season_id) == (5, 6)

    def test_missing_color_defaults_to_empty(self):
        event = MatchFinalizedEvent(1, Modality.FOAM, Category.MIXTO, {TeamColor.ROJO: [1]}, TeamColor.ROJO)
        assert event.rosters[TeamColor.AZUL] == []

    def test_scopes_follow_competition_and_season(self):
        event = MatchFinalizedEvent(
            1, Modality.FOAM, Category.MIXTO, {TeamColor.ROJO: [1]}, TeamColor.ROJO,
            competition_id=5, season_id=6
        )
        assert [s.storage_key for s in event.scopes()] == ["*:*:Foam:Mixto", "5:*:Foam:Mixto", "5:6:Foam:Mixto"]
