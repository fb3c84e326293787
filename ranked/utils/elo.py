import math
from typing import Dict, List, Iterable, Optional

from ranked.config import Config
from ranked.constants import MultiplierConstants
from ranked.data_models.rating import PlayerRatingInput, PlayerRatingResult, MatchRatingResult
from ranked.database.models import TeamColor, MatchOrigin
from ranked.utils.exceptions import RatingValidationError

class EloCalculator:
    """Handles Elo rating calculations for team matches within one scope"""

    @staticmethod
    def calculate_expected_score(rating_a: float, rating_b: float) -> float:
        """
        Calculate the expected score for side A against side B

        Args:
            rating_a: Side A's rating
            rating_b: Side B's rating

        Returns:
            Expected score (0.0 to 1.0) for side A
        """
        return 1 / (1 + math.pow(10, (rating_b - rating_a) / 400))

    @staticmethod
    def get_k_factor(matches_played: int, rating: float) -> int:
        """
        Get the K-factor for a player's experience and rating

        Args:
            matches_played: Number of matches the player has played in this scope
            rating: Player's current rating in this scope

        Returns:
            K-factor to use in Elo calculation
        """
        if (matches_played or 0) < Config.PROVISIONAL_MATCH_COUNT:
            return Config.K_FACTOR_PROVISIONAL
        if rating > Config.MASTER_RATING_THRESHOLD:
            return Config.K_FACTOR_MASTER
        return Config.K_FACTOR_STANDARD

    @staticmethod
    def calculate_team_rating(ratings: Iterable[Optional[float]]) -> float:
        """Arithmetic mean of member ratings; unrated members and empty sides count as the starting rating"""
        values = [Config.STARTING_RATING if r is None else r for r in ratings]
        if not values:
            return Config.STARTING_RATING
        return sum(values) / len(values)

    @staticmethod
    def get_outcome_score(team_color: TeamColor, winner_color: Optional[TeamColor]) -> float:
        """1.0 for the winning color, 0.0 for the losing color, 0.5 for both on a draw"""
        if winner_color is None:
            return 0.5
        return 1.0 if team_color == winner_color else 0.0

    @staticmethod
    def round_rating(value: float) -> float:
        """Round a delta or rating to the configured precision"""
        return round(value, Config.RATING_DECIMALS)

    @staticmethod
    def calculate_afk_penalty(loser_expected_score: float) -> float:
        """
        Fixed penalty replacing an AFK player's delta

        The base loser delta uses the reference K against the expected score
        of the side expected to lose, so the penalty does not depend on the
        declared outcome, the AFK player's own K-factor or their side.

        Args:
            loser_expected_score: Lower of the two sides' expected scores

        Returns:
            Negative, unrounded penalty
        """
        base_loser_delta = Config.AFK_REFERENCE_K_FACTOR * loser_expected_score
        return -max(Config.AFK_MINIMUM_PENALTY, base_loser_delta) * Config.AFK_PENALTY_FACTOR

    @staticmethod
    def validate_multiplier(multiplier: float) -> float:
        """Multipliers must satisfy 0 < m <= 1"""
        if multiplier is None or isinstance(multiplier, bool):
            raise RatingValidationError(f"Invalid scope multiplier {multiplier!r}")
        try:
            value = float(multiplier)
        except (TypeError, ValueError):
            raise RatingValidationError(f"Invalid scope multiplier {multiplier!r}")
        if not 0 < value <= 1:
            raise RatingValidationError(f"Scope multiplier must be in (0, 1], got {value}")
        return value

    @staticmethod
    def resolve_global_multiplier(origin: Optional[MatchOrigin]) -> float:
        """Global scope weight for a match origin; matches with no known origin count in full"""
        if origin is None:
            return MultiplierConstants.DEFAULT
        weights = {
            MatchOrigin.VERIFIED_COMPETITION: MultiplierConstants.VERIFIED_COMPETITION,
            MatchOrigin.UNVERIFIED_COMPETITION: MultiplierConstants.UNVERIFIED_COMPETITION,
            MatchOrigin.PLAZA_OFFICIAL: MultiplierConstants.PLAZA_OFFICIAL,
            MatchOrigin.PLAZA: MultiplierConstants.PLAZA,
        }
        return weights[MatchOrigin.normalize(origin)]

    @staticmethod
    def calculate_match(
        rosters: Dict[TeamColor, List[PlayerRatingInput]],
        winner_color: Optional[TeamColor],
        afk_player_ids: Iterable[int] = (),
        multiplier: float = 1.0
    ) -> MatchRatingResult:
        """
        Calculate every player's rating change for one match in one scope

        Args:
            rosters: Pre-match state of each color's players in this scope
            winner_color: Winning color, or None for a draw
            afk_player_ids: Players whose delta is replaced by the AFK penalty
            multiplier: Scope multiplier applied after the AFK override

        Returns:
            MatchRatingResult with per-player pre/post/delta
        """
        multiplier = EloCalculator.validate_multiplier(multiplier)
        afk = set(afk_player_ids or ())

        rojo = rosters.get(TeamColor.ROJO, [])
        azul = rosters.get(TeamColor.AZUL, [])

        team_averages = {
            TeamColor.ROJO: EloCalculator.calculate_team_rating(p.rating for p in rojo),
            TeamColor.AZUL: EloCalculator.calculate_team_rating(p.rating for p in azul),
        }

        expected_rojo = EloCalculator.calculate_expected_score(
            team_averages[TeamColor.ROJO], team_averages[TeamColor.AZUL]
        )
        expected_scores = {
            TeamColor.ROJO: expected_rojo,
            TeamColor.AZUL: 1 - expected_rojo,
        }

        # The side expected to lose is the reference, whatever the declared outcome
        afk_penalty = EloCalculator.calculate_afk_penalty(min(expected_scores.values()))

        players = []
        for color, members in ((TeamColor.ROJO, rojo), (TeamColor.AZUL, azul)):
            outcome = EloCalculator.get_outcome_score(color, winner_color)
            for member in members:
                k_factor = EloCalculator.get_k_factor(member.matches_played, member.rating)
                is_afk = member.player_id in afk

                if is_afk:
                    raw_delta = afk_penalty
                else:
                    raw_delta = k_factor * (outcome - expected_scores[color])

                delta = EloCalculator.round_rating(raw_delta * multiplier)
                players.append(PlayerRatingResult(
                    player_id=member.player_id,
                    team_color=color,
                    pre=member.rating,
                    post=EloCalculator.round_rating(member.rating + delta),
                    delta=delta,
                    k_factor=k_factor,
                    is_afk=is_afk,
                    win=winner_color is not None and color == winner_color
                ))

        return MatchRatingResult(
            team_averages=team_averages,
            expected_scores=expected_scores,
            multiplier=multiplier,
            players=players
        )

    @staticmethod
    def format_delta(delta: float) -> str:
        """
        Format a rating change for display

        Args:
            delta: The rating change value

        Returns:
            Formatted string with an explicit sign
        """
        if delta > 0:
            return f"+{delta:.1f}"
        elif delta < 0:
            return f"{delta:.1f}"
        else:
            return "±0.0"
