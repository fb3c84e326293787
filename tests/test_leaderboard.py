"""Tests for the leaderboard, rank context and player read APIs."""

import pytest

from ranked.data_models.scope import ScopeKey
from ranked.database.models import Modality, Category, TeamColor
from ranked.services.rating_service import RatingService
from ranked.utils.exceptions import RatingValidationError


async def _seed(service, make_event):
    """Player 1 wins twice, player 4 loses twice, 2 and 3 play once each."""
    await service.handle_match_finalized(make_event(1, [1], [2], winner="rojo"))
    await service.handle_match_finalized(make_event(2, [3], [4], winner="rojo"))
    await service.handle_match_finalized(make_event(3, [1], [4], winner="rojo"))


class TestLeaderboard:

    @pytest.mark.asyncio
    async def test_sorted_by_rating_with_stable_tie_break(self, service, make_event, global_scope):
        await _seed(service, make_event)

        page = await service.leaderboard(global_scope, limit=10)

        ratings = [e.rating for e in page.entries]
        assert ratings == sorted(ratings, reverse=True)
        assert [e.rank for e in page.entries] == [1, 2, 3, 4]
        assert [e.player_id for e in page.entries] == [1, 3, 2, 4]

    @pytest.mark.asyncio
    async def test_equal_ratings_keep_insertion_order(self, service, make_event, global_scope):
        await service.handle_match_finalized(make_event(1, [5, 6], [7, 8], winner=None))

        page = await service.leaderboard(global_scope)

        assert [e.player_id for e in page.entries] == [5, 6, 7, 8]
        assert [e.rank for e in page.entries] == [1, 2, 3, 4]

    @pytest.mark.asyncio
    async def test_min_matches_filter(self, service, make_event, global_scope):
        await _seed(service, make_event)

        page = await service.leaderboard(global_scope, min_matches_played=2)

        assert {e.player_id for e in page.entries} == {1, 4}
        assert page.total_players == 2
        assert [e.rank for e in page.entries] == [1, 2]

    @pytest.mark.asyncio
    async def test_pagination(self, service, make_event, global_scope):
        await _seed(service, make_event)

        first = await service.leaderboard(global_scope, limit=3, page=1)
        second = await service.leaderboard(global_scope, limit=3, page=2)

        assert first.total_pages == 2
        assert [e.rank for e in first.entries] == [1, 2, 3]
        assert [e.rank for e in second.entries] == [4]

    @pytest.mark.asyncio
    async def test_empty_scope(self, service):
        page = await service.leaderboard(ScopeKey(Modality.CLOTH, Category.LIBRE))
        assert page.entries == [] and page.total_players == 0 and page.total_pages == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit,page_number", [(0, 1), (101, 1), (10, 0)])
    async def test_invalid_paging_rejected(self, service, global_scope, limit, page_number):
        with pytest.raises(RatingValidationError):
            await service.leaderboard(global_scope, limit=limit, page=page_number)

    @pytest.mark.asyncio
    async def test_win_rate(self, service, make_event, global_scope):
        await _seed(service, make_event)
        page = await service.leaderboard(global_scope)
        by_player = {e.player_id: e for e in page.entries}
        assert by_player[1].win_rate == 100.0
        assert by_player[4].win_rate == 0.0

    @pytest.mark.asyncio
    async def test_cache_cleared_after_mutation(self, db, make_event, global_scope):
        service = RatingService(db, cache_ttl=300)
        await service.handle_match_finalized(make_event(1, [1], [2], winner="rojo"))
        assert (await service.leaderboard(global_scope)).entries[0].player_id == 1

        await service.revert(1)
        await service.handle_match_finalized(make_event(1, [1], [2], winner="azul"))

        assert (await service.leaderboard(global_scope)).entries[0].player_id == 2


class TestRankContext:

    @pytest.mark.asyncio
    async def test_neighbours_carry_their_own_rank(self, service, make_event, global_scope):
        for match_id in range(1, 5):
            await service.handle_match_finalized(
                make_event(match_id, [match_id * 10], [match_id * 10 + 1], winner="rojo")
            )

        full = await service.leaderboard(global_scope, limit=100)
        target = full.entries[4]

        context = await service.rank_context(global_scope, target.player_id, window=2)

        assert context.player.rank == 5
        assert [e.rank for e in context.above] == [3, 4]
        assert [e.rank for e in context.below] == [6, 7]
        assert [e.player_id for e in context.entries] == [e.player_id for e in full.entries[2:7]]

    @pytest.mark.asyncio
    async def test_window_clipped_at_top(self, service, make_event, global_scope):
        await _seed(service, make_event)

        context = await service.rank_context(global_scope, 1)

        assert context.player.rank == 1
        assert context.above == []
        assert [e.rank for e in context.below] == [2, 3, 4]

    @pytest.mark.asyncio
    async def test_unranked_player(self, service, make_event, global_scope):
        await _seed(service, make_event)

        assert await service.rank_context(global_scope, 999) is None
        assert await service.rank_context(global_scope, 2, min_matches_played=2) is None


class TestPlayerViews:

    @pytest.mark.asyncio
    async def test_player_ratings_across_scopes(self, service, make_event):
        await service.handle_match_finalized(make_event(1, [1], [2], competition_id=4, season_id=2))

        ratings = await service.player_ratings(1)

        assert [r.scope.level for r in ratings] == ["global", "competition", "season"]
        assert all(r.rating == 1516.0 and r.is_provisional for r in ratings)
        assert await service.player_ratings(1, modality="Cloth") == []

    @pytest.mark.asyncio
    async def test_player_history_newest_first(self, service, make_event, global_scope):
        await _seed(service, make_event)

        history = await service.player_history(1, scope=global_scope)

        assert [h.match_id for h in history] == [3, 1]
        assert history[0].pre_rating == history[1].post_rating
        assert history[0].team_color == TeamColor.ROJO

    @pytest.mark.asyncio
    async def test_player_history_limit(self, service, make_event):
        await _seed(service, make_event)
        assert len(await service.player_history(1, limit=1)) == 1

    @pytest.mark.asyncio
    async def test_match_snapshots(self, service, make_event):
        await service.handle_match_finalized(make_event(1, [1], [2], winner="rojo", competition_id=4))

        snapshots = await service.match_snapshots(1)

        assert len(snapshots) == 4
        assert {(s.player_id, s.delta) for s in snapshots} == {(1, 16.0), (2, -16.0)}
