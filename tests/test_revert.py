"""Tests for reverting applied matches."""

import asyncio

import pytest
from sqlalchemy import select
from hypothesis import HealthCheck, given, settings, strategies as st

from ranked.constants import AuditActions
from ranked.database.database import Database
from ranked.database.models import AppliedState, MatchSnapshot, PlayerRating, RatingAuditLog, TeamRoster
from ranked.services.rating_service import RatingService


class TestRevert:

    @pytest.mark.asyncio
    async def test_revert_restores_exact_state(self, service, make_event, global_scope, get_rating, count_rows):
        await service.handle_match_finalized(make_event(1, [1, 2], [3, 4], winner="rojo"))
        before = {pid: await get_rating(global_scope, pid) for pid in (1, 2, 3, 4)}

        await service.handle_match_finalized(make_event(2, [1, 3], [2, 4], winner="azul", afk=[3]))
        result = await service.revert(2, reason="wrong winner", performed_by="ops")

        assert not result.noop
        assert result.snapshots_reverted == 4
        assert result.affected_players == [1, 2, 3, 4]
        for pid, old in before.items():
            row = await get_rating(global_scope, pid)
            assert (row.rating, row.matches_played, row.wins) == (old.rating, old.matches_played, old.wins)

        assert await count_rows(MatchSnapshot) == 4
        assert await service.get_applied_state(2) == AppliedState.REVERTED

    @pytest.mark.asyncio
    async def test_revert_touches_every_scope(self, service, make_event, get_rating, count_rows):
        cascade = await service.handle_match_finalized(
            make_event(1, [1], [2], winner="rojo", competition_id=3, season_id=1)
        )
        result = await service.revert(1)

        assert sorted(result.scope_keys) == sorted(s.storage_key for s in cascade.scopes)
        for scope in cascade.scopes:
            row = await get_rating(scope, 1)
            assert (row.rating, row.matches_played, row.wins) == (1500.0, 0, 0)
        assert await count_rows(MatchSnapshot) == 0
        assert await count_rows(TeamRoster) == 0

    @pytest.mark.asyncio
    async def test_revert_without_snapshots_is_noop(self, service, count_rows):
        result = await service.revert(404)

        assert result.noop
        assert await service.get_applied_state(404) == AppliedState.NOT_APPLIED
        assert await count_rows(RatingAuditLog) == 0

    @pytest.mark.asyncio
    async def test_second_revert_is_noop(self, service, make_event):
        await service.handle_match_finalized(make_event(1, [1], [2]))
        await service.revert(1)

        assert (await service.revert(1)).noop

    @pytest.mark.asyncio
    async def test_reapply_after_revert(self, service, make_event, global_scope, get_rating):
        await service.handle_match_finalized(make_event(1, [1], [2], winner="rojo"))
        await service.revert(1)
        await service.handle_match_finalized(make_event(1, [1], [2], winner="azul"))

        assert (await get_rating(global_scope, 1)).rating == 1484.0
        assert (await get_rating(global_scope, 2)).wins == 1
        assert await service.get_applied_state(1) == AppliedState.APPLIED

    @pytest.mark.asyncio
    async def test_revert_skips_deleted_rating_rows(self, service, make_event, global_scope, get_rating):
        await service.handle_match_finalized(make_event(1, [1], [2], winner="rojo"))
        await service.bulk_delete(global_scope, [1])

        result = await service.revert(1)

        assert result.snapshots_reverted == 2
        assert await get_rating(global_scope, 1) is None
        assert (await get_rating(global_scope, 2)).rating == 1500.0

    @pytest.mark.asyncio
    async def test_revert_is_audited(self, service, make_event):
        await service.handle_match_finalized(make_event(1, [1], [2]))
        await service.revert(1, reason="duplicate report", performed_by="referee")

        entries = await service.audit_log(action_type=AuditActions.REVERT)
        assert len(entries) == 1
        assert entries[0].match_id == 1
        assert entries[0].reason == "duplicate report"
        assert entries[0].performed_by == "referee"
        assert entries[0].affected_players_count == 2


class TestRevertRoundTrip:
    """Apply followed by revert leaves every counter exactly as it was."""

    @settings(max_examples=15, deadline=None, suppress_health_check=[HealthCheck.function_scoped_fixture])
    @given(
        history=st.lists(
            st.tuples(st.sampled_from(["rojo", "azul", None]), st.booleans()),
            min_size=1, max_size=6
        ),
        final_winner=st.sampled_from(["rojo", "azul", None]),
        final_afk=st.booleans(),
        multiplier=st.sampled_from([1.0, 0.5, 0.3])
    )
    def test_round_trip(self, tmp_path_factory, make_event, history, final_winner, final_afk, multiplier):
        db_path = tmp_path_factory.mktemp('roundtrip') / 'test.db'

        async def scenario():
            db = Database(f"sqlite+aiosqlite:///{db_path}")
            await db.initialize()
            try:
                service = RatingService(db, cache_ttl=0)
                for match_id, (winner, afk) in enumerate(history, start=1):
                    await service.handle_match_finalized(
                        make_event(match_id, [1, 2], [3], winner=winner, afk=[2] if afk else None,
                                   competition_id=1)
                    )

                async def rating_state():
                    async with db.get_session() as session:
                        result = await session.execute(select(PlayerRating).order_by(PlayerRating.id))
                        return [(r.scope_key, r.player_id, r.rating, r.matches_played, r.wins)
                                for r in result.scalars().all()]

                before = await rating_state()
                final_id = len(history) + 1
                await service.handle_match_finalized(
                    make_event(final_id, [1, 2], [3], winner=final_winner, afk=[3] if final_afk else None,
                               competition_id=1, multiplier=multiplier)
                )
                await service.revert(final_id)
                return before, await rating_state()
            finally:
                await db.close()

        before, after = asyncio.run(scenario())
        assert after == before
