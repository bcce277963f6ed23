"""
Visibility tests

Per-entry derivation rules, then the competition-wide repair pass.
"""
import pytest

from competition_engine.orm.competition import CompetitionRound
from competition_engine.services.visibility_service import VisibilityService, derive_visibility
from competition_engine.tests.factories import (
    NOW,
    add_entry,
    add_participant,
    days,
    fetch_entry,
    make_competition,
    three_round_schedule,
)


def _round(start, end):
    return CompetitionRound(name="R", start_date=start, end_date=end, likes_to_pass=None)


class TestDeriveVisibility:

    def test_unstarted_round_is_hidden(self):
        future = _round(NOW + days(1), NOW + days(5))
        assert derive_visibility(future, [], NOW) == (False, False)

    def test_unstarted_round_surfaces_posts_after_termination(self):
        future = _round(NOW + days(1), NOW + days(5))
        assert derive_visibility(future, [], NOW, has_post=True, competition_terminated=True) == (False, True)
        assert derive_visibility(future, [], NOW, has_post=False, competition_terminated=True) == (False, False)

    def test_started_round_is_visible(self):
        current = _round(NOW - days(1), NOW + days(5))
        assert derive_visibility(current, [True], NOW) == (True, True)

    def test_round_starting_now_counts_as_started(self):
        current = _round(NOW, NOW + days(5))
        assert derive_visibility(current, [], NOW) == (True, True)

    def test_earlier_failure_hides_from_competition_feed_only(self):
        current = _round(NOW - days(1), NOW + days(5))
        assert derive_visibility(current, [True, False], NOW) == (False, True)

    def test_unresolved_earlier_round_keeps_entry_visible(self):
        current = _round(NOW - days(1), NOW + days(5))
        assert derive_visibility(current, [None], NOW) == (True, True)


@pytest.mark.asyncio
class TestReconcileCompetition:

    async def test_repairs_drifted_flags(self, db):
        schedule = [
            ("Round 1", NOW - days(20), NOW - days(10), 10),
            ("Round 2", NOW - days(10), NOW + days(1), 20),
            ("Round 3", NOW + days(1), NOW + days(10), 30),
        ]
        competition, (r1, r2, r3) = await make_competition(db, schedule)
        winner = await add_participant(db, competition, user_id=1, current_round=r2)
        loser = await add_participant(db, competition, user_id=2, current_round=r1)

        await add_entry(db, winner, r1, post_id="w1", qualified=True, competition_feed=False, normal_feed=False)
        await add_entry(db, winner, r2, competition_feed=False)
        await add_entry(db, winner, r3, competition_feed=True, normal_feed=True)
        await add_entry(db, loser, r1, post_id="l1", qualified=False)
        await add_entry(db, loser, r2, competition_feed=True)
        ids = {"competition": competition.id, "w": winner.id, "l": loser.id,
               "r1": r1.id, "r2": r2.id, "r3": r3.id}

        report = await VisibilityService().reconcile_competition(db, ids["competition"], now=NOW)

        assert report.entries_examined == 5
        assert report.entries_updated == 4

        w1 = await fetch_entry(db, ids["w"], ids["r1"])
        assert (w1.visible_in_competition_feed, w1.visible_in_normal_feed) == (True, True)
        w2 = await fetch_entry(db, ids["w"], ids["r2"])
        assert (w2.visible_in_competition_feed, w2.visible_in_normal_feed) == (True, True)
        w3 = await fetch_entry(db, ids["w"], ids["r3"])
        assert (w3.visible_in_competition_feed, w3.visible_in_normal_feed) == (False, False)
        l1 = await fetch_entry(db, ids["l"], ids["r1"])
        assert (l1.visible_in_competition_feed, l1.visible_in_normal_feed) == (True, True)
        l2 = await fetch_entry(db, ids["l"], ids["r2"])
        assert (l2.visible_in_competition_feed, l2.visible_in_normal_feed) == (False, True)

    async def test_second_pass_changes_nothing(self, db):
        competition, (r1, r2, r3) = await make_competition(db, three_round_schedule(NOW))
        p = await add_participant(db, competition, user_id=1, current_round=r1)
        await add_entry(db, p, r1, post_id="a", qualified=False, normal_feed=False)
        await add_entry(db, p, r2, competition_feed=True)
        competition_id = competition.id

        service = VisibilityService()
        first = await service.reconcile_competition(db, competition_id, now=NOW)
        second = await service.reconcile_competition(db, competition_id, now=NOW)

        assert first.entries_updated == 2
        assert second.entries_updated == 0
        assert second.updated_entry_ids == []

    async def test_terminated_competition_surfaces_unstarted_posts(self, db):
        schedule = [
            ("Round 1", NOW - days(20), NOW - days(10), 10),
            ("Round 2", NOW + days(1), NOW + days(10), 20),
        ]
        competition, (r1, r2) = await make_competition(db, schedule, completion_reason="Ended early")
        p = await add_participant(db, competition, user_id=1, current_round=r2)
        await add_entry(db, p, r1, post_id="a", qualified=True)
        await add_entry(db, p, r2, post_id="b", competition_feed=False, normal_feed=False)
        ids = {"competition": competition.id, "p": p.id, "r2": r2.id}

        report = await VisibilityService().reconcile_competition(db, ids["competition"], now=NOW)

        entry = await fetch_entry(db, ids["p"], ids["r2"])
        assert entry.visible_in_normal_feed is True
        assert entry.visible_in_competition_feed is False
        assert report.normal_feed_changes == 1

    async def test_reconcile_safely_swallows_missing_competition(self, db):
        assert await VisibilityService().reconcile_safely(db, 9999, now=NOW) is None
