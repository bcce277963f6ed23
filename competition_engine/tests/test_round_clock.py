"""
Round clock tests: lifecycle state is a pure function of the current time.
"""
from competition_engine.orm.competition import CompetitionRound
from competition_engine.services.round_clock import (
    RoundState,
    all_rounds_ended,
    has_ended,
    has_started,
    later_rounds,
    next_round,
    previous_rounds,
    round_state,
    select_leaderboard_round,
)
from competition_engine.tests.factories import NOW, days


def _round(round_id, start, end, name=None):
    return CompetitionRound(
        id=round_id,
        competition_id=1,
        name=name or f"Round {round_id}",
        start_date=start,
        end_date=end,
        likes_to_pass=None
    )


def _schedule():
    return [
        _round(1, NOW - days(30), NOW - days(20)),
        _round(2, NOW - days(20), NOW - days(10)),
        _round(3, NOW - days(10), NOW + days(10)),
    ]


class TestRoundState:

    def test_not_started_before_start(self):
        r = _round(1, NOW + days(1), NOW + days(2))
        assert round_state(r, NOW) == RoundState.NOT_STARTED
        assert not has_started(r, NOW)

    def test_open_at_exact_start(self):
        r = _round(1, NOW, NOW + days(2))
        assert round_state(r, NOW) == RoundState.OPEN
        assert has_started(r, NOW)
        assert not has_ended(r, NOW)

    def test_closed_at_exact_end(self):
        """The window is half-open: end_date itself is already closed."""
        r = _round(1, NOW - days(2), NOW)
        assert round_state(r, NOW) == RoundState.CLOSED
        assert has_ended(r, NOW)

    def test_all_rounds_ended(self):
        rounds = _schedule()
        assert not all_rounds_ended(rounds, NOW)
        assert all_rounds_ended(rounds, NOW + days(10))
        assert not all_rounds_ended([], NOW)


class TestRoundOrdering:

    def test_next_round(self):
        r1, r2, r3 = _schedule()
        assert next_round([r3, r1, r2], r1).id == 2
        assert next_round([r3, r1, r2], r2).id == 3
        assert next_round([r3, r1, r2], r3) is None

    def test_previous_and_later_rounds(self):
        r1, r2, r3 = _schedule()
        assert [r.id for r in previous_rounds([r1, r2, r3], r3)] == [1, 2]
        assert previous_rounds([r1, r2, r3], r1) == []
        assert [r.id for r in later_rounds([r1, r2, r3], r1)] == [2, 3]
        assert later_rounds([r1, r2, r3], r3) == []


class TestLeaderboardRoundSelection:

    def test_prefers_open_round(self):
        assert select_leaderboard_round(_schedule(), NOW).id == 3

    def test_falls_back_to_most_recently_ended(self):
        rounds = _schedule()
        assert select_leaderboard_round(rounds, NOW + days(11)).id == 3
        # Gap between rounds: nothing open, round 1 ended most recently
        gapped = [
            _round(1, NOW - days(10), NOW - days(5)),
            _round(2, NOW + days(5), NOW + days(10)),
        ]
        assert select_leaderboard_round(gapped, NOW).id == 1

    def test_last_round_when_nothing_ended(self):
        rounds = [
            _round(1, NOW + days(1), NOW + days(2)),
            _round(2, NOW + days(2), NOW + days(3)),
        ]
        assert select_leaderboard_round(rounds, NOW).id == 2

    def test_no_rounds(self):
        assert select_leaderboard_round([], NOW) is None
