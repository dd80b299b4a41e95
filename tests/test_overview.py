"""Tests for the cohort overview and coach workload rollups."""

from metabolic_analytics.models import CANONICAL_METRIC_TYPES, CohortSnapshot, Conversation, Message
from metabolic_analytics.overview import coach_workload, cohort_overview

from helpers import NOW, at, bp, coach, food, metric, participant


def _full_day(days_ago, user_id="p1"):
    return [metric(t.value, 1, user_id=user_id, timestamp=at(days_ago)) for t in CANONICAL_METRIC_TYPES]


def _cohort():
    return CohortSnapshot(
        users=[
            participant("p1", coach_id="c1"),
            participant("p2", coach_id="c1", created_at=at(2)),
            participant("p3", coach_id="c2", created_at=at(20)),
            participant("p4", coach_id="c2"),
            coach("c1"),
            coach("c2"),
        ],
        metric_entries=[e for d in range(4) for e in _full_day(d)]
        + [metric("WEIGHT", 160, user_id="p2", timestamp=at(0))],
        food_entries=[food(user_id="p4", timestamp=at(d)) for d in range(3)],
    )


class TestCohortOverview:
    def test_rollup(self):
        overview = cohort_overview(_cohort(), now=NOW, range_days=7)
        assert overview.total_participants == 4
        assert overview.active_participants == 3
        assert overview.inactive_participants == 1
        assert overview.new_participants_7_days == 1
        assert overview.new_participants_30_days == 2
        # p1 scores 100 and p2 scores 20; p4 has food but no metrics
        assert overview.average_adherence == 60
        assert overview.participants_with_streak_3_days == 2
        assert overview.participants_with_streak_3_days_percent == 50
        assert overview.range_days == 7

    def test_coach_filter(self):
        overview = cohort_overview(_cohort(), now=NOW, coach_id="c2")
        assert overview.total_participants == 2
        assert overview.active_participants == 1
        assert overview.average_adherence == 0

    def test_range_excludes_older_activity(self):
        snapshot = CohortSnapshot(
            users=[participant("p1")],
            metric_entries=[metric("WEIGHT", 180, timestamp=at(10))],
        )
        overview = cohort_overview(snapshot, now=NOW, range_days=7)
        assert overview.active_participants == 0
        assert overview.participants_with_streak_3_days == 0

    def test_streak_counts_logs_before_the_range(self):
        snapshot = CohortSnapshot(
            users=[participant("p1")],
            metric_entries=[metric("WEIGHT", 180, timestamp=at(d)) for d in range(10)],
        )
        overview = cohort_overview(snapshot, now=NOW, range_days=1)
        assert overview.active_participants == 1
        assert overview.participants_with_streak_3_days == 1
        assert overview.participants_with_streak_3_days_percent == 100

    def test_average_adherence_rounds_once(self):
        # ratios 0.30 and 0.2667 average to 28.33%; scores 30 and 27 would give 29
        snapshot = CohortSnapshot(
            users=[participant("p1"), participant("p2")],
            metric_entries=[
                metric("WEIGHT", 180, timestamp=at(0)),
                metric("WEIGHT", 180, timestamp=at(1)),
                bp(120, 80, timestamp=at(1)),
                metric("WEIGHT", 180, user_id="p2", timestamp=at(0)),
                metric("WEIGHT", 180, user_id="p2", timestamp=at(1)),
                bp(120, 80, user_id="p2", timestamp=at(1)),
                metric("WAIST", 90, user_id="p2", timestamp=at(2)),
            ],
        )
        overview = cohort_overview(snapshot, now=NOW, range_days=7)
        assert overview.average_adherence == 28

    def test_empty_cohort(self):
        overview = cohort_overview(CohortSnapshot(), now=NOW)
        assert overview.total_participants == 0
        assert overview.participants_with_streak_3_days_percent == 0


class TestCoachWorkload:
    def test_caseload_unread_and_flags(self):
        snapshot = CohortSnapshot(
            users=[
                participant("p1", coach_id="c1"),
                participant("p2", coach_id="c1"),
                participant("p3", coach_id="c2"),
                coach("c1", name="Maya"),
                coach("c2"),
            ],
            metric_entries=[metric("GLUCOSE", 140, timestamp=at(d)) for d in (0, 1, 2)]
            + [bp(150, 95, timestamp=at(d)) for d in (0, 1)]
            + [metric("WEIGHT", 170, user_id="p2", timestamp=at(0))],
            conversations=[Conversation(id="conv1", participant_id="p1", coach_id="c1")],
            messages=[
                Message(id="m1", conversation_id="conv1", sender_id="p1", created_at=at(1)),
                Message(id="m2", conversation_id="conv1", sender_id="p1", created_at=at(0)),
                Message(id="m3", conversation_id="conv1", sender_id="p1", created_at=at(2), read_at=at(1)),
                Message(id="m4", conversation_id="conv1", sender_id="c1", created_at=at(0)),
            ],
        )
        by_coach = {w.coach_id: w for w in coach_workload(snapshot, now=NOW)}
        maya = by_coach["c1"]
        assert maya.coach_name == "Maya"
        assert maya.participant_count == 2
        assert maya.unread_messages == 2
        # two flags on p1 are one flagged participant
        assert maya.flagged_participants == 1
        other = by_coach["c2"]
        assert other.participant_count == 1
        assert other.unread_messages == 0
        assert other.flagged_participants == 1
