"""
Task workspace ranker tests — pure projection over step-like objects.

Sort key: (priority_rank, urgency rank, due_date nulls last, sequence)
"""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from caseflow.services.task_ranking import (
    PRIORITY_RANKS,
    priority_rank,
    rank_tasks,
    urgency_indicator,
)

pytestmark = pytest.mark.unit

TODAY = date(2026, 3, 10)


def _step(key, sequence, status, due_in_days=None):
    due = None
    if due_in_days is not None:
        due = datetime.combine(TODAY + timedelta(days=due_in_days), datetime.min.time())
    return SimpleNamespace(
        id=f"id-{key}",
        step_key=key,
        title=key.replace("-", " ").capitalize(),
        sequence=sequence,
        status=status,
        assigned_user_id=7,
        due_date=due,
        deadline_source="plan-generation",
    )


class TestPriorityRank:
    @pytest.mark.parametrize("status,rank", [
        ("in_progress", 1), ("ready", 2), ("overdue", 2), ("awaiting_evidence", 3),
        ("blocked", 4), ("not_started", 5), ("complete", 6), ("skipped", 6),
    ])
    def test_rank_table(self, status, rank):
        assert priority_rank(status) == rank

    def test_every_step_status_is_ranked(self):
        from caseflow.models.workflow import STEP_STATUSES
        assert set(PRIORITY_RANKS) == STEP_STATUSES


class TestUrgencyIndicator:
    @pytest.mark.parametrize("days,expected", [
        (-1, "overdue"), (0, "due-soon"), (2, "due-soon"),
        (3, "upcoming"), (7, "upcoming"), (8, "none"),
    ])
    def test_boundaries(self, days, expected):
        assert urgency_indicator("ready", TODAY + timedelta(days=days), TODAY) == expected

    def test_no_due_date(self):
        assert urgency_indicator("ready", None, TODAY) == "none"

    @pytest.mark.parametrize("status", ["complete", "skipped"])
    def test_terminal_steps_have_no_urgency(self, status):
        assert urgency_indicator(status, TODAY - timedelta(days=5), TODAY) == "none"

    def test_accepts_datetimes(self):
        due = datetime(2026, 3, 9, 23, 59)
        assert urgency_indicator("ready", due, TODAY) == "overdue"

    def test_windows_are_configurable(self):
        due = TODAY + timedelta(days=4)
        assert urgency_indicator("ready", due, TODAY, due_soon_days=5) == "due-soon"


class TestRankTasks:
    def test_in_progress_outranks_overdue_ready(self):
        steps = [
            _step("collect-civil-records", 1, "ready", due_in_days=-1),
            _step("gather-estate-inventory", 2, "in_progress", due_in_days=2),
        ]
        items = rank_tasks(steps, {}, TODAY)
        assert [i.step_key for i in items] == ["gather-estate-inventory", "collect-civil-records"]
        assert items[0].priority_rank == 1
        assert items[0].urgency_indicator == "due-soon"
        assert items[1].urgency_indicator == "overdue"

    def test_urgency_breaks_priority_ties(self):
        steps = [
            _step("a", 1, "ready", due_in_days=6),
            _step("b", 2, "ready", due_in_days=-3),
            _step("c", 3, "ready", due_in_days=1),
        ]
        assert [i.step_key for i in rank_tasks(steps, {}, TODAY)] == ["b", "c", "a"]

    def test_due_date_nulls_last_then_sequence(self):
        steps = [
            _step("a", 1, "blocked"),
            _step("b", 2, "blocked", due_in_days=20),
            _step("c", 3, "blocked", due_in_days=10),
            _step("d", 4, "blocked"),
        ]
        assert [i.step_key for i in rank_tasks(steps, {}, TODAY)] == ["c", "b", "a", "d"]

    def test_same_day_due_times_order_before_sequence(self):
        early = _step("early", 2, "blocked", due_in_days=10)
        late = _step("late", 1, "blocked", due_in_days=10)
        early.due_date = early.due_date.replace(hour=9, tzinfo=timezone.utc)
        late.due_date = late.due_date.replace(hour=17)
        assert [i.step_key for i in rank_tasks([late, early], {}, TODAY)] == ["early", "late"]

    def test_terminal_steps_sink_to_the_bottom(self):
        steps = [
            _step("done", 1, "complete", due_in_days=-10),
            _step("todo", 2, "not_started", due_in_days=30),
        ]
        assert [i.step_key for i in rank_tasks(steps, {}, TODAY)] == ["todo", "done"]

    def test_depends_on_ids_are_projected(self):
        steps = [_step("a", 1, "ready"), _step("b", 2, "blocked")]
        items = rank_tasks(steps, {"id-b": ["id-a"]}, TODAY)
        by_key = {i.step_key: i for i in items}
        assert by_key["b"].depends_on_step_ids == ["id-a"]
        assert by_key["a"].depends_on_step_ids == []

    def test_to_dict_shape(self):
        item = rank_tasks([_step("a", 1, "ready", due_in_days=1)], {}, TODAY)[0]
        data = item.to_dict()
        assert data["step_id"] == "id-a"
        assert data["urgency_indicator"] == "due-soon"
        assert data["due_date"].startswith("2026-03-11")

    def test_ranking_does_not_mutate_steps(self):
        step = _step("a", 1, "ready", due_in_days=-1)
        rank_tasks([step], {}, TODAY)
        assert step.status == "ready"
