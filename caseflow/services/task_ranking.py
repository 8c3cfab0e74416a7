"""
Task Workspace Ranker — read-side ordering of a case's steps for operators.

Sort key (total order, ties always broken by sequence):
    (priority_rank, urgency rank, due_date nulls last, sequence)

due_date is compared as a full UTC instant, so two steps due on the same
day still order by their due time. Naive datetimes are read as UTC.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Iterable, Mapping, Sequence

from caseflow.models.workflow import TERMINAL_STEP_STATUSES

PRIORITY_RANKS = {
    "in_progress": 1,
    "ready": 2,
    "overdue": 2,
    "awaiting_evidence": 3,
    "blocked": 4,
    "not_started": 5,
    "complete": 6,
    "skipped": 6,
}

URGENCY_RANKS = {"overdue": 0, "due-soon": 1, "upcoming": 2, "none": 3}

_EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class TaskItem:
    step_id: str
    step_key: str
    title: str
    sequence: int
    priority_rank: int
    status: str
    assigned_user_id: int | None
    due_date: datetime | None
    deadline_source: str | None
    urgency_indicator: str
    depends_on_step_ids: list[str] = field(default_factory=list)

    def sort_key(self) -> tuple:
        due = _as_utc(self.due_date)
        return (
            self.priority_rank,
            URGENCY_RANKS[self.urgency_indicator],
            due is None,
            due or _EARLIEST,
            self.sequence,
        )

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "step_key": self.step_key,
            "title": self.title,
            "sequence": self.sequence,
            "priority_rank": self.priority_rank,
            "status": self.status,
            "assigned_user_id": self.assigned_user_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "deadline_source": self.deadline_source,
            "urgency_indicator": self.urgency_indicator,
            "depends_on_step_ids": list(self.depends_on_step_ids),
        }


def _as_date(value) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    return value


def _as_utc(value) -> datetime | None:
    if value is None:
        return None
    if not isinstance(value, datetime):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def priority_rank(status: str) -> int:
    return PRIORITY_RANKS.get(status, PRIORITY_RANKS["not_started"])


def urgency_indicator(
    status: str,
    due_date,
    today: date,
    *,
    due_soon_days: int = 2,
    upcoming_days: int = 7,
) -> str:
    """overdue | due-soon | upcoming | none, by calendar days until due."""
    due = _as_date(due_date)
    if due is None or status in TERMINAL_STEP_STATUSES:
        return "none"
    days_left = (due - today).days
    if days_left < 0:
        return "overdue"
    if days_left <= due_soon_days:
        return "due-soon"
    if days_left <= upcoming_days:
        return "upcoming"
    return "none"


def rank_tasks(
    steps: Iterable,
    depends_on: Mapping[str, Sequence[str]],
    today: date,
    *,
    due_soon_days: int = 2,
    upcoming_days: int = 7,
) -> list[TaskItem]:
    """Project steps into ranked TaskItems. Never mutates the steps."""
    items = [
        TaskItem(
            step_id=step.id,
            step_key=step.step_key,
            title=step.title,
            sequence=step.sequence,
            priority_rank=priority_rank(step.status),
            status=step.status,
            assigned_user_id=step.assigned_user_id,
            due_date=step.due_date,
            deadline_source=step.deadline_source,
            urgency_indicator=urgency_indicator(
                step.status, step.due_date, today,
                due_soon_days=due_soon_days, upcoming_days=upcoming_days,
            ),
            depends_on_step_ids=list(depends_on.get(step.id, ())),
        )
        for step in steps
    ]
    items.sort(key=TaskItem.sort_key)
    return items
