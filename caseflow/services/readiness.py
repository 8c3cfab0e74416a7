"""
Readiness Evaluator — decides Ready vs Blocked for every step of a plan.

Pure: takes immutable snapshots of the steps and the dependency edges and
returns the list of status changes. The workflow service applies the changes
to the ORM rows in one pass before flushing, so no readiness decision is ever
made against a half-updated graph.

Rule, per step that is neither terminal nor readiness-overridden:
    satisfied  = every predecessor is complete or skipped (vacuous when none)
    desired    = ready if satisfied else blocked
    change iff current status != desired
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Mapping, Sequence

from caseflow.core.exceptions import PlanIntegrityError
from caseflow.models.workflow import SATISFYING_STEP_STATUSES, TERMINAL_STEP_STATUSES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StepState:
    """Readiness-relevant snapshot of one step."""
    step_id: str
    step_key: str
    status: str
    is_readiness_overridden: bool = False

    @classmethod
    def from_step(cls, step) -> StepState:
        return cls(
            step_id=step.id,
            step_key=step.step_key,
            status=step.status,
            is_readiness_overridden=bool(step.is_readiness_overridden),
        )


@dataclass(frozen=True)
class ReadinessChange:
    step_id: str
    step_key: str
    previous_status: str
    new_status: str

    def to_dict(self) -> dict:
        return {
            "step_id": self.step_id,
            "step_key": self.step_key,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
        }


def build_dependency_map(
    step_ids: Iterable[str],
    edges: Iterable[tuple[str, str]],
) -> dict[str, list[str]]:
    """Group (step_id, depends_on_step_id) edges by step.

    Raises PlanIntegrityError if an edge points outside the given step set.
    """
    known = set(step_ids)
    depends_on: dict[str, list[str]] = {sid: [] for sid in known}
    for step_id, depends_on_id in edges:
        if step_id not in known or depends_on_id not in known:
            raise PlanIntegrityError(
                f"Dependency {step_id} → {depends_on_id} references a step outside the case plan"
            )
        depends_on[step_id].append(depends_on_id)
    return depends_on


def pending_predecessors(
    step_id: str,
    depends_on: Mapping[str, Sequence[str]],
    status_by_id: Mapping[str, str],
) -> list[str]:
    """Predecessor ids that are not yet complete or skipped."""
    return [
        dep_id for dep_id in depends_on.get(step_id, ())
        if status_by_id[dep_id] not in SATISFYING_STEP_STATUSES
    ]


def dependencies_satisfied(
    step_id: str,
    depends_on: Mapping[str, Sequence[str]],
    status_by_id: Mapping[str, str],
) -> bool:
    return not pending_predecessors(step_id, depends_on, status_by_id)


def evaluate_readiness(
    steps: Sequence[StepState],
    edges: Iterable[tuple[str, str]],
) -> list[ReadinessChange]:
    """Compute readiness changes for a full step set.

    Returns changes in input order. Idempotent: feeding the post-change
    statuses back in yields no changes.
    """
    status_by_id = {s.step_id: s.status for s in steps}
    depends_on = build_dependency_map(status_by_id, edges)

    changes: list[ReadinessChange] = []
    for step in steps:
        if step.status in TERMINAL_STEP_STATUSES or step.is_readiness_overridden:
            continue
        desired = "ready" if dependencies_satisfied(step.step_id, depends_on, status_by_id) else "blocked"
        if step.status != desired:
            changes.append(ReadinessChange(step.step_id, step.step_key, step.status, desired))
    return changes


def apply_readiness_changes(
    steps_by_id: Mapping[str, object],
    changes: Sequence[ReadinessChange],
    now: datetime | None = None,
) -> list[str]:
    """Write evaluated changes onto the ORM rows; return the changed step keys."""
    now = now or datetime.now(timezone.utc)
    for change in changes:
        step = steps_by_id[change.step_id]
        step.status = change.new_status
        step.updated_at = now
        logger.debug(
            "Readiness %s: %s → %s",
            change.step_key, change.previous_status, change.new_status,
            extra={"step_key": change.step_key},
        )
    return [c.step_key for c in changes]
