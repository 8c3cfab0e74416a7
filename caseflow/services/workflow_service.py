"""
Case Workflow — Service Layer.

Business logic for:
    - Plan generation:        intake flags → steps + dependency edges (full replace)
    - Readiness recalculation: Ready / Blocked re-derived from the step graph
    - Readiness override:     one-way manual pin to Ready or Blocked
    - Task status updates:    STARTED / COMPLETED / NEEDSREVIEW with dependency gating
    - Task workspace:         ranked read-side projection
    - Blocked-state info:     reason + role-filtered recovery actions

Rules:
    - tenant_id is always an explicit parameter (never from g).
    - Role gates are enforced by the caller (caseflow.services.case_access).
    - Each mutating operation is one unit of work: the case row is locked,
      the full step graph is loaded, mutated in memory in a single pass, and
      committed together with its audit facts — or rolled back entirely.
    - db.session.commit() happens only in this file.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import delete, select
from sqlalchemy.orm.exc import StaleDataError

from caseflow.core.cancellation import CancellationToken, raise_if_cancelled
from caseflow.core.exceptions import (
    ConcurrentModificationError,
    DependenciesNotSatisfiedError,
    InvalidCaseStateError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from caseflow.models import db
from caseflow.models.case import Case, _uuid
from caseflow.models.workflow import (
    DEPENDENCY_GATED_STATUSES,
    READINESS_STATUSES,
    TERMINAL_STEP_STATUSES,
    WorkflowStep,
    WorkflowStepDependency,
    resolve_task_status_token,
    validate_step_transition,
)
from caseflow.services import readiness
from caseflow.services.blocked_state import explain_blocked_state
from caseflow.services.blueprint_catalog import IntakeFlags, build_blueprints
from caseflow.services.case_access import (
    accepted_participant_user_ids,
    resolve_effective_case_role,
)
from caseflow.services.facts import AuditLogFactSink, Fact, FactSink
from caseflow.services.helpers.scoped_queries import get_scoped
from caseflow.services.task_ranking import rank_tasks

logger = logging.getLogger(__name__)

DEADLINE_SOURCE = "plan-generation"
MAX_TEXT_LENGTH = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _setting(name: str, default: int) -> int:
    if has_app_context():
        return int(current_app.config.get(name, default))
    return default


# ── Unit of work ─────────────────────────────────────────────────────────────


@contextmanager
def _unit_of_work(cancel_token: CancellationToken | None, sink: FactSink):
    """Commit everything done inside the block, or nothing.

    The cancellation token is checked before the block runs and again after
    the final flush, right before commit. The fact sink is told the outcome
    so in-memory sinks never publish facts of a rolled-back operation.
    """
    raise_if_cancelled(cancel_token)
    try:
        yield
        db.session.flush()
        raise_if_cancelled(cancel_token)
        db.session.commit()
    except StaleDataError as exc:
        db.session.rollback()
        sink.rollback()
        raise ConcurrentModificationError(
            "Workflow step was modified by a concurrent operation; reload and retry"
        ) from exc
    except Exception:
        db.session.rollback()
        sink.rollback()
        raise
    sink.commit()


# ── Graph loading ────────────────────────────────────────────────────────────


def _load_case(tenant_id: int, case_id: str, *, for_update: bool = False) -> Case:
    return get_scoped(Case, case_id, tenant_id=tenant_id, for_update=for_update)


def _load_graph(case: Case) -> tuple[list[WorkflowStep], list[tuple[str, str]]]:
    """Full step set (by sequence) plus (step_id, depends_on_step_id) edges.

    Rows already in the identity map are overwritten from the database so
    decisions never run on statuses read earlier in the same session.
    """
    steps = db.session.execute(
        select(WorkflowStep)
        .where(WorkflowStep.case_id == case.id, WorkflowStep.tenant_id == case.tenant_id)
        .order_by(WorkflowStep.sequence)
        .execution_options(populate_existing=True)
    ).scalars().all()
    rows = db.session.execute(
        select(WorkflowStepDependency.step_id, WorkflowStepDependency.depends_on_step_id)
        .where(
            WorkflowStepDependency.case_id == case.id,
            WorkflowStepDependency.tenant_id == case.tenant_id,
        )
    ).all()
    return list(steps), [(step_id, dep_id) for step_id, dep_id in rows]


def _require_plan(steps: list[WorkflowStep]) -> None:
    if not steps:
        raise InvalidCaseStateError("Case plan has not been generated yet")


def _depends_on_map(steps: list[WorkflowStep], edges) -> dict[str, list[str]]:
    """step_id → predecessor ids, predecessors ordered by sequence."""
    depends_on = readiness.build_dependency_map((s.id for s in steps), edges)
    sequence_by_id = {s.id: s.sequence for s in steps}
    for dep_ids in depends_on.values():
        dep_ids.sort(key=sequence_by_id.__getitem__)
    return depends_on


def _find_step(steps: list[WorkflowStep], step_id: str, tenant_id: int) -> WorkflowStep:
    for step in steps:
        if step.id == step_id:
            return step
    raise NotFoundError(resource="WorkflowStep", resource_id=step_id, tenant_id=tenant_id)


def _plan_payload(case: Case, steps, depends_on, **extra) -> dict:
    result = {
        "case_id": case.id,
        "case_status": case.status,
        "steps": [s.to_dict(depends_on_step_ids=depends_on.get(s.id, [])) for s in steps],
    }
    result.update(extra)
    return result


def _workspace_tasks(steps, depends_on, today: date | None) -> list[dict]:
    ranked = rank_tasks(
        steps,
        depends_on,
        today or _utcnow().date(),
        due_soon_days=_setting("WORKFLOW_DUE_SOON_DAYS", 2),
        upcoming_days=_setting("WORKFLOW_UPCOMING_DAYS", 7),
    )
    return [item.to_dict() for item in ranked]


def _recompute_readiness(case, steps, edges, sink: FactSink, actor_user_id, *,
                         trigger: str, emit_when_unchanged: bool) -> list[str]:
    changes = readiness.evaluate_readiness(
        [readiness.StepState.from_step(s) for s in steps], edges,
    )
    changed_keys = readiness.apply_readiness_changes(
        {s.id: s for s in steps}, changes, _utcnow(),
    )
    if changed_keys or emit_when_unchanged:
        sink.emit(Fact(
            "CasePlanReadinessRecalculated", case.id, case.tenant_id, actor_user_id,
            {
                "trigger": trigger,
                "changed_step_keys": changed_keys,
                "changes": [c.to_dict() for c in changes],
            },
        ))
    return changed_keys


# ═════════════════════════════════════════════════════════════════════════════
# Plan generation
# ═════════════════════════════════════════════════════════════════════════════


def generate_case_plan(
    tenant_id: int,
    case_id: str,
    actor_user_id: int | None = None,
    *,
    fact_sink: FactSink | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict:
    """Materialise the case plan from the intake snapshot, replacing any prior plan.

    Regeneration is destructive: existing steps and dependencies are deleted
    and rebuilt in the same transaction, so readers never observe a partial plan.

    Args:
        tenant_id:     Owning tenant.
        case_id:       Case to plan.
        actor_user_id: User triggering generation (audit actor).
        fact_sink:     Destination for audit facts (default: AuditLog rows).
        cancel_token:  Optional cancellation signal.

    Returns:
        Plan dict: case_id, case_status, steps (sorted by sequence, each with
        depends_on_step_ids).

    Raises:
        NotFoundError: Case not found in the tenant.
        InvalidCaseStateError: Intake not completed, or case is terminal.
    """
    sink = fact_sink or AuditLogFactSink()
    with _unit_of_work(cancel_token, sink):
        case = _load_case(tenant_id, case_id, for_update=True)
        if case.is_terminal:
            raise InvalidCaseStateError(f"Case plan cannot be generated for a {case.status} case")
        if not case.has_completed_intake:
            raise InvalidCaseStateError("Case plan cannot be generated: intake not completed")

        flags = IntakeFlags.from_snapshot(case.intake_data)
        blueprints = build_blueprints(flags)

        db.session.execute(
            delete(WorkflowStepDependency).where(WorkflowStepDependency.case_id == case.id)
        )
        db.session.execute(delete(WorkflowStep).where(WorkflowStep.case_id == case.id))

        now = _utcnow()
        base_days = _setting("WORKFLOW_DUE_DATE_BASE_DAYS", 2)
        step_days = _setting("WORKFLOW_DUE_DATE_STEP_DAYS", 2)

        steps: list[WorkflowStep] = []
        steps_by_key: dict[str, WorkflowStep] = {}
        for index, blueprint in enumerate(blueprints):
            sequence = index + 1
            step = WorkflowStep(
                id=_uuid(),
                tenant_id=case.tenant_id,
                case_id=case.id,
                step_key=blueprint.step_key,
                title=blueprint.title,
                sequence=sequence,
                status="blocked" if blueprint.depends_on_keys else "ready",
                assigned_user_id=case.manager_user_id,
                due_date=now + timedelta(days=base_days + step_days * sequence),
                deadline_source=DEADLINE_SOURCE,
                created_at=now,
                updated_at=now,
            )
            steps.append(step)
            steps_by_key[blueprint.step_key] = step
        db.session.add_all(steps)
        db.session.flush()

        edges: list[tuple[str, str]] = []
        for blueprint in blueprints:
            for dep_key in blueprint.depends_on_keys:
                step_id = steps_by_key[blueprint.step_key].id
                dep_id = steps_by_key[dep_key].id
                db.session.add(WorkflowStepDependency(
                    tenant_id=case.tenant_id,
                    case_id=case.id,
                    step_id=step_id,
                    depends_on_step_id=dep_id,
                    created_at=now,
                ))
                edges.append((step_id, dep_id))

        sink.emit(Fact(
            "CasePlanGenerated", case.id, case.tenant_id, actor_user_id,
            {
                "step_count": len(steps),
                "dependency_count": len(edges),
                "step_keys": [s.step_key for s in steps],
                "intake_flags": {
                    "has_will": flags.has_will,
                    "requires_legal_support": flags.requires_legal_support,
                    "requires_financial_support": flags.requires_financial_support,
                },
                "generated_at": now.isoformat(),
            },
        ))
        sink.emit(Fact(
            "WorkflowStepOwnershipInitialized", case.id, case.tenant_id, actor_user_id,
            {
                "assigned_user_id": case.manager_user_id,
                "step_keys": [s.step_key for s in steps],
            },
        ))

        previous_status = case.status
        if case.status in ("draft", "intake"):
            case.status = "active"
            case.updated_at = now
            sink.emit(Fact(
                "CaseStatusChanged", case.id, case.tenant_id, actor_user_id,
                {
                    "previous_status": previous_status,
                    "new_status": case.status,
                    "reason": "Case plan generated",
                    "changed_at": now.isoformat(),
                },
            ))

        result = _plan_payload(case, steps, _depends_on_map(steps, edges))

    logger.info(
        "Case plan generated case=%s steps=%d dependencies=%d",
        case_id, len(result["steps"]), len(edges),
        extra={"tenant_id": tenant_id, "case_id": case_id, "event_type": "CasePlanGenerated"},
    )
    return result


def get_case_plan(
    tenant_id: int,
    case_id: str,
    *,
    cancel_token: CancellationToken | None = None,
) -> dict:
    """Return the current plan without mutating it."""
    raise_if_cancelled(cancel_token)
    case = _load_case(tenant_id, case_id)
    steps, edges = _load_graph(case)
    _require_plan(steps)
    return _plan_payload(case, steps, _depends_on_map(steps, edges))


# ═════════════════════════════════════════════════════════════════════════════
# Readiness
# ═════════════════════════════════════════════════════════════════════════════


def recalculate_case_readiness(
    tenant_id: int,
    case_id: str,
    actor_user_id: int | None = None,
    *,
    fact_sink: FactSink | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict:
    """Re-derive Ready / Blocked for every non-terminal, non-overridden step.

    Returns:
        Plan dict plus ``changed_step_keys`` (empty on a repeat call).

    Raises:
        NotFoundError: Case not found in the tenant.
        InvalidCaseStateError: No plan generated yet.
    """
    sink = fact_sink or AuditLogFactSink()
    with _unit_of_work(cancel_token, sink):
        case = _load_case(tenant_id, case_id, for_update=True)
        steps, edges = _load_graph(case)
        _require_plan(steps)
        depends_on = _depends_on_map(steps, edges)
        changed_keys = _recompute_readiness(
            case, steps, edges, sink, actor_user_id,
            trigger="manual", emit_when_unchanged=True,
        )
        result = _plan_payload(case, steps, depends_on, changed_step_keys=changed_keys)

    if changed_keys:
        logger.info(
            "Readiness recalculated case=%s changed=%s", case_id, ",".join(changed_keys),
            extra={"tenant_id": tenant_id, "case_id": case_id,
                   "event_type": "CasePlanReadinessRecalculated"},
        )
    else:
        logger.debug("Readiness recalculated case=%s: no changes", case_id)
    return result


def override_step_readiness(
    tenant_id: int,
    case_id: str,
    step_id: str,
    target_status: str,
    rationale: str,
    actor_user_id: int | None = None,
    *,
    fact_sink: FactSink | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict:
    """Pin a step to Ready or Blocked and exclude it from automatic recalculation.

    The pin is one-way: there is no operation that returns the step to
    automatic control.

    Raises:
        ValidationError: Target is not Ready/Blocked, or rationale is missing / too long.
        NotFoundError: Case or step not found in the tenant.
        InvalidCaseStateError: No plan generated yet.
        InvalidTransitionError: Step is complete or skipped.
    """
    target = (target_status or "").strip().lower()
    if target not in READINESS_STATUSES:
        raise ValidationError(
            "target_status must be either Ready or Blocked",
            details={"target_status": target_status},
        )
    rationale = (rationale or "").strip()
    if not rationale:
        raise ValidationError("rationale is required", details={"rationale": "required"})
    if len(rationale) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"rationale must be ≤ {MAX_TEXT_LENGTH} characters",
            details={"rationale": "too long"},
        )

    sink = fact_sink or AuditLogFactSink()
    with _unit_of_work(cancel_token, sink):
        case = _load_case(tenant_id, case_id, for_update=True)
        steps, edges = _load_graph(case)
        _require_plan(steps)
        step = _find_step(steps, step_id, tenant_id)
        if step.status in TERMINAL_STEP_STATUSES:
            raise InvalidTransitionError(
                step.step_key, step.status, target,
                message=f"Step {step.step_key} is {step.status}; readiness cannot be overridden",
            )

        now = _utcnow()
        previous_status = step.status
        step.status = target
        step.is_readiness_overridden = True
        step.readiness_override_rationale = rationale
        step.readiness_override_by_user_id = actor_user_id
        step.readiness_overridden_at = now
        step.updated_at = now

        sink.emit(Fact(
            "CasePlanReadinessOverridden", case.id, case.tenant_id, actor_user_id,
            {
                "step_id": step.id,
                "step_key": step.step_key,
                "previous_status": previous_status,
                "new_status": target,
                "rationale": rationale,
                "overridden_at": now.isoformat(),
            },
        ))
        result = _plan_payload(case, steps, _depends_on_map(steps, edges))

    logger.info(
        "Readiness override case=%s step=%s %s → %s",
        case_id, step.step_key, previous_status, target,
        extra={"tenant_id": tenant_id, "case_id": case_id, "step_key": step.step_key,
               "event_type": "CasePlanReadinessOverridden"},
    )
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Task status state machine
# ═════════════════════════════════════════════════════════════════════════════


def check_step_transition(
    step_key: str,
    current: str,
    target: str,
    *,
    is_readiness_overridden: bool,
    pending_step_keys: list[str],
) -> None:
    """Raise unless ``current → target`` is allowed for this step.

    Order of checks:
        1. no-op is always allowed
        2. complete / skipped never move again        → InvalidTransitionError
        3. gated targets need satisfied dependencies
           unless the step is overridden              → DependenciesNotSatisfiedError
        4. transition table (STEP_TRANSITIONS)        → InvalidTransitionError
    """
    if current == target:
        return
    if current in TERMINAL_STEP_STATUSES:
        raise InvalidTransitionError(
            step_key, current, target,
            message=f"Step {step_key} is {current} and cannot change status",
        )
    if target in DEPENDENCY_GATED_STATUSES and not is_readiness_overridden and pending_step_keys:
        raise DependenciesNotSatisfiedError(step_key, current, target, pending_step_keys)
    if not validate_step_transition(current, target):
        raise InvalidTransitionError(step_key, current, target)


def _notification_recipients(case: Case, step: WorkflowStep) -> list[int]:
    candidates = [case.manager_user_id, step.assigned_user_id, *accepted_participant_user_ids(case)]
    return [uid for uid in dict.fromkeys(candidates) if uid is not None]


def update_task_status(
    tenant_id: int,
    case_id: str,
    step_id: str,
    target_status: str,
    actor_user_id: int | None = None,
    *,
    notes: str | None = None,
    fact_sink: FactSink | None = None,
    cancel_token: CancellationToken | None = None,
    today: date | None = None,
) -> dict:
    """Apply an operator status token (STARTED / COMPLETED / NEEDSREVIEW).

    Completion re-runs readiness over the whole plan in the same unit of
    work. Every status change queues a TaskStatusChanged notification for
    the case manager, the step owner and all accepted participants; moving
    into awaiting_evidence additionally queues MissingInputRequired.

    Returns:
        dict with case_id, step, changed_step_keys and the ranked ``tasks``.

    Raises:
        ValidationError: Notes longer than 1000 characters.
        NotFoundError: Case or step not found in the tenant.
        InvalidCaseStateError: No plan generated yet.
        InvalidTransitionError: Unknown token, terminal step, or illegal move.
        DependenciesNotSatisfiedError: Predecessors incomplete and no override.
    """
    notes = (notes or "").strip() or None
    if notes and len(notes) > MAX_TEXT_LENGTH:
        raise ValidationError(
            f"notes must be ≤ {MAX_TEXT_LENGTH} characters", details={"notes": "too long"},
        )

    sink = fact_sink or AuditLogFactSink()
    with _unit_of_work(cancel_token, sink):
        case = _load_case(tenant_id, case_id, for_update=True)
        steps, edges = _load_graph(case)
        _require_plan(steps)
        step = _find_step(steps, step_id, tenant_id)

        target = resolve_task_status_token(target_status)
        if target is None:
            raise InvalidTransitionError(
                step.step_key, step.status, target_status,
                message=f"Task status '{target_status}' is not recognized",
            )

        depends_on = _depends_on_map(steps, edges)
        status_by_id = {s.id: s.status for s in steps}
        key_by_id = {s.id: s.step_key for s in steps}
        pending_keys = [
            key_by_id[dep_id]
            for dep_id in readiness.pending_predecessors(step.id, depends_on, status_by_id)
        ]
        check_step_transition(
            step.step_key, step.status, target,
            is_readiness_overridden=bool(step.is_readiness_overridden),
            pending_step_keys=pending_keys,
        )

        previous_status = step.status
        changed_keys: list[str] = []
        if previous_status != target:
            now = _utcnow()
            step.status = target
            step.updated_at = now
            if target == "in_progress" and step.started_at is None:
                step.started_at = now
            if target == "complete":
                step.completed_at = now
                changed_keys = _recompute_readiness(
                    case, steps, edges, sink, actor_user_id,
                    trigger="task_completed", emit_when_unchanged=False,
                )

            sink.emit(Fact(
                "WorkflowTaskStatusUpdated", case.id, case.tenant_id, actor_user_id,
                {
                    "step_id": step.id,
                    "step_key": step.step_key,
                    "requested_status": str(target_status).strip().upper(),
                    "previous_status": previous_status,
                    "new_status": target,
                    "notes": notes,
                    "unblocked_step_keys": changed_keys,
                },
            ))
            recipients = _notification_recipients(case, step)
            sink.emit(Fact(
                "CaseNotificationQueued", case.id, case.tenant_id, actor_user_id,
                {
                    "notification_type": "TaskStatusChanged",
                    "step_id": step.id,
                    "step_key": step.step_key,
                    "previous_status": previous_status,
                    "new_status": target,
                    "recipient_user_ids": recipients,
                    "notes": notes,
                },
            ))
            if target == "awaiting_evidence":
                sink.emit(Fact(
                    "CaseNotificationQueued", case.id, case.tenant_id, actor_user_id,
                    {
                        "notification_type": "MissingInputRequired",
                        "step_id": step.id,
                        "step_key": step.step_key,
                        "recipient_user_ids": recipients,
                        "notes": notes,
                    },
                ))

        result = {
            "case_id": case.id,
            "step": step.to_dict(depends_on_step_ids=depends_on.get(step.id, [])),
            "changed_step_keys": changed_keys,
            "tasks": _workspace_tasks(steps, depends_on, today),
        }

    if previous_status != target:
        logger.info(
            "Task status case=%s step=%s %s → %s",
            case_id, step.step_key, previous_status, target,
            extra={"tenant_id": tenant_id, "case_id": case_id, "step_key": step.step_key,
                   "event_type": "WorkflowTaskStatusUpdated"},
        )
    else:
        logger.debug("Task status no-op case=%s step=%s (%s)", case_id, step.step_key, target)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Read-side projections
# ═════════════════════════════════════════════════════════════════════════════


def get_task_workspace(
    tenant_id: int,
    case_id: str,
    *,
    today: date | None = None,
    cancel_token: CancellationToken | None = None,
) -> dict:
    """Ranked task list for operators. Pure read — nothing is written."""
    raise_if_cancelled(cancel_token)
    case = _load_case(tenant_id, case_id)
    steps, edges = _load_graph(case)
    _require_plan(steps)
    return {
        "case_id": case.id,
        "tasks": _workspace_tasks(steps, _depends_on_map(steps, edges), today),
    }


def get_step_blocked_info(
    tenant_id: int,
    case_id: str,
    step_id: str,
    actor_user_id: int | None = None,
    *,
    cancel_token: CancellationToken | None = None,
) -> dict | None:
    """Explain why a blocked / awaiting-evidence step is stuck; None otherwise."""
    raise_if_cancelled(cancel_token)
    case = _load_case(tenant_id, case_id)
    steps, edges = _load_graph(case)
    _require_plan(steps)
    step = _find_step(steps, step_id, tenant_id)
    depends_on = _depends_on_map(steps, edges)
    status_by_id = {s.id: s.status for s in steps}
    info = explain_blocked_state(
        step,
        [status_by_id[dep_id] for dep_id in depends_on.get(step.id, [])],
        resolve_effective_case_role(case, actor_user_id),
    )
    return info.to_dict() if info else None
