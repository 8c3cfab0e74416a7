"""
Case Workflow Engine
Workflow plan models — generated steps and their dependency edges.

Models:
    - WorkflowStep:            one concrete step of a case plan (catalog key unique per case)
    - WorkflowStepDependency:  step → depends-on-step edge, AND semantics across predecessors

Architecture:
    Case ──1:N──▶ WorkflowStep
    WorkflowStep ──N:M──▶ WorkflowStep  (via WorkflowStepDependency)

Lifecycle states:
    WorkflowStep:  not_started → ready | blocked → in_progress
                   → awaiting_evidence ⇄ in_progress → complete
                   skipped is a terminal sink; overdue is display-derived
"""

from datetime import datetime, timezone

from caseflow.models import db
from caseflow.models.case import _sql_in, _uuid


# ── Constants ────────────────────────────────────────────────────────────────

STEP_STATUSES = {
    "not_started", "ready", "blocked", "in_progress",
    "awaiting_evidence", "complete", "skipped", "overdue",
}

TERMINAL_STEP_STATUSES = frozenset({"complete", "skipped"})

# Statuses that satisfy a dependency edge.
SATISFYING_STEP_STATUSES = TERMINAL_STEP_STATUSES

READINESS_STATUSES = frozenset({"ready", "blocked"})

BLOCKED_REASON_CODES = {
    "evidence_missing", "external_dependency", "policy_restriction",
    "role_permission", "deadline_risk", "payment_or_billing",
    "identity_or_auth", "data_mismatch", "system_error",
}

# Operator-facing tokens (case-insensitive) → step status.
TASK_STATUS_TOKENS = {
    "STARTED": "in_progress",
    "COMPLETED": "complete",
    "NEEDSREVIEW": "awaiting_evidence",
}

# Targets that require satisfied dependencies unless the step is overridden.
DEPENDENCY_GATED_STATUSES = frozenset({"in_progress", "awaiting_evidence", "complete"})


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

STEP_TRANSITIONS = {
    "not_started":        [],
    "ready":              ["in_progress", "awaiting_evidence", "complete"],
    "blocked":            [],
    "overdue":            ["in_progress", "awaiting_evidence", "complete"],
    "in_progress":        ["awaiting_evidence", "complete"],
    "awaiting_evidence":  ["in_progress", "complete"],
    "complete":           [],
    "skipped":            [],
}


def validate_step_transition(old_status, new_status):
    """Return True if WorkflowStep status transition is valid (no-op included)."""
    if old_status == new_status:
        return True
    return new_status in STEP_TRANSITIONS.get(old_status, [])


def resolve_task_status_token(token):
    """Map an operator token (STARTED / COMPLETED / NEEDSREVIEW) to a step status.

    Returns None for unknown or empty tokens.
    """
    if not token:
        return None
    return TASK_STATUS_TOKENS.get(str(token).strip().upper())


# ═════════════════════════════════════════════════════════════════════════════
# 1. WorkflowStep
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStep(db.Model):
    """
    Concrete step instance materialised from a catalog blueprint.
    ``due_date`` and ``deadline_source`` are fixed at generation time.
    ``row_version`` is the optimistic-concurrency token.
    """

    __tablename__ = "workflow_steps"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    case_id = db.Column(
        db.String(36), db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )

    step_key = db.Column(db.String(100), nullable=False, comment="Catalog key, e.g. collect-civil-records")
    title = db.Column(db.String(300), nullable=False)
    sequence = db.Column(db.Integer, nullable=False, comment="1-based generation order (tie-break only)")
    status = db.Column(
        db.String(30), nullable=False, default="not_started",
        comment="not_started | ready | blocked | in_progress | awaiting_evidence | complete | skipped | overdue",
    )

    # Ownership & deadline
    assigned_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    deadline_source = db.Column(db.String(255), nullable=True)

    # Manual readiness pin (one-way)
    is_readiness_overridden = db.Column(db.Boolean, nullable=False, default=False)
    readiness_override_rationale = db.Column(db.Text, nullable=True)
    readiness_override_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    readiness_overridden_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Blocked classification (consumed by the blocked-state explainer)
    blocked_reason_code = db.Column(db.String(40), nullable=True)
    blocked_reason_detail = db.Column(db.Text, nullable=True)

    # Execution timestamps
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    row_version = db.Column(db.Integer, nullable=False)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __mapper_args__ = {"version_id_col": row_version}

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.UniqueConstraint("case_id", "step_key", name="uq_workflow_step_case_key"),
        db.CheckConstraint(
            f"status IN ({_sql_in(STEP_STATUSES)})", name="ck_workflow_step_status",
        ),
        db.CheckConstraint(
            "blocked_reason_code IS NULL OR "
            f"blocked_reason_code IN ({_sql_in(BLOCKED_REASON_CODES)})",
            name="ck_workflow_step_blocked_reason",
        ),
    )

    def to_dict(self, depends_on_step_ids=None):
        result = {
            "id": self.id,
            "case_id": self.case_id,
            "step_key": self.step_key,
            "title": self.title,
            "sequence": self.sequence,
            "status": self.status,
            "assigned_user_id": self.assigned_user_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "deadline_source": self.deadline_source,
            "is_readiness_overridden": self.is_readiness_overridden,
            "readiness_override_rationale": self.readiness_override_rationale,
            "readiness_override_by_user_id": self.readiness_override_by_user_id,
            "readiness_overridden_at": (
                self.readiness_overridden_at.isoformat() if self.readiness_overridden_at else None
            ),
            "blocked_reason_code": self.blocked_reason_code,
            "blocked_reason_detail": self.blocked_reason_detail,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if depends_on_step_ids is not None:
            result["depends_on_step_ids"] = list(depends_on_step_ids)
        return result

    def __repr__(self):
        return f"<WorkflowStep {self.sequence}: {self.step_key} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. WorkflowStepDependency
# ═════════════════════════════════════════════════════════════════════════════


class WorkflowStepDependency(db.Model):
    """
    Step → depends-on-step edge, scoped to one case.
    A step with several rows needs ALL predecessors complete or skipped.
    Keyed by (case_id, step_id, depends_on_step_id).
    """

    __tablename__ = "workflow_step_dependencies"

    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    case_id = db.Column(
        db.String(36), db.ForeignKey("cases.id", ondelete="CASCADE"), primary_key=True,
    )
    step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"), primary_key=True,
    )
    depends_on_step_id = db.Column(
        db.String(36), db.ForeignKey("workflow_steps.id", ondelete="CASCADE"),
        primary_key=True, index=True,
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "step_id != depends_on_step_id",
            name="ck_workflow_dep_no_self_loop",
        ),
    )

    def __repr__(self):
        return f"<WorkflowStepDependency {self.step_id} → {self.depends_on_step_id}>"
