"""
Case Workflow Engine
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of workflow facts
      (plan generation, readiness changes, overrides, status updates,
      queued notifications, denied access).
"""

import json
from datetime import UTC, datetime

from caseflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ACTIONS = {
    # Plan lifecycle
    "CasePlanGenerated",
    "WorkflowStepOwnershipInitialized",
    "CaseStatusChanged",
    # Readiness
    "CasePlanReadinessRecalculated",
    "CasePlanReadinessOverridden",
    # Task execution
    "WorkflowTaskStatusUpdated",
    "CaseNotificationQueued",
    # Access
    "CaseAccessDenied",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every workflow fact.

    One row per fact. ``payload_json`` carries the structured fact body.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_case", "case_id"),
        db.Index("idx_audit_actor", "actor_user_id"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    case_id = db.Column(
        db.String(36),
        db.ForeignKey("cases.id", ondelete="CASCADE"),
        nullable=True,
    )

    # What happened
    action = db.Column(
        db.String(60), nullable=False,
        comment="CasePlanGenerated | WorkflowTaskStatusUpdated | …",
    )
    actor_user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        comment="Acting user (nullable for system facts)",
    )

    payload_json = db.Column(db.Text, default="{}")

    # Timestamp (immutable)
    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(UTC),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def payload(self) -> dict:
        """Deserialise *payload_json* to a Python dict."""
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on case/{self.case_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    action: str,
    case_id: str | None = None,
    tenant_id: int | None = None,
    actor_user_id: int | None = None,
    payload: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control — a rolled-back operation leaves no audit trace.

    Returns the (flushed) AuditLog instance.

    Raises:
        ValueError: *action* is not one of AUDIT_ACTIONS.
    """
    if action not in AUDIT_ACTIONS:
        raise ValueError(f"Unknown audit action: {action!r}")
    log = AuditLog(
        tenant_id=tenant_id,
        case_id=case_id,
        action=action,
        actor_user_id=actor_user_id,
        payload_json=json.dumps(payload or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
