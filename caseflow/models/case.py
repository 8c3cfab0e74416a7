"""
Case Workflow Engine
Case domain models — the case store the workflow engine reads from.

Models:
    - Case:             one estate / succession case per deceased person
    - CaseParticipant:  invited collaborator (family member, advisor) with a case role

Architecture:
    Tenant ──1:N──▶ Case ──1:N──▶ CaseParticipant
    Case   ──1:N──▶ WorkflowStep (see caseflow.models.workflow)

Lifecycle states:
    Case:             draft → intake → active → review → closed → archived
                      (cancelled reachable from any non-terminal state)
    CaseParticipant:  pending → accepted | revoked
"""

import uuid
from datetime import datetime, timezone

from caseflow.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _sql_in(values) -> str:
    """Render a constant set as the body of a SQL IN (...) list."""
    return ",".join(f"'{v}'" for v in sorted(values))


# ── Constants ────────────────────────────────────────────────────────────────

CASE_STATUSES = {
    "draft", "intake", "active", "review",
    "closed", "archived", "cancelled",
}

TERMINAL_CASE_STATUSES = {"closed", "archived", "cancelled"}

# Ordered weakest → strongest; index is the privilege level.
CASE_ROLES = ("reader", "editor", "manager")

PARTICIPANT_STATUSES = {"pending", "accepted", "revoked"}


# ═════════════════════════════════════════════════════════════════════════════
# 1. Case
# ═════════════════════════════════════════════════════════════════════════════


class Case(db.Model):
    """
    Estate / succession case.
    ``intake_data`` holds the structured intake snapshot; its has_will,
    requires_legal_support and requires_financial_support answers drive
    plan generation (see services.blueprint_catalog.IntakeFlags).
    """

    __tablename__ = "cases"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    case_number = db.Column(db.String(30), nullable=True)
    deceased_full_name = db.Column(db.String(200), nullable=False, default="")
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | intake | active | review | closed | archived | cancelled",
    )
    manager_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
        comment="Case manager — default owner of every generated step",
    )

    # Structured intake
    intake_data = db.Column(db.JSON, nullable=True)
    intake_completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    intake_completed_by_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        db.CheckConstraint(
            f"status IN ({_sql_in(CASE_STATUSES)})",
            name="ck_case_status",
        ),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CASE_STATUSES

    @property
    def has_completed_intake(self) -> bool:
        return self.intake_completed_at is not None and bool(self.intake_data)

    def __repr__(self):
        return f"<Case {self.id}: {self.case_number or '-'} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. CaseParticipant
# ═════════════════════════════════════════════════════════════════════════════


class CaseParticipant(db.Model):
    """Collaborator on a case. Only ``accepted`` participants count for role
    resolution and notification fan-out."""

    __tablename__ = "case_participants"

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
    email = db.Column(db.String(200), nullable=False)
    role = db.Column(db.String(20), nullable=False, default="reader",
                     comment="reader | editor | manager")
    status = db.Column(db.String(20), nullable=False, default="pending",
                       comment="pending | accepted | revoked")
    participant_user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    accepted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        db.CheckConstraint(f"role IN ({_sql_in(CASE_ROLES)})", name="ck_participant_role"),
        db.CheckConstraint(
            f"status IN ({_sql_in(PARTICIPANT_STATUSES)})", name="ck_participant_status",
        ),
    )

    def __repr__(self):
        return f"<CaseParticipant {self.email} {self.role} [{self.status}]>"
