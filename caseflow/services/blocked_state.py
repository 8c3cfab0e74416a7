"""
Blocked-state explainer — why is a step stuck, and what can this actor do?

Applies to steps in ``blocked`` or ``awaiting_evidence``. The reason comes
from the persisted classification when present, otherwise it is derived from
the step graph. Recovery actions are filtered by the actor's case role and
never offer anything above that role.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Sequence

from caseflow.models.workflow import SATISFYING_STEP_STATUSES

EXPLAINED_STATUSES = frozenset({"blocked", "awaiting_evidence"})

REASON_LABELS = {
    "evidence_missing": "Missing information or document",
    "external_dependency": "Waiting on an external institution",
    "policy_restriction": "Blocked by policy",
    "role_permission": "You do not have permission",
    "deadline_risk": "Deadline at risk",
    "payment_or_billing": "Billing issue",
    "identity_or_auth": "Identity or access problem",
    "data_mismatch": "Information conflict",
    "system_error": "System problem",
}


@dataclass
class RecoveryAction:
    action: str
    label: str
    guidance: str
    is_available: bool = True

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "label": self.label,
            "guidance": self.guidance,
            "is_available": self.is_available,
        }


@dataclass
class BlockedInfo:
    reason_code: str
    reason_label: str
    reason_detail: str
    allowed_actions: list[RecoveryAction] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "reason_code": self.reason_code,
            "reason_label": self.reason_label,
            "reason_detail": self.reason_detail,
            "allowed_actions": [a.to_dict() for a in self.allowed_actions],
        }


def derive_blocked_reason(step, predecessor_statuses: Sequence[str]) -> tuple[str, str]:
    """Return (reason_code, reason_detail) for a stuck step."""
    if step.blocked_reason_code and (step.blocked_reason_detail or "").strip():
        return step.blocked_reason_code, step.blocked_reason_detail

    if step.status == "awaiting_evidence":
        return (
            "evidence_missing",
            "This step requires documents or information that have not been uploaded yet.",
        )

    incomplete = [s for s in predecessor_statuses if s not in SATISFYING_STEP_STATUSES]
    if incomplete:
        return (
            "external_dependency",
            f"This step depends on {len(incomplete)} other step(s) that must be completed first.",
        )

    return "policy_restriction", "This step is blocked by policy rules and cannot proceed yet."


def _contact_manager(label="Contact case manager",
                     guidance="Reach out to your case manager for help with what's needed."):
    return RecoveryAction("contact_manager", label, guidance)


def recovery_actions(reason_code: str, role: str | None) -> list[RecoveryAction]:
    is_editor = role in ("editor", "manager")
    is_manager = role == "manager"
    actions: list[RecoveryAction] = []

    if reason_code == "evidence_missing":
        if is_editor:
            actions.append(RecoveryAction(
                "upload_evidence", "Upload required documents",
                "Upload the missing documents or information to unblock this step.",
            ))
        actions.append(_contact_manager())
    elif reason_code == "external_dependency":
        actions.append(RecoveryAction(
            "complete_prerequisite", "Complete prerequisite steps",
            "Finish the required steps before returning to this one.",
            is_available=is_editor,
        ))
        actions.append(RecoveryAction(
            "wait_for_external", "Wait for external update",
            "This step depends on external institutions and may take time.",
        ))
    elif reason_code == "policy_restriction":
        if is_manager:
            actions.append(RecoveryAction(
                "request_override", "Request policy override",
                "Submit an override request with rationale for approval.",
            ))
        actions.append(_contact_manager(
            guidance="Discuss policy restrictions with your case manager.",
        ))
    elif reason_code == "role_permission":
        actions.append(RecoveryAction(
            "request_permission", "Request permission",
            "Ask an administrator to grant you the required role permission.",
        ))
    elif reason_code == "deadline_risk":
        if is_editor:
            actions.append(RecoveryAction(
                "upload_evidence", "Complete this step now",
                "This step is overdue. Complete it immediately to avoid delays.",
            ))
        actions.append(_contact_manager(
            label="Contact case manager urgently",
            guidance="Reach out to your case manager about the deadline immediately.",
        ))
    elif reason_code == "data_mismatch":
        if is_editor:
            actions.append(RecoveryAction(
                "correct_data", "Review and correct information",
                "Check the conflicting data and make necessary corrections.",
            ))
    elif reason_code == "system_error":
        actions.append(RecoveryAction(
            "contact_support", "Contact technical support",
            "Report this technical issue to support for assistance.",
        ))
    elif reason_code == "payment_or_billing":
        actions.append(RecoveryAction(
            "update_billing", "Update billing information",
            "Go to billing settings to resolve payment issues.",
        ))

    return actions


def explain_blocked_state(step, predecessor_statuses: Sequence[str], role: str | None) -> BlockedInfo | None:
    """BlockedInfo for a stuck step, or None when the step is not stuck."""
    if step.status not in EXPLAINED_STATUSES:
        return None
    code, detail = derive_blocked_reason(step, predecessor_statuses)
    return BlockedInfo(
        reason_code=code,
        reason_label=REASON_LABELS.get(code, "Blocked"),
        reason_detail=detail,
        allowed_actions=recovery_actions(code, role),
    )
