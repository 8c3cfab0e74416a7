"""
Case access — effective case role resolution and minimum-role gates.

This is the authorization collaborator that sits in front of the workflow
engine. The engine assumes the caller has already passed the gate:

    GenerateCasePlan, RecalculateCasePlanReadiness,
    OverrideWorkflowStepReadiness                → manager
    UpdateWorkflowTaskStatus                     → editor
    GetCasePlan, GetCaseTaskWorkspace,
    GetWorkflowStepBlockedInfo                   → reader

Denials are audited (``CaseAccessDenied``, reason ROLE_INSUFFICIENT) and
committed before the error propagates, so the trail survives the failed request.
"""

import logging

from sqlalchemy import select

from caseflow.core.exceptions import CaseAccessDeniedError
from caseflow.models import db
from caseflow.models.audit import write_audit
from caseflow.models.case import CASE_ROLES, Case, CaseParticipant
from caseflow.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)

REQUIRED_ROLES = {
    "GenerateCasePlan": "manager",
    "RecalculateCasePlanReadiness": "manager",
    "OverrideWorkflowStepReadiness": "manager",
    "UpdateWorkflowTaskStatus": "editor",
    "GetCasePlan": "reader",
    "GetCaseTaskWorkspace": "reader",
    "GetWorkflowStepBlockedInfo": "reader",
}


def _role_level(role):
    return CASE_ROLES.index(role) if role in CASE_ROLES else -1


def resolve_effective_case_role(case: Case, user_id: int | None) -> str | None:
    """Case manager → manager; else the accepted participant's role; else None."""
    if user_id is None:
        return None
    if case.manager_user_id == user_id:
        return "manager"
    participant = db.session.execute(
        select(CaseParticipant).where(
            CaseParticipant.case_id == case.id,
            CaseParticipant.tenant_id == case.tenant_id,
            CaseParticipant.participant_user_id == user_id,
            CaseParticipant.status == "accepted",
        )
    ).scalars().first()
    return participant.role if participant else None


def accepted_participant_user_ids(case: Case) -> list[int]:
    rows = db.session.execute(
        select(CaseParticipant.participant_user_id).where(
            CaseParticipant.case_id == case.id,
            CaseParticipant.tenant_id == case.tenant_id,
            CaseParticipant.status == "accepted",
            CaseParticipant.participant_user_id.is_not(None),
        ).order_by(CaseParticipant.created_at)
    ).all()
    return [user_id for (user_id,) in rows]


def ensure_case_role(tenant_id: int, case_id: str, actor_user_id: int | None, action: str) -> str:
    """Return the actor's effective role or raise CaseAccessDeniedError.

    Raises:
        NotFoundError: Case does not exist in the tenant.
        CaseAccessDeniedError: Role below REQUIRED_ROLES[action].
    """
    required = REQUIRED_ROLES[action]
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    role = resolve_effective_case_role(case, actor_user_id)
    if _role_level(role) >= _role_level(required):
        return role

    logger.warning(
        "Case access denied: user=%s action=%s required=%s actual=%s",
        actor_user_id, action, required, role,
        extra={"tenant_id": tenant_id, "case_id": case_id, "event_type": "CaseAccessDenied"},
    )
    write_audit(
        action="CaseAccessDenied",
        case_id=case.id,
        tenant_id=tenant_id,
        actor_user_id=actor_user_id,
        payload={
            "attempted_action": action,
            "required_role": required,
            "actual_role": role,
            "reason_code": "ROLE_INSUFFICIENT",
        },
    )
    db.session.commit()
    raise CaseAccessDeniedError(action, required, role)
