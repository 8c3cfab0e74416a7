"""
Readiness override tests.

    - target must be Ready or Blocked, rationale mandatory (≤ 1000 chars)
    - complete / skipped steps cannot be overridden
    - the pin is permanent: recalculation never touches the step again
    - an overridden step bypasses dependency gating in the state machine
"""

import pytest
from sqlalchemy import select

from caseflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from caseflow.models import db
from caseflow.models.audit import AuditLog
from caseflow.models.workflow import WorkflowStep
from caseflow.services import workflow_service as wfs

pytestmark = pytest.mark.integration


@pytest.fixture()
def planned(case_factory, tenant, manager):
    case = case_factory(has_will=True)
    plan = wfs.generate_case_plan(tenant.id, case.id, manager.id)
    return case, {s["step_key"]: s["id"] for s in plan["steps"]}


def _step(step_id):
    return db.session.get(WorkflowStep, step_id)


class TestOverrideValidation:
    @pytest.mark.parametrize("target", ["InProgress", "complete", "", None])
    def test_target_must_be_ready_or_blocked(self, planned, tenant, manager, target):
        case, ids = planned
        with pytest.raises(ValidationError):
            wfs.override_step_readiness(
                tenant.id, case.id, ids["validate-will"], target, "because", manager.id,
            )

    @pytest.mark.parametrize("rationale", ["", "   ", None, "x" * 1001])
    def test_rationale_is_required_and_bounded(self, planned, tenant, manager, rationale):
        case, ids = planned
        with pytest.raises(ValidationError):
            wfs.override_step_readiness(
                tenant.id, case.id, ids["validate-will"], "Ready", rationale, manager.id,
            )

    def test_terminal_step_cannot_be_overridden(self, planned, tenant, manager):
        case, ids = planned
        wfs.update_task_status(tenant.id, case.id, ids["collect-civil-records"], "COMPLETED", manager.id)
        with pytest.raises(InvalidTransitionError):
            wfs.override_step_readiness(
                tenant.id, case.id, ids["collect-civil-records"], "Blocked", "reopen", manager.id,
            )
        assert _step(ids["collect-civil-records"]).is_readiness_overridden is False

    def test_unknown_step(self, planned, tenant, manager):
        case, _ = planned
        with pytest.raises(NotFoundError):
            wfs.override_step_readiness(tenant.id, case.id, "nope", "Ready", "why", manager.id)


class TestOverrideEffect:
    def test_pin_to_ready_records_rationale_and_actor(self, planned, tenant, manager):
        case, ids = planned
        plan = wfs.override_step_readiness(
            tenant.id, case.id, ids["validate-will"], "READY", "  Will verified by notary  ", manager.id,
        )
        data = {s["step_key"]: s for s in plan["steps"]}["validate-will"]
        assert data["status"] == "ready"
        assert data["is_readiness_overridden"] is True
        assert data["readiness_override_rationale"] == "Will verified by notary"
        assert data["readiness_override_by_user_id"] == manager.id
        assert data["readiness_overridden_at"] is not None

        audit = db.session.execute(
            select(AuditLog).where(AuditLog.action == "CasePlanReadinessOverridden")
        ).scalar_one()
        assert audit.payload["previous_status"] == "blocked"
        assert audit.payload["new_status"] == "ready"

    def test_override_is_immune_to_recalculation(self, planned, tenant, manager):
        case, ids = planned
        wfs.override_step_readiness(
            tenant.id, case.id, ids["collect-civil-records"], "Blocked", "Waiting on registry", manager.id,
        )
        wfs.override_step_readiness(
            tenant.id, case.id, ids["validate-will"], "Ready", "Notary confirmed", manager.id,
        )
        result = wfs.recalculate_case_readiness(tenant.id, case.id, manager.id)
        assert result["changed_step_keys"] == []
        assert _step(ids["collect-civil-records"]).status == "blocked"
        assert _step(ids["validate-will"]).status == "ready"

    def test_overridden_step_bypasses_dependency_gating(self, planned, tenant, manager):
        case, ids = planned
        wfs.override_step_readiness(
            tenant.id, case.id, ids["validate-will"], "Ready", "Notary confirmed", manager.id,
        )
        result = wfs.update_task_status(
            tenant.id, case.id, ids["validate-will"], "COMPLETED", manager.id,
        )
        assert result["step"]["status"] == "complete"

    def test_override_survives_later_completions(self, planned, tenant, manager):
        case, ids = planned
        wfs.override_step_readiness(
            tenant.id, case.id, ids["submit-succession-notification"], "Blocked", "Court hold", manager.id,
        )
        wfs.update_task_status(tenant.id, case.id, ids["collect-civil-records"], "COMPLETED", manager.id)
        result = wfs.update_task_status(
            tenant.id, case.id, ids["gather-estate-inventory"], "COMPLETED", manager.id,
        )
        assert "submit-succession-notification" not in result["changed_step_keys"]
        assert _step(ids["submit-succession-notification"]).status == "blocked"
