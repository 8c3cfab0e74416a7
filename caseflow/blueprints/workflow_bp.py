"""Case workflow blueprint — thin HTTP adapter over the workflow service.

Endpoint groups (all under /api/v1/tenants/<tenant_id>/cases/<case_id>):
  Plan                  POST  /plan/generate
                        GET   /plan
  Readiness             POST  /plan/readiness/recalculate
                        PATCH /plan/steps/<step_id>/readiness-override
  Task workspace        GET   /tasks
                        PATCH /tasks/<step_id>/status
                        GET   /tasks/<step_id>/blocked-info

tenant_id comes from the URL; the acting user from the X-User-ID header.
Every route passes the case role gate (services.case_access) before calling
the service. Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

import caseflow.services.workflow_service as wfs
from caseflow.core.exceptions import (
    CaseAccessDeniedError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from caseflow.models.auth import User
from caseflow.services.case_access import ensure_case_role
from caseflow.services.helpers.scoped_queries import get_scoped_or_none

logger = logging.getLogger(__name__)

workflow_bp = Blueprint(
    "workflow", __name__, url_prefix="/api/v1/tenants/<int:tenant_id>/cases/<case_id>",
)


# ── Actor helper ──────────────────────────────────────────────────────────────


def _actor_required(tenant_id: int) -> tuple[int | None, tuple | None]:
    """Resolve X-User-ID to an active user of the URL tenant."""
    raw = (request.headers.get("X-User-ID") or "").strip()
    if not raw.isdigit():
        return None, (jsonify({"error": "X-User-ID header is required"}), 401)
    user = get_scoped_or_none(User, int(raw), tenant_id=tenant_id)
    if user is None:
        return None, (jsonify({"error": "Unknown user for this tenant"}), 401)
    if not user.is_active:
        logger.warning(
            "Rejected %s user=%s", user.status, user.id, extra={"tenant_id": tenant_id},
        )
        return None, (jsonify({"error": f"User account is {user.status}"}), 401)
    return user.id, None


# ── Error handlers ────────────────────────────────────────────────────────────


@workflow_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return jsonify({"error": f"{error.resource} not found"}), 404


@workflow_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return jsonify({"error": str(error), "details": error.details}), 400


@workflow_bp.errorhandler(CaseAccessDeniedError)
def _handle_access_denied(error: CaseAccessDeniedError):
    return jsonify({
        "error": "Insufficient case role",
        "required_role": error.required_role,
        "actual_role": error.actual_role,
    }), 403


@workflow_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    return jsonify({"code": error.code, "error": str(error), "details": error.details}), 409


@workflow_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    logger.exception("Unexpected error in workflow_bp endpoint=%s", request.endpoint)
    return jsonify({"error": "Internal server error"}), 500


# ═════════════════════════════════════════════════════════════════════════
# Plan
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/plan/generate", methods=["POST"])
def generate_plan(tenant_id, case_id):
    """(Re)generate the case plan from the completed intake. Manager only."""
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "GenerateCasePlan")
    plan = wfs.generate_case_plan(tenant_id, case_id, actor_id)
    return jsonify(plan), 201


@workflow_bp.route("/plan", methods=["GET"])
def get_plan(tenant_id, case_id):
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "GetCasePlan")
    return jsonify(wfs.get_case_plan(tenant_id, case_id)), 200


@workflow_bp.route("/plan/readiness/recalculate", methods=["POST"])
def recalculate_readiness(tenant_id, case_id):
    """Re-derive Ready/Blocked; returns the plan plus changed_step_keys."""
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "RecalculateCasePlanReadiness")
    return jsonify(wfs.recalculate_case_readiness(tenant_id, case_id, actor_id)), 200


@workflow_bp.route("/plan/steps/<step_id>/readiness-override", methods=["PATCH"])
def override_readiness(tenant_id, case_id, step_id):
    """Pin a step to Ready or Blocked.

    Body: { target_status: "Ready" | "Blocked", rationale: str }
    """
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "OverrideWorkflowStepReadiness")
    data = request.get_json(silent=True) or {}
    plan = wfs.override_step_readiness(
        tenant_id, case_id, step_id,
        data.get("target_status"), data.get("rationale"), actor_id,
    )
    return jsonify(plan), 200


# ═════════════════════════════════════════════════════════════════════════
# Task workspace
# ═════════════════════════════════════════════════════════════════════════


@workflow_bp.route("/tasks", methods=["GET"])
def list_tasks(tenant_id, case_id):
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "GetCaseTaskWorkspace")
    return jsonify(wfs.get_task_workspace(tenant_id, case_id)), 200


@workflow_bp.route("/tasks/<step_id>/status", methods=["PATCH"])
def update_task_status(tenant_id, case_id, step_id):
    """Apply an operator status token.

    Body: { status: "STARTED" | "COMPLETED" | "NEEDSREVIEW", notes?: str }
    """
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "UpdateWorkflowTaskStatus")
    data = request.get_json(silent=True) or {}
    status = (data.get("status") or "").strip()
    if not status:
        return jsonify({"error": "status is required"}), 400
    result = wfs.update_task_status(
        tenant_id, case_id, step_id, status, actor_id, notes=data.get("notes"),
    )
    return jsonify(result), 200


@workflow_bp.route("/tasks/<step_id>/blocked-info", methods=["GET"])
def blocked_info(tenant_id, case_id, step_id):
    """Reason and recovery actions for a stuck step; {"blocked_info": null} otherwise."""
    actor_id, err = _actor_required(tenant_id)
    if err:
        return err
    ensure_case_role(tenant_id, case_id, actor_id, "GetWorkflowStepBlockedInfo")
    info = wfs.get_step_blocked_info(tenant_id, case_id, step_id, actor_id)
    return jsonify({"blocked_info": info}), 200
