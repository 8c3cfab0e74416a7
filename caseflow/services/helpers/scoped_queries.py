"""
Tenant-scoped query helpers.

Every get-by-id in the engine MUST use these helpers instead of
db.session.get(Model, pk). Direct .get() calls bypass tenant isolation.

Usage:
    case = get_scoped(Case, case_id, tenant_id=tenant_id)
    step = get_scoped(WorkflowStep, step_id, tenant_id=tenant_id, case_id=case_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    A scope that names a column the model lacks is a programming error and
    raises ValueError instead of silently running an unscoped lookup.
"""

import logging

from sqlalchemy import select

from caseflow.core.exceptions import NotFoundError
from caseflow.models import db

logger = logging.getLogger(__name__)


def _scoped_statement(model, pk, scopes: dict, *, for_update: bool = False):
    provided = {k: v for k, v in scopes.items() if v is not None}
    if not provided:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id or case_id). Unscoped lookups are forbidden."
        )

    missing_fields = sorted(field for field in provided if not hasattr(model, field))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} has no scope column(s) {missing_fields}; "
            "refusing to perform a partially scoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided.items():
        stmt = stmt.where(getattr(model, field) == value)
    if for_update:
        # Locked reads must not hand back an instance loaded earlier in the session.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return stmt, provided


def get_scoped(
    model,
    pk,
    *,
    tenant_id: int | None = None,
    case_id: str | None = None,
    for_update: bool = False,
):
    """Fetch a single entity by PK with mandatory scope filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        tenant_id: Scope by tenant_id column.
        case_id: Scope by case_id column.
        for_update: Lock the row (SELECT … FOR UPDATE) for the rest of the
            transaction and refresh any copy already in the identity map.
            The lock itself is ignored by SQLite.

    Raises:
        ValueError: If no scope is given, or a scope column is missing on the model.
        NotFoundError: If the entity does not exist in the given scope.
    """
    stmt, applied = _scoped_statement(
        model, pk, {"tenant_id": tenant_id, "case_id": case_id}, for_update=for_update,
    )
    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            applied,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk, tenant_id=tenant_id)

    return result


def get_scoped_or_none(
    model,
    pk,
    *,
    tenant_id: int | None = None,
    case_id: str | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still enforces the scope requirement.
    """
    stmt, _ = _scoped_statement(model, pk, {"tenant_id": tenant_id, "case_id": case_id})
    return db.session.execute(stmt).scalar_one_or_none()
