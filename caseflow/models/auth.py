"""
Auth Models — tenants and users.

Only the columns the workflow engine reads are modelled here: tenant scoping
for every case / step row and user identities for ownership, audit actors and
notification recipients. Login, sessions and platform roles belong to the
identity service.
"""

from datetime import datetime, timezone

from caseflow.models import db
from caseflow.models.case import _sql_in

USER_STATUSES = {"active", "invited", "inactive", "suspended"}


# ═══════════════════════════════════════════════════════════════
# 1. TENANTS
# ═══════════════════════════════════════════════════════════════
class Tenant(db.Model):
    __tablename__ = "tenants"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    def __repr__(self):
        return f"<Tenant {self.id}: {self.slug}>"


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer, db.ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False
    )
    email = db.Column(db.String(200), nullable=False)
    full_name = db.Column(db.String(200))
    status = db.Column(db.String(20), nullable=False, default="active")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Same email can exist in different tenants
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        db.Index("ix_users_tenant_id", "tenant_id"),
        db.CheckConstraint(
            f"status IN ({_sql_in(USER_STATUSES)})",
            name="ck_user_status",
        ),
    )

    @property
    def is_active(self) -> bool:
        """Only active users may act on cases; invited / inactive / suspended may not."""
        return self.status == "active"

    def __repr__(self):
        return f"<User {self.id}: {self.email} [{self.status}]>"
