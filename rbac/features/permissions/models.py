"""
Permission, Role and assignment models for RBAC.

This module implements the storage side of the permission system:
- Roles and permissions keyed by a normalized, unique name
- Roles granted to users
- Direct user permissions
- Permissions granted to roles
- Audit log of access changes
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON
from sqlalchemy.orm import Mapped, mapped_column

from rbac.core.database.base import Base, TimestampMixin, generate_ulid, timestamp_columns
from rbac.features.permissions.naming import split_permission_name


# ============================================================================
# Association Tables for Many-to-Many Relationships
# ============================================================================
# The composite primary keys are the uniqueness invariants that make
# "already assigned" detection race-safe.

# User-Role relationship
user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True, index=True),
    *timestamp_columns(),
)

# User direct permissions (independent of roles)
user_permissions = Table(
    "user_permissions",
    Base.metadata,
    Column("user_id", String(26), ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True, index=True),
    *timestamp_columns(),
)

# Role-Permission relationship
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True, index=True),
    *timestamp_columns(),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Permission model naming one action on one resource.

    Names follow the ``resource.action`` convention:
    - "post.update"
    - "invoice.view_any"
    """
    __tablename__ = "permissions"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(150), nullable=False)

    @property
    def resource(self) -> str:
        return split_permission_name(self.name)[0]

    @property
    def action(self) -> str:
        return split_permission_name(self.name)[1]

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, name={self.name!r})>"


class Role(Base, TimestampMixin):
    """
    Role model for grouping permissions.

    Role names are expected to match the integrating application's role enum.
    Examples: admin, editor, auditor
    """
    __tablename__ = "roles"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r})>"


class AccessAuditLog(Base, TimestampMixin):
    """
    Audit log for access changes.

    One row per applied mutation: who changed whose access, and how.
    """
    __tablename__ = "access_audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    actor_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Principal or role whose access changed
    subject_id: Mapped[str] = mapped_column(String(26), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AccessAuditLog(id={self.id}, actor_id={self.actor_id}, action={self.action}, subject={self.subject_id})>"
