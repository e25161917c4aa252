"""
Permission, Role and audit models.

- Permissions are global catalog entries identified by (resource, action)
- Roles belong to an organization, or are shared system roles (organization_id NULL)
- A role holds a set of permissions and an optional scope per resource
"""
from typing import Any, Dict
from sqlalchemy import String, ForeignKey, Table, Column, JSON, Text, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid


# ============================================================================
# Association Tables for Many-to-Many Relationships
# ============================================================================

# Role-Permission relationship
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", String(26), ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


# ============================================================================
# Core Models
# ============================================================================

class Permission(Base, TimestampMixin):
    """
    Catalog entry for one controllable operation.

    Examples:
    - key="expense.approve", resource="expense", action="approve", category="Expenses"
    - key="project.read", resource="project", action="read", category="Projects"
    """
    __tablename__ = "permissions"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    key: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    resource: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Permission(id={self.id}, key={self.key!r})>"


class Role(Base, TimestampMixin):
    """
    Named bundle of permissions.

    System roles (is_system_role) may have their permissions edited but keep
    their name. Examples: ADMIN, MANAGER, SUPERVISOR, or a custom "Site Engineer".
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("organization_id", "name", name="uq_roles_organization_name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    name: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_system_role: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # Null = shared system role
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    # Relationships
    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary=role_permissions,
        lazy="selectin",
        order_by="Permission.key",
    )

    scopes: Mapped[list["RoleScope"]] = relationship(
        "RoleScope",
        back_populates="role",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, org_id={self.organization_id})>"


class RoleScope(Base):
    """Scope of a role's permissions on one resource (all, assigned, own, none)."""
    __tablename__ = "role_scopes"

    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True
    )
    resource: Mapped[str] = mapped_column(String(50), primary_key=True)
    scope: Mapped[str] = mapped_column(String(16), nullable=False)

    role: Mapped["Role"] = relationship("Role", back_populates="scopes")

    def __repr__(self) -> str:
        return f"<RoleScope(role_id={self.role_id}, {self.resource}={self.scope})>"


class AuditLog(Base, TimestampMixin):
    """
    Audit log for administrative access-control changes.

    Tracks who did what, when, and from where.
    """
    __tablename__ = "audit_logs"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    user_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(26), nullable=True, index=True)

    # Context
    organization_id: Mapped[str | None] = mapped_column(
        String(26),
        ForeignKey("organizations.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, resource={self.resource_type})>"
