"""
Organization and membership models.

Organizations are the tenant boundary. A user joins an organization through an
OrganizationMember row carrying exactly one role; members with an "assigned"
scope see the projects listed in their ProjectAccess rows.
"""
from sqlalchemy import String, ForeignKey, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database.base import Base, TimestampMixin, generate_ulid
from app.features.permissions.models import Role


class Organization(Base, TimestampMixin):
    """Tenant boundary; every other entity belongs to exactly one organization."""
    __tablename__ = "organizations"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Organization(id={self.id}, name={self.name!r})>"


class OrganizationMember(Base, TimestampMixin):
    """
    Membership of a user in an organization.

    This, not the user, is what authorization decisions are made against.
    """
    __tablename__ = "organization_members"
    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_members_organization_user"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    organization_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    # A role cannot be removed while members still hold it
    role_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True
    )

    # Relationships
    role: Mapped[Role] = relationship(Role, lazy="selectin")

    project_accesses: Mapped[list["ProjectAccess"]] = relationship(
        "ProjectAccess",
        back_populates="member",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def project_ids(self) -> list[str]:
        return sorted(access.project_id for access in self.project_accesses)

    def __repr__(self) -> str:
        return f"<OrganizationMember(id={self.id}, org_id={self.organization_id}, user_id={self.user_id})>"


class ProjectAccess(Base, TimestampMixin):
    """Explicit grant of one project to one member."""
    __tablename__ = "project_access"
    __table_args__ = (
        UniqueConstraint("member_id", "project_id", name="uq_project_access_member_project"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    member_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("organization_members.id", ondelete="CASCADE"), nullable=False, index=True
    )
    project_id: Mapped[str] = mapped_column(
        String(26), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True
    )

    member: Mapped["OrganizationMember"] = relationship("OrganizationMember", back_populates="project_accesses")

    def __repr__(self) -> str:
        return f"<ProjectAccess(member_id={self.member_id}, project_id={self.project_id})>"
