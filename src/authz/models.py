"""
Authorization Database Models - permission catalog, roles and grants.

Tables:
- permissions: Permission definitions ("Category.Action" names)
- roles: System, template and clinic-owned roles
- role_permissions: Role-to-permission grants
- user_permissions: Additive per-user grants layered on top of the role
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import (
    Column, String, Boolean, DateTime, Text, ForeignKey, Index, UniqueConstraint
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from database.models import Base


# =============================================================================
# PERMISSION MODEL
# =============================================================================

class Permission(Base):
    """
    Permission definition.

    Identified by a unique "Category.Action" name (e.g. "Patients.View").
    A permission referenced by any grant must not be renamed.
    """
    __tablename__ = "permissions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(150), nullable=False, unique=True, index=True)
    category = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    role_permissions = relationship(
        "RolePermission",
        back_populates="permission",
        cascade="all, delete-orphan"
    )
    user_permissions = relationship(
        "UserPermission",
        back_populates="permission",
        cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Permission(name={self.name}, category={self.category})>"


# =============================================================================
# ROLE MODEL
# =============================================================================

class Role(Base):
    """
    Role definition.

    clinic_id is NULL for system roles and templates. A clinic-owned role may
    be cloned from a template; the template is referenced by id only.
    """
    __tablename__ = "roles"
    __resource_type__ = "role"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(100), nullable=False, index=True)
    description = Column(Text, nullable=True)

    clinic_id = Column(
        UUID(as_uuid=True),
        ForeignKey("clinics.id", ondelete="CASCADE"),
        nullable=True,
        index=True
    )

    is_system_role = Column(Boolean, default=False, nullable=False)
    is_template = Column(Boolean, default=False, nullable=False)
    template_role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="SET NULL"),
        nullable=True
    )

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    role_permissions = relationship(
        "RolePermission",
        back_populates="role",
        cascade="all, delete-orphan"
    )

    __table_args__ = (
        UniqueConstraint("clinic_id", "name", name="uq_role_clinic_name"),
    )

    def __repr__(self):
        return f"<Role(name={self.name}, clinic={self.clinic_id})>"


# =============================================================================
# GRANTS
# =============================================================================

class RolePermission(Base):
    """Role-to-Permission grant."""
    __tablename__ = "role_permissions"

    role_id = Column(
        UUID(as_uuid=True),
        ForeignKey("roles.id", ondelete="CASCADE"),
        primary_key=True
    )
    permission_id = Column(
        UUID(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True
    )

    granted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    role = relationship("Role", back_populates="role_permissions")
    permission = relationship("Permission", back_populates="role_permissions")

    __table_args__ = (
        Index("ix_role_permission_permission", "permission_id"),
    )

    def __repr__(self):
        return f"<RolePermission(role={self.role_id}, permission={self.permission_id})>"


class UserPermission(Base):
    """
    Per-user grant on top of the role.

    Grants are additive only. A permission inherited through the role cannot
    be withdrawn for a single user.
    """
    __tablename__ = "user_permissions"

    user_id = Column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True
    )
    permission_id = Column(
        UUID(as_uuid=True),
        ForeignKey("permissions.id", ondelete="CASCADE"),
        primary_key=True
    )

    granted_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    permission = relationship("Permission", back_populates="user_permissions")

    __table_args__ = (
        Index("ix_user_permission_permission", "permission_id"),
    )

    def __repr__(self):
        return f"<UserPermission(user={self.user_id}, permission={self.permission_id})>"
