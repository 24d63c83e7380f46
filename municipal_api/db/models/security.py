from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, Boolean, DateTime, Enum, ForeignKey, Text, UniqueConstraint, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from municipal_api.core.identity import AccessLevel, RoleLevel
from municipal_api.db.base import (
    ActiveMixin,
    Base,
    IdPkMixin,
    SedeScopedMixin,
    SoftDeleteMixin,
    TimestampMixin,
)

access_level_enum = Enum(AccessLevel, name="access_level", values_callable=lambda e: [m.value for m in e])
role_level_enum = Enum(RoleLevel, name="role_level", values_callable=lambda e: [m.value for m in e])


class User(IdPkMixin, SedeScopedMixin, ActiveMixin, SoftDeleteMixin, TimestampMixin, Base):
    """Administrative principal bound to a sede and optionally a subsede."""
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    username: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    hashed_password: Mapped[str] = mapped_column(Text, nullable=False)
    first_name: Mapped[str] = mapped_column(Text, nullable=False)
    last_name: Mapped[str] = mapped_column(Text, nullable=False)
    phone_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    document_number: Mapped[Optional[str]] = mapped_column(Text, nullable=True, unique=True)
    access_level: Mapped[AccessLevel] = mapped_column(access_level_enum, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    role_links: Mapped[list["UserRole"]] = relationship(
        "UserRole",
        primaryjoin="and_(User.id==UserRole.user_id, UserRole.is_active==True)",
        lazy="selectin",
        viewonly=True,
    )


class Role(IdPkMixin, ActiveMixin, TimestampMixin, Base):
    """Role grouping permissions; global (system) or owned by a sede/subsede."""
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("name", "sede_id", "subsede_id", name="uq_roles_name_scope"),
    )

    name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    level: Mapped[RoleLevel] = mapped_column(role_level_enum, nullable=False)
    is_global: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    sede_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("sedes.id", ondelete="CASCADE"), nullable=True, index=True
    )
    subsede_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("subsedes.id", ondelete="CASCADE"), nullable=True, index=True
    )

    permissions: Mapped[list["Permission"]] = relationship(
        "Permission",
        secondary="role_permissions",
        primaryjoin="Role.id==RolePermission.role_id",
        secondaryjoin="Permission.id==RolePermission.permission_id",
        lazy="selectin",
        viewonly=True,
    )


class Permission(IdPkMixin, ActiveMixin, TimestampMixin, Base):
    """Atomic capability "resource:action"."""
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    resource: Mapped[str] = mapped_column(Text, nullable=False)
    action: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    @property
    def code(self) -> str:
        return f"{self.resource}:{self.action}"


class UserRole(IdPkMixin, ActiveMixin, TimestampMixin, Base):
    """Association of users to roles; replaced assignments are deactivated."""
    __tablename__ = "user_roles"

    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    assigned_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)

    role: Mapped["Role"] = relationship("Role", lazy="selectin")


class RolePermission(IdPkMixin, TimestampMixin, Base):
    """Association of roles to permissions."""
    __tablename__ = "role_permissions"
    __table_args__ = (
        UniqueConstraint("role_id", "permission_id", name="uq_role_permissions_role_permission"),
    )

    role_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
    permission_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)
    granted_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)


class _GrantColumns(ActiveMixin):
    user_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    granted_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("now()"), nullable=False
    )
    revoked_by: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    revoked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class UserSedeAccess(IdPkMixin, _GrantColumns, Base):
    """Explicit grant letting a user see a sede outside their own; revoked by deactivation."""
    __tablename__ = "user_sede_access"

    sede_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("sedes.id", ondelete="CASCADE"), nullable=False)


class UserSubsedeAccess(IdPkMixin, _GrantColumns, Base):
    """Explicit grant letting a user see a subsede outside their own; revoked by deactivation."""
    __tablename__ = "user_subsede_access"

    subsede_id: Mapped[int] = mapped_column(BigInteger, ForeignKey("subsedes.id", ondelete="CASCADE"), nullable=False)
