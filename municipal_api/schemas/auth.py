from __future__ import annotations

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from municipal_api.core.identity import AccessLevel, RoleLevel


class IdentityRead(BaseModel):
    """Resolved identity of the caller, as seen by the authorization core."""
    subject_id: int
    tenant_id: Optional[str] = None
    sede_id: int
    subsede_id: Optional[int] = None
    access_level: AccessLevel
    role_level: RoleLevel
    roles: List[str] = Field(default_factory=list)
    permissions: List[str] = Field(default_factory=list)
    sede_grants: List[int] = Field(default_factory=list)
    subsede_grants: List[int] = Field(default_factory=list)
    is_super_admin: bool = False
    scope: Optional[dict] = Field(default=None, description="Resolved visibility (kind and ids)")


class PermissionRead(BaseModel):
    """Permission read model."""
    id: int = Field(..., description="Permission ID")
    resource: str
    action: str
    description: Optional[str] = Field(None)
    is_active: bool = True

    class Config:
        from_attributes = True


class RoleSummary(BaseModel):
    id: int
    name: str
    level: RoleLevel

    class Config:
        from_attributes = True


class RoleRead(BaseModel):
    """Role read model."""
    id: int = Field(..., description="Role ID")
    name: str = Field(..., description="Role name")
    description: Optional[str] = Field(None)
    level: RoleLevel
    is_global: bool
    is_active: bool
    sede_id: Optional[int] = None
    subsede_id: Optional[int] = None
    permissions: List[PermissionRead] = Field(default_factory=list)
    created_at: datetime = Field(..., description="Created timestamp")
    updated_at: datetime = Field(..., description="Updated timestamp")

    class Config:
        from_attributes = True


class RoleCreate(BaseModel):
    """Create role payload; the role is owned by the caller's sede/subsede."""
    name: str = Field(..., min_length=2, max_length=100, description="Role name")
    description: Optional[str] = Field(None, description="Description")
    level: RoleLevel = Field(..., description="Hierarchy level of the role")
    permission_ids: List[int] = Field(default_factory=list)


class RoleUpdate(BaseModel):
    """Update role payload."""
    name: Optional[str] = Field(None, min_length=2, max_length=100)
    description: Optional[str] = Field(None)
    level: Optional[RoleLevel] = Field(None)
    permission_ids: Optional[List[int]] = Field(None)


class UserRead(BaseModel):
    """User read model."""
    id: int = Field(..., description="User ID")
    email: EmailStr = Field(..., description="User email")
    username: str
    first_name: str
    last_name: str
    phone_number: Optional[str] = None
    document_number: Optional[str] = None
    access_level: AccessLevel
    sede_id: int
    subsede_id: Optional[int] = None
    is_active: bool = Field(..., description="Active flag")
    last_login_at: Optional[datetime] = None
    created_at: datetime = Field(..., description="Created timestamp")
    updated_at: datetime = Field(..., description="Updated timestamp")
    roles: List[RoleSummary] = Field(default_factory=list, description="Active roles assigned to the user")

    class Config:
        from_attributes = True

    # PUBLIC_INTERFACE
    @classmethod
    def from_user(cls, user: Any, roles: Optional[List[Any]] = None) -> "UserRead":
        """Build from a User row; `roles` defaults to the user's active role links."""
        if roles is None:
            roles = [link.role for link in (user.role_links or [])]
        data = {name: getattr(user, name) for name in cls.model_fields if name != "roles"}
        data["roles"] = [RoleSummary.model_validate(r) for r in roles]
        return cls(**data)


class UserCreate(BaseModel):
    """Admin create user payload."""
    email: EmailStr = Field(..., description="Email")
    username: str = Field(..., min_length=3, max_length=50)
    password: str = Field(..., min_length=8, description="Password")
    first_name: str = Field(..., min_length=1)
    last_name: str = Field(..., min_length=1)
    phone_number: Optional[str] = Field(None)
    document_number: Optional[str] = Field(None)
    access_level: AccessLevel
    sede_id: int = Field(..., ge=1)
    subsede_id: Optional[int] = Field(None, ge=1)
    role_ids: List[int] = Field(..., min_length=1)
    subsede_access_ids: List[int] = Field(
        default_factory=list,
        description="Extra subsedes of the user's own sede (SEDE access level only)",
    )


class UserUpdate(BaseModel):
    """Partial user update; access level, sede, roles and password have their own flows."""
    email: Optional[EmailStr] = Field(None)
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    first_name: Optional[str] = Field(None, min_length=1)
    last_name: Optional[str] = Field(None, min_length=1)
    phone_number: Optional[str] = Field(None)
    document_number: Optional[str] = Field(None)
    subsede_id: Optional[int] = Field(None, ge=1, description="Move the user to another subsede of their sede")


class UserRolesUpdate(BaseModel):
    role_ids: List[int] = Field(..., min_length=1)


class GrantCreate(BaseModel):
    """Grant a user visibility of one sede or one subsede."""
    sede_id: Optional[int] = Field(None, ge=1)
    subsede_id: Optional[int] = Field(None, ge=1)

    @model_validator(mode="after")
    def _exactly_one_target(self):
        if (self.sede_id is None) == (self.subsede_id is None):
            raise ValueError("Provide exactly one of sede_id or subsede_id")
        return self


class GrantRead(BaseModel):
    id: int
    kind: Literal["sede", "subsede"]
    user_id: int
    target_id: int
    is_active: bool
    granted_by: Optional[int] = None
    granted_at: datetime
    revoked_by: Optional[int] = None
    revoked_at: Optional[datetime] = None

    # PUBLIC_INTERFACE
    @classmethod
    def from_grant(cls, grant: Any, kind: str) -> "GrantRead":
        target = grant.sede_id if kind == "sede" else grant.subsede_id
        return cls(
            id=grant.id,
            kind=kind,
            user_id=grant.user_id,
            target_id=target,
            is_active=grant.is_active,
            granted_by=grant.granted_by,
            granted_at=grant.granted_at,
            revoked_by=grant.revoked_by,
            revoked_at=grant.revoked_at,
        )


class GrantList(BaseModel):
    sedes: List[GrantRead] = Field(default_factory=list)
    subsedes: List[GrantRead] = Field(default_factory=list)
