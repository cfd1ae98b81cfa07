"""
API request and response models for rolegate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Separation of concerns: auth/ models = domain truth; api/ models = API contract.
Password hashes never appear in any response model.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from auth.models import Permission, Role, TokenPair, User
from auth.passwords import MAX_PASSWORD_BYTES, password_fits

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

USERNAME_PATTERN = r"^[A-Za-z0-9_.@-]+$"
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
ROLE_NAME_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*$"
# Resource and action are folded into an authority string, so keep them to
# characters that survive upper-casing unambiguously.
PERMISSION_PART_PATTERN = r"^[A-Za-z][A-Za-z0-9_]*$"


def _check_password_bytes(value: str) -> str:
    """max_length counts characters; bcrypt's limit is in UTF-8 bytes."""
    if not password_fits(value):
        raise ValueError(f"Password must not exceed {MAX_PASSWORD_BYTES} bytes when UTF-8 encoded.")
    return value


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    roles is optional. Left empty, the account gets the default role; naming
    roles explicitly is reserved for administrators.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=150, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=72)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    roles: list[str] = Field(default_factory=list, max_length=20)

    @field_validator("password")
    @classmethod
    def password_within_bcrypt_limit(cls, value: str) -> str:
        return _check_password_bytes(value)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=72)


class RefreshRequest(BaseModel):
    """Request body for POST /api/v1/auth/refresh."""

    refresh_token: str = Field(min_length=1)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Response body for login and refresh."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    token_type: str
    expires_in: int
    username: str
    email: str

    @classmethod
    def from_pair(cls, pair: TokenPair) -> "TokenResponse":
        return cls(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            token_type=pair.token_type,
            expires_in=pair.expires_in,
            username=pair.username,
            email=pair.email,
        )


class MeResponse(BaseModel):
    """Response for GET /api/v1/auth/me -- identity plus resolved authorities."""

    model_config = ConfigDict(frozen=True)

    user_id: int
    username: str
    email: str
    authorities: list[str]


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user account. The password hash is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    first_name: Optional[str]
    last_name: Optional[str]
    enabled: bool
    account_non_expired: bool
    account_non_locked: bool
    credentials_non_expired: bool
    roles: list[str] = Field(default_factory=list)
    last_login: Optional[str] = None
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_user(cls, user: User, roles: list[Role]) -> "UserResponse":
        """Build a UserResponse from a stored User and the roles it currently holds."""
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            enabled=user.enabled,
            account_non_expired=user.account_non_expired,
            account_non_locked=user.account_non_locked,
            credentials_non_expired=user.credentials_non_expired,
            roles=[role.name for role in roles],
            last_login=user.last_login,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class UserUpdate(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    first_name: Optional[str] = Field(default=None, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)


class ChangePasswordRequest(BaseModel):
    """Request body for POST /api/v1/users/{id}/change-password."""

    current_password: str = Field(min_length=1, max_length=72)
    new_password: str = Field(min_length=6, max_length=72)

    @field_validator("new_password")
    @classmethod
    def new_password_within_bcrypt_limit(cls, value: str) -> str:
        return _check_password_bytes(value)


class UserEnabledUpdate(BaseModel):
    """Request body for POST /api/v1/users/{id}/enabled."""

    enabled: bool


class UserLockedUpdate(BaseModel):
    """Request body for POST /api/v1/users/{id}/locked."""

    locked: bool


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


# ---------------------------------------------------------------------------
# Roles
# ---------------------------------------------------------------------------


class RoleCreate(BaseModel):
    """Request body for POST /api/v1/roles."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100, pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


class RoleUpdate(BaseModel):
    """Request body for PUT /api/v1/roles/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=ROLE_NAME_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


class RoleResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    description: Optional[str]
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_role(cls, role: Role) -> "RoleResponse":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            created_at=role.created_at or "",
            updated_at=role.updated_at or "",
        )


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


class PermissionCreate(BaseModel):
    """Request body for POST /api/v1/permissions.

    The authority name is derived server-side as ACTION_RESOURCE and cannot
    be supplied by the caller.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    resource: str = Field(min_length=1, max_length=100, pattern=PERMISSION_PART_PATTERN)
    action: str = Field(min_length=1, max_length=50, pattern=PERMISSION_PART_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


class PermissionUpdate(BaseModel):
    """Request body for PUT /api/v1/permissions/{id}. Omitted fields stay unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True)

    resource: Optional[str] = Field(default=None, min_length=1, max_length=100, pattern=PERMISSION_PART_PATTERN)
    action: Optional[str] = Field(default=None, min_length=1, max_length=50, pattern=PERMISSION_PART_PATTERN)
    description: Optional[str] = Field(default=None, max_length=255)


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    resource: str
    action: str
    name: str
    description: Optional[str]
    created_at: str = ""
    updated_at: str = ""

    @classmethod
    def from_permission(cls, permission: Permission) -> "PermissionResponse":
        return cls(
            id=permission.id,
            resource=permission.resource,
            action=permission.action,
            name=permission.name,
            description=permission.description,
            created_at=permission.created_at or "",
            updated_at=permission.updated_at or "",
        )


class ExistsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    exists: bool


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
