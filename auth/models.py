"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). The store owns
persistence, the service owns behaviour; these classes only own shape.

Relationships are NOT modelled as attributes. User <-> Role and
Role <-> Permission are many-to-many edges stored in their own tables and
fetched through CredentialStore (get_user_roles, get_role_permissions). Keeping
the dataclasses free of back-references means there is no object cycle to
keep consistent and deleting a node only ever touches edge rows.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class User:
    """An identity record.

    username and email are unique across all users (database constraint).
    hashed_password is a bcrypt hash -- the plaintext is never stored.
    The four status flags follow the "positive" convention: True means the
    account is usable on that axis.
    """

    username: str
    email: str
    hashed_password: str
    id: int | None = None
    first_name: str | None = None
    last_name: str | None = None
    enabled: bool = True
    account_non_expired: bool = True
    account_non_locked: bool = True
    credentials_non_expired: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Role:
    """A named authorization group. name is unique."""

    name: str
    id: int | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class Permission:
    """An atomic capability identified by its unique (resource, action) pair.

    name is derived as "{ACTION}_{RESOURCE}" (see permission_name() in
    auth/store.py) and is the authority string granted to role holders.
    """

    resource: str
    action: str
    name: str
    id: int | None = None
    description: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Principal:
    """The authenticated identity attached to a request.

    authorities is the flattened set produced by AuthorityResolver at request
    time -- never the snapshot embedded in the token.
    """

    user_id: int
    username: str
    email: str
    authorities: frozenset[str] = field(default_factory=frozenset)
    enabled: bool = True
    account_non_expired: bool = True
    account_non_locked: bool = True
    credentials_non_expired: bool = True

    @property
    def is_active(self) -> bool:
        return self.enabled and self.account_non_expired and self.account_non_locked and self.credentials_non_expired

    def has_authority(self, authority: str) -> bool:
        return authority in self.authorities


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a bearer token."""

    subject: str
    token_type: str  # "access" or "refresh"
    issued_at: int
    expires_at: int
    token_id: str | None = None
    authorities: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenPair:
    """Result of login and refresh: both tokens plus a minimal profile echo."""

    access_token: str
    refresh_token: str
    username: str
    email: str
    expires_in: int
    token_type: str = "Bearer"
