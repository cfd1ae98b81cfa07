"""
auth/service.py -- Registration, login, token refresh and password changes.

AuthService orchestrates the store, the password verifier, the token codec
and the authority resolver. It owns the credential state machine:

    absent -> registered -> active <-> locked / disabled -> deleted

register_user() and authenticate_user() need no codec, so the CLI can use
them against a store without a signing key. AuthService delegates to both.

Security design decisions:
  Username enumeration: login() raises the same InvalidCredentials for an
       unknown username and for a wrong password, and authenticate_user()
       runs bcrypt against dummy_hash() when the user does not exist, so the
       two cases also take the same time.

  Account status is checked only AFTER the password matched. A caller who
       does not know the password learns nothing about whether the account
       is locked or disabled.

  Refresh re-reads the user and re-resolves authorities, so role changes
       since the last login are reflected in the new access token. The old
       refresh token stays valid until it expires (stateless design).

Layer rule: no imports from api/ or core/. Configuration (bcrypt rounds,
default role) arrives through constructor and function arguments.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.authorities import AuthorityResolver
from auth.errors import (
    AccountDisabled,
    AccountExpired,
    AccountLocked,
    CredentialsExpired,
    DuplicateEmail,
    DuplicateUsername,
    IncorrectPassword,
    InvalidCredentials,
    RoleNotFound,
    UserNotFound,
)
from auth.models import Role, TokenPair, User
from auth.passwords import DEFAULT_ROUNDS, dummy_hash, hash_password, verify_password
from auth.store import CredentialStore
from auth.tokens import TOKEN_TYPE_REFRESH, TokenCodec

logger = logging.getLogger("rolegate.auth")

DEFAULT_ROLE = "USER"


def check_account_status(account) -> None:
    """Raise the matching AccountStatusError if account may not be used.

    Works for anything carrying the four status flags (User, Principal).
    """
    if not account.enabled:
        raise AccountDisabled()
    if not account.account_non_locked:
        raise AccountLocked()
    if not account.account_non_expired:
        raise AccountExpired()
    if not account.credentials_non_expired:
        raise CredentialsExpired()


def resolve_role_names(
    store: CredentialStore,
    role_names: Iterable[str] | None,
    default_role: str = DEFAULT_ROLE,
) -> list[Role]:
    """Look up every requested role, or the default role when none are given.

    Repeated names collapse. Raises RoleNotFound on the first unknown name.
    """
    names = list(dict.fromkeys(role_names or ()))
    if not names:
        names = [default_role]
    roles: list[Role] = []
    for name in names:
        role = store.get_role_by_name(name)
        if role is None:
            raise RoleNotFound(name)
        roles.append(role)
    return roles


def register_user(
    store: CredentialStore,
    username: str,
    email: str,
    password: str,
    first_name: str | None = None,
    last_name: str | None = None,
    role_names: Iterable[str] | None = None,
    default_role: str = DEFAULT_ROLE,
    bcrypt_rounds: int = DEFAULT_ROUNDS,
) -> User:
    """Create an active user holding the requested roles (or the default role).

    All-or-nothing: duplicates, unknown role names and over-long passwords
    are detected before anything is written, and the user row plus its role
    edges are stored in a single transaction.
    """
    logger.info("Registering new user: %s", username)
    if store.username_exists(username):
        raise DuplicateUsername(f"Username already exists: {username}")
    if store.email_exists(email):
        raise DuplicateEmail(f"Email already exists: {email}")

    roles = resolve_role_names(store, role_names, default_role)
    user = User(
        username=username,
        email=email,
        hashed_password=hash_password(password, bcrypt_rounds),
        first_name=first_name,
        last_name=last_name,
    )
    created = store.create_user(user, [role.id for role in roles])
    logger.info("User registered: %s (roles=%s)", created.username, ",".join(r.name for r in roles))
    return created


def authenticate_user(
    store: CredentialStore,
    username: str,
    password: str,
    bcrypt_rounds: int = DEFAULT_ROUNDS,
) -> User | None:
    """Check a username/password pair with timing equalization.

    Always runs bcrypt whether or not the user exists:
    - Unknown username: bcrypt runs against dummy_hash(bcrypt_rounds)
    - Wrong password: bcrypt runs against the real hash

    Returns the User on a password match, None otherwise. Account status is
    NOT checked here.
    """
    user = store.get_user_by_username(username)
    if user is None:
        verify_password(password, dummy_hash(bcrypt_rounds))
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user


class AuthService:
    """Register users, log them in, and refresh their tokens.

    Usage:
        service = AuthService(store, codec, AuthorityResolver(store))
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        pair = service.refresh(pair.refresh_token)
    """

    def __init__(
        self,
        store: CredentialStore,
        codec: TokenCodec,
        resolver: AuthorityResolver,
        default_role: str = DEFAULT_ROLE,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
    ) -> None:
        self.store = store
        self.codec = codec
        self.resolver = resolver
        self.default_role = default_role
        self.bcrypt_rounds = bcrypt_rounds
        # Warm the cache so the first unknown-user login is not measurably slower.
        dummy_hash(bcrypt_rounds)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        username: str,
        email: str,
        password: str,
        first_name: str | None = None,
        last_name: str | None = None,
        role_names: Iterable[str] | None = None,
    ) -> User:
        return register_user(
            self.store,
            username,
            email,
            password,
            first_name=first_name,
            last_name=last_name,
            role_names=role_names,
            default_role=self.default_role,
            bcrypt_rounds=self.bcrypt_rounds,
        )

    # ------------------------------------------------------------------
    # Login / refresh
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> TokenPair:
        """Exchange a username and password for an access + refresh token pair."""
        user = authenticate_user(self.store, username, password, self.bcrypt_rounds)
        if user is None:
            logger.info("Login failed: %s", username)
            raise InvalidCredentials()
        check_account_status(user)

        pair = self._issue_pair(user)
        self.store.update_last_login(user.id)
        logger.info("User logged in: %s", user.username)
        return pair

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a valid refresh token for a new pair with freshly resolved authorities.

        Raises InvalidToken for anything that is not a valid refresh token
        (access tokens included) and UserNotFound if the subject was deleted
        after the refresh token was issued.
        """
        subject = self.codec.subject_of(refresh_token, expected_type=TOKEN_TYPE_REFRESH)
        user = self.store.get_user_by_username(subject)
        if user is None:
            raise UserNotFound()
        check_account_status(user)

        pair = self._issue_pair(user)
        logger.info("Token refreshed for user: %s", user.username)
        return pair

    def _issue_pair(self, user: User) -> TokenPair:
        authorities = self.resolver.resolve(user.id)
        return TokenPair(
            access_token=self.codec.issue_access_token(user.username, authorities),
            refresh_token=self.codec.issue_refresh_token(user.username),
            username=user.username,
            email=user.email,
            expires_in=int(self.codec.access_ttl.total_seconds()),
        )

    # ------------------------------------------------------------------
    # Password management
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, current_password: str, new_password: str) -> None:
        """Replace a user's password after verifying the current one.

        A successful change also clears an expired-credentials flag.
        """
        user = self.store.get_user(user_id)
        if user is None:
            raise UserNotFound()
        if not verify_password(current_password, user.hashed_password):
            raise IncorrectPassword()
        self.store.update_user(
            user_id,
            hashed_password=hash_password(new_password, self.bcrypt_rounds),
            credentials_non_expired=True,
        )
        logger.info("Password changed for user: %s", user.username)
