"""
auth/dependencies.py -- Per-request authentication and FastAPI Depends() helpers.

RequestAuthenticator turns an "Authorization: Bearer <token>" header into a
Principal:
  1. Extract the bearer token. No header, another scheme or an empty token
     means "no credential presented" -- not an error.
  2. Validate it as an ACCESS token (refresh tokens are rejected here).
  3. Load the current user record by the token subject.
  4. Resolve authorities fresh from the store. The token's own authorities
     claim is never trusted, so role changes apply within a token's lifetime.

Any failure leaves the request unauthenticated (None) instead of failing it;
the authorization dependencies below then produce a uniform 401/403 without
exposing why the token was rejected.

try_get_principal() is the soft variant (returns None when unauthenticated).
get_current_principal() raises HTTP 401 when unauthenticated and the account
status error (403) when the account is disabled, locked or expired -- which
can happen after a token was issued and while it is still valid.
require_authority() / require_role() add HTTP 403 on missing authorities.

Layer rule: may import from fastapi (Depends/HTTPException/Request) because
this module is part of the FastAPI dependency injection system. No imports
from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from fastapi import HTTPException, Request

from auth.authorities import AuthorityResolver, role_authority
from auth.errors import InvalidToken
from auth.models import Principal
from auth.service import check_account_status
from auth.store import CredentialStore
from auth.tokens import TOKEN_TYPE_ACCESS, TokenCodec

logger = logging.getLogger("rolegate.auth")

_BEARER_PREFIX = "Bearer "
_UNSET = object()


def extract_bearer_token(header: str | None) -> str | None:
    """Return the token from an Authorization header value, or None if absent or not Bearer."""
    if not header or not header.startswith(_BEARER_PREFIX):
        return None
    token = header[len(_BEARER_PREFIX) :].strip()
    return token or None


class RequestAuthenticator:
    """Validate bearer tokens and build Principals from current store state."""

    def __init__(self, store: CredentialStore, codec: TokenCodec, resolver: AuthorityResolver) -> None:
        self.store = store
        self.codec = codec
        self.resolver = resolver

    def authenticate(self, token: str) -> Principal | None:
        """Return the Principal for a valid access token, None on any failure.

        The Principal carries the account status flags as stored right now;
        it is returned even for a locked or disabled account so the caller
        can deny it explicitly.
        """
        try:
            claims = self.codec.validate(token, expected_type=TOKEN_TYPE_ACCESS)
        except InvalidToken:
            return None

        user = self.store.get_user_by_username(claims.subject)
        if user is None:
            logger.debug("Token subject no longer exists: %s", claims.subject)
            return None

        return Principal(
            user_id=user.id,
            username=user.username,
            email=user.email,
            authorities=self.resolver.resolve(user.id),
            enabled=user.enabled,
            account_non_expired=user.account_non_expired,
            account_non_locked=user.account_non_locked,
            credentials_non_expired=user.credentials_non_expired,
        )

    def authenticate_header(self, authorization: str | None) -> Principal | None:
        token = extract_bearer_token(authorization)
        if token is None:
            return None
        return self.authenticate(token)


# ---------------------------------------------------------------------------
# FastAPI dependencies
# ---------------------------------------------------------------------------


def try_get_principal(request: Request) -> Principal | None:
    """Authenticate the request once and cache the result on request.state.

    Never raises for a bad or missing token -- callers that need a hard 401
    should use get_current_principal().
    """
    principal = getattr(request.state, "principal", _UNSET)
    if principal is _UNSET:
        authenticator: RequestAuthenticator = request.app.state.authenticator
        principal = authenticator.authenticate_header(request.headers.get("Authorization"))
        request.state.principal = principal
    return principal


def get_current_principal(request: Request) -> Principal:
    """Require an authenticated, usable account.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_current_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    check_account_status(principal)
    return principal


def require_authority(*authorities: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires at least one of the given authorities.

    Use as a FastAPI dependency:
        @router.get("/reports")
        def route(principal: Principal = Depends(require_authority("READ_REPORTS"))): ...
    """

    def dependency(request: Request) -> Principal:
        principal = get_current_principal(request)
        if not any(principal.has_authority(authority) for authority in authorities):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient authority."},
            )
        return principal

    return dependency


def require_role(*role_names: str) -> Callable[[Request], Principal]:
    """Build a dependency that requires membership of at least one of the given roles."""
    return require_authority(*(role_authority(name) for name in role_names))


require_admin = require_role("ADMIN")
