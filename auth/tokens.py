"""
auth/tokens.py -- Bearer token issuance and validation.

Security design decisions:
  JWT: python-jose with HS256. One signing key for both token classes; the
       class is carried in an explicit "type" claim ("access" / "refresh")
       and checked on every validation, so an access token is never accepted
       where a refresh token is required (and vice versa).

  Access tokens carry sub, authorities, type, iat, exp (default 24h), jti.
  Refresh tokens carry sub, type, iat, exp (default 7d), jti -- and no
       authorities, so a refreshed access token always reflects the current
       role/permission graph instead of a stale snapshot.

  Fail closed: every parse, signature, claim or expiry problem raises the
       same InvalidToken with the same message. The specific cause is logged
       at DEBUG and never returned to the caller, so the codec cannot be used
       as a signature-vs-expiry oracle.

  SECRET_KEY is injected into TokenCodec rather than read from module state.
       A missing, short (<32 chars) or trivial key raises SigningError from
       the constructor; the app builds the codec during startup, so a bad key
       stops the service instead of failing each request.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from jose import jwt
from jose.exceptions import JOSEError

from auth.errors import InvalidToken, SigningError
from auth.models import TokenClaims

logger = logging.getLogger("rolegate.tokens")

ALGORITHM = "HS256"

TOKEN_TYPE_ACCESS = "access"
TOKEN_TYPE_REFRESH = "refresh"
_TOKEN_TYPES = (TOKEN_TYPE_ACCESS, TOKEN_TYPE_REFRESH)

DEFAULT_ACCESS_TTL = timedelta(hours=24)
DEFAULT_REFRESH_TTL = timedelta(days=7)

_MIN_SECRET_LENGTH = 32
_MIN_DISTINCT_CHARS = 10

# Expiry is checked in validate() against the injected clock, not by jose.
# jose turns any require_<claim> option into verify_<claim>, so exp and iat
# must not appear as require_* here; validate() checks their presence itself.
_DECODE_OPTIONS = {
    "verify_signature": True,
    "verify_exp": False,
    "verify_iat": True,
    "verify_sub": True,
    "require_sub": True,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_signing_secret(secret_key: str | None) -> None:
    """Raise SigningError unless secret_key is usable as an HS256 key."""
    if not secret_key:
        raise SigningError("Signing secret is not configured.")
    if len(secret_key) < _MIN_SECRET_LENGTH:
        raise SigningError(f"Signing secret must be at least {_MIN_SECRET_LENGTH} characters.")
    if len(set(secret_key)) < _MIN_DISTINCT_CHARS:
        raise SigningError("Signing secret is too predictable.")


class TokenCodec:
    """Signs and verifies access and refresh tokens with one HS256 key.

    Usage:
        codec = TokenCodec(settings.secret_key)
        token = codec.issue_access_token("alice", {"ROLE_USER"})
        claims = codec.validate(token, expected_type="access")
    """

    def __init__(
        self,
        secret_key: str,
        access_ttl: timedelta = DEFAULT_ACCESS_TTL,
        refresh_ttl: timedelta = DEFAULT_REFRESH_TTL,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        check_signing_secret(secret_key)
        if access_ttl <= timedelta(0) or refresh_ttl <= timedelta(0):
            raise SigningError("Token lifetimes must be positive.")
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self._clock = clock

    # ------------------------------------------------------------------
    # Issue
    # ------------------------------------------------------------------

    def issue_access_token(self, subject: str, authorities: Iterable[str]) -> str:
        """Encode a signed access token for subject with the given authorities."""
        claims = {"authorities": sorted(set(authorities))}
        return self._encode(subject, TOKEN_TYPE_ACCESS, self.access_ttl, claims)

    def issue_refresh_token(self, subject: str) -> str:
        """Encode a signed refresh token. Carries no authority claims."""
        return self._encode(subject, TOKEN_TYPE_REFRESH, self.refresh_ttl, {})

    def _encode(self, subject: str, token_type: str, ttl: timedelta, extra: dict) -> str:
        issued_at = int(self._clock().timestamp())
        payload = {
            "sub": subject,
            "type": token_type,
            "iat": issued_at,
            "exp": issued_at + int(ttl.total_seconds()),
            "jti": uuid.uuid4().hex,
            **extra,
        }
        try:
            return jwt.encode(payload, self._secret_key, algorithm=ALGORITHM)
        except JOSEError as exc:
            raise SigningError("Token could not be signed.") from exc

    # ------------------------------------------------------------------
    # Validate
    # ------------------------------------------------------------------

    def validate(self, token: str, expected_type: str | None = None) -> TokenClaims:
        """Verify token and return its claims. Raises InvalidToken on any failure.

        expected_type, when given, must match the token's "type" claim.
        """
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[ALGORITHM], options=_DECODE_OPTIONS)
        except (JOSEError, AttributeError, TypeError, ValueError) as exc:
            logger.debug("Token rejected: %s", type(exc).__name__)
            raise InvalidToken() from None

        token_type = payload.get("type")
        expires_at = payload.get("exp")
        issued_at = payload.get("iat")
        subject = payload.get("sub")

        if token_type not in _TOKEN_TYPES:
            logger.debug("Token rejected: unknown type claim")
            raise InvalidToken()
        if expected_type is not None and token_type != expected_type:
            logger.debug("Token rejected: expected %s token, got %s", expected_type, token_type)
            raise InvalidToken()
        if not isinstance(expires_at, int) or not isinstance(issued_at, int) or not subject:
            logger.debug("Token rejected: malformed registered claims")
            raise InvalidToken()
        if self._clock().timestamp() >= expires_at:
            logger.debug("Token rejected: expired")
            raise InvalidToken()

        authorities = payload.get("authorities", [])
        if not isinstance(authorities, list) or not all(isinstance(a, str) for a in authorities):
            logger.debug("Token rejected: malformed authorities claim")
            raise InvalidToken()

        return TokenClaims(
            subject=subject,
            token_type=token_type,
            issued_at=issued_at,
            expires_at=expires_at,
            token_id=payload.get("jti"),
            authorities=tuple(authorities),
        )

    def subject_of(self, token: str, expected_type: str | None = None) -> str:
        """Validate token and return only its subject."""
        return self.validate(token, expected_type=expected_type).subject
