"""
auth/errors.py -- Domain error taxonomy for authentication and authorization.

Every error carries an HTTP status_code and a stable machine-readable code as
class attributes. api/main.py translates any AuthError into the standard
{"error": {"code", "message"}} envelope, so route handlers never build error
responses for domain failures by hand.

Hierarchy:
    AuthError
    +-- SigningError           (500) fatal misconfiguration, raised at startup
    +-- InvalidCredentials     (401) bad username OR bad password
    +-- InvalidToken           (401) bad signature, malformed, expired, wrong class
    +-- IncorrectPassword      (400) change-password with a wrong current password
    +-- PasswordTooLong        (422) more than 72 bytes, the bcrypt input limit
    +-- AccountStatusError     (403)
    |   +-- AccountDisabled
    |   +-- AccountLocked
    |   +-- AccountExpired
    |   +-- CredentialsExpired
    +-- NotFoundError          (404)
    |   +-- UserNotFound / RoleNotFound / PermissionNotFound
    +-- ConflictError          (409)
        +-- DuplicateUsername / DuplicateEmail / DuplicateRoleName / DuplicatePermission

InvalidCredentials and InvalidToken deliberately carry fixed messages: which
check failed (unknown user vs wrong password, signature vs expiry) is never
exposed to the caller.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every recoverable rolegate domain error."""

    status_code: int = 400
    code: str = "auth_error"
    default_message: str = "Authentication error."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class SigningError(AuthError):
    """Signing configuration is missing or unusable. Fatal at startup."""

    status_code = 500
    code = "signing_error"
    default_message = "Token signing is misconfigured."


class InvalidCredentials(AuthError):
    status_code = 401
    code = "bad_credentials"
    default_message = "Invalid username or password."

    def __init__(self) -> None:
        super().__init__()


class InvalidToken(AuthError):
    status_code = 401
    code = "invalid_token"
    default_message = "Invalid or expired token."

    def __init__(self) -> None:
        super().__init__()


class IncorrectPassword(AuthError):
    status_code = 400
    code = "incorrect_password"
    default_message = "Current password is incorrect."


class PasswordTooLong(AuthError):
    """bcrypt cannot hash more than 72 bytes of input."""

    status_code = 422
    code = "password_too_long"
    default_message = "Password must not exceed 72 bytes."


# ---------------------------------------------------------------------------
# Account status
# ---------------------------------------------------------------------------


class AccountStatusError(AuthError):
    """Credentials or token were valid, but the account may not be used."""

    status_code = 403
    code = "account_unavailable"
    default_message = "Account is not available."


class AccountDisabled(AccountStatusError):
    code = "account_disabled"
    default_message = "Account is disabled."


class AccountLocked(AccountStatusError):
    code = "account_locked"
    default_message = "Account is locked."


class AccountExpired(AccountStatusError):
    code = "account_expired"
    default_message = "Account has expired."


class CredentialsExpired(AccountStatusError):
    code = "credentials_expired"
    default_message = "Credentials have expired."


# ---------------------------------------------------------------------------
# Lookup failures
# ---------------------------------------------------------------------------


class NotFoundError(AuthError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class UserNotFound(NotFoundError):
    default_message = "User not found."


class RoleNotFound(NotFoundError):
    default_message = "Role not found."

    def __init__(self, name: str | int | None = None) -> None:
        self.name = name
        super().__init__(f"Role not found: {name}" if name is not None else None)


class PermissionNotFound(NotFoundError):
    default_message = "Permission not found."


# ---------------------------------------------------------------------------
# Uniqueness violations
# ---------------------------------------------------------------------------


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."


class DuplicateUsername(ConflictError):
    code = "duplicate_username"
    default_message = "Username already exists."


class DuplicateEmail(ConflictError):
    code = "duplicate_email"
    default_message = "Email already exists."


class DuplicateRoleName(ConflictError):
    code = "duplicate_role"
    default_message = "Role already exists."


class DuplicatePermission(ConflictError):
    code = "duplicate_permission"
    default_message = "Permission already exists for this resource and action."
