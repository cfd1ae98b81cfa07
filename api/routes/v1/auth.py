"""
api/routes/v1/auth.py -- Registration, login, token refresh and identity endpoints.

Routes:
  POST /api/v1/auth/register   -- create an account (public or admin)
  POST /api/v1/auth/login      -- password login; returns access + refresh tokens
  POST /api/v1/auth/refresh    -- exchange a refresh token for a new pair
  GET  /api/v1/auth/me         -- current identity and resolved authorities

Security:
  POST /login is rate-limited per client IP (LOGIN_RATE_LIMIT).
  AuthService.login() provides timing equalization -- never inline the
      store lookup + password check here.
  Cache-Control: no-store on every response carrying tokens.
  Naming roles at registration requires ROLE_ADMIN; otherwise an anonymous
      caller could register straight into ADMIN.
  A refresh for a user deleted since issuance answers exactly like a bad
      token, so the endpoint cannot be used to discover which accounts exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import LoginRequest, MeResponse, RefreshRequest, RegisterRequest, TokenResponse, UserResponse
from auth.authorities import role_authority
from auth.dependencies import get_current_principal, try_get_principal
from auth.errors import InvalidToken, UserNotFound
from auth.models import Principal
from auth.service import AuthService
from auth.store import CredentialStore
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register: public (when SELF_REGISTRATION_ENABLED); admin for explicit roles
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/refresh:  public -- the refresh token itself is the credential
# - GET  /api/v1/auth/me:       requires auth (get_current_principal)
router = APIRouter()


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=UserResponse, status_code=201)
def register(
    request: Request,
    body: RegisterRequest,
    principal: Principal | None = Depends(try_get_principal),
) -> UserResponse:
    """Register a new account.

    Anonymous callers get the default role and only when self registration
    is enabled. An authenticated administrator may register accounts at any
    time and may name their roles.
    """
    is_admin = (
        principal is not None and principal.is_active and principal.has_authority(role_authority("ADMIN"))
    )
    if body.roles and not is_admin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Only administrators may assign roles at registration."},
        )
    if not is_admin and not request.app.state.settings.self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self registration is disabled."},
        )

    service: AuthService = request.app.state.auth_service
    store: CredentialStore = request.app.state.store
    user = service.register(
        username=body.username,
        email=body.email,
        password=body.password,
        first_name=body.first_name,
        last_name=body.last_name,
        role_names=body.roles,
    )
    return UserResponse.from_user(user, store.get_user_roles(user.id))


@limiter.limit(get_settings().login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=TokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; return an access + refresh token pair.

    Wrong username and wrong password produce the same 401 "bad_credentials"
    error. Account status (disabled, locked, expired) is reported only after
    the password matched.
    """
    service: AuthService = request.app.state.auth_service
    pair = service.login(body.username, body.password)
    return _no_store(TokenResponse.from_pair(pair).model_dump())


@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, body: RefreshRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. Access tokens are rejected."""
    service: AuthService = request.app.state.auth_service
    try:
        pair = service.refresh(body.refresh_token)
    except UserNotFound:
        raise InvalidToken() from None
    return _no_store(TokenResponse.from_pair(pair).model_dump())


@router.get("/auth/me", response_model=MeResponse)
def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    """Return identity information and the freshly resolved authorities of the caller."""
    return MeResponse(
        user_id=principal.user_id,
        username=principal.username,
        email=principal.email,
        authorities=sorted(principal.authorities),
    )
