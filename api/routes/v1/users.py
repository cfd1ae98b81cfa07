"""
api/routes/v1/users.py -- User account management endpoints.

Routes:
  GET    /api/v1/users                          -- list all users (admin)
  GET    /api/v1/users/{id}                     -- one user (ADMIN or USER role)
  PUT    /api/v1/users/{id}                     -- update email / names (admin)
  POST   /api/v1/users/{id}/change-password     -- admin or the account owner
  POST   /api/v1/users/{id}/enabled             -- enable / disable (admin)
  POST   /api/v1/users/{id}/locked              -- lock / unlock (admin)
  POST   /api/v1/users/{id}/roles/{role_id}     -- grant a role (admin)
  DELETE /api/v1/users/{id}/roles/{role_id}     -- revoke a role (admin)
  DELETE /api/v1/users/{id}                     -- delete the account (admin)

Security:
  Admins cannot disable, lock or delete their own account. Without that
  guard the last admin could lock everyone out with no recovery path short
  of direct database access.

Domain errors (UserNotFound, RoleNotFound, DuplicateEmail, ...) propagate to
the AuthError handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import (
    ChangePasswordRequest,
    MessageResponse,
    UserEnabledUpdate,
    UserLockedUpdate,
    UserResponse,
    UserUpdate,
)
from auth.authorities import role_authority
from auth.dependencies import get_current_principal, require_admin, require_role
from auth.errors import UserNotFound
from auth.models import Principal
from auth.service import AuthService
from auth.store import CredentialStore

router = APIRouter()


def _to_response(store: CredentialStore, user_id: int) -> UserResponse:
    user = store.get_user(user_id)
    if user is None:
        raise UserNotFound()
    return UserResponse.from_user(user, store.get_user_roles(user_id))


def _forbid_self(principal: Principal, user_id: int, code: str, message: str) -> None:
    if principal.user_id == user_id:
        raise HTTPException(status_code=400, detail={"code": code, "message": message})


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, principal: Principal = Depends(require_admin)) -> list[UserResponse]:
    store: CredentialStore = request.app.state.store
    return [UserResponse.from_user(u, store.get_user_roles(u.id)) for u in store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_role("ADMIN", "USER")),
) -> UserResponse:
    return _to_response(request.app.state.store, user_id)


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    """Update profile fields. Email uniqueness is re-checked against other accounts."""
    store: CredentialStore = request.app.state.store
    updates = body.model_dump(exclude_none=True)
    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store.update_user(user_id, **updates)
    return _to_response(store, user_id)


@router.post("/users/{user_id}/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    user_id: int,
    body: ChangePasswordRequest,
    principal: Principal = Depends(get_current_principal),
) -> MessageResponse:
    """Change a password. Allowed for the account owner and for administrators.

    The current password is required in both cases.
    """
    if principal.user_id != user_id and not principal.has_authority(role_authority("ADMIN")):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Insufficient authority."},
        )
    service: AuthService = request.app.state.auth_service
    service.change_password(user_id, body.current_password, body.new_password)
    return MessageResponse(message="Password changed successfully.")


@router.post("/users/{user_id}/enabled", response_model=UserResponse)
def set_enabled(
    request: Request,
    user_id: int,
    body: UserEnabledUpdate,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    if not body.enabled:
        _forbid_self(principal, user_id, "self_deactivation", "You cannot disable your own account.")
    store: CredentialStore = request.app.state.store
    store.update_user(user_id, enabled=body.enabled)
    return _to_response(store, user_id)


@router.post("/users/{user_id}/locked", response_model=UserResponse)
def set_locked(
    request: Request,
    user_id: int,
    body: UserLockedUpdate,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    if body.locked:
        _forbid_self(principal, user_id, "self_lock", "You cannot lock your own account.")
    store: CredentialStore = request.app.state.store
    store.update_user(user_id, account_non_locked=not body.locked)
    return _to_response(store, user_id)


@router.post("/users/{user_id}/roles/{role_id}", response_model=UserResponse)
def assign_role(
    request: Request,
    user_id: int,
    role_id: int,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    """Grant a role. Takes effect on the holder's very next request."""
    store: CredentialStore = request.app.state.store
    store.assign_role(user_id, role_id)
    return _to_response(store, user_id)


@router.delete("/users/{user_id}/roles/{role_id}", response_model=UserResponse)
def remove_role(
    request: Request,
    user_id: int,
    role_id: int,
    principal: Principal = Depends(require_admin),
) -> UserResponse:
    store: CredentialStore = request.app.state.store
    store.remove_role(user_id, role_id)
    return _to_response(store, user_id)


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: int,
    principal: Principal = Depends(require_admin),
) -> Response:
    """Delete an account and its role memberships. The roles themselves survive."""
    _forbid_self(principal, user_id, "self_delete", "You cannot delete your own account.")
    store: CredentialStore = request.app.state.store
    store.delete_user(user_id)
    return Response(status_code=204)
