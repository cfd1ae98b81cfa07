"""
api/routes/v1/roles.py -- Role management endpoints (admin only).

Routes:
  GET    /api/v1/roles                                     -- list roles
  GET    /api/v1/roles/name/{name}                         -- look up by name
  GET    /api/v1/roles/{id}                                -- look up by id
  POST   /api/v1/roles                                     -- create (201)
  PUT    /api/v1/roles/{id}                                -- rename / re-describe
  DELETE /api/v1/roles/{id}                                -- delete (204)
  GET    /api/v1/roles/{id}/permissions                    -- permissions of a role
  POST   /api/v1/roles/{id}/permissions/{permission_id}    -- attach a permission
  DELETE /api/v1/roles/{id}/permissions/{permission_id}    -- detach a permission

Deleting a role severs it from every user and permission first; users who held
it lose the ROLE_<name> authority on their next request.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.models import PermissionResponse, RoleCreate, RoleResponse, RoleUpdate
from auth.dependencies import require_admin
from auth.errors import RoleNotFound
from auth.models import Principal
from auth.store import CredentialStore

router = APIRouter()


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, principal: Principal = Depends(require_admin)) -> list[RoleResponse]:
    store: CredentialStore = request.app.state.store
    return [RoleResponse.from_role(r) for r in store.list_roles()]


@router.get("/roles/name/{name}", response_model=RoleResponse)
def get_role_by_name(request: Request, name: str, principal: Principal = Depends(require_admin)) -> RoleResponse:
    store: CredentialStore = request.app.state.store
    role = store.get_role_by_name(name)
    if role is None:
        raise RoleNotFound(name)
    return RoleResponse.from_role(role)


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, principal: Principal = Depends(require_admin)) -> RoleResponse:
    store: CredentialStore = request.app.state.store
    role = store.get_role(role_id)
    if role is None:
        raise RoleNotFound(role_id)
    return RoleResponse.from_role(role)


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate, principal: Principal = Depends(require_admin)) -> RoleResponse:
    store: CredentialStore = request.app.state.store
    return RoleResponse.from_role(store.create_role(body.name, body.description))


@router.put("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    principal: Principal = Depends(require_admin),
) -> RoleResponse:
    if body.name is None and body.description is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store: CredentialStore = request.app.state.store
    return RoleResponse.from_role(store.update_role(role_id, name=body.name, description=body.description))


@router.delete("/roles/{role_id}", status_code=204)
def delete_role(request: Request, role_id: int, principal: Principal = Depends(require_admin)) -> Response:
    store: CredentialStore = request.app.state.store
    store.delete_role(role_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Role <-> Permission edges
# ---------------------------------------------------------------------------


@router.get("/roles/{role_id}/permissions", response_model=list[PermissionResponse])
def list_role_permissions(
    request: Request,
    role_id: int,
    principal: Principal = Depends(require_admin),
) -> list[PermissionResponse]:
    store: CredentialStore = request.app.state.store
    if store.get_role(role_id) is None:
        raise RoleNotFound(role_id)
    return [PermissionResponse.from_permission(p) for p in store.get_role_permissions(role_id)]


@router.post("/roles/{role_id}/permissions/{permission_id}", response_model=list[PermissionResponse])
def assign_permission(
    request: Request,
    role_id: int,
    permission_id: int,
    principal: Principal = Depends(require_admin),
) -> list[PermissionResponse]:
    """Attach a permission to a role and return the role's permissions."""
    store: CredentialStore = request.app.state.store
    store.assign_permission(role_id, permission_id)
    return [PermissionResponse.from_permission(p) for p in store.get_role_permissions(role_id)]


@router.delete("/roles/{role_id}/permissions/{permission_id}", response_model=list[PermissionResponse])
def remove_permission(
    request: Request,
    role_id: int,
    permission_id: int,
    principal: Principal = Depends(require_admin),
) -> list[PermissionResponse]:
    store: CredentialStore = request.app.state.store
    store.remove_permission(role_id, permission_id)
    return [PermissionResponse.from_permission(p) for p in store.get_role_permissions(role_id)]
