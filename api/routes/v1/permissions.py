"""
api/routes/v1/permissions.py -- Permission management endpoints (admin only).

Routes:
  GET    /api/v1/permissions?resource=&action=   -- list, optionally filtered
  GET    /api/v1/permissions/exists?resource=&action=
  GET    /api/v1/permissions/{id}
  POST   /api/v1/permissions                     -- create (201)
  PUT    /api/v1/permissions/{id}                -- name follows resource/action
  DELETE /api/v1/permissions/{id}                -- detach from roles, delete (204)

/permissions/exists is registered before /permissions/{id}; the other order
would route "exists" into the id path and fail int validation with 422.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from api.models import ExistsResponse, PermissionCreate, PermissionResponse, PermissionUpdate
from auth.dependencies import require_admin
from auth.errors import PermissionNotFound
from auth.models import Principal
from auth.store import CredentialStore

router = APIRouter()


@router.get("/permissions", response_model=list[PermissionResponse])
def list_permissions(
    request: Request,
    resource: Optional[str] = Query(default=None, max_length=100),
    action: Optional[str] = Query(default=None, max_length=50),
    principal: Principal = Depends(require_admin),
) -> list[PermissionResponse]:
    store: CredentialStore = request.app.state.store
    return [PermissionResponse.from_permission(p) for p in store.list_permissions(resource=resource, action=action)]


@router.get("/permissions/exists", response_model=ExistsResponse)
def permission_exists(
    request: Request,
    resource: str = Query(min_length=1, max_length=100),
    action: str = Query(min_length=1, max_length=50),
    principal: Principal = Depends(require_admin),
) -> ExistsResponse:
    store: CredentialStore = request.app.state.store
    return ExistsResponse(exists=store.permission_exists(resource, action))


@router.get("/permissions/{permission_id}", response_model=PermissionResponse)
def get_permission(
    request: Request,
    permission_id: int,
    principal: Principal = Depends(require_admin),
) -> PermissionResponse:
    store: CredentialStore = request.app.state.store
    permission = store.get_permission(permission_id)
    if permission is None:
        raise PermissionNotFound()
    return PermissionResponse.from_permission(permission)


@router.post("/permissions", response_model=PermissionResponse, status_code=201)
def create_permission(
    request: Request,
    body: PermissionCreate,
    principal: Principal = Depends(require_admin),
) -> PermissionResponse:
    store: CredentialStore = request.app.state.store
    return PermissionResponse.from_permission(store.create_permission(body.resource, body.action, body.description))


@router.put("/permissions/{permission_id}", response_model=PermissionResponse)
def update_permission(
    request: Request,
    permission_id: int,
    body: PermissionUpdate,
    principal: Principal = Depends(require_admin),
) -> PermissionResponse:
    if body.resource is None and body.action is None and body.description is None:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )
    store: CredentialStore = request.app.state.store
    permission = store.update_permission(
        permission_id,
        resource=body.resource,
        action=body.action,
        description=body.description,
    )
    return PermissionResponse.from_permission(permission)


@router.delete("/permissions/{permission_id}", status_code=204)
def delete_permission(
    request: Request,
    permission_id: int,
    principal: Principal = Depends(require_admin),
) -> Response:
    store: CredentialStore = request.app.state.store
    store.delete_permission(permission_id)
    return Response(status_code=204)
