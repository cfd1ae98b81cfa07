"""
tests/test_dependencies.py -- Tests for RequestAuthenticator and the FastAPI auth dependencies.

Covers:
  - Bearer header parsing
  - authenticate(): access tokens only, fresh authorities, vanished users -> None
  - get_current_principal / require_authority / require_role on a small app
    wired the same way api/main.py wires the real one
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from api.main import auth_error_handler
from auth.authorities import AuthorityResolver
from auth.dependencies import (
    RequestAuthenticator,
    extract_bearer_token,
    get_current_principal,
    require_admin,
    require_authority,
    require_role,
    try_get_principal,
)
from auth.errors import AuthError
from auth.models import Principal
from auth.service import AuthService
from auth.store import CredentialStore


@pytest.fixture
def authenticator(seeded_store: CredentialStore, codec) -> RequestAuthenticator:
    return RequestAuthenticator(seeded_store, codec, AuthorityResolver(seeded_store))


class TestExtractBearerToken:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc.def.ghi", "abc.def.ghi"),
            ("Bearer   padded  ", "padded"),
            (None, None),
            ("", None),
            ("Bearer ", None),
            ("Basic dXNlcjpwYXNz", None),
            ("bearer abc", None),
        ],
    )
    def test_extract(self, header, expected) -> None:
        assert extract_bearer_token(header) == expected


class TestRequestAuthenticator:
    def test_valid_access_token(self, service: AuthService, authenticator: RequestAuthenticator) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        principal = authenticator.authenticate(pair.access_token)
        assert principal.user_id == user.id
        assert principal.username == "alice"
        assert principal.authorities == frozenset({"ROLE_USER"})
        assert principal.is_active

    def test_refresh_token_not_accepted(self, service: AuthService, authenticator: RequestAuthenticator) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        assert authenticator.authenticate(pair.refresh_token) is None

    def test_garbage_token(self, authenticator: RequestAuthenticator) -> None:
        assert authenticator.authenticate("garbage") is None
        assert authenticator.authenticate_header("Bearer garbage") is None
        assert authenticator.authenticate_header(None) is None

    def test_token_claim_authorities_are_ignored(
        self, service: AuthService, authenticator: RequestAuthenticator, codec
    ) -> None:
        """A token that claims ROLE_ADMIN grants nothing the store does not grant."""
        service.register("alice", "alice@example.com", "secret1")
        token = codec.issue_access_token("alice", ["ROLE_ADMIN", "DELETE_EVERYTHING"])
        assert authenticator.authenticate(token).authorities == frozenset({"ROLE_USER"})

    def test_role_change_visible_within_token_lifetime(
        self,
        service: AuthService,
        authenticator: RequestAuthenticator,
        seeded_store: CredentialStore,
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")

        admin = seeded_store.get_role_by_name("ADMIN")
        seeded_store.assign_role(user.id, admin.id)
        assert authenticator.authenticate(pair.access_token).authorities == frozenset({"ROLE_USER", "ROLE_ADMIN"})

        seeded_store.delete_role(admin.id)
        assert authenticator.authenticate(pair.access_token).authorities == frozenset({"ROLE_USER"})

    def test_deleted_user(
        self,
        service: AuthService,
        authenticator: RequestAuthenticator,
        seeded_store: CredentialStore,
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        seeded_store.delete_user(user.id)
        assert authenticator.authenticate(pair.access_token) is None

    def test_locked_user_still_returned_with_flags(
        self,
        service: AuthService,
        authenticator: RequestAuthenticator,
        seeded_store: CredentialStore,
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        seeded_store.update_user(user.id, account_non_locked=False)
        principal = authenticator.authenticate(pair.access_token)
        assert principal is not None
        assert principal.account_non_locked is False
        assert not principal.is_active


# ---------------------------------------------------------------------------
# FastAPI dependencies on a minimal app
# ---------------------------------------------------------------------------


@pytest.fixture
def dep_client(authenticator: RequestAuthenticator):
    app = FastAPI()
    app.state.authenticator = authenticator
    app.add_exception_handler(AuthError, auth_error_handler)

    @app.get("/soft")
    def soft(principal: Principal | None = Depends(try_get_principal)) -> dict:
        return {"username": principal.username if principal else None}

    @app.get("/me")
    def me(principal: Principal = Depends(get_current_principal)) -> dict:
        return {"username": principal.username}

    @app.get("/admin")
    def admin(principal: Principal = Depends(require_admin)) -> dict:
        return {"username": principal.username}

    @app.get("/staff")
    def staff(principal: Principal = Depends(require_role("ADMIN", "USER"))) -> dict:
        return {"username": principal.username}

    @app.get("/publish")
    def publish(principal: Principal = Depends(require_authority("PUBLISH_ARTICLES"))) -> dict:
        return {"username": principal.username}

    with TestClient(app) as client:
        yield client


def _bearer(service: AuthService, username: str, password: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {service.login(username, password).access_token}"}


class TestDependencies:
    def test_soft_dependency_without_token(self, dep_client: TestClient) -> None:
        resp = dep_client.get("/soft")
        assert resp.status_code == 200
        assert resp.json() == {"username": None}

    def test_soft_dependency_with_bad_token(self, dep_client: TestClient) -> None:
        resp = dep_client.get("/soft", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 200
        assert resp.json() == {"username": None}

    def test_unauthenticated_is_401(self, dep_client: TestClient) -> None:
        resp = dep_client.get("/me")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_authenticated(self, dep_client: TestClient, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        resp = dep_client.get("/me", headers=_bearer(service, "alice", "secret1"))
        assert resp.status_code == 200
        assert resp.json() == {"username": "alice"}

    def test_missing_role_is_403(self, dep_client: TestClient, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        resp = dep_client.get("/admin", headers=_bearer(service, "alice", "secret1"))
        assert resp.status_code == 403

    def test_any_of_roles(self, dep_client: TestClient, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        resp = dep_client.get("/staff", headers=_bearer(service, "alice", "secret1"))
        assert resp.status_code == 200

    def test_admin_role(self, dep_client: TestClient, service: AuthService) -> None:
        service.register("root", "root@example.com", "secret1", role_names=["ADMIN"])
        resp = dep_client.get("/admin", headers=_bearer(service, "root", "secret1"))
        assert resp.status_code == 200

    def test_permission_authority(
        self, dep_client: TestClient, service: AuthService, seeded_store: CredentialStore
    ) -> None:
        service.register("alice", "alice@example.com", "secret1")
        headers = _bearer(service, "alice", "secret1")
        assert dep_client.get("/publish", headers=headers).status_code == 403

        permission = seeded_store.create_permission("articles", "publish")
        seeded_store.assign_permission(seeded_store.get_role_by_name("USER").id, permission.id)
        assert dep_client.get("/publish", headers=headers).status_code == 200

    def test_locked_account_with_valid_token_is_403(
        self, dep_client: TestClient, service: AuthService, seeded_store: CredentialStore
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        headers = _bearer(service, "alice", "secret1")
        seeded_store.update_user(user.id, account_non_locked=False)
        resp = dep_client.get("/me", headers=headers)
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "account_locked"

    def test_refresh_token_as_bearer_is_401(self, dep_client: TestClient, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        resp = dep_client.get("/me", headers={"Authorization": f"Bearer {pair.refresh_token}"})
        assert resp.status_code == 401
