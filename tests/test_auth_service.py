"""
tests/test_auth_service.py -- Unit tests for AuthService and account status checks.

Covers:
  - register: default role, explicit roles, duplicates, unknown roles and
    over-long passwords leave no state
  - register_user: the same rules without a codec, as the CLI uses them
  - login: generic failure for unknown user and wrong password, status checks after
    the password matched, last_login stamping
  - refresh: class enforcement, fresh authorities, deleted and locked users
  - change_password
  - The end-to-end alice scenario
"""

from __future__ import annotations

import pytest

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
    InvalidToken,
    PasswordTooLong,
    RoleNotFound,
    UserNotFound,
)
from auth.models import Principal
from auth.passwords import verify_password
from auth.service import AuthService, authenticate_user, check_account_status, register_user
from auth.store import CredentialStore
from auth.tokens import TOKEN_TYPE_ACCESS


class TestRegister:
    def test_default_role(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        assert [r.name for r in seeded_store.get_user_roles(user.id)] == ["USER"]
        assert service.resolver.resolve(user.id) == frozenset({"ROLE_USER"})

    def test_password_is_hashed(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        assert user.hashed_password != "secret1"
        assert user.hashed_password.startswith("$2")
        assert verify_password("secret1", user.hashed_password)

    def test_profile_fields_and_active_flags(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1", first_name="Alice", last_name="Liddell")
        assert (user.first_name, user.last_name) == ("Alice", "Liddell")
        assert user.enabled and user.account_non_locked
        assert user.account_non_expired and user.credentials_non_expired

    def test_explicit_roles_replace_default(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("root", "root@example.com", "secret1", role_names=["ADMIN"])
        assert [r.name for r in seeded_store.get_user_roles(user.id)] == ["ADMIN"]

    def test_duplicate_role_names_collapse(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("root", "root@example.com", "secret1", role_names=["ADMIN", "ADMIN", "USER"])
        assert [r.name for r in seeded_store.get_user_roles(user.id)] == ["ADMIN", "USER"]

    def test_duplicate_username_leaves_store_unchanged(
        self, service: AuthService, seeded_store: CredentialStore
    ) -> None:
        service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(DuplicateUsername):
            service.register("alice", "other@example.com", "secret2")
        assert seeded_store.count_users() == 1
        assert seeded_store.get_user_by_email("other@example.com") is None

    def test_duplicate_email(self, service: AuthService, seeded_store: CredentialStore) -> None:
        service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(DuplicateEmail):
            service.register("bob", "alice@example.com", "secret2")
        assert seeded_store.count_users() == 1

    def test_unknown_role_writes_nothing(self, service: AuthService, seeded_store: CredentialStore) -> None:
        with pytest.raises(RoleNotFound) as exc_info:
            service.register("alice", "alice@example.com", "secret1", role_names=["USER", "WIZARD"])
        assert "WIZARD" in exc_info.value.message
        assert seeded_store.count_users() == 0

    def test_password_over_72_bytes_writes_nothing(self, service: AuthService, seeded_store: CredentialStore) -> None:
        """72 characters, 144 bytes: rejected before any row is written."""
        with pytest.raises(PasswordTooLong):
            service.register("alice", "alice@example.com", "é" * 72)
        assert seeded_store.count_users() == 0

    def test_uses_injected_bcrypt_rounds(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        assert user.hashed_password.startswith("$2b$04$")

    def test_missing_default_role(self, store: CredentialStore, codec) -> None:
        bare = AuthService(store, codec, AuthorityResolver(store), bcrypt_rounds=4)
        with pytest.raises(RoleNotFound):
            bare.register("alice", "alice@example.com", "secret1")
        assert store.count_users() == 0


class TestRegisterUser:
    """register_user() works on a bare store, with no codec or settings."""

    def test_register_without_codec(self, seeded_store: CredentialStore) -> None:
        user = register_user(seeded_store, "carol", "carol@example.com", "secret1", bcrypt_rounds=4)
        assert [r.name for r in seeded_store.get_user_roles(user.id)] == ["USER"]
        assert authenticate_user(seeded_store, "carol", "secret1", bcrypt_rounds=4).id == user.id

    def test_custom_default_role(self, seeded_store: CredentialStore) -> None:
        user = register_user(
            seeded_store, "carol", "carol@example.com", "secret1", default_role="ADMIN", bcrypt_rounds=4
        )
        assert [r.name for r in seeded_store.get_user_roles(user.id)] == ["ADMIN"]

    def test_service_and_function_share_rules(self, service: AuthService, seeded_store: CredentialStore) -> None:
        service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(DuplicateUsername):
            register_user(seeded_store, "alice", "other@example.com", "secret1", bcrypt_rounds=4)
        with pytest.raises(DuplicateEmail):
            register_user(seeded_store, "bob", "alice@example.com", "secret1", bcrypt_rounds=4)
        with pytest.raises(RoleNotFound):
            register_user(seeded_store, "bob", "bob@example.com", "secret1", role_names=["WIZARD"], bcrypt_rounds=4)
        assert seeded_store.count_users() == 1


class TestLogin:
    def test_success_returns_pair(self, service: AuthService, codec) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        assert pair.username == "alice"
        assert pair.email == "alice@example.com"
        assert pair.token_type == "Bearer"
        assert pair.expires_in == 24 * 3600
        claims = codec.validate(pair.access_token, expected_type=TOKEN_TYPE_ACCESS)
        assert claims.authorities == ("ROLE_USER",)

    def test_stamps_last_login(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        service.login("alice", "secret1")
        assert seeded_store.get_user(user.id).last_login is not None

    def test_unknown_user_and_wrong_password_look_alike(self, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(InvalidCredentials) as unknown:
            service.login("ghost", "secret1")
        with pytest.raises(InvalidCredentials) as wrong:
            service.login("alice", "wrong-password")
        assert unknown.value.message == wrong.value.message
        assert unknown.value.code == wrong.value.code == "bad_credentials"

    def test_failed_login_does_not_stamp_last_login(
        self, service: AuthService, seeded_store: CredentialStore
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(InvalidCredentials):
            service.login("alice", "wrong-password")
        assert seeded_store.get_user(user.id).last_login is None

    @pytest.mark.parametrize(
        ("field", "error"),
        [
            ("enabled", AccountDisabled),
            ("account_non_locked", AccountLocked),
            ("account_non_expired", AccountExpired),
            ("credentials_non_expired", CredentialsExpired),
        ],
    )
    def test_account_status_checked_after_password(
        self, service: AuthService, seeded_store: CredentialStore, field: str, error: type
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        seeded_store.update_user(user.id, **{field: False})
        with pytest.raises(error):
            service.login("alice", "secret1")
        # Wrong password on a locked/disabled account still reports bad credentials.
        with pytest.raises(InvalidCredentials):
            service.login("alice", "wrong-password")

    def test_authenticate_user_helper(self, service: AuthService, seeded_store: CredentialStore) -> None:
        service.register("alice", "alice@example.com", "secret1")
        assert authenticate_user(seeded_store, "alice", "secret1", bcrypt_rounds=4).username == "alice"
        assert authenticate_user(seeded_store, "alice", "nope", bcrypt_rounds=4) is None
        assert authenticate_user(seeded_store, "ghost", "secret1", bcrypt_rounds=4) is None

    def test_over_long_password_is_bad_credentials(self, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(InvalidCredentials):
            service.login("alice", "é" * 72)
        with pytest.raises(InvalidCredentials):
            service.login("ghost", "é" * 72)


class TestRefresh:
    def test_refresh_issues_new_pair(self, service: AuthService, codec) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        renewed = service.refresh(pair.refresh_token)
        assert renewed.username == "alice"
        assert codec.validate(renewed.access_token, expected_type=TOKEN_TYPE_ACCESS).subject == "alice"

    def test_refresh_rejects_access_token(self, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        with pytest.raises(InvalidToken):
            service.refresh(pair.access_token)

    def test_refresh_reflects_current_authorities(
        self, service: AuthService, seeded_store: CredentialStore, codec
    ) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        seeded_store.assign_role(user.id, seeded_store.get_role_by_name("ADMIN").id)

        renewed = service.refresh(pair.refresh_token)
        claims = codec.validate(renewed.access_token)
        assert set(claims.authorities) == {"ROLE_USER", "ROLE_ADMIN"}

    def test_old_refresh_token_stays_valid(self, service: AuthService) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        service.refresh(pair.refresh_token)
        assert service.refresh(pair.refresh_token).username == "alice"

    def test_refresh_after_expiry(self, service: AuthService, clock) -> None:
        service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        clock.advance(days=7)
        with pytest.raises(InvalidToken):
            service.refresh(pair.refresh_token)

    def test_refresh_for_deleted_user(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        seeded_store.delete_user(user.id)
        with pytest.raises(UserNotFound):
            service.refresh(pair.refresh_token)

    def test_refresh_for_locked_user(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        pair = service.login("alice", "secret1")
        seeded_store.update_user(user.id, account_non_locked=False)
        with pytest.raises(AccountLocked):
            service.refresh(pair.refresh_token)


class TestChangePassword:
    def test_change_password(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        service.change_password(user.id, "secret1", "secret2")
        with pytest.raises(InvalidCredentials):
            service.login("alice", "secret1")
        assert service.login("alice", "secret2").username == "alice"

    def test_wrong_current_password(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(IncorrectPassword):
            service.change_password(user.id, "nope", "secret2")
        assert service.login("alice", "secret1").username == "alice"

    def test_clears_expired_credentials(self, service: AuthService, seeded_store: CredentialStore) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        seeded_store.update_user(user.id, credentials_non_expired=False)
        service.change_password(user.id, "secret1", "secret2")
        assert service.login("alice", "secret2").username == "alice"

    def test_new_password_over_72_bytes(self, service: AuthService) -> None:
        user = service.register("alice", "alice@example.com", "secret1")
        with pytest.raises(PasswordTooLong):
            service.change_password(user.id, "secret1", "ü" * 40)
        assert service.login("alice", "secret1").username == "alice"

    def test_unknown_user(self, service: AuthService) -> None:
        with pytest.raises(UserNotFound):
            service.change_password(999, "a", "b")


class TestCheckAccountStatus:
    def test_active_principal_passes(self) -> None:
        check_account_status(Principal(user_id=1, username="a", email="a@x.io", authorities=frozenset()))

    def test_disabled_reported_before_locked(self) -> None:
        principal = Principal(
            user_id=1,
            username="a",
            email="a@x.io",
            authorities=frozenset(),
            enabled=False,
            account_non_locked=False,
        )
        with pytest.raises(AccountDisabled):
            check_account_status(principal)


def test_alice_end_to_end(service: AuthService) -> None:
    """Register, log in, fail a login, and try to refresh with an access token."""
    service.register("alice", "alice@example.com", "secret1")

    pair = service.login("alice", "secret1")
    assert service.codec.validate(pair.access_token).authorities == ("ROLE_USER",)
    assert service.resolver.resolve(service.store.get_user_by_username("alice").id) == frozenset({"ROLE_USER"})

    with pytest.raises(InvalidCredentials):
        service.login("alice", "wrong")

    with pytest.raises(InvalidToken):
        service.refresh(pair.access_token)
