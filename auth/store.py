"""
auth/store.py -- SQLAlchemy Core persistence layer for users, roles and permissions.

Pattern: Repository + Data Mapper. CredentialStore is the repository;
_row_to_user / _row_to_role / _row_to_permission are the mappers. Services and
routes never touch SQL directly.

Graph representation:
  users, roles and permissions are independent node tables. The two
  many-to-many relationships live in edge tables (user_roles,
  role_permissions) with composite primary keys and foreign keys to both
  endpoints. Deleting a node removes its edge rows first and the node second,
  inside one transaction; the other endpoint is never touched.

Uniqueness:
  username, email, role name, permission (resource, action) and permission
  name are UNIQUE in the schema. Two concurrent writers cannot both succeed:
  the loser's IntegrityError is translated into the matching domain error
  (DuplicateUsername, DuplicateEmail, ...). Pre-checks in callers are only a
  fast path for the common, non-racing case.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from auth.errors import (
    DuplicateEmail,
    DuplicatePermission,
    DuplicateRoleName,
    DuplicateUsername,
    PermissionNotFound,
    RoleNotFound,
    UserNotFound,
)
from auth.models import Permission, Role, User

logger = logging.getLogger("rolegate.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(150), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("enabled", Boolean, nullable=False, default=True),
    Column("account_non_expired", Boolean, nullable=False, default=True),
    Column("account_non_locked", Boolean, nullable=False, default=True),
    Column("credentials_non_expired", Boolean, nullable=False, default=True),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_roles = Table(
    "roles",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_permissions = Table(
    "permissions",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("resource", String(100), nullable=False),
    Column("action", String(50), nullable=False),
    Column("name", String(160), nullable=False, unique=True),
    Column("description", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    UniqueConstraint("resource", "action", name="uq_permission_resource_action"),
)

_user_roles = Table(
    "user_roles",
    metadata,
    Column("user_id", Integer, ForeignKey("users.id"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
)

_role_permissions = Table(
    "role_permissions",
    metadata,
    Column("role_id", Integer, ForeignKey("roles.id"), primary_key=True),
    Column("permission_id", Integer, ForeignKey("permissions.id"), primary_key=True),
)

# Columns update_user() accepts. Anything else is a programming error.
_USER_MUTABLE_FIELDS = frozenset(
    {
        "email",
        "first_name",
        "last_name",
        "hashed_password",
        "enabled",
        "account_non_expired",
        "account_non_locked",
        "credentials_non_expired",
    }
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _configure_sqlite(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement per connection.

    WAL lets readers proceed while a writer holds the lock. SQLite ships with
    foreign keys OFF; turning them on makes a dangling edge row impossible to
    write. Both PRAGMAs are per-connection, so this runs on every connect.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def permission_name(resource: str, action: str) -> str:
    """Return the authority string for a (resource, action) pair: ACTION_RESOURCE."""
    return f"{action}_{resource}".upper()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class CredentialStore:
    """Repository for User, Role and Permission nodes and their edges.

    Usage:
        store = CredentialStore("sqlite:///rolegate.db")
        role = store.ensure_role("USER")
        user = store.create_user(User(username="alice", email="a@x.io", hashed_password=h), [role.id])
        roles = store.get_user_roles(user.id)
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            # FastAPI runs sync dependencies in a thread pool, so one pooled
            # connection may be used from more than one thread.
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _configure_sqlite)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def create_user(self, user: User, role_ids: Iterable[int] = ()) -> User:
        """Insert a user and its role edges in one transaction; return the stored user.

        Raises DuplicateUsername / DuplicateEmail when a uniqueness constraint
        fires (including a concurrent insert that won the race) and
        RoleNotFound when a role id does not exist. Nothing is written in
        either case.
        """
        role_ids = sorted(set(role_ids))
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        username=user.username,
                        email=user.email,
                        hashed_password=user.hashed_password,
                        first_name=user.first_name,
                        last_name=user.last_name,
                        enabled=user.enabled,
                        account_non_expired=user.account_non_expired,
                        account_non_locked=user.account_non_locked,
                        credentials_non_expired=user.credentials_non_expired,
                        created_at=now,
                        updated_at=now,
                    )
                )
                user_id = result.inserted_primary_key[0]
                if role_ids:
                    conn.execute(
                        _user_roles.insert(),
                        [{"user_id": user_id, "role_id": role_id} for role_id in role_ids],
                    )
                conn.commit()
        except IntegrityError as exc:
            error = self._user_write_conflict(user.username, user.email, role_ids)
            if error is None:
                raise
            raise error from exc
        return self.get_user(user_id)

    def _user_write_conflict(self, username: str, email: str, role_ids: Iterable[int]):
        if self.username_exists(username):
            return DuplicateUsername()
        if self.email_exists(email):
            return DuplicateEmail()
        for role_id in role_ids:
            if self.get_role(role_id) is None:
                return RoleNotFound(role_id)
        return None

    def get_user(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_user_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def username_exists(self, username: str) -> bool:
        return self.get_user_by_username(username) is not None

    def email_exists(self, email: str) -> bool:
        return self.get_user_by_email(email) is not None

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return result or 0

    def list_users(self) -> list[User]:
        """Return all users ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> User:
        """Update mutable fields on an existing user and return the stored result.

        Accepted fields: email, first_name, last_name, hashed_password and the
        four account status flags. Unknown keys raise ValueError rather than
        being silently ignored. Changing email to one held by another user
        raises DuplicateEmail; a missing user raises UserNotFound.
        """
        unknown = set(fields) - _USER_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        current = self.get_user(user_id)
        if current is None:
            raise UserNotFound()
        if "email" in fields and fields["email"] != current.email and self.email_exists(fields["email"]):
            raise DuplicateEmail()
        try:
            with self.engine.connect() as conn:
                conn.execute(_users.update().where(_users.c.id == user_id).values(updated_at=_now_iso(), **fields))
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmail() from exc
        return self.get_user(user_id)

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login for the given user."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def delete_user(self, user_id: int) -> None:
        """Delete a user. Role edges go first; the roles themselves are untouched."""
        with self.engine.connect() as conn:
            edges = conn.execute(_user_roles.delete().where(_user_roles.c.user_id == user_id)).rowcount
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            if result.rowcount == 0:
                raise UserNotFound()
            conn.commit()
        logger.info("Deleted user %d (role edges removed: %d)", user_id, edges)

    # ------------------------------------------------------------------
    # User <-> Role edges
    # ------------------------------------------------------------------

    def get_user_roles(self, user_id: int) -> list[Role]:
        """Return the roles currently held by a user, ordered by name."""
        query = (
            select(_roles)
            .join(_user_roles, _user_roles.c.role_id == _roles.c.id)
            .where(_user_roles.c.user_id == user_id)
            .order_by(_roles.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_role(r) for r in rows]

    def assign_role(self, user_id: int, role_id: int) -> None:
        """Give a user a role. Assigning a role the user already holds is a no-op."""
        self._require_user(user_id)
        self._require_role(role_id)
        self._insert_edge(
            _user_roles,
            {"user_id": user_id, "role_id": role_id},
            lambda: (self._require_user(user_id), self._require_role(role_id)),
        )

    def remove_role(self, user_id: int, role_id: int) -> None:
        """Drop the user-role edge. Removing a role the user does not hold is a no-op."""
        self._require_user(user_id)
        self._require_role(role_id)
        with self.engine.connect() as conn:
            conn.execute(
                _user_roles.delete().where((_user_roles.c.user_id == user_id) & (_user_roles.c.role_id == role_id))
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, name: str, description: str | None = None) -> Role:
        """Insert a new role. Raises DuplicateRoleName if the name is taken."""
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _roles.insert().values(name=name, description=description, created_at=now, updated_at=now)
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateRoleName(f"Role already exists with name: {name}") from exc
        return self.get_role(result.inserted_primary_key[0])

    def ensure_role(self, name: str, description: str | None = None) -> Role:
        """Return the role called name, creating it first if it does not exist.

        Safe to call concurrently from several processes at startup: the
        loser of a creation race simply reads the winner's row.
        """
        existing = self.get_role_by_name(name)
        if existing is not None:
            return existing
        try:
            role = self.create_role(name, description)
        except DuplicateRoleName:
            return self.get_role_by_name(name)
        logger.info("Created role %s", name)
        return role

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.name)).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, name: str | None = None, description: str | None = None) -> Role:
        """Rename and/or re-describe a role. None leaves a field unchanged."""
        role = self._require_role(role_id)
        values: dict = {}
        if name is not None and name != role.name:
            if self.get_role_by_name(name) is not None:
                raise DuplicateRoleName(f"Role already exists with name: {name}")
            values["name"] = name
        if description is not None:
            values["description"] = description
        if values:
            try:
                with self.engine.connect() as conn:
                    conn.execute(_roles.update().where(_roles.c.id == role_id).values(updated_at=_now_iso(), **values))
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicateRoleName(f"Role already exists with name: {name}") from exc
        return self.get_role(role_id)

    def delete_role(self, role_id: int) -> None:
        """Delete a role after severing every user and permission edge.

        Users and permissions that referenced the role survive; they simply
        stop being connected to it.
        """
        with self.engine.connect() as conn:
            holders = conn.execute(_user_roles.delete().where(_user_roles.c.role_id == role_id)).rowcount
            grants = conn.execute(_role_permissions.delete().where(_role_permissions.c.role_id == role_id)).rowcount
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            if result.rowcount == 0:
                raise RoleNotFound(role_id)
            conn.commit()
        logger.info(
            "Deleted role %d (user edges removed: %d, permission edges removed: %d)",
            role_id,
            holders,
            grants,
        )

    # ------------------------------------------------------------------
    # Role <-> Permission edges
    # ------------------------------------------------------------------

    def get_role_permissions(self, role_id: int) -> list[Permission]:
        """Return the permissions attached to a role, ordered by name."""
        query = (
            select(_permissions)
            .join(_role_permissions, _role_permissions.c.permission_id == _permissions.c.id)
            .where(_role_permissions.c.role_id == role_id)
            .order_by(_permissions.c.name)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_permission(r) for r in rows]

    def assign_permission(self, role_id: int, permission_id: int) -> None:
        """Attach a permission to a role. Already attached is a no-op."""
        self._require_role(role_id)
        self._require_permission(permission_id)
        self._insert_edge(
            _role_permissions,
            {"role_id": role_id, "permission_id": permission_id},
            lambda: (self._require_role(role_id), self._require_permission(permission_id)),
        )

    def remove_permission(self, role_id: int, permission_id: int) -> None:
        self._require_role(role_id)
        self._require_permission(permission_id)
        with self.engine.connect() as conn:
            conn.execute(
                _role_permissions.delete().where(
                    (_role_permissions.c.role_id == role_id) & (_role_permissions.c.permission_id == permission_id)
                )
            )
            conn.commit()

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def create_permission(self, resource: str, action: str, description: str | None = None) -> Permission:
        """Insert a permission. Raises DuplicatePermission if (resource, action) or its name is taken."""
        now = _now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _permissions.insert().values(
                        resource=resource,
                        action=action,
                        name=permission_name(resource, action),
                        description=description,
                        created_at=now,
                        updated_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicatePermission(
                f"Permission already exists for resource: {resource} and action: {action}"
            ) from exc
        return self.get_permission(result.inserted_primary_key[0])

    def get_permission(self, permission_id: int) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.id == permission_id)).fetchone()
        return _row_to_permission(row) if row is not None else None

    def get_permission_by_resource_and_action(self, resource: str, action: str) -> Permission | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _permissions.select().where((_permissions.c.resource == resource) & (_permissions.c.action == action))
            ).fetchone()
        return _row_to_permission(row) if row is not None else None

    def permission_exists(self, resource: str, action: str) -> bool:
        return self.get_permission_by_resource_and_action(resource, action) is not None

    def list_permissions(self, resource: str | None = None, action: str | None = None) -> list[Permission]:
        """Return permissions ordered by name, optionally filtered by resource and/or action."""
        query = _permissions.select()
        if resource is not None:
            query = query.where(_permissions.c.resource == resource)
        if action is not None:
            query = query.where(_permissions.c.action == action)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_permissions.c.name)).fetchall()
        return [_row_to_permission(r) for r in rows]

    def update_permission(
        self,
        permission_id: int,
        resource: str | None = None,
        action: str | None = None,
        description: str | None = None,
    ) -> Permission:
        """Change resource/action/description. The display name follows resource and action."""
        permission = self._require_permission(permission_id)
        new_resource = resource if resource is not None else permission.resource
        new_action = action if action is not None else permission.action
        values: dict = {}
        if (new_resource, new_action) != (permission.resource, permission.action):
            if self.permission_exists(new_resource, new_action):
                raise DuplicatePermission(
                    f"Permission already exists for resource: {new_resource} and action: {new_action}"
                )
            values.update(resource=new_resource, action=new_action, name=permission_name(new_resource, new_action))
        if description is not None:
            values["description"] = description
        if values:
            try:
                with self.engine.connect() as conn:
                    conn.execute(
                        _permissions.update()
                        .where(_permissions.c.id == permission_id)
                        .values(updated_at=_now_iso(), **values)
                    )
                    conn.commit()
            except IntegrityError as exc:
                raise DuplicatePermission(
                    f"Permission already exists for resource: {new_resource} and action: {new_action}"
                ) from exc
        return self.get_permission(permission_id)

    def delete_permission(self, permission_id: int) -> None:
        """Delete a permission after detaching it from every role."""
        with self.engine.connect() as conn:
            edges = conn.execute(
                _role_permissions.delete().where(_role_permissions.c.permission_id == permission_id)
            ).rowcount
            result = conn.execute(_permissions.delete().where(_permissions.c.id == permission_id))
            if result.rowcount == 0:
                raise PermissionNotFound()
            conn.commit()
        logger.info("Deleted permission %d (role edges removed: %d)", permission_id, edges)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_user(self, user_id: int) -> User:
        user = self.get_user(user_id)
        if user is None:
            raise UserNotFound()
        return user

    def _require_role(self, role_id: int) -> Role:
        role = self.get_role(role_id)
        if role is None:
            raise RoleNotFound(role_id)
        return role

    def _require_permission(self, permission_id: int) -> Permission:
        permission = self.get_permission(permission_id)
        if permission is None:
            raise PermissionNotFound()
        return permission

    def _insert_edge(self, table: Table, values: dict, recheck) -> None:
        """Insert an edge row unless it already exists.

        An IntegrityError means either a concurrent writer inserted the same
        edge (fine, the edge exists) or an endpoint was deleted in between
        (recheck raises the matching NotFound error).
        """
        where = [table.c[key] == value for key, value in values.items()]
        with self.engine.connect() as conn:
            if _edge_exists(conn, table, where):
                return
            try:
                conn.execute(table.insert().values(**values))
                conn.commit()
            except IntegrityError:
                conn.rollback()
                recheck()

    def close(self) -> None:
        self.engine.dispose()


def _edge_exists(conn: Connection, table: Table, where: list) -> bool:
    query = select(func.count()).select_from(table)
    for clause in where:
        query = query.where(clause)
    return (conn.execute(query).scalar() or 0) > 0


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        enabled=bool(row.enabled),
        account_non_expired=bool(row.account_non_expired),
        account_non_locked=bool(row.account_non_locked),
        credentials_non_expired=bool(row.credentials_non_expired),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_permission(row) -> Permission:
    return Permission(
        id=row.id,
        resource=row.resource,
        action=row.action,
        name=row.name,
        description=row.description,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
