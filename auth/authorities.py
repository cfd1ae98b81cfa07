"""
auth/authorities.py -- Flatten a user's roles and permissions into authority strings.

Algorithm (flat, no role hierarchy, no permission implication):
  for each role the user holds:
      add "ROLE_<role name>"
      for each permission attached to that role:
          add permission.name              (e.g. "READ_USERS")
  union across roles, deduplicated

The result is a frozenset, so order is irrelevant and a permission reachable
through two roles appears once. Downstream checks are exact string membership.

Freshness: every call reads the current edges from the store. Nothing is
cached between calls, so a role deletion or reassignment is visible on the
very next resolution -- including for holders of still-valid tokens.

Typed lookups: authority strings are only ever built from Role and Permission
rows returned by the store. A caller-supplied string can never turn into a
permission that does not exist.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from collections.abc import Iterable

from auth.models import Role
from auth.store import CredentialStore

ROLE_PREFIX = "ROLE_"


def role_authority(role_name: str) -> str:
    """Return the authority string marking membership of role_name."""
    return f"{ROLE_PREFIX}{role_name}"


class AuthorityResolver:
    def __init__(self, store: CredentialStore) -> None:
        self.store = store

    def resolve(self, user_id: int) -> frozenset[str]:
        """Return the current authority set for a user (empty if they hold no roles)."""
        return self.authorities_for_roles(self.store.get_user_roles(user_id))

    def authorities_for_roles(self, roles: Iterable[Role]) -> frozenset[str]:
        authorities: set[str] = set()
        for role in roles:
            authorities.add(role_authority(role.name))
            for permission in self.store.get_role_permissions(role.id):
                authorities.add(permission.name)
        return frozenset(authorities)
