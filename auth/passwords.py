"""
auth/passwords.py -- One-way password hashing and verification.

bcrypt is used directly rather than through passlib: passlib's wrap-bug
detection builds a password longer than 72 bytes, which current bcrypt
releases reject with an explicit error. Direct bcrypt usage has no
compatibility shim.

bcrypt only reads the first 72 bytes of its input and recent releases
refuse anything longer. hash_password() raises PasswordTooLong for such
input instead of letting bcrypt's ValueError escape; the API models reject
it earlier with a 422.

bcrypt.checkpw compares digests in constant time. dummy_hash() lets callers
run a full bcrypt verification even when the username does not exist, so
response time does not reveal which usernames are registered.

The work factor is always passed in by the caller. Nothing here reads
settings, so importing the auth package never depends on configuration.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from functools import lru_cache

import bcrypt

from auth.errors import PasswordTooLong

DEFAULT_ROUNDS = 12
MAX_PASSWORD_BYTES = 72


def password_fits(plain: str) -> bool:
    """Return True if plain is within bcrypt's input limit once UTF-8 encoded."""
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


def hash_password(plain: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    if not password_fits(plain):
        raise PasswordTooLong()
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    if not password_fits(plain):
        # Could never have been hashed, so it cannot match.
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed or non-bcrypt hash in the store.
        return False


@lru_cache
def dummy_hash(rounds: int = DEFAULT_ROUNDS) -> str:
    """Return a throwaway hash at the given cost, computed once per cost.

    Verifying against it takes as long as verifying a real password hashed
    with the same number of rounds.
    """
    return hash_password("rolegate_timing_dummy", rounds)
