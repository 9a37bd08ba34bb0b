"""
Shared fixtures for the credential vault test suite.

Provides a derived codec, an asyncpg-like fake pool, an in-memory credential
store with the same owner-scoping rules as the SQL one, signed session tokens
and a fully wired ProtectedVault.
"""
import itertools
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import jwt
import pytest

from credential_vault.exceptions import NoFieldsToUpdateError, NotFoundError
from credential_vault.vault.crypto import EnvelopeCodec
from credential_vault.vault.gate import AccessGate, PinHasher, PinVerifier, SessionVerifier
from credential_vault.vault.models import CredentialRecord
from credential_vault.vault.service import ProtectedVault, VaultService

TOKEN_SECRET = "test-jwt-secret-with-enough-length"
SERVER_SECRET = "test-server-secret"
OWNER_A = 7
OWNER_B = 8
PIN = "482913"


# --- Fake asyncpg pool ---

class FakeConnection:
    """Connection answering through its pool's responder."""

    def __init__(self, pool: "FakePool"):
        self._pool = pool

    async def fetchrow(self, query: str, *args: Any) -> Any:
        return self._pool.answer("fetchrow", query, args)

    async def fetch(self, query: str, *args: Any) -> Any:
        return self._pool.answer("fetch", query, args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        return self._pool.answer("fetchval", query, args)


class FakePool:
    """Record every statement; answer from a queue or a callable."""

    def __init__(
        self,
        responses: Optional[list] = None,
        responder: Optional[Callable[[str, str, tuple], Any]] = None,
        error: Optional[BaseException] = None,
    ):
        self.calls: list[tuple[str, str, tuple]] = []
        self._responses = list(responses or [])
        self._responder = responder
        self._error = error

    @asynccontextmanager
    async def acquire(self):
        yield FakeConnection(self)

    def answer(self, method: str, query: str, args: tuple) -> Any:
        self.calls.append((method, query, args))
        if self._error is not None:
            raise self._error
        if self._responder is not None:
            return self._responder(method, query, args)
        if self._responses:
            return self._responses.pop(0)
        return None


def make_row(**overrides: Any) -> dict:
    """A ``stored_passwords`` row as asyncpg would return it."""
    now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)
    row = {
        "id": 1,
        "user_id": OWNER_A,
        "site_label": "example.com",
        "account_identifier": "alice",
        "encrypted_password": "00" * 16 + ":" + "ab" + ":" + "11" * 16,
        "notes": None,
        "created_at": now,
        "modified_at": now,
    }
    row.update(overrides)
    return row


# --- In-memory store ---

class InMemoryCredentialStore:
    """Dictionary-backed stand-in for CredentialStore."""

    def __init__(self):
        self.records: dict[int, CredentialRecord] = {}
        self._ids = itertools.count(1)

    async def insert(self, owner_id, site_label, account_identifier, envelope, notes=None):
        now = datetime.now(timezone.utc)
        record = CredentialRecord(
            id=next(self._ids),
            owner_id=owner_id,
            site_label=site_label,
            account_identifier=account_identifier,
            envelope=envelope,
            notes=notes,
            created_at=now,
            modified_at=now,
        )
        self.records[record.id] = record
        return record

    async def list_by_owner(self, owner_id):
        owned = [r for r in self.records.values() if r.owner_id == owner_id]
        owned.sort(key=lambda r: (r.site_label, r.id))
        return [
            CredentialRecord(
                id=r.id,
                owner_id=r.owner_id,
                site_label=r.site_label,
                account_identifier=r.account_identifier,
                notes=r.notes,
                created_at=r.created_at,
                modified_at=r.modified_at,
            )
            for r in owned
        ]

    async def get_by_id_and_owner(self, record_id, owner_id):
        record = self.records.get(record_id)
        if record is None or record.owner_id != owner_id:
            raise NotFoundError("Password not found")
        return record

    async def update(self, record_id, owner_id, fields):
        if not fields:
            raise NoFieldsToUpdateError()
        record = await self.get_by_id_and_owner(record_id, owner_id)
        for name, value in fields.items():
            setattr(record, name, value)
        record.modified_at = datetime.now(timezone.utc)
        return record

    async def delete(self, record_id, owner_id):
        await self.get_by_id_and_owner(record_id, owner_id)
        del self.records[record_id]


# --- Tokens ---

def make_token(user_id: Any = OWNER_A, expires_in: int = 3600, secret: str = TOKEN_SECRET) -> str:
    payload = {
        "id": user_id,
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
    }
    return jwt.encode(payload, secret, algorithm="HS256")


# --- Fixtures ---

@pytest.fixture(scope="session")
def codec():
    """Codec with a key derived once for the whole run."""
    return EnvelopeCodec.from_secret(SERVER_SECRET)


@pytest.fixture(scope="session")
def pin_hash():
    return PinHasher(rounds=4).hash(PIN)


@pytest.fixture
def store():
    return InMemoryCredentialStore()


@pytest.fixture
def service(store, codec):
    return VaultService(store, codec)


@pytest.fixture
def identity_pool(pin_hash):
    """Pool answering session and PIN lookups for OWNER_A and OWNER_B."""
    def responder(method, query, args):
        if "FROM sessions" in query:
            return 1
        if "FROM users" in query:
            return pin_hash if args[0] in (OWNER_A, OWNER_B) else None
        raise AssertionError(f"unexpected query: {query}")
    return FakePool(responder=responder)


@pytest.fixture
def gate(identity_pool):
    return AccessGate(
        SessionVerifier(identity_pool, TOKEN_SECRET),
        PinVerifier(identity_pool, PinHasher(rounds=4)),
    )


@pytest.fixture
def vault(gate, service):
    return ProtectedVault(gate, service)


@pytest.fixture
def token():
    return make_token(OWNER_A)
