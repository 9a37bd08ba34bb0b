"""
CredentialStore: asyncpg persistence for encrypted credential records.

Pure data access: envelopes go in and come out opaque, nothing here
decrypts. Every statement is scoped by owner so a record belonging to
somebody else is indistinguishable from a missing one.

Security Note:
    Never log envelopes. Only log record ids, owners and operations.
"""
import asyncio
import logging
from typing import Any, Optional

import asyncpg

from ..exceptions import NoFieldsToUpdateError, NotFoundError, StorageError, ValidationError
from .models import CredentialRecord

logger = logging.getLogger("credential_vault.vault")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_INSERT_RECORD = """
INSERT INTO stored_passwords (user_id, site_label, account_identifier, encrypted_password, notes)
VALUES ($1, $2, $3, $4, $5)
RETURNING id, user_id, site_label, account_identifier, encrypted_password,
          notes, created_at, modified_at
"""

_SELECT_BY_OWNER = """
SELECT id, user_id, site_label, account_identifier, notes, created_at, modified_at
FROM stored_passwords
WHERE user_id = $1
ORDER BY site_label ASC, id ASC
"""

_SELECT_ONE = """
SELECT id, user_id, site_label, account_identifier, encrypted_password,
       notes, created_at, modified_at
FROM stored_passwords
WHERE id = $1 AND user_id = $2
"""

_UPDATE_TEMPLATE = """
UPDATE stored_passwords
SET {assignments}, modified_at = NOW()
WHERE id = $1 AND user_id = $2
RETURNING id, user_id, site_label, account_identifier, encrypted_password,
          notes, created_at, modified_at
"""

_DELETE_RECORD = """
DELETE FROM stored_passwords
WHERE id = $1 AND user_id = $2
RETURNING id
"""

# Updatable record fields mapped to their column.
UPDATABLE_COLUMNS = {
    "site_label": "site_label",
    "account_identifier": "account_identifier",
    "envelope": "encrypted_password",
    "notes": "notes",
}

_DRIVER_ERRORS = (
    asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError,
)


def _to_record(row: Any) -> CredentialRecord:
    """Map a ``stored_passwords`` row to a CredentialRecord."""
    keys = row.keys()
    return CredentialRecord(
        id=row["id"],
        owner_id=row["user_id"],
        site_label=row["site_label"],
        account_identifier=row["account_identifier"],
        envelope=row["encrypted_password"] if "encrypted_password" in keys else None,
        notes=row["notes"],
        created_at=row["created_at"],
        modified_at=row["modified_at"],
    )


class CredentialStore:
    """Owner-scoped CRUD over the ``stored_passwords`` table.

    Each method runs a single statement on one pooled connection; there
    are no cross-statement transactions and no retries.
    """

    def __init__(self, db_pool: Any):
        self._db = db_pool

    async def _fetch(self, method: str, query: str, *args: Any) -> Any:
        """Run one statement, wrapping driver failures into StorageError."""
        try:
            async with self._db.acquire() as conn:
                return await getattr(conn, method)(query, *args)
        except _DRIVER_ERRORS as err:
            logger.error("Credential store statement failed: %s", err)
            raise StorageError("Credential storage is unavailable") from err

    async def insert(
        self,
        owner_id: int,
        site_label: str,
        account_identifier: str,
        envelope: str,
        notes: Optional[str] = None,
    ) -> CredentialRecord:
        """Persist a new record and return it with its id and timestamps."""
        row = await self._fetch(
            "fetchrow", _INSERT_RECORD,
            owner_id, site_label, account_identifier, envelope, notes,
        )
        record = _to_record(row)
        logger.debug("Credential inserted: id=%s owner=%s", record.id, owner_id)
        return record

    async def list_by_owner(self, owner_id: int) -> list[CredentialRecord]:
        """Return the owner's records ordered by site label, without envelopes."""
        rows = await self._fetch("fetch", _SELECT_BY_OWNER, owner_id)
        return [_to_record(row) for row in rows]

    async def get_by_id_and_owner(self, record_id: int, owner_id: int) -> CredentialRecord:
        """Fetch one record including its envelope.

        Raises:
            NotFoundError: If no record ``record_id`` belongs to ``owner_id``.
        """
        row = await self._fetch("fetchrow", _SELECT_ONE, record_id, owner_id)
        if row is None:
            raise NotFoundError("Password not found")
        return _to_record(row)

    async def update(
        self, record_id: int, owner_id: int, fields: dict[str, Any]
    ) -> CredentialRecord:
        """Apply a partial update; ``modified_at`` is refreshed here.

        Args:
            record_id: Record to update.
            owner_id: Owner the record must belong to.
            fields: Subset of ``site_label``, ``account_identifier``,
                ``envelope`` and ``notes``.

        Raises:
            NoFieldsToUpdateError: If ``fields`` is empty.
            ValidationError: If ``fields`` names a non-updatable field.
            NotFoundError: If no record ``record_id`` belongs to ``owner_id``.
        """
        if not fields:
            raise NoFieldsToUpdateError()
        unknown = set(fields) - set(UPDATABLE_COLUMNS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )
        assignments = []
        values = [record_id, owner_id]
        for name, value in fields.items():
            values.append(value)
            assignments.append(f"{UPDATABLE_COLUMNS[name]} = ${len(values)}")
        query = _UPDATE_TEMPLATE.format(assignments=", ".join(assignments))
        row = await self._fetch("fetchrow", query, *values)
        if row is None:
            raise NotFoundError("Password not found")
        logger.debug(
            "Credential updated: id=%s owner=%s fields=%s",
            record_id, owner_id, sorted(fields),
        )
        return _to_record(row)

    async def delete(self, record_id: int, owner_id: int) -> None:
        """Delete one record.

        Raises:
            NotFoundError: If no record ``record_id`` belongs to ``owner_id``.
        """
        deleted = await self._fetch("fetchval", _DELETE_RECORD, record_id, owner_id)
        if deleted is None:
            raise NotFoundError("Password not found")
        logger.debug("Credential deleted: id=%s owner=%s", record_id, owner_id)
