"""
VaultService: Use-case orchestration over the codec and the store.

Provides the public API of the credential vault:
- ``add_credential``: encrypt a secret and persist a new record
- ``list_credentials``: metadata of every record of an owner, never decrypted
- ``reveal_credential``: decrypt one record for its owner
- ``update_credential``: partial update, re-encrypting a new secret
- ``delete_credential``: remove one record
- ``generate_strong_password`` / ``check_password_strength``

``ProtectedVault`` puts the access gate in front of each use-case and is
what the transport layer calls.

Security Note:
    Never log plaintext secrets or envelopes. Only log record ids, owners
    and operations.
"""
import logging
from typing import Any, Optional

from ..exceptions import NoFieldsToUpdateError, ServiceUnavailableError, ValidationError, VaultError
from .config import VaultConfig
from .crypto import EnvelopeCodec, get_codec
from .gate import AccessGate, PinHasher, PinVerifier, SessionVerifier
from .models import CredentialRecord, Identity, RevealedCredential
from .passwords import (
    DEFAULT_GENERATED_LENGTH,
    check_password_strength,
    generate_strong_password,
)
from .store import CredentialStore

logger = logging.getLogger("credential_vault.vault")

UPDATABLE_FIELDS = ("site_label", "account_identifier", "secret", "notes")

# Fields whose ``None`` value means "clear it" rather than "leave it alone".
_NULLABLE_FIELDS = frozenset({"notes"})


def _require_text(name: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{name} is required")
    return value


def _optional_text(name: str, value: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise ValidationError(f"{name} must be a string")
    return value


class VaultService:
    """Orchestrate credential use-cases.

    The only component that talks to both the codec and the store. It adds
    no error types of its own: failures are logged with the record and
    owner involved, then re-raised unchanged.
    """

    def __init__(self, store: CredentialStore, codec: EnvelopeCodec):
        self._store = store
        self._codec = codec

    async def add_credential(
        self,
        owner_id: int,
        site_label: str,
        account_identifier: str,
        secret: str,
        notes: Optional[str] = None,
    ) -> CredentialRecord:
        """Encrypt ``secret`` and store a new credential record.

        Raises:
            ValidationError: If a required field is missing or empty.
        """
        _require_text("site_label", site_label)
        _require_text("account_identifier", account_identifier)
        if not isinstance(secret, str) or secret == "":
            raise ValidationError("secret is required")
        _optional_text("notes", notes)

        envelope = self._codec.encrypt(secret)
        try:
            record = await self._store.insert(
                owner_id, site_label, account_identifier, envelope, notes,
            )
        except VaultError as err:
            logger.error("Failed to add credential for owner=%s: %s", owner_id, err)
            raise
        logger.info("Credential added: id=%s owner=%s", record.id, owner_id)
        return record

    async def list_credentials(self, owner_id: int) -> list[CredentialRecord]:
        """Return metadata of the owner's credentials, ordered by site label."""
        try:
            return await self._store.list_by_owner(owner_id)
        except VaultError as err:
            logger.error("Failed to list credentials for owner=%s: %s", owner_id, err)
            raise

    async def reveal_credential(self, record_id: int, owner_id: int) -> RevealedCredential:
        """Decrypt one credential for its owner.

        Raises:
            NotFoundError: If the record does not exist for this owner.
            DecryptionError: If the stored envelope fails authentication.
            MalformedEnvelopeError: If the stored envelope cannot be parsed.
        """
        try:
            record = await self._store.get_by_id_and_owner(record_id, owner_id)
            secret = self._codec.decrypt(record.envelope)
        except VaultError as err:
            logger.error(
                "Failed to reveal credential id=%s owner=%s: %s",
                record_id, owner_id, err,
            )
            raise
        logger.info("Credential revealed: id=%s owner=%s", record_id, owner_id)
        return RevealedCredential.from_record(record, secret)

    async def update_credential(
        self, record_id: int, owner_id: int, fields: dict[str, Any]
    ) -> CredentialRecord:
        """Apply a partial update.

        Accepted keys are ``site_label``, ``account_identifier``, ``secret``
        and ``notes``. ``None`` means "unchanged", except for ``notes``
        where it clears the note. A new ``secret`` is sealed into a fresh
        envelope.

        Raises:
            NoFieldsToUpdateError: If nothing would change; raised before
                any codec or store call.
            ValidationError: If an unknown field or an empty value is given.
        """
        fields = dict(fields or {})
        unknown = set(fields) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(sorted(unknown))}"
            )
        changes = {
            name: value for name, value in fields.items()
            if value is not None or name in _NULLABLE_FIELDS
        }
        if not changes:
            raise NoFieldsToUpdateError()

        for name in ("site_label", "account_identifier"):
            if name in changes:
                _require_text(name, changes[name])
        if "notes" in changes:
            _optional_text("notes", changes["notes"])

        if "secret" in changes:
            secret = changes.pop("secret")
            if not isinstance(secret, str) or secret == "":
                raise ValidationError("secret cannot be empty")
            changes["envelope"] = self._codec.encrypt(secret)

        try:
            record = await self._store.update(record_id, owner_id, changes)
        except VaultError as err:
            logger.error(
                "Failed to update credential id=%s owner=%s: %s",
                record_id, owner_id, err,
            )
            raise
        logger.info(
            "Credential updated: id=%s owner=%s secret changed: %s",
            record_id, owner_id, "envelope" in changes,
        )
        return record

    async def delete_credential(self, record_id: int, owner_id: int) -> None:
        """Delete one credential of the owner."""
        try:
            await self._store.delete(record_id, owner_id)
        except VaultError as err:
            logger.error(
                "Failed to delete credential id=%s owner=%s: %s",
                record_id, owner_id, err,
            )
            raise
        logger.info("Credential deleted: id=%s owner=%s", record_id, owner_id)

    @staticmethod
    def generate_strong_password(length: int = DEFAULT_GENERATED_LENGTH) -> str:
        return generate_strong_password(length)

    @staticmethod
    def check_password_strength(password: str) -> dict:
        return check_password_strength(password)


class ProtectedVault:
    """Gate-first entry points, one per use-case.

    Each method takes the raw bearer token (and PIN where the policy asks
    for one) as plain parameters, runs the access gate, then delegates to
    the service. Nothing reaches the service when the gate refuses.
    """

    def __init__(self, gate: AccessGate, service: VaultService, breach_checker: Any = None):
        self.gate = gate
        self.service = service
        self.breach_checker = breach_checker

    async def authenticate(self, token: Optional[str]) -> Identity:
        """Verify the session alone, for requests rejected before dispatch."""
        return await self.gate.authenticate(token)

    async def add(
        self,
        token: Optional[str],
        pin: Optional[str],
        site_label: str,
        account_identifier: str,
        secret: str,
        notes: Optional[str] = None,
    ) -> CredentialRecord:
        identity = await self.gate.authorize("add", token, pin)
        return await self.service.add_credential(
            identity.user_id, site_label, account_identifier, secret, notes,
        )

    async def list_credentials(self, token: Optional[str]) -> list[CredentialRecord]:
        identity = await self.gate.authorize("list", token)
        return await self.service.list_credentials(identity.user_id)

    async def reveal(
        self, token: Optional[str], pin: Optional[str], record_id: int
    ) -> RevealedCredential:
        identity = await self.gate.authorize("reveal", token, pin)
        return await self.service.reveal_credential(record_id, identity.user_id)

    async def update(
        self,
        token: Optional[str],
        pin: Optional[str],
        record_id: int,
        fields: dict[str, Any],
    ) -> CredentialRecord:
        identity = await self.gate.authorize("update", token, pin)
        return await self.service.update_credential(record_id, identity.user_id, fields)

    async def delete(self, token: Optional[str], pin: Optional[str], record_id: int) -> None:
        identity = await self.gate.authorize("delete", token, pin)
        await self.service.delete_credential(record_id, identity.user_id)

    async def generate_password(
        self, token: Optional[str], length: int = DEFAULT_GENERATED_LENGTH
    ) -> str:
        await self.gate.authorize("generate", token)
        return self.service.generate_strong_password(length)

    async def check_strength(self, token: Optional[str], password: str) -> dict:
        await self.gate.authorize("strength", token)
        return self.service.check_password_strength(password)

    async def check_breach(self, token: Optional[str], password: str) -> dict:
        identity = await self.gate.authorize("breach_check", token)
        if self.breach_checker is None:
            raise ServiceUnavailableError("Breach check is not configured")
        result = await self.breach_checker.check(password)
        if result["compromised"]:
            logger.warning("Compromised password checked by user=%s", identity.user_id)
        return result


def build_protected_vault(
    config: VaultConfig,
    db_pool: Any,
    codec: Optional[EnvelopeCodec] = None,
    breach_checker: Any = None,
) -> ProtectedVault:
    """Wire the gate, store, codec and service from one configuration.

    Args:
        config: Validated vault configuration.
        db_pool: asyncpg-compatible connection pool.
        codec: Envelope codec; the process-wide one when omitted.
        breach_checker: Optional :class:`BreachChecker`.
    """
    gate = AccessGate(
        SessionVerifier(
            db_pool,
            config.token_secret,
            algorithm=config.jwt_algorithm,
            require_session_record=config.require_session_record,
        ),
        PinVerifier(db_pool, PinHasher(config.pin_rounds)),
    )
    service = VaultService(CredentialStore(db_pool), codec or get_codec(config))
    return ProtectedVault(gate, service, breach_checker=breach_checker)
