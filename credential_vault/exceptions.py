"""
Vault error taxonomy.

Every error carries the HTTP status the transport layer should answer with.
Errors with a status of 500 or above describe server-side faults (corrupted
envelopes, key mismatch, storage outages); their messages are logged but never
rendered to clients.
"""


class VaultError(Exception):
    """Base class for every error raised by the vault."""

    status: int = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class ValidationError(VaultError):
    """Bad or missing input the caller can correct."""

    status = 400


class NoFieldsToUpdateError(ValidationError):
    """An update was requested without any field to change."""

    def __init__(self, message: str = "No fields to update") -> None:
        super().__init__(message)


class AuthenticationError(VaultError):
    """Missing, invalid or expired session token, or a wrong PIN."""

    status = 401


class NotFoundError(VaultError):
    """Record absent, or owned by somebody else."""

    status = 404


class DecryptionError(VaultError):
    """Authentication tag mismatch or corrupted ciphertext."""


class MalformedEnvelopeError(VaultError):
    """Stored envelope does not follow ``nonce:ciphertext:tag`` hex form."""


class KeyDerivationError(VaultError):
    """Server secret is missing or unusable; the service must not start."""


class StorageError(VaultError):
    """Underlying database is unavailable or rejected the statement."""


class ServiceUnavailableError(VaultError):
    """An upstream service needed to answer the request could not be reached."""

    status = 503
