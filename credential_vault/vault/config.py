"""
Vault Configuration: Server secret loading and validated settings.

Reads settings from environment variables:
    VAULT_SERVER_SECRET = <secret used to derive the envelope key>
    JWT_SECRET = <secret used to sign session tokens>
    BCRYPT_ROUNDS = <work factor for PIN hashes>

VAULT_SERVER_SECRET falls back to JWT_SECRET, which is how deployments
created before the two were split derived their envelope key.

Security Note:
    Never log secret material. Only log which variables were found.
"""
import os
import base64
import secrets
import logging
from typing import Optional

from pydantic import BaseModel, Field, SecretStr, field_validator

from ..exceptions import KeyDerivationError

logger = logging.getLogger("credential_vault.vault")

# Application-wide scrypt salt. Changing it makes every stored envelope
# undecryptable, so it is only overridable for fresh deployments.
DEFAULT_KDF_SALT = b"sel"

DEFAULT_BREACH_API_URL = "https://api.pwnedpasswords.com/range/"

_TRUTHY = ("1", "true", "yes", "on")


def load_server_secret() -> str:
    """Read the key-derivation secret from the environment.

    Returns:
        The raw server secret.

    Raises:
        KeyDerivationError: If neither VAULT_SERVER_SECRET nor JWT_SECRET
            is set to a non-empty value.
    """
    secret = os.environ.get("VAULT_SERVER_SECRET") or os.environ.get("JWT_SECRET")
    if not secret:
        raise KeyDerivationError(
            "No server secret found in environment. "
            "Set VAULT_SERVER_SECRET=<long random value>"
        )
    return secret


def generate_server_secret() -> str:
    """Generate a random 48-byte server secret and return it as base64.

    This is a utility for operators provisioning a new deployment.
    """
    return base64.b64encode(secrets.token_bytes(48)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration."""

    server_secret: SecretStr
    jwt_secret: Optional[SecretStr] = None
    jwt_algorithm: str = Field(default="HS256")
    kdf_salt: bytes = Field(default=DEFAULT_KDF_SALT)
    pin_rounds: int = Field(default=10, ge=4, le=31)
    database_dsn: Optional[str] = None
    require_session_record: bool = True
    breach_api_url: str = Field(default=DEFAULT_BREACH_API_URL)
    breach_timeout: float = Field(default=5.0, gt=0)
    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=1, le=65535)

    @field_validator("server_secret")
    @classmethod
    def validate_server_secret(cls, v: SecretStr) -> SecretStr:
        """Reject an empty server secret."""
        if not v.get_secret_value():
            raise ValueError("server_secret cannot be empty")
        return v

    @field_validator("kdf_salt")
    @classmethod
    def validate_kdf_salt(cls, v: bytes) -> bytes:
        """Reject an empty salt."""
        if not v:
            raise ValueError("kdf_salt cannot be empty")
        return v

    @field_validator("jwt_algorithm")
    @classmethod
    def validate_jwt_algorithm(cls, v: str) -> str:
        """Only HMAC algorithms make sense with a shared secret."""
        if v not in ("HS256", "HS384", "HS512"):
            raise ValueError(f"Unsupported JWT algorithm: {v}")
        return v

    @property
    def token_secret(self) -> str:
        """Secret used to verify session tokens."""
        secret = self.jwt_secret or self.server_secret
        return secret.get_secret_value()

    @classmethod
    def from_env(cls) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Raises:
            KeyDerivationError: If no server secret is configured.
        """
        server_secret = load_server_secret()
        salt = os.environ.get("VAULT_KDF_SALT")
        values = {
            "server_secret": server_secret,
            "jwt_secret": os.environ.get("JWT_SECRET") or None,
            "jwt_algorithm": os.environ.get("JWT_ALGORITHM", "HS256"),
            "kdf_salt": salt.encode("utf-8") if salt else DEFAULT_KDF_SALT,
            "pin_rounds": int(os.environ.get("BCRYPT_ROUNDS", "10")),
            "database_dsn": os.environ.get("DATABASE_URL") or None,
            "require_session_record": os.environ.get(
                "VAULT_REQUIRE_SESSION", "true"
            ).lower() in _TRUTHY,
            "breach_api_url": os.environ.get(
                "VAULT_BREACH_API_URL", DEFAULT_BREACH_API_URL
            ),
            "breach_timeout": float(os.environ.get("VAULT_BREACH_TIMEOUT", "5.0")),
            "host": os.environ.get("HOST", "0.0.0.0"),
            "port": int(os.environ.get("PORT", "3000")),
        }
        if salt:
            logger.warning("Using a custom KDF salt from VAULT_KDF_SALT")
        logger.debug(
            "Vault configuration loaded (database configured: %s)",
            values["database_dsn"] is not None,
        )
        return cls(**values)
