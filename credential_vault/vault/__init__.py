"""Credential Vault: Encrypted third-party credentials behind a PIN gate.

Security Note (Threat Model):
    Secrets are sealed with a key derived from the server secret and a fixed
    application salt. Anyone holding the server secret and a database dump
    can recover every stored credential; the salt only prevents reuse of
    precomputed tables. Plaintext exists in process memory only while a
    reveal or an encryption is being served.
"""

from .config import VaultConfig, generate_server_secret, load_server_secret
from .crypto import EnvelopeCodec, derive_key, get_codec
from .gate import AccessGate, PinHasher, PinVerifier, SessionVerifier
from .models import CredentialRecord, Identity, RevealedCredential
from .passwords import check_password_strength, generate_strong_password
from .service import ProtectedVault, VaultService, build_protected_vault
from .store import CredentialStore
from .breach import BreachChecker

__all__ = [
    "AccessGate",
    "BreachChecker",
    "CredentialRecord",
    "CredentialStore",
    "EnvelopeCodec",
    "Identity",
    "PinHasher",
    "PinVerifier",
    "ProtectedVault",
    "RevealedCredential",
    "SessionVerifier",
    "VaultConfig",
    "VaultService",
    "build_protected_vault",
    "check_password_strength",
    "derive_key",
    "generate_server_secret",
    "generate_strong_password",
    "get_codec",
    "load_server_secret",
]
