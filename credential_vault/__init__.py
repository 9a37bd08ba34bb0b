"""Credential Vault.

Stores third-party credentials encrypted at rest, gated behind a session
token and a secondary PIN.
"""
from .version import __version__

__all__ = ["__version__"]
