"""Credential Vault Meta information.
   Credential Vault stores third-party credentials encrypted at rest,
   gated behind a session token and a secondary PIN.
"""
__title__ = 'credential_vault'
__description__ = (
   'Credential Vault stores third-party credentials encrypted at rest, '
   'gated behind a session token and a secondary PIN.'
)
__version__ = '0.3.0'
__license__ = 'Apache-2.0'
