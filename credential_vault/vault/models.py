"""Vault data models."""
from typing import Optional, Any
from datetime import datetime
from datamodel import BaseModel


class Identity(BaseModel):
    """Authenticated caller bound to a request."""
    user_id: int
    token: str


class CredentialRecord(BaseModel):
    """One stored third-party login.

    ``envelope`` is the only confidential field; it is ``None`` on records
    returned by listings.
    """
    id: int
    owner_id: int
    site_label: str
    account_identifier: str
    envelope: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    def metadata(self) -> dict[str, Any]:
        """Public fields of the record, never including the envelope."""
        return {
            'id': self.id,
            'site_label': self.site_label,
            'account_identifier': self.account_identifier,
            'notes': self.notes,
            'created_at': self.created_at,
            'modified_at': self.modified_at,
        }


class RevealedCredential(BaseModel):
    """A credential with its secret decrypted, returned to its owner only."""
    id: int
    owner_id: int
    site_label: str
    account_identifier: str
    secret: str
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    modified_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return f'<RevealedCredential id={self.id} site_label={self.site_label!r}>'

    @classmethod
    def from_record(cls, record: CredentialRecord, secret: str) -> 'RevealedCredential':
        return cls(
            id=record.id,
            owner_id=record.owner_id,
            site_label=record.site_label,
            account_identifier=record.account_identifier,
            secret=secret,
            notes=record.notes,
            created_at=record.created_at,
            modified_at=record.modified_at,
        )

    def to_response(self) -> dict[str, Any]:
        return {
            'id': self.id,
            'site_label': self.site_label,
            'account_identifier': self.account_identifier,
            'secret': self.secret,
            'notes': self.notes,
            'created_at': self.created_at,
            'modified_at': self.modified_at,
        }
