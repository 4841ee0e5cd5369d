"""
Token Type Definitions

Pydantic models for the token grant response and the durable credential
record, plus the in-memory token state owned by the TokenManager.
"""

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class TokenStatus(str, Enum):
    """Lifecycle state of the TokenManager."""

    UNINITIALIZED = "uninitialized"
    VALID = "valid"
    REFRESHING = "refreshing"
    NEEDS_REAUTH = "needs_reauth"
    FAILED = "failed"


class TokenDictionary(BaseModel):
    """
    Token grant response from ``/v1/oauth/token``.

    Extra keys returned by Schwab (``expires_in``, ``token_type``, ``scope``)
    are kept so the credential record mirrors the response.
    """

    model_config = ConfigDict(extra="allow")

    access_token: str = Field(..., min_length=1)
    refresh_token: str = Field(..., min_length=1)
    id_token: Optional[str] = None


class CredentialRecord(BaseModel):
    """
    Durable token record stored in the tokens file.

    Issuance timestamps are epoch milliseconds. A record is only usable when
    all three top-level fields are set.
    """

    access_token_issued: Optional[int] = None
    refresh_token_issued: Optional[int] = None
    token_dictionary: Optional[TokenDictionary] = None

    @property
    def is_complete(self) -> bool:
        return (
            self.access_token_issued is not None
            and self.refresh_token_issued is not None
            and self.token_dictionary is not None
        )

    @classmethod
    def empty(cls) -> "CredentialRecord":
        return cls(access_token_issued=None, refresh_token_issued=None, token_dictionary=None)


_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def to_epoch_ms(value: datetime) -> int:
    return (value - _EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(value: int) -> datetime:
    return _EPOCH + timedelta(milliseconds=value)


@dataclass
class TokenState:
    """In-memory tokens and their issuance times (UTC)."""

    access_token: str | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    access_issued_at: datetime | None = None
    refresh_issued_at: datetime | None = None
    token_dictionary: TokenDictionary | None = None

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "TokenState":
        """Build state from a complete credential record."""
        if not record.is_complete:
            raise ValueError("Cannot build token state from an incomplete credential record")
        assert record.token_dictionary is not None
        assert record.access_token_issued is not None
        assert record.refresh_token_issued is not None
        return cls(
            access_token=record.token_dictionary.access_token,
            refresh_token=record.token_dictionary.refresh_token,
            id_token=record.token_dictionary.id_token,
            access_issued_at=from_epoch_ms(record.access_token_issued),
            refresh_issued_at=from_epoch_ms(record.refresh_token_issued),
            token_dictionary=record.token_dictionary,
        )

    def to_record(self) -> CredentialRecord:
        if self.access_issued_at is None or self.refresh_issued_at is None:
            return CredentialRecord.empty()
        return CredentialRecord(
            access_token_issued=to_epoch_ms(self.access_issued_at),
            refresh_token_issued=to_epoch_ms(self.refresh_issued_at),
            token_dictionary=self.token_dictionary,
        )

    def adopt(
        self,
        tokens: TokenDictionary,
        access_issued_at: datetime,
        refresh_issued_at: datetime,
    ) -> None:
        """Replace all tokens and both issuance times in one step."""
        self.access_token = tokens.access_token
        self.refresh_token = tokens.refresh_token
        self.id_token = tokens.id_token
        self.token_dictionary = tokens
        self.access_issued_at = access_issued_at
        self.refresh_issued_at = refresh_issued_at

    def clear(self) -> None:
        self.access_token = None
        self.refresh_token = None
        self.id_token = None
        self.token_dictionary = None
        self.access_issued_at = None
        self.refresh_issued_at = None

    def access_age(self, now: datetime) -> timedelta | None:
        if self.access_issued_at is None:
            return None
        return now - self.access_issued_at

    def refresh_age(self, now: datetime) -> timedelta | None:
        if self.refresh_issued_at is None:
            return None
        return now - self.refresh_issued_at
