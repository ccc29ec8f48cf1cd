"""Summary: Domain model dataclasses for the CRM Gmail integration.

Importance: Defines the entities shared across services, storage, and the API.
Alternatives: Use Pydantic models or raw dictionaries throughout.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


TOKEN_EXPIRY_MARGIN_SECONDS = 30
MIN_TOKEN_LIFETIME_SECONDS = 60
DEFAULT_TOKEN_LIFETIME_SECONDS = 3600


@dataclass(frozen=True)
class Account:
    """Summary: One configured Gmail mailbox integration.

    Importance: Joins OAuth client credentials with the encrypted token blob by id.
    Alternatives: Keep credentials and tokens in separate tables.
    """

    id: str
    label: str
    client_id: str
    client_secret: str
    tokens: str = ""

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def to_dict(self) -> dict[str, str]:
        """Summary: Serialize the account for the accounts option.

        Importance: The id is the mapping key, so it is not repeated in the value.
        Alternatives: Store a list of accounts with embedded ids.
        """

        return {
            "label": self.label,
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "tokens": self.tokens,
        }


@dataclass(frozen=True)
class TokenSet:
    """Summary: Decrypted OAuth session state for one account.

    Importance: Drives the refresh decision through expires_at alone.
    Alternatives: Ask the provider for token info on every lookup.
    """

    access_token: str
    refresh_token: str
    expires_at: int
    scope: str = ""
    token_type: str = "Bearer"

    @property
    def is_authorized(self) -> bool:
        return bool(self.refresh_token)

    def is_fresh(self, now: int) -> bool:
        return bool(self.expires_at) and now < self.expires_at

    def to_dict(self) -> dict[str, Any]:
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "expires_at": self.expires_at,
            "scope": self.scope,
            "token_type": self.token_type,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "TokenSet":
        """Summary: Build a TokenSet from a decrypted payload.

        Importance: Tolerates missing or oddly typed fields in older payloads.
        Alternatives: Validate strictly and treat any mismatch as unauthorized.
        """

        try:
            expires_at = abs(int(payload.get("expires_at") or 0))
        except (TypeError, ValueError):
            expires_at = 0
        return TokenSet(
            access_token=str(payload.get("access_token") or ""),
            refresh_token=str(payload.get("refresh_token") or ""),
            expires_at=expires_at,
            scope=str(payload.get("scope") or ""),
            token_type=str(payload.get("token_type") or "Bearer"),
        )


def compute_expires_at(now: int, expires_in: Any) -> int:
    """Summary: Convert a provider expires_in into an absolute expiry.

    Importance: Subtracts a safety margin so refresh happens before the real expiry.
    Alternatives: Store expires_in and the issue time separately.
    """

    try:
        lifetime = abs(int(expires_in)) if expires_in is not None else DEFAULT_TOKEN_LIFETIME_SECONDS
    except (TypeError, ValueError):
        lifetime = 0
    return now + max(MIN_TOKEN_LIFETIME_SECONDS, lifetime) - TOKEN_EXPIRY_MARGIN_SECONDS


@dataclass(frozen=True)
class MessageRecord:
    """Summary: Display-ready metadata for one Gmail message.

    Importance: The unit merged, ranked, and cached by the aggregator.
    Alternatives: Pass raw Gmail payloads to the host.
    """

    id: str
    thread_id: str
    subject: str
    sender: str
    recipients: str
    timestamp: int
    date_raw: str
    snippet: str
    direction: str
    source_url: str
    account_label: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "thread_id": self.thread_id,
            "subject": self.subject,
            "from": self.sender,
            "to": self.recipients,
            "date": self.timestamp,
            "date_raw": self.date_raw,
            "snippet": self.snippet,
            "direction": self.direction,
            "source_url": self.source_url,
            "account_label": self.account_label,
        }

    @staticmethod
    def from_dict(payload: dict[str, Any]) -> "MessageRecord":
        return MessageRecord(
            id=str(payload.get("id", "")),
            thread_id=str(payload.get("thread_id", "")),
            subject=str(payload.get("subject", "")),
            sender=str(payload.get("from", "")),
            recipients=str(payload.get("to", "")),
            timestamp=int(payload.get("date", 0) or 0),
            date_raw=str(payload.get("date_raw", "")),
            snippet=str(payload.get("snippet", "")),
            direction=str(payload.get("direction", "incoming")),
            source_url=str(payload.get("source_url", "")),
            account_label=str(payload.get("account_label", "")),
        )
