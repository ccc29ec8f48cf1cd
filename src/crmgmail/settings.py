"""Summary: Typed settings access with sanitize-on-write rules.

Importance: The only path through which services read or write the host options store.
Alternatives: Let every service read raw option values directly.
"""

from __future__ import annotations

import re
import secrets
import string
from dataclasses import dataclass
from typing import Any

from crmgmail.storage.sqlite_store import SqliteStore


OPTION_ACCOUNTS = "crmgmail_accounts"
OPTION_CACHE_DURATION = "crmgmail_cache_duration"
OPTION_EMAIL_LIMIT = "crmgmail_email_limit"

LEGACY_OPTIONS = (
    "gd_fcrm_gmail_client_id",
    "gd_fcrm_gmail_client_secret",
    "gd_fcrm_gmail_tokens",
)

CACHE_DURATION_CHOICES = (5, 15, 30, 60)
DEFAULT_CACHE_DURATION = 15
EMAIL_LIMIT_CHOICES = (5, 10, 20, 50)
DEFAULT_EMAIL_LIMIT = 10

_TAG_RE = re.compile(r"</?[A-Za-z!][^<>@]*>")
_WHITESPACE_RE = re.compile(r"\s+")
_KEY_RE = re.compile(r"[^a-z0-9_\-]")
_EMAIL_RE = re.compile(r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9-]+(\.[A-Za-z0-9-]+)+$")


def absint(value: Any) -> int:
    """Summary: Coerce any input into a non-negative integer.

    Importance: Form input arrives as strings, floats, or garbage; all map to an int.
    Alternatives: Reject non-integers with a validation error.
    """

    if isinstance(value, bool):
        return int(value)
    try:
        return abs(int(str(value).strip()))
    except (TypeError, ValueError):
        pass
    try:
        return abs(int(float(value)))
    except (TypeError, ValueError, OverflowError):
        return 0


def sanitize_cache_duration(value: Any) -> int:
    minutes = absint(value)
    return minutes if minutes in CACHE_DURATION_CHOICES else DEFAULT_CACHE_DURATION


def sanitize_email_limit(value: Any) -> int:
    limit = absint(value)
    return limit if limit in EMAIL_LIMIT_CHOICES else DEFAULT_EMAIL_LIMIT


def sanitize_key(value: Any) -> str:
    """Lowercase slug containing only letters, digits, dashes and underscores."""

    return _KEY_RE.sub("", str(value).lower())


def sanitize_text(value: Any) -> str:
    """Summary: Normalize free text from forms or provider headers.

    Importance: Strips markup and collapses whitespace so values are safe to display.
    Alternatives: Escape at render time and store raw input.
    """

    if value is None:
        return ""
    text = _TAG_RE.sub("", str(value))
    return _WHITESPACE_RE.sub(" ", text).strip()


def strip_tags(value: Any) -> str:
    return _TAG_RE.sub("", str(value or "")).strip()


def normalize_email(value: Any) -> str:
    """Summary: Return a trimmed email address, or an empty string when malformed.

    Importance: Guards the Gmail query against injection of extra search operators.
    Alternatives: Use a full RFC 5322 parser.
    """

    if not isinstance(value, str):
        return ""
    email = value.strip()
    if len(email) < 6 or not _EMAIL_RE.match(email):
        return ""
    return email


def generate_account_id() -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "account_" + "".join(secrets.choice(alphabet) for _ in range(8))


def sanitize_accounts_option(
    value: Any, existing: dict[str, dict[str, str]] | None = None
) -> dict[str, dict[str, str]]:
    """Summary: Sanitize submitted account rows into the stored accounts mapping.

    Importance: Defines the canonical normalization rules the registry depends on.
    Alternatives: Validate each field with a Pydantic model and reject bad rows.

    Rows flagged with ``remove`` are dropped, rows with every field empty are
    dropped, and rows without a usable id receive a generated one. Token blobs
    are never taken from submitted input: a row keeps the blob already stored
    under its id, so only the token manager can change token state.
    """

    if not isinstance(value, dict):
        return {}
    existing = existing or {}
    accounts: dict[str, dict[str, str]] = {}
    for account_id, account in value.items():
        if not isinstance(account, dict):
            continue
        if account.get("remove"):
            continue
        normalized_id = sanitize_key(account_id)
        if not normalized_id:
            normalized_id = generate_account_id()
        label = sanitize_text(account.get("label", ""))
        client_id = sanitize_text(account.get("client_id", ""))
        client_secret = sanitize_text(account.get("client_secret", ""))
        stored = existing.get(normalized_id) or {}
        tokens = stored.get("tokens", "")
        if not isinstance(tokens, str):
            tokens = ""
        if not (label or client_id or client_secret or tokens):
            continue
        accounts[normalized_id] = {
            "label": label,
            "client_id": client_id,
            "client_secret": client_secret,
            "tokens": tokens,
        }
    return accounts


@dataclass(frozen=True)
class Settings:
    """Summary: Typed view over the three persisted configuration values.

    Importance: Reads and writes both pass through the sanitizers.
    Alternatives: Store settings as one JSON document.
    """

    store: SqliteStore

    def get_cache_duration_minutes(self) -> int:
        return sanitize_cache_duration(
            self.store.get_option(OPTION_CACHE_DURATION, DEFAULT_CACHE_DURATION)
        )

    def set_cache_duration(self, value: Any) -> int:
        minutes = sanitize_cache_duration(value)
        self.store.set_option(OPTION_CACHE_DURATION, minutes)
        return minutes

    def get_email_limit(self) -> int:
        return sanitize_email_limit(self.store.get_option(OPTION_EMAIL_LIMIT, DEFAULT_EMAIL_LIMIT))

    def set_email_limit(self, value: Any) -> int:
        limit = sanitize_email_limit(value)
        self.store.set_option(OPTION_EMAIL_LIMIT, limit)
        return limit

    def get_accounts_raw(self) -> Any:
        return self.store.get_option(OPTION_ACCOUNTS, {})

    def set_accounts_raw(self, accounts: dict[str, dict[str, str]]) -> None:
        self.store.set_option(OPTION_ACCOUNTS, accounts)
