"""Summary: Core services for multi-account Gmail correspondence lookups.

Importance: Orchestrates account storage, token lifecycle, OAuth, and cross-account aggregation.
Alternatives: Build a full service layer with a dependency injection framework.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
import logging
import threading
import time
from typing import Any, Callable, Iterable

from crmgmail.cache import CorrespondenceCache, contact_cache_key
from crmgmail.config import AppConfig
from crmgmail.errors import (
    AccountNotFound,
    CrmGmailError,
    CryptoError,
    InvalidEmail,
    InvalidState,
    MissingRefreshToken,
    NotAuthorized,
)
from crmgmail.gmail import GmailClient
from crmgmail.models import Account, MessageRecord, TokenSet, compute_expires_at
from crmgmail.oauth import (
    STATUS_CONNECTED,
    STATUS_DISCONNECT_FAILED,
    STATUS_DISCONNECTED,
    STATUS_INVALID_STATE,
    STATUS_MISSING_CODE,
    STATUS_OAUTH_ERROR,
    STATUS_TOKEN_FAILED,
    build_google_auth_url,
    create_state_token,
    exchange_oauth_code,
    refresh_oauth_token,
    sign_action,
    verify_action,
)
from crmgmail.settings import (
    LEGACY_OPTIONS,
    OPTION_ACCOUNTS,
    OPTION_CACHE_DURATION,
    OPTION_EMAIL_LIMIT,
    Settings,
    absint,
    normalize_email,
    sanitize_accounts_option,
    sanitize_key,
    sanitize_text,
)
from crmgmail.storage.sqlite_store import SqliteStore
from crmgmail.token_codec import TokenCodec


logger = logging.getLogger(__name__)

OAUTH_STATE_PREFIX = "crmgmail_oauth_state_"
TRANSIENT_PREFIXES = ("crmgmail_", "gd_fcrm_gmail_")


@dataclass(frozen=True)
class AccountRegistry:
    """Summary: Manages configured Gmail accounts and their encrypted token blobs.

    Importance: Single owner of the accounts option; every write goes through one lock.
    Alternatives: Store each account under its own option key.
    """

    settings: Settings
    codec: TokenCodec
    cache: CorrespondenceCache
    _lock: Any = field(default_factory=threading.RLock, init=False, repr=False, compare=False)

    def list_accounts(self) -> dict[str, Account]:
        """Summary: Load all configured accounts.

        Importance: Malformed stored entries are dropped silently so corrupt storage never crashes a page.
        Alternatives: Raise on the first invalid entry.
        """

        raw = self.settings.get_accounts_raw()
        if not isinstance(raw, dict):
            return {}
        accounts: dict[str, Account] = {}
        for account_id, account in raw.items():
            if not isinstance(account, dict):
                continue
            normalized_id = sanitize_key(account_id)
            if not normalized_id:
                continue
            tokens = account.get("tokens", "")
            accounts[normalized_id] = Account(
                id=normalized_id,
                label=sanitize_text(account.get("label", "")),
                client_id=sanitize_text(account.get("client_id", "")),
                client_secret=sanitize_text(account.get("client_secret", "")),
                tokens=tokens if isinstance(tokens, str) else "",
            )
        return accounts

    def get_account(self, account_id: str) -> Account | None:
        return self.list_accounts().get(account_id)

    def upsert_accounts(self, raw: Any) -> dict[str, Account]:
        """Summary: Save submitted account rows through the sanitizer.

        Importance: Applies remove flags, drops empty rows, and generates ids for new rows.
        Alternatives: Expose separate create/update/delete operations.
        """

        with self._lock:
            existing = {account_id: account.to_dict() for account_id, account in self.list_accounts().items()}
            sanitized = sanitize_accounts_option(raw, existing)
            self.settings.set_accounts_raw(sanitized)
        logger.info("Saved %s Gmail accounts.", len(sanitized))
        return {
            account_id: Account(id=account_id, **values) for account_id, values in sanitized.items()
        }

    def load_tokens(self, account_id: str) -> TokenSet | None:
        """Summary: Decrypt the token set for an account.

        Importance: Undecryptable blobs read as "not authorized" rather than breaking lookups.
        Alternatives: Propagate CryptoError to every reader.
        """

        account = self.get_account(account_id)
        if account is None or not account.tokens:
            return None
        try:
            payload = self.codec.decrypt(account.tokens)
        except CryptoError as exc:
            logger.warning("Stored tokens for account %s are unreadable: %s", account_id, exc.message)
            return None
        return TokenSet.from_dict(payload)

    def is_account_authorized(self, account_id: str) -> bool:
        tokens = self.load_tokens(account_id)
        return tokens is not None and tokens.is_authorized

    def authorized_accounts(self) -> dict[str, Account]:
        return {
            account_id: account
            for account_id, account in self.list_accounts().items()
            if self.is_account_authorized(account_id)
        }

    def is_authorized(self) -> bool:
        return any(self.is_account_authorized(account_id) for account_id in self.list_accounts())

    def save_tokens(self, account_id: str, tokens: TokenSet) -> None:
        """Summary: Encrypt and persist a token set for an account.

        Importance: Any token change clears all cached correspondence.
        Alternatives: Invalidate only cache entries that include this account.
        """

        with self._lock:
            accounts = self.list_accounts()
            if account_id not in accounts:
                raise AccountNotFound("Selected Gmail account was not found.")
            encrypted = self.codec.encrypt(tokens.to_dict())
            accounts[account_id] = replace(accounts[account_id], tokens=encrypted)
            self._persist(accounts)
        self.cache.invalidate()

    def disconnect(self, account_id: str) -> bool:
        """Summary: Clear stored tokens for an account.

        Importance: Label and client credentials survive so the account can be reconnected.
        Alternatives: Delete the account row entirely.
        """

        with self._lock:
            accounts = self.list_accounts()
            if account_id not in accounts:
                return False
            accounts[account_id] = replace(accounts[account_id], tokens="")
            self._persist(accounts)
        self.cache.invalidate()
        logger.info("Disconnected Gmail account %s.", account_id)
        return True

    def _persist(self, accounts: dict[str, Account]) -> None:
        self.settings.set_accounts_raw(
            {account_id: account.to_dict() for account_id, account in accounts.items()}
        )


@dataclass(frozen=True)
class TokenManager:
    """Summary: Keeps per-account access tokens valid.

    Importance: The only writer of token state; refreshes transparently when expired.
    Alternatives: Refresh on every request, or on a background schedule.
    """

    registry: AccountRegistry
    config: AppConfig
    clock: Callable[[], float] = time.time

    def get_valid_access_token(self, account_id: str) -> str:
        """Summary: Return an access token, refreshing if expired.

        Importance: The unexpired path makes no network call.
        Alternatives: Ask Google to introspect the token on each use.
        """

        tokens = self.registry.load_tokens(account_id)
        if tokens is None or not tokens.access_token or not tokens.refresh_token:
            raise NotAuthorized("Google account is not authorized yet.")
        now = int(self.clock())
        if tokens.is_fresh(now):
            return tokens.access_token
        account = self.registry.get_account(account_id)
        if account is None:
            raise AccountNotFound("Selected Gmail account was not found.")
        result = refresh_oauth_token(self.config, account, tokens.refresh_token)
        refreshed = replace(
            tokens,
            access_token=result.access_token,
            refresh_token=result.refresh_token or tokens.refresh_token,
            expires_at=compute_expires_at(now, result.expires_in),
        )
        self.store_tokens(account_id, refreshed)
        logger.info("Refreshed access token for account %s.", account_id)
        return refreshed.access_token

    def store_tokens(self, account_id: str, tokens: TokenSet) -> None:
        self.registry.save_tokens(account_id, tokens)


@dataclass(frozen=True)
class OAuthFlowController:
    """Summary: Drives the consent flow, callback, and disconnect actions.

    Importance: Maps every failure onto an opaque status code for the host UI.
    Alternatives: Let exceptions bubble up to the web framework.
    """

    registry: AccountRegistry
    tokens: TokenManager
    store: SqliteStore
    config: AppConfig
    clock: Callable[[], float] = time.time

    def build_authorize_url(self, account_id: str, state: str) -> str:
        """Summary: Build the consent URL for an account.

        Importance: Returns an empty string until client credentials are saved.
        Alternatives: Raise an error for unconfigured accounts.
        """

        account = self.registry.get_account(account_id)
        if account is None or not account.has_credentials:
            return ""
        return build_google_auth_url(self.config, account, state)

    def start_authorization(self, user_id: str, account_id: str) -> str:
        """Summary: Issue a one-shot state and return the consent URL.

        Importance: Ties the state to the current user and account for the callback.
        Alternatives: Encode the account id into a signed state value.
        """

        state = create_state_token()
        url = self.build_authorize_url(account_id, state)
        if not url:
            return ""
        self.store.set_transient(
            self._state_key(user_id, state),
            account_id,
            self.config.oauth_state_ttl_minutes * 60,
        )
        return url

    def consume_state(self, user_id: str, state: str) -> str:
        """Summary: Resolve and delete a pending OAuth state.

        Importance: A state can be used at most once, whatever the outcome.
        Alternatives: Keep the state until it expires.
        """

        if not state:
            raise InvalidState("Missing OAuth state.")
        key = self._state_key(user_id, state)
        account_id = self.store.get_transient(key)
        self.store.delete_transient(key)
        if not account_id or not isinstance(account_id, str):
            raise InvalidState("Unknown or expired OAuth state.")
        return account_id

    def exchange_code(self, account_id: str, code: str) -> None:
        """Summary: Exchange an authorization code and persist the tokens.

        Importance: A first-time consent must yield a refresh token; reconnects reuse the stored one.
        Alternatives: Accept access-only sessions and fail later on expiry.
        """

        account = self.registry.get_account(account_id)
        if account is None:
            raise AccountNotFound("Selected Gmail account was not found.")
        result = exchange_oauth_code(self.config, account, code)
        refresh_token = result.refresh_token
        if not refresh_token:
            existing = self.registry.load_tokens(account_id)
            if existing is not None and existing.refresh_token:
                refresh_token = existing.refresh_token
        if not refresh_token:
            raise MissingRefreshToken("Missing refresh token. Reconnect and grant offline access.")
        tokens = TokenSet(
            access_token=result.access_token,
            refresh_token=refresh_token,
            expires_at=compute_expires_at(int(self.clock()), result.expires_in),
            scope=result.scope,
            token_type=result.token_type,
        )
        self.tokens.store_tokens(account_id, tokens)
        logger.info("Connected Gmail account %s.", account_id)

    def handle_callback(
        self, user_id: str, state: str | None, code: str | None, error: str | None = None
    ) -> str:
        """Summary: Complete an OAuth callback and return a status code.

        Importance: No internal error detail ever reaches the redirect.
        Alternatives: Render the provider error message to the user.
        """

        account_id: str | None = None
        if state:
            try:
                account_id = self.consume_state(user_id, state)
            except InvalidState as exc:
                logger.warning("Rejected OAuth callback: %s", exc.message)
        if error:
            logger.warning("Google authorization returned error %s.", error)
            return STATUS_OAUTH_ERROR
        if account_id is None:
            return STATUS_INVALID_STATE
        if not code:
            return STATUS_MISSING_CODE
        try:
            self.exchange_code(account_id, code)
        except CrmGmailError as exc:
            logger.warning("Token exchange for account %s failed: %s", account_id, exc.message)
            return STATUS_TOKEN_FAILED
        return STATUS_CONNECTED

    def disconnect_token(self, account_id: str) -> str:
        return sign_action(self.config.token_secret, "disconnect", account_id)

    def handle_disconnect(self, account_id: str | None, token: str | None) -> str:
        normalized_id = sanitize_key(account_id or "")
        if not normalized_id:
            return STATUS_DISCONNECT_FAILED
        if not verify_action(self.config.token_secret, "disconnect", normalized_id, token or ""):
            logger.warning("Rejected disconnect for account %s: bad token.", normalized_id)
            return STATUS_DISCONNECT_FAILED
        if not self.registry.disconnect(normalized_id):
            return STATUS_DISCONNECT_FAILED
        return STATUS_DISCONNECTED

    def _state_key(self, user_id: str, state: str) -> str:
        return f"{OAUTH_STATE_PREFIX}{user_id}_{state}"


@dataclass(frozen=True)
class CorrespondenceAggregator:
    """Summary: Merges recent correspondence with a contact across all authorized accounts.

    Importance: One broken mailbox degrades the result instead of failing the lookup.
    Alternatives: Query a single primary mailbox.
    """

    registry: AccountRegistry
    tokens: TokenManager
    client: GmailClient
    settings: Settings
    cache: CorrespondenceCache
    max_workers: int = 1

    def get_recent_correspondence(self, email: str, limit: int | None = None) -> list[MessageRecord]:
        """Summary: Return the most recent messages exchanged with a contact.

        Importance: Serves the profile view from cache when possible.
        Alternatives: Always query Gmail live.
        """

        contact = normalize_email(email)
        if not contact:
            raise InvalidEmail("Contact email is invalid.")
        effective_limit = self.settings.get_email_limit() if limit is None else max(1, absint(limit))
        accounts = self.registry.authorized_accounts()
        if not accounts:
            raise NotAuthorized("No Gmail accounts are authorized yet.")

        key = contact_cache_key(contact, effective_limit, accounts.keys())
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        per_account = self._query_accounts(list(accounts.values()), contact, effective_limit)
        results = merge_messages(per_account)[:effective_limit]
        self.cache.put(key, results, self.settings.get_cache_duration_minutes() * 60)
        logger.info(
            "Loaded %s messages across %s authorized accounts.", len(results), len(accounts)
        )
        return results

    def clear_cache(self) -> None:
        self.cache.invalidate()

    def _query_accounts(
        self, accounts: list[Account], email: str, limit: int
    ) -> list[list[MessageRecord]]:
        # results keep account order whatever order the workers finish in
        if self.max_workers > 1 and len(accounts) > 1:
            workers = min(self.max_workers, len(accounts))
            with ThreadPoolExecutor(max_workers=workers) as executor:
                return list(
                    executor.map(lambda account: self._query_account(account, email, limit), accounts)
                )
        return [self._query_account(account, email, limit) for account in accounts]

    def _query_account(self, account: Account, email: str, limit: int) -> list[MessageRecord]:
        try:
            access_token = self.tokens.get_valid_access_token(account.id)
            return self.client.fetch_contact_messages(access_token, email, limit, account.label)
        except CrmGmailError as exc:
            logger.warning("Skipping Gmail account %s: %s", account.id, exc.message)
            return []


def merge_messages(groups: Iterable[list[MessageRecord]]) -> list[MessageRecord]:
    """Summary: De-duplicate by message id and rank by recency.

    Importance: A message visible from two shared mailboxes appears once, with the later timestamp.
    Alternatives: Keep the first copy seen.
    """

    merged: dict[str, MessageRecord] = {}
    for records in groups:
        for record in records:
            if not record.id:
                continue
            existing = merged.get(record.id)
            if existing is None or record.timestamp > existing.timestamp:
                merged[record.id] = record
    return sorted(merged.values(), key=lambda record: record.timestamp, reverse=True)


def uninstall(store: SqliteStore) -> None:
    """Summary: Remove every persisted key and cached entry.

    Importance: Also clears the legacy single-account keys left by older installs.
    Alternatives: Leave data behind for a possible reinstall.
    """

    for name in (OPTION_ACCOUNTS, OPTION_CACHE_DURATION, OPTION_EMAIL_LIMIT, *LEGACY_OPTIONS):
        store.delete_option(name)
    for prefix in TRANSIENT_PREFIXES:
        store.delete_transients_by_prefix(prefix)
    logger.info("Removed all CRM Gmail settings and cached data.")
