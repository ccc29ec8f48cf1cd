"""Summary: OAuth helper utilities for Google mailbox accounts.

Importance: Builds authorization URLs and performs token exchanges without extra dependencies.
Alternatives: Use google-auth-oauthlib flows.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from dataclasses import dataclass
from typing import Any
import urllib.error
import urllib.parse
import urllib.request

from crmgmail.config import AppConfig
from crmgmail.errors import CrmGmailError, RefreshFailed, TokenExchangeFailed
from crmgmail.http_json import load_json, parse_json_body
from crmgmail.models import Account


GMAIL_SCOPE = "https://www.googleapis.com/auth/gmail.readonly"

STATUS_CONNECTED = "connected"
STATUS_DISCONNECTED = "disconnected"
STATUS_DISCONNECT_FAILED = "disconnect_failed"
STATUS_OAUTH_ERROR = "oauth_error"
STATUS_INVALID_STATE = "invalid_state"
STATUS_MISSING_CODE = "missing_code"
STATUS_TOKEN_FAILED = "token_failed"

STATUS_MESSAGES = {
    STATUS_CONNECTED: ("success", "Google account connected successfully."),
    STATUS_DISCONNECTED: ("success", "Google account disconnected."),
    STATUS_DISCONNECT_FAILED: ("error", "Unable to disconnect the selected account."),
    STATUS_OAUTH_ERROR: ("error", "Google authorization was cancelled or failed."),
    STATUS_INVALID_STATE: ("error", "Invalid OAuth state. Please try again."),
    STATUS_MISSING_CODE: ("error", "Authorization code not found in callback."),
    STATUS_TOKEN_FAILED: ("error", "Failed to save OAuth tokens. Please reconnect."),
}


@dataclass(frozen=True)
class OAuthTokenResult:
    """Summary: Normalized OAuth token response data.

    Importance: Keeps expires_in relative so the caller computes expiry with its own clock.
    Alternatives: Store the raw provider response without normalization.
    """

    access_token: str
    refresh_token: str | None
    expires_in: Any
    scope: str
    token_type: str
    raw: dict[str, Any]

    @staticmethod
    def from_response(payload: dict[str, Any]) -> "OAuthTokenResult":
        return OAuthTokenResult(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload["refresh_token"]) if payload.get("refresh_token") else None,
            expires_in=payload.get("expires_in", 3600),
            scope=str(payload.get("scope") or ""),
            token_type=str(payload.get("token_type") or "Bearer"),
            raw=payload,
        )


def create_state_token() -> str:
    """Summary: Generate a CSRF state token.

    Importance: Protects OAuth flows from CSRF attacks.
    Alternatives: Use signed cookies carrying the state.
    """

    return secrets.token_urlsafe(24)


def build_google_auth_url(config: AppConfig, account: Account, state: str) -> str:
    """Summary: Build a Google OAuth authorization URL for one account.

    Importance: prompt=consent forces Google to issue a refresh token on every reconnect.
    Alternatives: Use incremental auth without forcing consent.
    """

    params = {
        "client_id": account.client_id,
        "redirect_uri": config.oauth_redirect_uri,
        "response_type": "code",
        "scope": GMAIL_SCOPE,
        "access_type": "offline",
        "prompt": "consent",
        "include_granted_scopes": "true",
        "state": state,
    }
    return config.google_auth_url + "?" + urllib.parse.urlencode(params)


def exchange_oauth_code(config: AppConfig, account: Account, code: str) -> OAuthTokenResult:
    """Summary: Exchange an OAuth authorization code for tokens.

    Importance: Completes the consent flow by retrieving access and refresh tokens.
    Alternatives: Use provider SDKs or external auth services.
    """

    return _request_token(
        config,
        _token_payload(config, account, code),
        TokenExchangeFailed,
        "Token exchange failed.",
    )


def refresh_oauth_token(config: AppConfig, account: Account, refresh_token: str) -> OAuthTokenResult:
    """Summary: Refresh an access token using a stored refresh token.

    Importance: Keeps lookups working without re-running consent.
    Alternatives: Require reauthorization whenever the access token expires.
    """

    return _request_token(
        config,
        _refresh_payload(account, refresh_token),
        RefreshFailed,
        "Unable to refresh access token.",
    )


def _token_payload(config: AppConfig, account: Account, code: str) -> dict[str, str]:
    return {
        "code": code,
        "client_id": account.client_id,
        "client_secret": account.client_secret,
        "redirect_uri": config.oauth_redirect_uri,
        "grant_type": "authorization_code",
    }


def _refresh_payload(account: Account, refresh_token: str) -> dict[str, str]:
    return {
        "client_id": account.client_id,
        "client_secret": account.client_secret,
        "refresh_token": refresh_token,
        "grant_type": "refresh_token",
    }


def _request_token(
    config: AppConfig,
    payload: dict[str, str],
    error_cls: type[CrmGmailError],
    default_message: str,
) -> OAuthTokenResult:
    """Summary: POST to the token endpoint and normalize the response.

    Importance: Surfaces the provider's error_description when one is returned.
    Alternatives: Raise the raw HTTP error to the caller.
    """

    try:
        status, body = _post_form(config.google_token_url, payload, config.http_timeout_seconds)
    except OSError as exc:
        raise error_cls(f"{default_message} {exc}".strip()) from exc
    except ValueError as exc:
        raise error_cls(f"{default_message} Unreadable token response.") from exc
    if status >= 400 or not body.get("access_token"):
        raise error_cls(str(body.get("error_description") or default_message))
    return OAuthTokenResult.from_response(body)


def _post_form(url: str, payload: dict[str, str], timeout: int) -> tuple[int, dict[str, Any]]:
    """Summary: Send a form-encoded POST request and parse JSON.

    Importance: Returns error bodies too, since Google explains failures in JSON.
    Alternatives: Use requests or a provider SDK.

    An unreadable success body raises ValueError.
    """

    data = urllib.parse.urlencode(payload).encode("utf-8")
    request = urllib.request.Request(
        url,
        data=data,
        headers={
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "application/json",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read()
            status = response.status
    except urllib.error.HTTPError as exc:
        return exc.code, load_json(exc.read().decode("utf-8", errors="ignore"))
    return status, parse_json_body(raw)


def sign_action(secret: str, action: str, subject: str) -> str:
    """Summary: Sign an action for a subject with the process secret.

    Importance: Backs CSRF tokens for state-changing links such as disconnect.
    Alternatives: Store one-time tokens server side.
    """

    message = f"{action}:{subject}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_action(secret: str, action: str, subject: str, token: str) -> bool:
    if not secret or not token:
        return False
    return hmac.compare_digest(sign_action(secret, action, subject), token)
