"""Summary: Error taxonomy for the correspondence engine.

Importance: Lets callers distinguish per-account failures from hard lookup failures.
Alternatives: Raise ValueError/RuntimeError with message matching.
"""

from __future__ import annotations

from typing import Any


class CrmGmailError(Exception):
    """Summary: Base class for all integration errors.

    Importance: Gives the aggregator a single type to catch at the account boundary.
    Alternatives: Catch broad Exception and lose programming errors in the noise.
    """

    code = "crmgmail_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidEmail(CrmGmailError):
    code = "invalid_email"


class NotAuthorized(CrmGmailError):
    code = "not_authorized"


class AccountNotFound(CrmGmailError):
    code = "account_not_found"


class TokenExchangeFailed(CrmGmailError):
    code = "token_exchange_failed"


class MissingRefreshToken(CrmGmailError):
    code = "missing_refresh_token"


class RefreshFailed(CrmGmailError):
    code = "refresh_failed"


class CryptoError(CrmGmailError):
    code = "crypto_error"


class InvalidState(CrmGmailError):
    code = "invalid_state"


class ProviderApiError(CrmGmailError):
    """Summary: Gmail API request failure.

    Importance: Carries the upstream status and body for logging without leaking them to the UI.
    Alternatives: Re-raise urllib errors directly.
    """

    code = "api_error"

    def __init__(
        self, message: str, status_code: int | None = None, body: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body or {}
