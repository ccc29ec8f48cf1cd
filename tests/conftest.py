"""Summary: Shared pytest fixtures for the CRM Gmail tests.

Importance: Gives every test isolated storage, a controllable clock, and a fake Gmail client.
Alternatives: Hit the live Gmail API from tests.
"""

from __future__ import annotations

import io
from pathlib import Path
from typing import Callable
import urllib.request

import pytest

from crmgmail.app import AppServices, build_services
from crmgmail.config import AppConfig
from crmgmail.errors import CrmGmailError
from crmgmail.models import MessageRecord, TokenSet


class FakeClock:
    def __init__(self, now: float = 1_700_000_000) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGmailClient:
    """Summary: In-memory stand-in for GmailClient keyed by access token.

    Importance: Records every call so tests can assert on outbound traffic.
    Alternatives: Monkeypatch urllib for each test.
    """

    def __init__(self) -> None:
        self.responses: dict[str, list[MessageRecord] | CrmGmailError] = {}
        self.calls: list[tuple[str, str, int]] = []

    def fetch_contact_messages(
        self, access_token: str, email: str, limit: int, account_label: str
    ) -> list[MessageRecord]:
        self.calls.append((access_token, email, limit))
        response = self.responses.get(access_token, [])
        if isinstance(response, CrmGmailError):
            raise response
        return list(response)[:limit]


class FakeHttpResponse(io.BytesIO):
    def __init__(self, body: bytes, status: int = 200) -> None:
        super().__init__(body)
        self.status = status

    def __enter__(self) -> "FakeHttpResponse":
        return self

    def __exit__(self, *_args: object) -> None:
        self.close()


def make_config(db_path: str, **overrides: object) -> AppConfig:
    values: dict[str, object] = {
        "db_path": db_path,
        "token_secret": "test-secret",
        "oauth_redirect_uri": "http://localhost:8000/oauth/callback",
        "settings_page_url": "http://localhost:8000/settings",
        "google_auth_url": "https://accounts.google.com/o/oauth2/v2/auth",
        "google_token_url": "https://oauth2.googleapis.com/token",
        "gmail_api_base_url": "https://gmail.googleapis.com/gmail/v1/users/me",
        "gmail_web_url": "https://mail.google.com/mail/#all/",
        "http_timeout_seconds": 20,
        "oauth_state_ttl_minutes": 10,
        "max_workers": 1,
        "api_key": "",
    }
    values.update(overrides)
    return AppConfig(**values)  # type: ignore[arg-type]


@pytest.fixture()
def config(tmp_path: Path) -> AppConfig:
    return make_config(str(tmp_path / "test.db"))


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def gmail() -> FakeGmailClient:
    return FakeGmailClient()


@pytest.fixture()
def services(config: AppConfig, clock: FakeClock, gmail: FakeGmailClient) -> AppServices:
    return build_services(config, client=gmail, clock=clock)  # type: ignore[arg-type]


@pytest.fixture()
def connect_account(services: AppServices, clock: FakeClock) -> Callable[..., None]:
    """Summary: Create an account and store tokens for it.

    Importance: Skips the OAuth round trip in tests that only need an authorized mailbox.
    Alternatives: Drive the full callback flow in every test.
    """

    def _connect(
        account_id: str,
        access_token: str,
        label: str | None = None,
        refresh_token: str = "refresh",
        expires_in: int = 3600,
    ) -> None:
        raw = {
            existing_id: account.to_dict()
            for existing_id, account in services.registry.list_accounts().items()
        }
        raw[account_id] = {
            "label": label or account_id,
            "client_id": f"{account_id}-client",
            "client_secret": f"{account_id}-secret",
        }
        services.registry.upsert_accounts(raw)
        services.registry.save_tokens(
            account_id,
            TokenSet(
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=int(clock()) + expires_in,
            ),
        )

    return _connect


@pytest.fixture()
def record() -> Callable[..., MessageRecord]:
    def _record(message_id: str, timestamp: int, label: str = "Sales") -> MessageRecord:
        return MessageRecord(
            id=message_id,
            thread_id=f"thread-{message_id}",
            subject=f"Subject {message_id}",
            sender="alice@x.com",
            recipients="sales@company.com",
            timestamp=timestamp,
            date_raw="",
            snippet="Hello",
            direction="incoming",
            source_url=f"https://mail.google.com/mail/#all/thread-{message_id}",
            account_label=label,
        )

    return _record


@pytest.fixture()
def fake_urlopen(monkeypatch: pytest.MonkeyPatch) -> Callable[..., list[urllib.request.Request]]:
    """Summary: Route urllib requests to a handler returning raw body bytes.

    Importance: Exercises the real HTTP helpers, including body decoding, offline.
    Alternatives: Run a local HTTP server in a thread.
    """

    seen: list[urllib.request.Request] = []

    def _install(handler: Callable[[urllib.request.Request], bytes]) -> list[urllib.request.Request]:
        def _urlopen(request: urllib.request.Request, timeout: float) -> FakeHttpResponse:
            seen.append(request)
            return FakeHttpResponse(handler(request))

        monkeypatch.setattr("urllib.request.urlopen", _urlopen)
        return seen

    return _install
