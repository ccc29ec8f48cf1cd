"""Summary: API integration tests.

Importance: Validates FastAPI endpoints against the account, OAuth, and lookup workflows.
Alternatives: Use manual curl testing only.
"""

from __future__ import annotations

from dataclasses import replace
import urllib.parse

import pytest
from fastapi.testclient import TestClient

from crmgmail.api import create_app
from crmgmail.app import build_services
from crmgmail.oauth import OAuthTokenResult


@pytest.fixture()
def client(config, services) -> TestClient:
    return TestClient(create_app(config, services))


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_save_and_list_accounts(client: TestClient) -> None:
    """Summary: Verify accounts can be saved and listed without secrets.

    Importance: Confirms the HTTP layer wires into the registry.
    Alternatives: Validate only the CLI workflow.
    """

    response = client.put(
        "/accounts",
        json={
            "accounts": {
                "sales": {"label": "Sales", "client_id": "cid", "client_secret": "csecret"},
                "": {"label": "", "client_id": "", "client_secret": ""},
            }
        },
    )
    assert response.status_code == 200
    assert response.json() == {"accounts": ["sales"]}
    listed = client.get("/accounts").json()
    assert listed[0]["id"] == "sales"
    assert listed[0]["has_credentials"] is True
    assert listed[0]["authorized"] is False
    assert "client_secret" not in listed[0]


def test_settings_are_sanitized(client: TestClient) -> None:
    response = client.put("/settings", json={"cache_duration": "7", "email_limit": 20})
    assert response.json() == {"cache_duration": 15, "email_limit": 20}
    assert client.get("/settings").json() == {"cache_duration": 15, "email_limit": 20}


def test_authorize_requires_credentials(client: TestClient) -> None:
    response = client.get("/oauth/authorize/ghost")
    assert response.status_code == 400


def test_oauth_round_trip(client: TestClient, monkeypatch: pytest.MonkeyPatch) -> None:
    """Summary: Authorize, then complete the callback for the same user.

    Importance: The redirect must carry only the status code.
    Alternatives: Return JSON from the callback.
    """

    monkeypatch.setattr(
        "crmgmail.services.exchange_oauth_code",
        lambda *_args: OAuthTokenResult("access", "refresh", 3600, "", "Bearer", {}),
    )
    client.put(
        "/accounts",
        json={"accounts": {"sales": {"label": "Sales", "client_id": "cid", "client_secret": "cs"}}},
    )
    url = client.get("/oauth/authorize/sales", headers={"X-User-Id": "7"}).json()["url"]
    state = dict(urllib.parse.parse_qsl(urllib.parse.urlparse(url).query))["state"]
    response = client.get(
        "/oauth/callback",
        params={"state": state, "code": "abc"},
        headers={"X-User-Id": "7"},
        follow_redirects=False,
    )
    assert response.status_code == 303
    assert response.headers["location"].endswith("crmgmail_status=connected")
    assert client.get("/accounts").json()[0]["authorized"] is True


def test_disconnect_link(client: TestClient, connect_account) -> None:
    connect_account("sales", "access")
    token = client.get("/accounts").json()[0]["disconnect_token"]
    forged = client.get("/accounts/sales/disconnect", params={"token": "x"}, follow_redirects=False)
    assert forged.headers["location"].endswith("crmgmail_status=disconnect_failed")
    response = client.get("/accounts/sales/disconnect", params={"token": token}, follow_redirects=False)
    assert response.headers["location"].endswith("crmgmail_status=disconnected")


def test_status_messages(client: TestClient) -> None:
    assert client.get("/status/connected").json()["type"] == "success"
    assert client.get("/status/bogus").status_code == 404


def test_correspondence_endpoint(client: TestClient, connect_account, gmail, record) -> None:
    assert client.get("/contacts/bad-email/correspondence").status_code == 400
    assert client.get("/contacts/alice@x.com/correspondence").status_code == 409
    connect_account("sales", "token-a")
    gmail.responses["token-a"] = [record("m1", 300), record("m2", 100)]
    response = client.get("/contacts/alice@x.com/correspondence", params={"limit": 1})
    assert [item["id"] for item in response.json()] == ["m1"]
    section = client.get("/contacts/alice@x.com/profile-section").json()
    assert [item["id"] for item in section["messages"]] == ["m1", "m2"]
    assert client.delete("/cache").json() == {"status": "cleared"}


def test_api_key_enforced(config, clock, gmail) -> None:
    secured = replace(config, api_key="k")
    client = TestClient(create_app(secured, build_services(secured, client=gmail, clock=clock)))
    assert client.get("/accounts").status_code == 401
    assert client.get("/accounts", headers={"X-API-Key": "k"}).status_code == 200
    assert client.get("/health").status_code == 200
