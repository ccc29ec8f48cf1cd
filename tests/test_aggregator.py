"""Summary: Tests for cross-account correspondence aggregation.

Importance: Covers merge order, caching, and partial failure across mailboxes.
Alternatives: Test against live Gmail accounts.
"""

from __future__ import annotations

from dataclasses import replace
import json

import pytest

from crmgmail.app import build_services
from crmgmail.cache import contact_cache_key
from crmgmail.errors import InvalidEmail, NotAuthorized, ProviderApiError, RefreshFailed
from crmgmail.models import TokenSet
from crmgmail.services import merge_messages


def test_results_are_merged_sorted_and_truncated(services, connect_account, gmail, record) -> None:
    """Summary: Merge two mailboxes newest first and cut to the limit.

    Importance: The profile view shows one list regardless of account count.
    Alternatives: Show one list per account.
    """

    connect_account("sales", "token-a", label="Sales")
    connect_account("support", "token-b", label="Support")
    gmail.responses["token-a"] = [record("a1", 300), record("a2", 100)]
    gmail.responses["token-b"] = [record("b1", 400, "Support"), record("b2", 200, "Support")]
    results = services.aggregator.get_recent_correspondence("alice@x.com", 3)
    assert [item.id for item in results] == ["b1", "a1", "b2"]
    assert {call[2] for call in gmail.calls} == {3}


def test_duplicate_ids_keep_latest_timestamp(record) -> None:
    merged = merge_messages(
        [[record("m1", 100, "Sales")], [record("m1", 150, "Support"), record("m2", 120)]]
    )
    assert [(item.id, item.timestamp, item.account_label) for item in merged] == [
        ("m1", 150, "Support"),
        ("m2", 120, "Sales"),
    ]


def test_equal_timestamps_keep_first_seen(record) -> None:
    merged = merge_messages([[record("m1", 100, "Sales")], [record("m1", 100, "Support")]])
    assert merged[0].account_label == "Sales"


def test_cache_hit_makes_no_gmail_calls(services, connect_account, gmail, record) -> None:
    """Summary: A second lookup within the TTL is served from cache.

    Importance: Profile pages are viewed far more often than mail arrives.
    Alternatives: Query Gmail on every view.
    """

    connect_account("sales", "token-a")
    gmail.responses["token-a"] = [record("a1", 300)]
    first = services.aggregator.get_recent_correspondence("alice@x.com", 10)
    calls = len(gmail.calls)
    second = services.aggregator.get_recent_correspondence("ALICE@x.com", 10)
    assert second == first
    assert len(gmail.calls) == calls


def test_cache_expires_with_configured_duration(services, connect_account, gmail, clock, record) -> None:
    connect_account("sales", "token-a", expires_in=10_000)
    gmail.responses["token-a"] = [record("a1", 300)]
    services.settings.set_cache_duration(5)
    services.aggregator.get_recent_correspondence("alice@x.com", 10)
    clock.advance(5 * 60)
    services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert len(gmail.calls) == 2


def test_cache_key_ignores_account_order_and_email_case() -> None:
    assert contact_cache_key("Alice@X.com", 10, ["b", "a"]) == contact_cache_key("alice@x.com", 10, ["a", "b"])
    assert contact_cache_key("alice@x.com", 10, ["a"]) != contact_cache_key("alice@x.com", 20, ["a"])
    assert contact_cache_key("alice@x.com", 10, ["a"]).startswith("crmgmail_mail_")


def test_token_change_invalidates_cache(services, connect_account, gmail, record) -> None:
    connect_account("sales", "token-a")
    gmail.responses["token-a"] = [record("a1", 300)]
    services.aggregator.get_recent_correspondence("alice@x.com", 10)
    connect_account("sales", "token-a")
    services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert len(gmail.calls) == 2


def test_failing_account_is_skipped(services, connect_account, gmail, record) -> None:
    """Summary: One broken mailbox does not fail the lookup.

    Importance: A revoked account should not hide mail from healthy ones.
    Alternatives: Fail the whole lookup on the first error.
    """

    connect_account("sales", "token-a")
    connect_account("support", "token-b")
    gmail.responses["token-a"] = ProviderApiError("Invalid Credentials", status_code=401)
    gmail.responses["token-b"] = [record("b1", 400)]
    results = services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert [item.id for item in results] == ["b1"]


def test_default_limit_comes_from_settings(services, connect_account, gmail, record) -> None:
    connect_account("sales", "token-a")
    gmail.responses["token-a"] = [record(f"m{index}", index) for index in range(30)]
    services.settings.set_email_limit(5)
    results = services.aggregator.get_recent_correspondence("alice@x.com")
    assert len(results) == 5
    assert gmail.calls[-1][2] == 5


def test_invalid_email_is_rejected_before_any_call(services, connect_account, gmail) -> None:
    connect_account("sales", "token-a")
    with pytest.raises(InvalidEmail):
        services.aggregator.get_recent_correspondence("not-an-email")
    assert gmail.calls == []


def test_no_authorized_accounts(services) -> None:
    services.registry.upsert_accounts({"sales": {"label": "Sales", "client_id": "c", "client_secret": "s"}})
    with pytest.raises(NotAuthorized):
        services.aggregator.get_recent_correspondence("alice@x.com")


def test_threaded_lookup_matches_sequential_order(config, clock, gmail, record) -> None:
    """Summary: Concurrent account queries merge into the same order.

    Importance: Worker completion order must not change the result.
    Alternatives: Always query accounts sequentially.
    """

    services = build_services(replace(config, max_workers=4), client=gmail, clock=clock)
    for account_id, token in (("sales", "token-a"), ("support", "token-b"), ("billing", "token-c")):
        services.registry.upsert_accounts(
            {
                **{existing: account.to_dict() for existing, account in services.registry.list_accounts().items()},
                account_id: {"label": account_id, "client_id": "c", "client_secret": "s"},
            }
        )
        services.registry.save_tokens(account_id, TokenSet(token, "refresh", int(clock()) + 3600))
    gmail.responses["token-a"] = [record("a1", 300), record("shared", 500, "sales")]
    gmail.responses["token-b"] = [record("b1", 400), record("shared", 500, "support")]
    gmail.responses["token-c"] = [record("c1", 100)]
    results = services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert [item.id for item in results] == ["shared", "b1", "a1", "c1"]
    assert len(gmail.calls) == 3


def test_account_failing_refresh_is_skipped(services, connect_account, gmail, clock, record, monkeypatch) -> None:
    """Summary: An account whose refresh fails contributes nothing; the others still load.

    Importance: Revoked consent on one mailbox must not break the profile view.
    Alternatives: Surface the refresh error to the caller.
    """

    def _fake_refresh(*_args: object) -> None:
        raise RefreshFailed("Token has been expired or revoked.")

    monkeypatch.setattr("crmgmail.services.refresh_oauth_token", _fake_refresh)
    connect_account("sales", "token-a", expires_in=10)
    connect_account("support", "token-b", expires_in=10_000)
    clock.advance(60)
    gmail.responses["token-b"] = [record("b1", 400), record("b2", 200)]
    results = services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert [item.id for item in results] == ["b1", "b2"]
    assert [call[0] for call in gmail.calls] == ["token-b"]


def test_undecodable_mailbox_response_is_skipped(config, clock, fake_urlopen) -> None:
    """Summary: A mailbox returning a non-UTF-8 body is skipped by the real Gmail client.

    Importance: Decode failures must surface as provider errors, not crash the lookup.
    Alternatives: Only test the aggregator against a fake client.
    """

    services = build_services(config, clock=clock)
    for account_id in ("sales", "support"):
        services.registry.upsert_accounts(
            {
                **{existing: account.to_dict() for existing, account in services.registry.list_accounts().items()},
                account_id: {"label": account_id, "client_id": "c", "client_secret": "s"},
            }
        )
    services.registry.save_tokens("sales", TokenSet("token-a", "refresh", int(clock()) + 3600))
    services.registry.save_tokens("support", TokenSet("token-b", "refresh", int(clock()) + 3600))
    dates = {"b1": "Tue, 14 Nov 2023 22:13:20 +0000", "b2": "Mon, 13 Nov 2023 22:13:20 +0000"}

    def _handler(request) -> bytes:
        if request.get_header("Authorization") == "Bearer token-a":
            return b"\xff\xfe"
        path = request.full_url.split("/users/me", 1)[1]
        if path.startswith("/messages?"):
            return json.dumps({"messages": [{"id": "b2"}, {"id": "b1"}]}).encode("utf-8")
        message_id = path.split("/messages/")[1].split("?")[0]
        detail = {
            "id": message_id,
            "threadId": message_id,
            "payload": {"headers": [{"name": "From", "value": "alice@x.com"}, {"name": "Date", "value": dates[message_id]}]},
        }
        return json.dumps(detail).encode("utf-8")

    fake_urlopen(_handler)
    results = services.aggregator.get_recent_correspondence("alice@x.com", 10)
    assert [item.id for item in results] == ["b1", "b2"]
    assert results[0].account_label == "support"
