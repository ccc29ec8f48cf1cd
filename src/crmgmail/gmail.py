"""Summary: Gmail API client for contact correspondence lookups.

Importance: Encapsulates read-only metadata queries against the Gmail REST API.
Alternatives: Use google-api-python-client with discovery documents.
"""

from __future__ import annotations

import logging
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Any, Iterable
import urllib.error
import urllib.parse
import urllib.request

from crmgmail.errors import ProviderApiError
from crmgmail.http_json import load_json, parse_json_body
from crmgmail.models import MessageRecord
from crmgmail.settings import strip_tags


logger = logging.getLogger(__name__)

DEFAULT_METADATA_HEADERS = ("From", "To", "Subject", "Date")
NO_SUBJECT = "(No Subject)"


def contact_query(email: str) -> str:
    return f"from:{email} OR to:{email}"


class GmailClient:
    """Summary: Reads message metadata via the Gmail API using OAuth tokens.

    Importance: Never requests message bodies, keeping payloads small and scope minimal.
    Alternatives: Use IMAP with XOAUTH2.
    """

    def __init__(self, base_url: str, web_url: str, timeout: int = 20) -> None:
        """Summary: Initialize the Gmail client.

        Importance: Stores the API base, web deep-link base, and per-call timeout.
        Alternatives: Hardcode Google endpoints.
        """

        self._base_url = base_url.rstrip("/")
        self._web_url = web_url
        self._timeout = timeout

    def list_message_ids(self, access_token: str, query: str, max_results: int) -> list[str]:
        """Summary: List ids of messages matching a Gmail search query.

        Importance: First half of the list-then-detail lookup.
        Alternatives: Use threads.list and expand threads.
        """

        url = build_gmail_url(
            self._base_url, "/messages", {"q": query, "maxResults": max(1, int(max_results))}
        )
        payload = _gmail_api_get(url, access_token, self._timeout)
        messages = payload.get("messages")
        if not isinstance(messages, list):
            return []
        return [
            str(item["id"]) for item in messages if isinstance(item, dict) and item.get("id")
        ]

    def get_message_metadata(
        self,
        access_token: str,
        message_id: str,
        headers: Iterable[str] = DEFAULT_METADATA_HEADERS,
    ) -> dict[str, Any]:
        """Summary: Fetch header metadata and snippet for one message.

        Importance: format=metadata keeps full bodies off the wire.
        Alternatives: format=full and discard the body locally.
        """

        path = "/messages/" + urllib.parse.quote(message_id, safe="")
        url = build_gmail_url(
            self._base_url, path, {"format": "metadata", "metadataHeaders": list(headers)}
        )
        return _gmail_api_get(url, access_token, self._timeout)

    def fetch_contact_messages(
        self, access_token: str, email: str, limit: int, account_label: str
    ) -> list[MessageRecord]:
        """Summary: Fetch recent correspondence with a contact from one mailbox.

        Importance: A failing detail fetch only drops that message, not the whole account.
        Alternatives: Batch detail requests through the Gmail batch endpoint.
        """

        message_ids = self.list_message_ids(access_token, contact_query(email), limit)
        records: list[MessageRecord] = []
        for message_id in message_ids:
            try:
                detail = self.get_message_metadata(access_token, message_id)
            except ProviderApiError as exc:
                logger.warning("Skipping Gmail message %s: %s", message_id, exc.message)
                continue
            records.append(parse_message_record(detail, email, account_label, self._web_url))
        return records


def build_gmail_url(base_url: str, path: str, query: dict[str, Any]) -> str:
    """Summary: Build a Gmail API URL with query parameters.

    Importance: List values become repeated keys, which metadataHeaders requires.
    Alternatives: Join header names with commas (Gmail ignores that form).
    """

    url = base_url.rstrip("/") + path
    if not query:
        return url
    return url + "?" + urllib.parse.urlencode(query, doseq=True, quote_via=urllib.parse.quote)


def _gmail_api_get(url: str, access_token: str, timeout: int) -> dict[str, Any]:
    """Summary: Fetch JSON data from the Gmail API.

    Importance: Maps every failure mode onto ProviderApiError with the upstream message.
    Alternatives: Use a third-party HTTP client or SDK.
    """

    request = urllib.request.Request(
        url,
        headers={"Authorization": f"Bearer {access_token}", "Accept": "application/json"},
        method="GET",
    )
    try:
        with urllib.request.urlopen(request, timeout=timeout) as response:
            raw = response.read()
    except urllib.error.HTTPError as exc:
        body = load_json(exc.read().decode("utf-8", errors="ignore"))
        error = body.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        raise ProviderApiError(
            message or "Gmail API request failed.", status_code=exc.code, body=body
        ) from exc
    except OSError as exc:
        raise ProviderApiError(f"Gmail API request failed: {exc}") from exc
    try:
        return parse_json_body(raw)
    except ValueError as exc:
        raise ProviderApiError("Gmail API returned an unreadable response.") from exc


def parse_message_record(
    detail: dict[str, Any], contact_email: str, account_label: str, web_url: str
) -> MessageRecord:
    """Summary: Parse a Gmail metadata payload into a MessageRecord.

    Importance: Missing headers degrade to placeholders instead of failing the lookup.
    Alternatives: Store raw Gmail payloads and parse at display time.
    """

    payload = detail.get("payload") or {}
    headers = _parse_gmail_headers(payload.get("headers") or [])
    from_header = headers.get("from", "")
    date_header = headers.get("date", "")
    message_id = str(detail.get("id") or "")
    thread_id = str(detail.get("threadId") or "")
    direction = "incoming" if contact_email.lower() in from_header.lower() else "outgoing"
    return MessageRecord(
        id=message_id,
        thread_id=thread_id,
        subject=strip_tags(headers.get("subject", NO_SUBJECT)),
        sender=strip_tags(from_header),
        recipients=strip_tags(headers.get("to", "")),
        timestamp=_parse_date(date_header),
        date_raw=strip_tags(date_header),
        snippet=strip_tags(detail.get("snippet", "")),
        direction=direction,
        source_url=web_url + urllib.parse.quote(thread_id or message_id, safe=""),
        account_label=strip_tags(account_label),
    )


def _parse_gmail_headers(headers: list[dict[str, Any]]) -> dict[str, str]:
    """Summary: Normalize Gmail header list into a lowercase-keyed dictionary.

    Importance: Header names are case-insensitive on the wire.
    Alternatives: Scan header lists inline for each field.
    """

    normalized: dict[str, str] = {}
    for header in headers:
        if not isinstance(header, dict):
            continue
        name = header.get("name")
        if not name:
            continue
        normalized[str(name).lower()] = str(header.get("value") or "")
    return normalized


def _parse_date(raw_date: str) -> int:
    """Epoch seconds for an RFC 2822 date header, 0 when it cannot be parsed."""

    if not raw_date:
        return 0
    try:
        parsed = parsedate_to_datetime(raw_date)
    except (TypeError, ValueError, IndexError):
        return 0
    if parsed is None:
        return 0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp())
