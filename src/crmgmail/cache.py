"""Summary: Cache layer for merged contact correspondence.

Importance: Keeps repeated profile views from hitting the Gmail API.
Alternatives: Cache per account and merge on every read.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable

from crmgmail.models import MessageRecord
from crmgmail.storage.sqlite_store import SqliteStore


logger = logging.getLogger(__name__)

CACHE_PREFIX = "crmgmail_mail_"


def contact_cache_key(email: str, limit: int, account_ids: Iterable[str]) -> str:
    """Summary: Derive the cache key for a contact lookup.

    Importance: Stable under account ordering and email case so equivalent lookups share an entry.
    Alternatives: Key on the raw email and let the account set leak stale entries.
    """

    key_source = f"{email.lower()}|{abs(int(limit))}|{','.join(sorted(account_ids))}"
    return CACHE_PREFIX + hashlib.sha256(key_source.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class CorrespondenceCache:
    """Summary: Stores merged MessageRecord lists as transients.

    Importance: All cached correspondence shares one prefix so invalidation is a single delete.
    Alternatives: Keep an index of live keys per account.
    """

    store: SqliteStore

    def get(self, key: str) -> list[MessageRecord] | None:
        cached = self.store.get_transient(key)
        if not isinstance(cached, list):
            return None
        return [MessageRecord.from_dict(item) for item in cached if isinstance(item, dict)]

    def put(self, key: str, records: list[MessageRecord], ttl_seconds: int) -> None:
        self.store.set_transient(key, [record.to_dict() for record in records], ttl_seconds)

    def invalidate(self) -> None:
        removed = self.store.delete_transients_by_prefix(CACHE_PREFIX)
        logger.info("Cleared %s cached correspondence entries.", removed)
