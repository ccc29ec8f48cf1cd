"""Summary: Application factory wiring core services.

Importance: Constructs every component once with explicit dependencies for the CLI and API.
Alternatives: Instantiate services manually in each entrypoint.
"""

from __future__ import annotations

from dataclasses import dataclass
import time
from typing import Callable

from crmgmail.cache import CorrespondenceCache
from crmgmail.config import AppConfig
from crmgmail.gmail import GmailClient
from crmgmail.profile import ProfileSection
from crmgmail.services import (
    AccountRegistry,
    CorrespondenceAggregator,
    OAuthFlowController,
    TokenManager,
)
from crmgmail.settings import Settings
from crmgmail.storage.sqlite_store import SqliteStore
from crmgmail.token_codec import TokenCodec


@dataclass(frozen=True)
class AppServices:
    """Summary: Bundle of core services.

    Importance: Simplifies passing dependencies to the API and CLI layers.
    Alternatives: Use a dependency injection container.
    """

    store: SqliteStore
    settings: Settings
    registry: AccountRegistry
    tokens: TokenManager
    oauth: OAuthFlowController
    aggregator: CorrespondenceAggregator
    profile: ProfileSection
    config: AppConfig


def build_services(
    config: AppConfig,
    client: GmailClient | None = None,
    clock: Callable[[], float] = time.time,
) -> AppServices:
    """Summary: Build core services from configuration.

    Importance: Provides a single construction path; tests swap the Gmail client and clock here.
    Alternatives: Instantiate services directly within each entrypoint.
    """

    store = SqliteStore(config.db_path, clock=clock)
    store.initialize()
    settings = Settings(store=store)
    cache = CorrespondenceCache(store=store)
    registry = AccountRegistry(settings=settings, codec=TokenCodec(config.token_secret), cache=cache)
    tokens = TokenManager(registry=registry, config=config, clock=clock)
    oauth = OAuthFlowController(
        registry=registry, tokens=tokens, store=store, config=config, clock=clock
    )
    gmail_client = client or GmailClient(
        config.gmail_api_base_url, config.gmail_web_url, timeout=config.http_timeout_seconds
    )
    aggregator = CorrespondenceAggregator(
        registry=registry,
        tokens=tokens,
        client=gmail_client,
        settings=settings,
        cache=cache,
        max_workers=config.max_workers,
    )
    profile = ProfileSection(
        aggregator=aggregator,
        registry=registry,
        settings=settings,
        settings_page_url=config.settings_page_url,
    )
    return AppServices(
        store=store,
        settings=settings,
        registry=registry,
        tokens=tokens,
        oauth=oauth,
        aggregator=aggregator,
        profile=profile,
        config=config,
    )
