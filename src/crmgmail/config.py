"""Summary: Application configuration for the CRM Gmail integration.

Importance: Centralizes environment, .env, and config defaults for consistent behavior.
Alternatives: Use a dedicated settings library like Pydantic Settings.
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from dataclasses import dataclass


@dataclass(frozen=True)
class AppConfig:
    """Summary: Holds configuration values for storage, OAuth, and the Gmail API.

    Importance: Ensures all services derive settings from a single source of truth.
    Alternatives: Store settings in a shared config file and parse at startup.
    """

    db_path: str
    token_secret: str
    oauth_redirect_uri: str
    settings_page_url: str
    google_auth_url: str
    google_token_url: str
    gmail_api_base_url: str
    gmail_web_url: str
    http_timeout_seconds: int
    oauth_state_ttl_minutes: int
    max_workers: int
    api_key: str

    @staticmethod
    def from_env() -> "AppConfig":
        """Summary: Build configuration from defaults, .env, and environment.

        Importance: Keeps all variables defined in config defaults while allowing overrides.
        Alternatives: Parse only environment variables without a defaults file.
        """

        defaults = load_defaults(Path("config") / "defaults.json")
        load_dotenv(Path(".env"))
        return AppConfig(
            db_path=os.getenv("CRMGMAIL_DB_PATH", defaults["db_path"]),
            token_secret=os.getenv("CRMGMAIL_TOKEN_SECRET", defaults["token_secret"]),
            oauth_redirect_uri=os.getenv(
                "CRMGMAIL_OAUTH_REDIRECT_URI", defaults["oauth_redirect_uri"]
            ),
            settings_page_url=os.getenv(
                "CRMGMAIL_SETTINGS_PAGE_URL", defaults["settings_page_url"]
            ),
            google_auth_url=os.getenv("GOOGLE_AUTH_URL", defaults["google_auth_url"]),
            google_token_url=os.getenv("GOOGLE_TOKEN_URL", defaults["google_token_url"]),
            gmail_api_base_url=os.getenv("GMAIL_API_BASE_URL", defaults["gmail_api_base_url"]),
            gmail_web_url=os.getenv("GMAIL_WEB_URL", defaults["gmail_web_url"]),
            http_timeout_seconds=int(
                os.getenv("CRMGMAIL_HTTP_TIMEOUT", defaults["http_timeout_seconds"])
            ),
            oauth_state_ttl_minutes=int(
                os.getenv("CRMGMAIL_OAUTH_STATE_TTL", defaults["oauth_state_ttl_minutes"])
            ),
            max_workers=int(os.getenv("CRMGMAIL_MAX_WORKERS", defaults["max_workers"])),
            api_key=os.getenv("CRMGMAIL_API_KEY", defaults["api_key"]),
        )


def load_defaults(path: Path) -> dict[str, str]:
    """Summary: Load configuration defaults from JSON.

    Importance: Ensures all variables exist in a single config file.
    Alternatives: Inline defaults in the AppConfig initializer.
    """

    if not path.exists():
        raise FileNotFoundError(f"Defaults file not found: {path}")
    return json.loads(path.read_text(encoding="utf-8"))


def load_dotenv(path: Path) -> None:
    """Summary: Load key-value pairs from a .env file into the environment.

    Importance: Keeps the token secret and API key out of code.
    Alternatives: Use python-dotenv or OS-specific secret stores.
    """

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())
