"""Summary: FastAPI application standing in for the CRM host integration points.

Importance: Exposes settings, OAuth callback, disconnect, and lookup endpoints over HTTP.
Alternatives: Embed the services directly in the host process without HTTP.
"""

from __future__ import annotations

import logging
from typing import Any
import urllib.parse

from fastapi import Depends, FastAPI, Header, HTTPException
from fastapi.responses import RedirectResponse
from pydantic import BaseModel, Field

from crmgmail.app import AppServices, build_services
from crmgmail.config import AppConfig
from crmgmail.errors import InvalidEmail, NotAuthorized
from crmgmail.oauth import STATUS_MESSAGES


class AccountInput(BaseModel):
    """Summary: One account row as submitted by the settings form.

    Importance: Mirrors the form fields; tokens are deliberately absent.
    Alternatives: Accept arbitrary dictionaries.
    """

    label: str = ""
    client_id: str = ""
    client_secret: str = ""
    remove: bool = False


class AccountsUpdateRequest(BaseModel):
    accounts: dict[str, AccountInput] = Field(default_factory=dict)


class SettingsUpdateRequest(BaseModel):
    """Summary: Request payload for display and cache settings.

    Importance: Values are passed to the sanitizers, which clamp anything outside the allowed sets.
    Alternatives: Validate with Literal types and return 422 on bad input.
    """

    cache_duration: int | str | None = None
    email_limit: int | str | None = None


def create_app(config: AppConfig, services: AppServices | None = None) -> FastAPI:
    """Summary: Create a FastAPI app wired to the correspondence services.

    Importance: Ensures the API layer shares the same configuration and storage.
    Alternatives: Instantiate services globally outside the factory.
    """

    if not logging.getLogger().handlers:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    app = FastAPI(title="CRM Gmail API", version="0.1.0")
    services = services or build_services(config)

    def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
        """Summary: Enforce API key authentication when configured.

        Importance: Adds a minimal security layer for private deployments.
        Alternatives: Delegate authentication to the host session.
        """

        if not config.api_key:
            return
        if x_api_key != config.api_key:
            raise HTTPException(status_code=401, detail="Invalid API key")

    def current_user(x_user_id: str | None = Header(default=None)) -> str:
        return x_user_id or "0"

    def redirect_with_status(status: str) -> RedirectResponse:
        separator = "&" if "?" in config.settings_page_url else "?"
        url = config.settings_page_url + separator + urllib.parse.urlencode({"crmgmail_status": status})
        return RedirectResponse(url, status_code=303)

    @app.get("/health")
    def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/accounts", dependencies=[Depends(require_api_key)])
    def list_accounts() -> list[dict[str, Any]]:
        """Summary: List configured accounts and their connection state.

        Importance: Feeds the settings page without exposing secrets or token blobs.
        Alternatives: Return the raw accounts option.
        """

        return [
            {
                "id": account.id,
                "label": account.label,
                "client_id": account.client_id,
                "has_credentials": account.has_credentials,
                "authorized": services.registry.is_account_authorized(account.id),
                "disconnect_token": services.oauth.disconnect_token(account.id),
            }
            for account in services.registry.list_accounts().values()
        ]

    @app.put("/accounts", dependencies=[Depends(require_api_key)])
    def save_accounts(payload: AccountsUpdateRequest) -> dict[str, Any]:
        raw = {account_id: row.model_dump() for account_id, row in payload.accounts.items()}
        accounts = services.registry.upsert_accounts(raw)
        return {"accounts": sorted(accounts)}

    @app.get("/settings", dependencies=[Depends(require_api_key)])
    def get_settings() -> dict[str, int]:
        return {
            "cache_duration": services.settings.get_cache_duration_minutes(),
            "email_limit": services.settings.get_email_limit(),
        }

    @app.put("/settings", dependencies=[Depends(require_api_key)])
    def update_settings(payload: SettingsUpdateRequest) -> dict[str, int]:
        if payload.cache_duration is not None:
            services.settings.set_cache_duration(payload.cache_duration)
        if payload.email_limit is not None:
            services.settings.set_email_limit(payload.email_limit)
        return get_settings()

    @app.get("/oauth/authorize/{account_id}", dependencies=[Depends(require_api_key)])
    def oauth_authorize(account_id: str, user_id: str = Depends(current_user)) -> dict[str, str]:
        """Summary: Start the consent flow for an account.

        Importance: Registers a one-shot state scoped to the current user.
        Alternatives: Redirect the browser straight to Google.
        """

        url = services.oauth.start_authorization(user_id, account_id)
        if not url:
            raise HTTPException(status_code=400, detail="Save client credentials first")
        return {"url": url}

    @app.get("/oauth/callback")
    def oauth_callback(
        state: str | None = None,
        code: str | None = None,
        error: str | None = None,
        user_id: str = Depends(current_user),
    ) -> RedirectResponse:
        status = services.oauth.handle_callback(user_id, state, code, error)
        return redirect_with_status(status)

    @app.get("/accounts/{account_id}/disconnect", dependencies=[Depends(require_api_key)])
    def disconnect(account_id: str, token: str | None = None) -> RedirectResponse:
        return redirect_with_status(services.oauth.handle_disconnect(account_id, token))

    @app.get("/status/{status}")
    def status_message(status: str) -> dict[str, str]:
        if status not in STATUS_MESSAGES:
            raise HTTPException(status_code=404, detail="Unknown status")
        kind, message = STATUS_MESSAGES[status]
        return {"status": status, "type": kind, "message": message}

    @app.get("/contacts/{email}/correspondence", dependencies=[Depends(require_api_key)])
    def correspondence(email: str, limit: int | None = None) -> list[dict[str, Any]]:
        """Summary: Return recent correspondence with a contact.

        Importance: The narrow lookup interface the host profile view calls.
        Alternatives: Only expose the rendered profile section.
        """

        try:
            records = services.aggregator.get_recent_correspondence(email, limit)
        except InvalidEmail as exc:
            raise HTTPException(status_code=400, detail=exc.message) from exc
        except NotAuthorized as exc:
            raise HTTPException(status_code=409, detail=exc.message) from exc
        return [record.to_dict() for record in records]

    @app.get("/contacts/{email}/profile-section", dependencies=[Depends(require_api_key)])
    def profile_section(email: str) -> dict[str, Any]:
        return services.profile.render(email)

    @app.delete("/cache", dependencies=[Depends(require_api_key)])
    def clear_cache() -> dict[str, str]:
        services.aggregator.clear_cache()
        return {"status": "cleared"}

    return app
