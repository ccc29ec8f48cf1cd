"""Summary: Contact profile section renderer offered to the CRM host.

Importance: Turns lookup outcomes into structured content the host can display.
Alternatives: Return raw records and let each host handle every failure mode.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from crmgmail.errors import CrmGmailError
from crmgmail.services import AccountRegistry, CorrespondenceAggregator
from crmgmail.settings import Settings, normalize_email


logger = logging.getLogger(__name__)

SECTION_ID = "crmgmail_gmail"
SECTION_TITLE = "Gmail Emails"
SECTION_HEADING = "Recent Gmail Correspondence"


@dataclass(frozen=True)
class ProfileSection:
    """Summary: Builds the Gmail section of a contact profile.

    Importance: Lookup errors become notices; nothing internal leaks to the page.
    Alternatives: Raise and let the host show a generic failure.
    """

    aggregator: CorrespondenceAggregator
    registry: AccountRegistry
    settings: Settings
    settings_page_url: str

    def render(self, email: str | None) -> dict[str, Any]:
        section: dict[str, Any] = {"id": SECTION_ID, "title": SECTION_TITLE, "heading": SECTION_HEADING}
        contact = normalize_email(email or "")
        if not contact:
            return self._notice(section, "warning", "No contact email is available for this profile.")
        if not self.registry.is_authorized():
            section["settings_url"] = self.settings_page_url
            return self._notice(
                section, "warning", "Google is not authorized. Connect your account to load emails."
            )
        try:
            records = self.aggregator.get_recent_correspondence(
                contact, self.settings.get_email_limit()
            )
        except CrmGmailError as exc:
            logger.warning("Profile section lookup failed: %s", exc.message)
            return self._notice(
                section,
                "error",
                "Unable to load Gmail emails right now. Please verify authorization and try again later.",
            )
        if not records:
            return self._notice(section, "info", "No Gmail emails found for this contact.")
        section["messages"] = [record.to_dict() for record in records]
        return section

    @staticmethod
    def _notice(section: dict[str, Any], kind: str, message: str) -> dict[str, Any]:
        section["notice"] = {"type": kind, "message": message}
        return section
