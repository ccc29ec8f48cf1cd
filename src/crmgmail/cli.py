"""Summary: Command-line interface for the CRM Gmail integration.

Importance: Provides local administration of accounts, OAuth, settings, and lookups.
Alternatives: Use a CLI framework like Typer or Click.
"""

from __future__ import annotations

import argparse
import logging

from crmgmail.app import build_services
from crmgmail.config import AppConfig
from crmgmail.errors import CrmGmailError
from crmgmail.services import uninstall


def build_parser() -> argparse.ArgumentParser:
    """Summary: Build the CLI argument parser.

    Importance: Defines supported commands for local operation.
    Alternatives: Expose everything through the HTTP API only.
    """

    parser = argparse.ArgumentParser(description="CRM Gmail CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list-accounts", help="List configured Gmail accounts")

    save_account = subparsers.add_parser("save-account", help="Create or update an account")
    save_account.add_argument("--id", type=str, default="")
    save_account.add_argument("--label", type=str, default="")
    save_account.add_argument("--client-id", type=str, required=True)
    save_account.add_argument("--client-secret", type=str, required=True)

    remove_account = subparsers.add_parser("remove-account", help="Remove an account")
    remove_account.add_argument("account_id", type=str)

    authorize = subparsers.add_parser("authorize-url", help="Print the consent URL for an account")
    authorize.add_argument("account_id", type=str)
    authorize.add_argument("--user", type=str, default="0")

    callback = subparsers.add_parser("complete-auth", help="Complete consent with state and code")
    callback.add_argument("state", type=str)
    callback.add_argument("code", type=str)
    callback.add_argument("--user", type=str, default="0")

    disconnect = subparsers.add_parser("disconnect", help="Disconnect an account")
    disconnect.add_argument("account_id", type=str)

    lookup = subparsers.add_parser("lookup", help="Show recent correspondence with a contact")
    lookup.add_argument("email", type=str)
    lookup.add_argument("--limit", type=int, default=None)

    cache_duration = subparsers.add_parser("set-cache-duration", help="Set cache minutes")
    cache_duration.add_argument("minutes", type=str)

    email_limit = subparsers.add_parser("set-email-limit", help="Set emails per contact")
    email_limit.add_argument("limit", type=str)

    subparsers.add_parser("clear-cache", help="Clear cached correspondence")
    subparsers.add_parser("uninstall", help="Delete all settings and cached data")
    return parser


def run_cli() -> None:
    """Summary: Execute the CLI command.

    Importance: Routes user commands to core services.
    Alternatives: Use separate scripts for each command.
    """

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")
    parser = build_parser()
    args = parser.parse_args()
    config = AppConfig.from_env()
    services = build_services(config)

    if args.command == "list-accounts":
        for account in services.registry.list_accounts().values():
            status = "connected" if services.registry.is_account_authorized(account.id) else "not connected"
            print(f"{account.id}: {account.label or '(no label)'} [{status}]")
        return

    if args.command == "save-account":
        raw = {
            account_id: account.to_dict()
            for account_id, account in services.registry.list_accounts().items()
        }
        raw[args.id] = {
            "label": args.label,
            "client_id": args.client_id,
            "client_secret": args.client_secret,
        }
        saved = services.registry.upsert_accounts(raw)
        print(f"Saved {len(saved)} accounts.")
        return

    if args.command == "remove-account":
        raw = {
            account_id: account.to_dict()
            for account_id, account in services.registry.list_accounts().items()
        }
        if args.account_id not in raw:
            parser.error(f"Unknown account: {args.account_id}")
        raw[args.account_id]["remove"] = True
        services.registry.upsert_accounts(raw)
        print(f"Removed account {args.account_id}.")
        return

    if args.command == "authorize-url":
        url = services.oauth.start_authorization(args.user, args.account_id)
        if not url:
            parser.error("Save client credentials for this account first.")
        print(url)
        return

    if args.command == "complete-auth":
        print(services.oauth.handle_callback(args.user, args.state, args.code))
        return

    if args.command == "disconnect":
        token = services.oauth.disconnect_token(args.account_id)
        print(services.oauth.handle_disconnect(args.account_id, token))
        return

    if args.command == "lookup":
        try:
            records = services.aggregator.get_recent_correspondence(args.email, args.limit)
        except CrmGmailError as exc:
            parser.exit(1, f"{exc.message}\n")
        for record in records:
            print(f"[{record.direction}] {record.date_raw} {record.subject} ({record.account_label})")
        return

    if args.command == "set-cache-duration":
        print(f"Cache duration: {services.settings.set_cache_duration(args.minutes)} minutes")
        return

    if args.command == "set-email-limit":
        print(f"Emails per contact: {services.settings.set_email_limit(args.limit)}")
        return

    if args.command == "clear-cache":
        services.aggregator.clear_cache()
        print("Cache cleared.")
        return

    if args.command == "uninstall":
        uninstall(services.store)
        print("All settings and cached data removed.")
        return


if __name__ == "__main__":
    run_cli()
