"""Operator CLI for the mailbox sync engine."""

from __future__ import annotations

import argparse
import asyncio
import base64
import json
import logging
import sys
from dataclasses import asdict
from datetime import UTC
from pathlib import Path
from typing import Any

from mailbox_sync.config.settings import MailboxSyncSettings
from mailbox_sync.core.auth import GmailUpstreamFactory, build_gmail_service, run_connect_flow
from mailbox_sync.core.gmail_client import GmailUpstream
from mailbox_sync.core.models import AccountCredentials
from mailbox_sync.pipeline.push import PushNotificationHandler
from mailbox_sync.pipeline.synchronizer import MailboxSynchronizer
from mailbox_sync.storage.accounts import AccountStore
from mailbox_sync.storage.blob_store import FileBlobStore
from mailbox_sync.storage.database import MailStore
from mailbox_sync.storage.repository import MessageRepository


def setup_logging(level: str) -> None:
    """Configure logging with timestamp and module info."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def _positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be positive: {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Mailbox Sync - Mirror Gmail mailboxes into a local store"
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    connect_parser = subparsers.add_parser("connect", help="Connect a Gmail account via OAuth")
    connect_parser.add_argument("--user", "-u", help="Existing user id (default: new user)")

    sync_parser = subparsers.add_parser("sync", help="Full paginated sync for one user")
    sync_parser.add_argument("user")
    sync_parser.add_argument("--max-pages", type=_positive_int, dest="max_pages")
    sync_parser.add_argument("--page-size", type=_positive_int, dest="page_size")

    delta_parser = subparsers.add_parser("delta", help="Sync the most recent messages")
    delta_parser.add_argument("user")
    delta_parser.add_argument("--max-messages", type=_positive_int, dest="max_messages")

    history_parser = subparsers.add_parser("history", help="Sync changes since a history id")
    history_parser.add_argument("user")
    history_parser.add_argument("history_id")

    paginated_parser = subparsers.add_parser(
        "paginated", help="Sync the first page now and the rest in the background"
    )
    paginated_parser.add_argument("user")
    paginated_parser.add_argument("--page-size", type=_positive_int, dest="page_size")
    paginated_parser.add_argument(
        "--no-background",
        action="store_false",
        dest="background",
        help="Stop after the first page",
    )

    subparsers.add_parser("sync-all", help="Full sync for every connected user")

    push_parser = subparsers.add_parser("push", help="Replay a push notification")
    push_parser.add_argument("email_address")
    push_parser.add_argument("history_id")

    list_parser = subparsers.add_parser("list", help="List synced messages for a user")
    list_parser.add_argument("user")
    list_parser.add_argument("--page", type=_positive_int, default=1)
    list_parser.add_argument("--limit", type=_positive_int, default=50)

    status_parser = subparsers.add_parser("status", help="Show sync state and counts")
    status_parser.add_argument("user")

    return parser


async def _connect(
    settings: MailboxSyncSettings, accounts: AccountStore, user_id: str | None
) -> str:
    creds = run_connect_flow(settings.client_secret_path)
    profile = await GmailUpstream(build_gmail_service(creds), creds).get_profile()
    email = profile["emailAddress"]

    user_id = user_id or accounts.create_user(email=email)
    expires_at = int(creds.expiry.replace(tzinfo=UTC).timestamp()) if creds.expiry else None
    accounts.link_account(
        AccountCredentials(
            user_id=user_id,
            provider=settings.provider,
            provider_account_id=email,
            email=email,
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expires_at=expires_at,
            scope=" ".join(creds.scopes or []),
        )
    )
    return user_id


async def run_command(
    args: argparse.Namespace, settings: MailboxSyncSettings, store: MailStore
) -> Any:
    blob_store = FileBlobStore(settings.blob_dir)
    accounts = AccountStore(store)
    synchronizer = MailboxSynchronizer(
        settings,
        store,
        accounts,
        GmailUpstreamFactory(accounts, settings),
        blob_store=blob_store,
    )

    if args.command == "connect":
        return {"user_id": await _connect(settings, accounts, args.user)}
    if args.command == "sync":
        return await synchronizer.sync_full(args.user, args.max_pages, args.page_size)
    if args.command == "delta":
        return await synchronizer.sync_delta(args.user, args.max_messages)
    if args.command == "history":
        return await synchronizer.sync_by_history(args.user, args.history_id)
    if args.command == "paginated":
        result = await synchronizer.sync_paginated(args.user, args.page_size, args.background)
        # The process would exit under a detached continuation
        await synchronizer.jobs.wait_all()
        return result
    if args.command == "sync-all":
        return await synchronizer.sync_all_users()
    if args.command == "push":
        payload = json.dumps({"emailAddress": args.email_address, "historyId": args.history_id})
        envelope = {"message": {"data": base64.b64encode(payload.encode()).decode()}}
        handler = PushNotificationHandler(
            synchronizer,
            accounts,
            provider=settings.provider,
            delta_max_messages=settings.delta_max_messages,
        )
        return await handler.handle(envelope)

    repository = MessageRepository(store, blob_store)
    if args.command == "list":
        return repository.list_user_messages_paginated(args.user, args.page, args.limit)
    if args.command == "status":
        state = synchronizer.sync_state.get(args.user, settings.provider)
        return {"counts": repository.count_by_user(args.user), "sync_state": state}

    raise ValueError(f"Unknown command: {args.command}")


def _print_result(result: Any) -> None:
    if hasattr(result, "__dataclass_fields__"):
        result = asdict(result)
    elif isinstance(result, dict):
        result = {
            k: asdict(v) if hasattr(v, "__dataclass_fields__") else v for k, v in result.items()
        }
    print(json.dumps(result, indent=2, default=str))


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        sys.exit(1)

    settings = MailboxSyncSettings()
    setup_logging(settings.log_level)
    settings.ensure_directories()

    store = MailStore(Path(settings.database_path))
    store.connect()
    try:
        result = asyncio.run(run_command(args, settings, store))
        _print_result(result)
    except KeyboardInterrupt:
        print("\n\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        print(f"\nError: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
