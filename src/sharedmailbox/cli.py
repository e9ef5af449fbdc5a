#!/usr/bin/env python3
"""
Command-line interface for sharedmailbox.

Operator tooling for the shared test mailbox: inspect or clear the
mailbox lock, look at the latest qualifying email, wait for a callback
link while holding the lock, and probe the classification API.

Usage:
    sharedmailbox [OPTIONS] COMMAND

Commands:
    lock-status     Show whether the mailbox lock is held and stale
    lock-clear      Delete the mailbox lock object
    latest          Print the newest email with a callback link
    wait-link       Hold the lock and wait for a new callback link
    probe           Retry a classification request until it succeeds
"""

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Optional

from sharedmailbox import __version__
from sharedmailbox.api_client import ClassificationClient
from sharedmailbox.common.config import Settings, get_settings
from sharedmailbox.common.exceptions import SharedMailboxError
from sharedmailbox.flow import obtain_callback_link
from sharedmailbox.inbox.poller import InboxPoller
from sharedmailbox.inbox.waiter import MailboxWaiter
from sharedmailbox.lock import LockCoordinator
from sharedmailbox.shutdown import ShutdownHandlers
from sharedmailbox.storage import ObjectStorageBackend, create_backend


def setup_logging(
    debug: bool = False, level: str = "INFO", log_format: Optional[str] = None
) -> None:
    """
    Configure logging for the command-line tool.

    Args:
        debug: Enable debug logging, overriding ``level``.
        level: Log level name used when not in debug mode.
        log_format: Optional logging format string.
    """
    log_level = logging.DEBUG if debug else getattr(logging, level.upper(), logging.INFO)
    log_format = log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=log_level,
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from third-party libraries in non-debug mode
    if not debug:
        logging.getLogger("botocore").setLevel(logging.WARNING)
        logging.getLogger("boto3").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="sharedmailbox - shared test mailbox coordination",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    Check the mailbox lock:
        sharedmailbox lock-status

    Wait for the next login link and delete the email afterwards:
        sharedmailbox wait-link --delete

Environment Variables:
    MAILBOX_RECIPIENT          Shared mailbox address
    STORAGE_BUCKET             Bucket holding inbound mail and the lock
    LOCK_KEY                   Lock object key
    SHAREDMAILBOX_CONFIG_FILE  TOML configuration file
        """,
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        default=False,
        help="Enable debug logging",
    )

    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a TOML configuration file",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"sharedmailbox {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("lock-status", help="Show the mailbox lock state")
    subparsers.add_parser("lock-clear", help="Delete the mailbox lock object")
    subparsers.add_parser("latest", help="Print the newest email with a callback link")

    wait_parser = subparsers.add_parser(
        "wait-link", help="Hold the lock and wait for a new callback link"
    )
    wait_parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete the email once its link has been read",
    )

    probe_parser = subparsers.add_parser(
        "probe", help="Retry a classification request until it settles"
    )
    probe_parser.add_argument("description", help="Goods description to classify")
    probe_parser.add_argument("--api-key", required=True, help="Customer API key")
    probe_parser.add_argument(
        "--expect-failure",
        action="store_true",
        help="Wait until the key is rejected instead of accepted",
    )

    return parser.parse_args(argv)


async def _lock_status(storage: ObjectStorageBackend, settings: Settings) -> int:
    coordinator = LockCoordinator.from_settings(storage, settings.lock)
    info = await storage.head(coordinator.lock_key)
    if info is None:
        print(f"{coordinator.lock_key}: free")
        return 0

    stale = await coordinator.is_stale()
    state = "held (stale)" if stale else "held"
    print(f"{coordinator.lock_key}: {state} since {info.last_modified.isoformat()}")
    return 0


async def _lock_clear(storage: ObjectStorageBackend, settings: Settings) -> int:
    await storage.delete(settings.lock.key)
    print(f"{settings.lock.key}: cleared")
    return 0


async def _latest(storage: ObjectStorageBackend, settings: Settings) -> int:
    poller = InboxPoller.from_settings(storage, settings.mailbox)
    message = await poller.get_latest_email(settings.mailbox.list_limit)
    if message is None:
        print(f"No email with a callback link for {settings.mailbox.recipient}")
        return 1

    print(f"Key:     {message.storage_key}")
    print(f"From:    {message.from_address}")
    print(f"To:      {message.to}")
    print(f"Date:    {message.send_date.isoformat()}")
    print(f"Subject: {message.subject}")
    for link in message.allowed_links:
        print(f"Link:    {link}")
    return 0


async def _wait_link(
    storage: ObjectStorageBackend,
    settings: Settings,
    handlers: ShutdownHandlers,
    delete: bool,
) -> int:
    coordinator = LockCoordinator.from_settings(storage, settings.lock)
    coordinator.register_shutdown_release(handlers)

    poller = InboxPoller.from_settings(storage, settings.mailbox)
    waiter = MailboxWaiter.from_settings(poller, settings.mailbox)

    link = await obtain_callback_link(coordinator, waiter, delete_after=delete)
    print(link)
    return 0


async def _probe(settings: Settings, description: str, api_key: str, expect_failure: bool) -> int:
    client = ClassificationClient.from_settings(api_key, settings.probe)
    outcome = await client.classify(description, expect_failure=expect_failure)
    codes = ", ".join(r.code for r in client.results()) or "-"
    print(
        f"status={outcome.final_status} succeeded={outcome.succeeded} "
        f"attempts={outcome.attempts} elapsed={outcome.elapsed:.1f}s codes={codes}"
    )
    return 0 if outcome.succeeded else 1


async def run_command(args: argparse.Namespace, settings: Settings) -> int:
    """Run the selected command with shutdown handlers installed."""
    if args.command == "probe":
        return await _probe(settings, args.description, args.api_key, args.expect_failure)

    storage = create_backend(settings.storage)

    async with ShutdownHandlers() as handlers:
        if args.command == "lock-status":
            return await _lock_status(storage, settings)
        if args.command == "lock-clear":
            return await _lock_clear(storage, settings)
        if args.command == "latest":
            return await _latest(storage, settings)
        if args.command == "wait-link":
            return await _wait_link(storage, settings, handlers, args.delete)

    raise ValueError(f"Unknown command: {args.command}")


def main(argv: Optional[list[str]] = None) -> int:
    """
    Main entry point for the sharedmailbox command.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    args = parse_args(argv)

    if args.config:
        config_path = Path(args.config)
        if not config_path.exists():
            print(f"Error: configuration file not found: {args.config}", file=sys.stderr)
            return 1
        os.environ["SHAREDMAILBOX_CONFIG_FILE"] = str(config_path)
        get_settings.cache_clear()

    try:
        settings = get_settings()
    except Exception as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return 1

    setup_logging(
        args.debug or settings.debug, settings.logging.level, settings.logging.format
    )
    logger = logging.getLogger(__name__)

    try:
        if args.command in ("latest", "wait-link"):
            settings.validate_required()
        return asyncio.run(run_command(args, settings))

    except SharedMailboxError as e:
        logger.error("%s", e)
        return 1

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Interrupted")
        return 1

    except Exception as e:
        logger.exception("Command failed: %s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
