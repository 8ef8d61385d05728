"""Main entry point for the Slack blackhole bot.

This module initializes and runs the bot, which deletes messages and files
after a per-channel TTL:
- Live message/file events over Socket Mode
- Hourly reconciliation of channel history and the file listing
- A single rate limiter shared by every Slack API call
"""
import argparse
import logging
import os
import sys
import time
from typing import Any, Dict, List, Optional

import trio
from slack_sdk.errors import SlackClientError

from config import ENV_PREFIX, ConfigManager, Settings
from core.client import SlackTrioClient
from core.dispatcher import Dispatcher
from core.errors import FatalError
from features.file_expiry import FileExpiryFeature
from features.message_expiry import MessageExpiryFeature
from features.reconciliation import ReconciliationScanner
from utils.rate_limit import RateLimiter
from utils.scheduling import DeletionScheduler
from utils.ttl import TTLResolver, build_channel_policies


logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="slack-blackhole",
        description="Delete Slack messages and files after a per-channel TTL.",
    )
    parser.add_argument("--config-file", help="YAML configuration file")
    parser.add_argument("--debug", action="store_true", help="Debug logging")
    parser.add_argument("--slack-api-token", help="Slack bot token (xoxb-...)")
    parser.add_argument("--slack-app-token", help="Slack app-level token for Socket Mode (xapp-...)")
    parser.add_argument("--debug-slack", action="store_true", default=None, help="Debug logging for slack_sdk")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Do not delete messages/files")
    parser.add_argument("--default-message-ttl", type=int, help="TTL (sec) of messages for all channels")
    parser.add_argument("--default-file-ttl", type=int, help="TTL (sec) of files for all channels")
    parser.add_argument("--max-retries", type=int, help="Maximum attempts for message/file deletion")
    parser.add_argument("--slack-api-interval", type=float, help="Interval (sec) between API calls")
    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Dict[str, Any]]:
    """Map command line flags onto configuration sections."""
    return {
        "slack": {
            "api_token": args.slack_api_token,
            "app_token": args.slack_app_token,
            "api_interval_seconds": args.slack_api_interval,
            "debug": args.debug_slack,
        },
        "deletion": {
            "default_message_ttl": args.default_message_ttl,
            "default_file_ttl": args.default_file_ttl,
            "dry_run": args.dry_run,
            "max_retries": args.max_retries,
        },
        "logging": {
            "level": "DEBUG" if args.debug else None,
        },
    }


def load_settings(args: argparse.Namespace) -> Settings:
    config_path = args.config_file or os.environ.get(ENV_PREFIX + "CONFIG_FILE") or "config.yaml"
    config_mgr = ConfigManager(config_path)
    config_mgr.load()
    config_mgr.apply_overrides(cli_overrides(args))
    return config_mgr.settings()


def configure_logging(settings: Settings) -> None:
    formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    formatter.converter = time.gmtime
    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    logging.basicConfig(level=settings.log_level, handlers=[handler])
    logging.getLogger("slack_sdk").setLevel(logging.DEBUG if settings.debug_slack else logging.WARNING)


async def main(settings: Settings) -> None:
    """Connect to Slack and run all bot loops until the process is stopped."""
    logger.info("Starting slack-blackhole (dry_run=%s)", settings.dry_run)

    limiter = RateLimiter(settings.api_interval_seconds)
    client = SlackTrioClient.from_tokens(
        settings.api_token,
        limiter,
        app_token=settings.app_token,
        history_page_size=settings.history_page_size,
    )

    async with trio.open_nursery() as nursery:
        nursery.start_soon(limiter.run)

        try:
            identity = await client.auth_test()
        except (SlackClientError, OSError) as e:
            raise FatalError(f"auth.test failed: {e}") from e
        logger.info("Connected to %s as %s", identity.get("team"), identity.get("user"))

        try:
            channels = await client.list_channels()
        except (SlackClientError, OSError) as e:
            raise FatalError(f"Listing channels failed: {e}") from e
        resolver = TTLResolver(
            build_channel_policies(settings.channels, channels),
            default_message_ttl=settings.default_message_ttl,
            default_file_ttl=settings.default_file_ttl,
        )

        scheduler = DeletionScheduler(
            client,
            dry_run=settings.dry_run,
            max_retries=settings.max_retries,
            backoff_base_seconds=settings.backoff_base_seconds,
            deduplicate=settings.deduplicate,
        )
        message_feature = MessageExpiryFeature(resolver=resolver, scheduler=scheduler)
        file_feature = FileExpiryFeature(client=client, resolver=resolver, scheduler=scheduler)

        dispatcher = Dispatcher()
        for f in (message_feature, file_feature):
            dispatcher.register_feature(f)

        scanner = ReconciliationScanner(
            client,
            resolver,
            messages=message_feature,
            files=file_feature,
            interval_seconds=settings.reconcile_interval_seconds,
        )

        nursery.start_soon(scheduler.run)
        nursery.start_soon(scanner.run)

        async def event_loop() -> None:
            logger.info("Bot is now listening for events...")
            async for event in client.events():
                logger.debug("Received event: type=%s", event.get("type"))
                await dispatcher.dispatch_event(event)

        nursery.start_soon(event_loop)


def find_fatal(exc: BaseException) -> Optional[FatalError]:
    """Return the FatalError inside a (possibly grouped) exception."""
    if isinstance(exc, FatalError):
        return exc
    for inner in getattr(exc, "exceptions", ()):
        found = find_fatal(inner)
        if found is not None:
            return found
    return None


def cli(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = load_settings(args)
    except FatalError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical("%s", e)
        return 1
    configure_logging(settings)

    try:
        trio.run(main, settings)
    except Exception as exc:  # pylint: disable=broad-exception-caught
        fatal = find_fatal(exc)
        if fatal is None:
            raise
        logger.critical("%s", fatal)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(cli())
