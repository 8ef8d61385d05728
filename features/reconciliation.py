"""Periodic backlog reconciliation.

Walks every channel's history and the workspace file listing, feeding each
item through the same expiry features as live events. Runs once at startup
and then on a fixed period, so a restart loses nothing but time.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict

import trio
from slack_sdk.errors import SlackClientError

from core.client import SlackTrioClient
from core.models import ItemKind, MessageEvent
from features.file_expiry import FileExpiryFeature
from features.message_expiry import MessageExpiryFeature
from utils.ttl import TTLResolver

logger = logging.getLogger(__name__)


@dataclass
class ScanReport:
    """Counters for one full scan."""
    channels_seen: int = 0
    channels_scanned: int = 0
    channels_failed: int = 0
    messages_seen: int = 0
    files_seen: int = 0
    scheduled: int = 0


class ReconciliationScanner:
    """Rebuilds pending deletions from the full backlog.

    Attributes:
        interval_seconds: Pause between the end of one scan and the next
    """

    def __init__(
        self,
        client: SlackTrioClient,
        resolver: TTLResolver,
        messages: MessageExpiryFeature,
        files: FileExpiryFeature,
        interval_seconds: float = 3600,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.messages = messages
        self.files = files
        self.interval_seconds = interval_seconds

    async def run(self) -> None:
        """Scan now, then again every interval, forever."""
        while True:
            try:
                report = await self.scan_all()
            except (SlackClientError, OSError):
                logger.exception("Reconciliation scan aborted, next scan in %ss", self.interval_seconds)
            else:
                logger.info(
                    "Reconciliation done: %d/%d channels scanned (%d failed), %d messages, %d files, %d scheduled",
                    report.channels_scanned,
                    report.channels_seen,
                    report.channels_failed,
                    report.messages_seen,
                    report.files_seen,
                    report.scheduled,
                )
            await trio.sleep(self.interval_seconds)

    async def scan_all(self) -> ScanReport:
        report = ScanReport()
        channels = await self.client.list_channels()
        report.channels_seen = len(channels)
        logger.info("There are %d channels", len(channels))
        for channel in channels:
            if not self.resolver.may_expire(channel["id"], ItemKind.MESSAGE):
                continue
            try:
                await self._scan_history(channel, report)
            except (SlackClientError, OSError):
                logger.exception("Scanning history of %s failed, skipping it this scan", channel["id"])
                report.channels_failed += 1
                continue
            report.channels_scanned += 1

        await self._scan_files(report)
        return report

    async def _scan_history(self, channel: Dict[str, Any], report: ScanReport) -> None:
        channel_id = channel["id"]
        logger.debug("Scanning history of %s (%s)", channel.get("name"), channel_id)
        latest = None
        while True:
            page = await self.client.channel_history(channel_id, latest=latest)
            messages = page["messages"]
            for message in messages:
                report.messages_seen += 1
                if self.messages.consider(MessageEvent.from_message(channel_id, message)) is not None:
                    report.scheduled += 1
            if not page["has_more"] or not messages:
                return
            # pages are newest first; continue below the oldest message seen
            oldest = messages[-1].get("ts")
            if not oldest or oldest == latest:
                return
            latest = oldest

    async def _scan_files(self, report: ScanReport) -> None:
        page = 1
        while True:
            listing = await self.client.list_files(page)
            for file in listing["files"]:
                report.files_seen += 1
                if await self.files.consider(file) is not None:
                    report.scheduled += 1
            paging = listing["paging"]
            current = int(paging.get("page") or page)
            total = int(paging.get("pages") or 0)
            if current >= total:
                return
            page = current + 1
