"""Deferred deletion scheduling.

Provides a DeletionScheduler that runs one trio task per scheduled item:
the task sleeps until the item's due time, then deletes it with bounded
exponential backoff. "Already deleted" answers from Slack count as success.
"""
import enum
import logging
import math
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Set, Tuple

import trio
from slack_sdk.errors import SlackClientError

from core.models import DeleteResult, ItemKind, PendingDeletion

logger = logging.getLogger(__name__)


class Outcome(enum.Enum):
    """Terminal state of a deletion task."""

    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"
    DRY_RUN = "dry_run"
    FAILED = "failed"


def format_time(ts: float) -> str:
    return datetime.fromtimestamp(ts, timezone.utc).isoformat()


class DeletionScheduler:  # pylint: disable=too-many-instance-attributes
    """
    In-memory scheduler for deleting Slack messages and files.
    Only IDs and times are kept. On restart, pending deletions are lost and
    rediscovered by the next reconciliation scan.

    Attributes:
        client: Slack client providing delete_message/delete_file
        dry_run: Log deletions instead of performing them
        max_retries: Maximum delete attempts per item
        backoff_base_seconds: Wait after the first failed attempt; doubles after each one
        deduplicate: Skip items that already have a live task
        stats: Counters of scheduled, skipped and finished deletions
    """

    def __init__(
        self,
        client: Any,
        *,
        dry_run: bool = False,
        max_retries: int = 5,
        backoff_base_seconds: float = 1.0,
        deduplicate: bool = True,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.dry_run = dry_run
        self.max_retries = max_retries
        self.backoff_base_seconds = backoff_base_seconds
        self.deduplicate = deduplicate
        self._clock = clock
        self._send, self._receive = trio.open_memory_channel(math.inf)
        self._pending: Set[Tuple[ItemKind, str, str]] = set()
        self.stats: Dict[str, int] = {
            "scheduled": 0,
            "duplicates": 0,
            **{outcome.value: 0 for outcome in Outcome},
        }

    def schedule(self, item: PendingDeletion) -> bool:
        """Queue an item for deletion at its due time.

        Args:
            item: The deletion to perform

        Returns:
            False if deduplication is on and the item already has a live task
        """
        if self.deduplicate and item.key in self._pending:
            logger.debug("%s is already scheduled", item.label)
            self.stats["duplicates"] += 1
            return False
        self._pending.add(item.key)
        logger.info(
            "%s created %s (ttl=%s) will be deleted at %s",
            item.label,
            format_time(item.created_at),
            item.ttl_seconds,
            format_time(item.due_at),
        )
        self._send.send_nowait(item)
        self.stats["scheduled"] += 1
        return True

    def pending_count(self) -> int:
        """Number of items scheduled and not yet in a terminal state."""
        return len(self._pending)

    async def run(self) -> None:
        """Start one deletion task per scheduled item, forever."""
        async with trio.open_nursery() as nursery:
            async for item in self._receive:
                nursery.start_soon(self._run_one, item)

    async def _run_one(self, item: PendingDeletion) -> None:
        try:
            outcome = await self.expire(item)
        except Exception:  # pylint: disable=broad-exception-caught
            # One broken item must not take the other deletion tasks down
            logger.exception("Unexpected error while deleting %s", item.label)
            outcome = Outcome.FAILED
        finally:
            self._pending.discard(item.key)
        self.stats[outcome.value] += 1

    async def expire(self, item: PendingDeletion) -> Outcome:
        """Wait for the item's due time, then delete it.

        Returns:
            The terminal state reached
        """
        while True:
            remaining = item.due_at - self._clock()
            if remaining <= 0:
                break
            await trio.sleep(remaining)

        if self.dry_run:
            logger.info("Would delete %s (dry run)", item.label)
            return Outcome.DRY_RUN

        logger.info("Delete %s", item.label)
        backoff = self.backoff_base_seconds
        for attempt in range(1, self.max_retries + 1):
            logger.info("Deleting %s, attempt %d/%d", item.label, attempt, self.max_retries)
            try:
                result = await self._delete(item)
            except (SlackClientError, OSError) as e:
                logger.error(
                    "Deleting %s failed (attempt %d/%d): %s",
                    item.label, attempt, self.max_retries, e,
                )
            else:
                if result is DeleteResult.ALREADY_ABSENT:
                    logger.info("%s was already deleted", item.label)
                    return Outcome.ALREADY_ABSENT
                logger.info("Deleted %s", item.label)
                return Outcome.DELETED

            if attempt < self.max_retries:
                await trio.sleep(backoff)
                backoff *= 2

        logger.error("Failed to delete %s after %d attempts", item.label, self.max_retries)
        return Outcome.FAILED

    async def _delete(self, item: PendingDeletion) -> DeleteResult:
        if item.kind is ItemKind.MESSAGE:
            return await self.client.delete_message(item.channel_id, item.item_id)
        return await self.client.delete_file(item.item_id)
