"""File expiry feature.

Schedules files for deletion once their channel's file TTL has elapsed.
A file must belong to exactly one channel: shared files have no single
owner channel and are left alone.
"""
import logging
from typing import Any, Dict, Optional

from slack_sdk.errors import SlackClientError

from core.client import SlackTrioClient
from core.dispatcher import FeatureHandler
from core.errors import FatalError, MalformedItemError
from core.models import (
    FileEvent,
    ItemKind,
    PendingDeletion,
    SlackEvent,
    file_channels,
    file_description,
    parse_slack_timestamp,
)
from utils.scheduling import DeletionScheduler
from utils.ttl import TTLResolver

logger = logging.getLogger(__name__)


class FileExpiryFeature(FeatureHandler):
    """
    Handles file_created/file_shared events and files found by rescans.
    """

    def __init__(
        self,
        client: SlackTrioClient,
        resolver: TTLResolver,
        scheduler: DeletionScheduler,
    ) -> None:
        self.client = client
        self.resolver = resolver
        self.scheduler = scheduler

    async def handles(self, event: SlackEvent) -> bool:
        return isinstance(event, FileEvent)

    async def handle(self, event: SlackEvent) -> None:
        if not isinstance(event, FileEvent):
            return
        logger.info("File %s: %s", event.event_type, event.file_id)
        await self.consider(event.file)

    async def consider(self, file: Dict[str, Any]) -> Optional[PendingDeletion]:
        """Schedule the file if it lives in exactly one channel with a positive file TTL.

        Raises:
            FatalError: if the file's channels are unknown and files.info fails
        """
        file_id = file.get("id", "")
        channels = file_channels(file)
        if not channels:
            # file events carry no channel list; fetch the file again
            try:
                file = await self.client.file_info(file_id)
            except (SlackClientError, OSError) as e:
                raise FatalError(f"files.info for {file_id} failed: {e}") from e
            channels = file_channels(file)

        if len(channels) != 1:
            logger.info("File %s will not be deleted because of channels: %s", file_id, channels)
            return None

        channel_id = channels[0]
        ttl = self.resolver.resolve(channel_id, ItemKind.FILE)
        logger.debug("File %s in %s: ttl=%d", file_id, channel_id, ttl)
        if ttl <= 0:
            return None

        try:
            created_at = parse_slack_timestamp(file.get("created", file.get("timestamp")))
        except MalformedItemError as e:
            logger.error("Cannot schedule file %s in %s: %s", file_id, channel_id, e)
            return None

        item = PendingDeletion.create(
            kind=ItemKind.FILE,
            channel_id=channel_id,
            item_id=file_id,
            created_at=created_at,
            ttl_seconds=ttl,
            description=file_description(file),
        )
        if not self.scheduler.schedule(item):
            return None
        return item
