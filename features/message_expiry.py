"""Message expiry feature.

Schedules every new message for deletion once its channel's message TTL
has elapsed. Used for live message events and for messages found while
rescanning channel history.
"""
import logging
from typing import Optional

from core.dispatcher import FeatureHandler
from core.errors import MalformedItemError
from core.models import ItemKind, MessageEvent, PendingDeletion, SlackEvent, parse_slack_timestamp
from utils.scheduling import DeletionScheduler
from utils.ttl import TTLResolver

logger = logging.getLogger(__name__)


class MessageExpiryFeature(FeatureHandler):
    """
    Turns messages into scheduled deletions.
    """

    def __init__(self, resolver: TTLResolver, scheduler: DeletionScheduler) -> None:
        self.resolver = resolver
        self.scheduler = scheduler

    async def handles(self, event: SlackEvent) -> bool:
        return isinstance(event, MessageEvent)

    async def handle(self, event: SlackEvent) -> None:
        if not isinstance(event, MessageEvent):
            return
        logger.info("MessageEvent: %s(%s) subtype=%s", event.channel_id, event.ts, event.subtype)
        self.consider(event)

    def consider(self, event: MessageEvent) -> Optional[PendingDeletion]:
        """Schedule the message if its channel has a positive message TTL.

        Returns:
            The scheduled deletion, or None if nothing was scheduled
        """
        if event.is_notification:
            # not a new message
            return None

        ttl = self.resolver.resolve(event.channel_id, ItemKind.MESSAGE)
        logger.debug("Message %s(%s): ttl=%d", event.channel_id, event.ts, ttl)
        if ttl <= 0:
            return None

        try:
            created_at = parse_slack_timestamp(event.ts)
        except MalformedItemError as e:
            logger.error("Cannot schedule message %s(%s): %s", event.channel_id, event.ts, e)
            return None

        item = PendingDeletion.create(
            kind=ItemKind.MESSAGE,
            channel_id=event.channel_id,
            item_id=event.ts,
            created_at=created_at,
            ttl_seconds=ttl,
        )
        if not self.scheduler.schedule(item):
            return None
        return item
