"""TTL policy resolution.

Maps a channel and an item kind to the effective time-to-live: a positive
per-channel override wins, otherwise the global default for that kind.
"""
import logging
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Sequence

from config import ChannelTTLConfig
from core.models import ChannelPolicy, ItemKind
from utils.matching import normalize_channel_name

logger = logging.getLogger(__name__)


class TTLResolver:
    """Read-only TTL lookup shared by every producer.

    Attributes:
        default_message_ttl: Global message TTL in seconds (0 disables)
        default_file_ttl: Global file TTL in seconds (0 disables)
    """

    def __init__(
        self,
        policies: Mapping[str, ChannelPolicy],
        default_message_ttl: int = 0,
        default_file_ttl: int = 0,
    ) -> None:
        self._policies = MappingProxyType(dict(policies))
        self.default_message_ttl = default_message_ttl
        self.default_file_ttl = default_file_ttl

    @property
    def policies(self) -> Mapping[str, ChannelPolicy]:
        return self._policies

    def default_for(self, kind: ItemKind) -> int:
        if kind is ItemKind.MESSAGE:
            return self.default_message_ttl
        return self.default_file_ttl

    def resolve(self, channel_id: str, kind: ItemKind) -> int:
        """Return the effective TTL in seconds for items of ``kind`` in a channel."""
        policy = self._policies.get(channel_id)
        if policy is not None:
            override = policy.ttl_for(kind)
            if override > 0:
                return override
        return self.default_for(kind)

    def may_expire(self, channel_id: str, kind: ItemKind) -> bool:
        return self.resolve(channel_id, kind) > 0


def build_channel_policies(
    entries: Sequence[ChannelTTLConfig],
    channels: Iterable[Dict[str, Any]],
) -> Dict[str, ChannelPolicy]:
    """Resolve configured channel names to IDs and build the policy map.

    Args:
        entries: Ordered channel TTL entries from the configuration
        channels: Channel objects from conversations.list (``id``, ``name``)

    Returns:
        Policies keyed by channel ID. Later entries for the same channel
        replace earlier ones; unknown channel names are skipped.
    """
    channel_ids: Dict[str, str] = {}
    for ch in channels:
        name = ch.get("name")
        if name and ch.get("id"):
            logger.debug("channel_id[%s]: %s", name, ch["id"])
            channel_ids[normalize_channel_name(name)] = ch["id"]

    policies: Dict[str, ChannelPolicy] = {}
    for entry in entries:
        channel_id = channel_ids.get(normalize_channel_name(entry.channel))
        if channel_id is None:
            logger.warning("Configured channel '%s' not found in workspace, ignoring", entry.channel)
            continue
        policy = ChannelPolicy(
            channel_id=channel_id,
            message_ttl_seconds=entry.message_ttl,
            file_ttl_seconds=entry.file_ttl,
        )
        logger.info("Policy[%s]: %s", channel_id, policy)
        policies[channel_id] = policy
    return policies
