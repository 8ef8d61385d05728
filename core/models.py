"""Data models for Slack items and the deletions scheduled for them.

Defines the channel policy and pending deletion records, plus parsing
utilities that turn raw Slack event payloads into MessageEvent/FileEvent.
"""
import enum
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from core.errors import MalformedItemError

# Message subtypes that describe a change to an existing message rather
# than a new one.
NOTIFICATION_SUBTYPES = frozenset({"message_deleted", "message_changed", "message_replied"})

FILE_EVENT_TYPES = frozenset({"file_created", "file_shared"})


class ItemKind(enum.Enum):
    MESSAGE = "message"
    FILE = "file"


class DeleteResult(enum.Enum):
    """Successful outcomes of a delete call."""

    DELETED = "deleted"
    ALREADY_ABSENT = "already_absent"


@dataclass(frozen=True)
class ChannelPolicy:
    """Per-channel TTL overrides.

    Attributes:
        channel_id: Slack channel ID the overrides apply to
        message_ttl_seconds: Message TTL, 0 means "use the global default"
        file_ttl_seconds: File TTL, 0 means "use the global default"
    """
    channel_id: str
    message_ttl_seconds: int = 0
    file_ttl_seconds: int = 0

    def ttl_for(self, kind: ItemKind) -> int:
        if kind is ItemKind.MESSAGE:
            return self.message_ttl_seconds
        return self.file_ttl_seconds


@dataclass(frozen=True)
class PendingDeletion:  # pylint: disable=too-many-instance-attributes
    """One deletion waiting for its due time.

    Attributes:
        kind: Message or file
        channel_id: Channel the item lives in
        item_id: Message ``ts`` for messages, file ID for files
        created_at: Creation time of the item (unix seconds)
        ttl_seconds: Effective TTL, always positive
        due_at: ``created_at + ttl_seconds``, fixed at creation
        description: Extra text for log lines (file name/title)
    """
    kind: ItemKind
    channel_id: str
    item_id: str
    created_at: float
    ttl_seconds: int
    due_at: float
    description: str = field(default="", compare=False)

    @classmethod
    def create(
        cls,
        kind: ItemKind,
        channel_id: str,
        item_id: str,
        created_at: float,
        ttl_seconds: int,
        description: str = "",
    ) -> "PendingDeletion":
        """Build a deletion, computing ``due_at`` once from the creation time."""
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        return cls(
            kind=kind,
            channel_id=channel_id,
            item_id=item_id,
            created_at=created_at,
            ttl_seconds=ttl_seconds,
            due_at=created_at + ttl_seconds,
            description=description,
        )

    @property
    def key(self) -> Tuple[ItemKind, str, str]:
        return (self.kind, self.channel_id, self.item_id)

    @property
    def label(self) -> str:
        if self.kind is ItemKind.MESSAGE:
            return f"message {self.channel_id}({self.item_id})"
        if self.description:
            return f"file {self.item_id} ({self.description})"
        return f"file {self.item_id}"


@dataclass
class MessageEvent:
    """A message seen on the live feed or in a channel's history.

    Attributes:
        channel_id: Channel the message was posted in
        ts: Slack message timestamp, also the message's identity
        subtype: Slack message subtype, None for plain messages
    """
    channel_id: str
    ts: str
    subtype: Optional[str]

    @classmethod
    def from_message(cls, channel_id: str, message: Dict[str, Any]) -> "MessageEvent":
        return cls(
            channel_id=channel_id,
            ts=message.get("ts", ""),
            subtype=message.get("subtype"),
        )

    @property
    def is_notification(self) -> bool:
        return self.subtype in NOTIFICATION_SUBTYPES


@dataclass
class FileEvent:
    """A file_created or file_shared event.

    The ``file`` payload from these events usually carries only the ID, so
    the channel list may be empty until the file is fetched again.
    """
    event_type: str
    file: Dict[str, Any]

    @property
    def file_id(self) -> str:
        return self.file.get("id", "")


SlackEvent = Union[MessageEvent, FileEvent]


def parse_event(event: Dict[str, Any]) -> Optional[SlackEvent]:
    """Parse a Slack Events API payload into a MessageEvent or FileEvent.

    Args:
        event: The ``event`` object of an events_api envelope

    Returns:
        The parsed event, or None for event types the bot does not act on
    """
    event_type = event.get("type")
    if event_type == "message":
        channel_id = event.get("channel")
        if not channel_id:
            return None
        return MessageEvent.from_message(channel_id, event)

    if event_type in FILE_EVENT_TYPES:
        file = dict(event.get("file") or {})
        if not file.get("id"):
            file_id = event.get("file_id")
            if not file_id:
                return None
            file["id"] = file_id
        return FileEvent(event_type=event_type, file=file)

    return None


def file_channels(file: Dict[str, Any]) -> List[str]:
    """Return the public and private channels a file is visible in."""
    seen: List[str] = []
    for channel_id in list(file.get("channels") or []) + list(file.get("groups") or []):
        if channel_id not in seen:
            seen.append(channel_id)
    return seen


def file_description(file: Dict[str, Any]) -> str:
    return f"name='{file.get('name', '')}' title='{file.get('title', '')}'"


def parse_slack_timestamp(value: Any) -> float:
    """Convert a Slack timestamp ("1503435956.000247" or an int) to unix seconds.

    Raises:
        MalformedItemError: if the value is missing or not a finite number
    """
    if value is None or value == "":
        raise MalformedItemError("missing timestamp")
    try:
        seconds = float(value)
    except (TypeError, ValueError) as e:
        raise MalformedItemError(f"unparseable timestamp {value!r}") from e
    if not math.isfinite(seconds) or seconds < 0:
        raise MalformedItemError(f"invalid timestamp {value!r}")
    return seconds
