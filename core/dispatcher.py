"""Event dispatching system for routing Slack events to feature handlers.

Provides a dispatcher pattern that routes message and file events to
registered feature handlers based on their handling criteria.
"""
import logging
from typing import Any, Dict, List

from core.errors import FatalError
from core.models import SlackEvent, parse_event

logger = logging.getLogger(__name__)


class FeatureHandler:
    """
    Interface for feature modules.
    """

    async def handles(self, event: SlackEvent) -> bool:
        """Check if this handler can process the given event.

        Args:
            event: The parsed Slack event to check

        Returns:
            True if this handler should process the event
        """
        raise NotImplementedError

    async def handle(self, event: SlackEvent) -> None:
        """Process the given event.

        Args:
            event: The parsed Slack event to process
        """
        raise NotImplementedError


class Dispatcher:
    """Routes Slack events to registered feature handlers.

    Maintains a list of feature handlers and dispatches events to those
    that can handle them. Errors in individual handlers are isolated,
    except FatalError, which stops the bot.
    """
    def __init__(self) -> None:
        self._features: List[FeatureHandler] = []

    def register_feature(self, feature: FeatureHandler) -> None:
        """Register a feature handler with the dispatcher.

        Args:
            feature: FeatureHandler instance to register
        """
        self._features.append(feature)

    async def dispatch_event(self, event_dict: Dict[str, Any]) -> None:
        """Dispatch an event to all registered features.

        Args:
            event_dict: Raw ``event`` object from an Events API payload
        """
        event = parse_event(event_dict)
        if event is None:
            logger.debug("Ignoring event type=%s", event_dict.get("type"))
            return

        for feature in self._features:
            try:
                if await feature.handles(event):
                    await feature.handle(event)
            except FatalError:
                raise
            except Exception:  # pylint: disable=broad-exception-caught
                # Intentionally catch all exceptions to prevent one feature
                # from crashing the entire bot
                logger.exception("Error in feature %s", feature.__class__.__name__)
