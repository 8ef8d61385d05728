"""Trio-friendly wrapper for the Slack API clients.

Rate Limiting Strategy:
----------------------
Slack throttles Web API methods per workspace, so every call made through
this wrapper first takes a token from the shared RateLimiter:

1. Throttling: one call start per limiter interval, across listing,
   metadata and delete calls alike.

2. Rate limit detection: a ``ratelimited`` (HTTP 429) response is retried
   after the Retry-After delay Slack sends, taking a fresh token each time.

3. Live events arrive over Socket Mode, which pushes events to us instead of
   being polled, so it costs no API budget beyond opening the connection.
"""
import logging
from typing import Any, AsyncIterator, Callable, Dict, List, Optional

import trio
from slack_sdk import WebClient
from slack_sdk.errors import SlackApiError
from slack_sdk.socket_mode import SocketModeClient
from slack_sdk.socket_mode.request import SocketModeRequest
from slack_sdk.socket_mode.response import SocketModeResponse
from slack_sdk.web import SlackResponse

from core.errors import FatalError
from core.models import DeleteResult
from utils.rate_limit import RateLimiter

logger = logging.getLogger(__name__)

# Slack error codes meaning the item is already gone.
MESSAGE_ABSENT_ERRORS = frozenset({"message_not_found"})
FILE_ABSENT_ERRORS = frozenset({"file_deleted", "file_not_found"})

RATE_LIMITED_RETRIES = 3
DEFAULT_RETRY_AFTER = 60.0


def slack_error_code(err: SlackApiError) -> str:
    """Return the ``error`` field of a failed Slack response."""
    response = err.response
    if response is None:
        return ""
    try:
        return response.get("error") or ""
    except AttributeError:
        return ""


def _retry_after(err: SlackApiError) -> float:
    headers = getattr(err.response, "headers", None) or {}
    for name, value in headers.items():
        if name.lower() != "retry-after":
            continue
        if isinstance(value, list):
            value = value[0] if value else None
        try:
            return float(value)
        except (TypeError, ValueError):
            break
    logger.warning("Could not determine rate limit reset time, using default %ss", DEFAULT_RETRY_AFTER)
    return DEFAULT_RETRY_AFTER


def socket_mode_listener(
    send_channel: trio.MemorySendChannel, trio_token: trio.lowlevel.TrioToken
) -> Callable[[SocketModeClient, SocketModeRequest], None]:
    """Build a Socket Mode request listener feeding events into trio.

    The listener runs on a Socket Mode client thread. Every envelope is
    acknowledged; only events_api payloads are forwarded.
    """

    def _listener(client: SocketModeClient, req: SocketModeRequest) -> None:
        client.send_socket_mode_response(SocketModeResponse(envelope_id=req.envelope_id))
        if req.type != "events_api":
            logger.debug("Ignoring socket mode request type=%s", req.type)
            return
        event = (req.payload or {}).get("event")
        if not event:
            return
        try:
            trio.from_thread.run_sync(send_channel.send_nowait, event, trio_token=trio_token)
        except trio.RunFinishedError:
            logger.debug("Event loop finished, dropping event type=%s", event.get("type"))

    return _listener


class SlackTrioClient:
    """
    Trio-friendly wrapper around slack_sdk.WebClient.
    Uses trio.to_thread.run_sync for blocking calls and gates each call
    on the shared RateLimiter.
    """

    def __init__(
        self,
        client: WebClient,
        limiter: RateLimiter,
        app_token: str = "",
        history_page_size: int = 200,
    ) -> None:
        self._client = client
        self._limiter = limiter
        self._app_token = app_token
        self.history_page_size = history_page_size

    @classmethod
    def from_tokens(
        cls,
        api_token: str,
        limiter: RateLimiter,
        app_token: str = "",
        history_page_size: int = 200,
    ) -> "SlackTrioClient":
        """Create a SlackTrioClient from a bot/user token."""
        if not api_token:
            raise FatalError("BLACKHOLE_SLACK_API_TOKEN is not set")
        client = WebClient(token=api_token, logger=logging.getLogger("slack_sdk.web"))
        return cls(client, limiter, app_token=app_token, history_page_size=history_page_size)

    async def _call(self, method: str, **kwargs: Any) -> SlackResponse:
        """Call a WebClient method once a rate limiter token is available."""
        def _invoke() -> SlackResponse:
            return getattr(self._client, method)(**kwargs)

        attempt = 0
        while True:
            await self._limiter.acquire()
            logger.debug("Slack API %s %s", method, kwargs)
            try:
                return await trio.to_thread.run_sync(_invoke)
            except SlackApiError as e:
                if slack_error_code(e) != "ratelimited" or attempt >= RATE_LIMITED_RETRIES:
                    raise
                attempt += 1
                retry_after = _retry_after(e)
                logger.warning(
                    "Rate limit hit on %s. Waiting %s seconds (attempt %s/%s)",
                    method, retry_after, attempt, RATE_LIMITED_RETRIES,
                )
                await trio.sleep(retry_after)

    async def auth_test(self) -> Dict[str, Any]:
        """Verify the token; returns team and user information."""
        res = await self._call("auth_test")
        return dict(res.data)

    async def list_channels(self) -> List[Dict[str, Any]]:
        """List every public and private channel visible to the token."""
        channels: List[Dict[str, Any]] = []
        cursor: Optional[str] = None
        while True:
            kwargs: Dict[str, Any] = {
                "types": "public_channel,private_channel",
                "exclude_archived": True,
                "limit": 200,
            }
            if cursor:
                kwargs["cursor"] = cursor
            res = await self._call("conversations_list", **kwargs)
            channels.extend(res.get("channels") or [])
            cursor = (res.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                return channels

    async def channel_history(self, channel_id: str, latest: Optional[str] = None) -> Dict[str, Any]:
        """Fetch one page of a channel's history, newest first.

        Args:
            channel_id: Channel to read
            latest: Only return messages older than this ``ts``
        """
        kwargs: Dict[str, Any] = {"channel": channel_id, "limit": self.history_page_size}
        if latest:
            kwargs["latest"] = latest
        res = await self._call("conversations_history", **kwargs)
        return {
            "messages": res.get("messages") or [],
            "has_more": bool(res.get("has_more")),
        }

    async def list_files(self, page: int) -> Dict[str, Any]:
        """Fetch one page of the workspace file listing (pages start at 1)."""
        res = await self._call("files_list", page=page)
        return {
            "files": res.get("files") or [],
            "paging": res.get("paging") or {},
        }

    async def file_info(self, file_id: str) -> Dict[str, Any]:
        """Fetch a file object with its channel membership populated."""
        res = await self._call("files_info", file=file_id)
        return res.get("file") or {}

    async def delete_message(self, channel_id: str, ts: str) -> DeleteResult:
        """Delete a message; a message that is already gone counts as success."""
        try:
            await self._call("chat_delete", channel=channel_id, ts=ts)
        except SlackApiError as e:
            if slack_error_code(e) in MESSAGE_ABSENT_ERRORS:
                return DeleteResult.ALREADY_ABSENT
            raise
        return DeleteResult.DELETED

    async def delete_file(self, file_id: str) -> DeleteResult:
        """Delete a file; a file that is already gone counts as success."""
        try:
            await self._call("files_delete", file=file_id)
        except SlackApiError as e:
            if slack_error_code(e) in FILE_ABSENT_ERRORS:
                return DeleteResult.ALREADY_ABSENT
            raise
        return DeleteResult.DELETED

    async def events(self) -> AsyncIterator[Dict[str, Any]]:
        """
        Async generator yielding Events API payloads received over Socket Mode.

        The Socket Mode client runs on its own threads; each envelope is
        acknowledged there and its event is handed to trio through an
        unbounded memory channel.
        """
        if not self._app_token:
            raise FatalError("BLACKHOLE_SLACK_APP_TOKEN is not set")

        send_channel, receive_channel = trio.open_memory_channel(float("inf"))
        trio_token = trio.lowlevel.current_trio_token()
        socket_client = SocketModeClient(
            app_token=self._app_token,
            web_client=self._client,
            logger=logging.getLogger("slack_sdk.socket_mode"),
        )
        socket_client.socket_mode_request_listeners.append(socket_mode_listener(send_channel, trio_token))

        # apps.connections.open is a Web API call too
        await self._limiter.acquire()
        await trio.to_thread.run_sync(socket_client.connect)
        logger.info("Socket Mode connection established")
        try:
            async with receive_channel:
                async for event in receive_channel:
                    yield event
        finally:
            socket_client.close()
