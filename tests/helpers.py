"""Test doubles and trio helpers shared by the test modules."""
from typing import Any, Dict, List, Optional

import trio
import trio.testing
from slack_sdk.errors import SlackApiError

from core.models import DeleteResult

WALL_BASE = 1_700_000_000.0


def run_trio(async_fn, *args):
    """Run under a mock clock that jumps straight to the next timer."""
    return trio.run(async_fn, *args, clock=trio.testing.MockClock(autojump_threshold=0))


def wall_clock() -> float:
    """Wall clock that advances with the trio mock clock."""
    return WALL_BASE + trio.current_time()


def slack_error(code: str) -> SlackApiError:
    return SlackApiError(f"The request to the Slack API failed: {code}", {"ok": False, "error": code})


class FakeSlackClient:
    """In-memory stand-in for SlackTrioClient.

    Deleting the same item twice answers ALREADY_ABSENT the second time,
    like Slack does. ``delete_results`` can script the answers per item ID:
    each entry is a DeleteResult or an exception to raise.
    """

    def __init__(
        self,
        channels: Optional[List[Dict[str, Any]]] = None,
        history: Optional[Dict[str, List[Dict[str, Any]]]] = None,
        file_pages: Optional[List[Dict[str, Any]]] = None,
        file_infos: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.channels = channels or []
        self.history = history or {}
        self.file_pages = file_pages or [{"files": [], "paging": {"page": 1, "pages": 1}}]
        self.file_infos = file_infos or {}
        self.delete_results: Dict[str, List[Any]] = {}
        self.deleted: set = set()
        self.calls: List[tuple] = []
        self.list_channels_errors: List[Exception] = []
        self.history_errors: Dict[str, Exception] = {}

    def _record(self, method: str, *args: Any) -> None:
        self.calls.append((method, args, trio.current_time()))

    def calls_to(self, method: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == method]

    async def list_channels(self) -> List[Dict[str, Any]]:
        self._record("list_channels")
        if self.list_channels_errors:
            raise self.list_channels_errors.pop(0)
        return list(self.channels)

    async def channel_history(self, channel_id: str, latest: Optional[str] = None) -> Dict[str, Any]:
        self._record("channel_history", channel_id, latest)
        if channel_id in self.history_errors:
            raise self.history_errors[channel_id]
        pages = self.history.get(channel_id, [])
        index = len([c for c in self.calls_to("channel_history") if c[1][0] == channel_id]) - 1
        if index >= len(pages):
            return {"messages": [], "has_more": False}
        return pages[index]

    async def list_files(self, page: int) -> Dict[str, Any]:
        self._record("list_files", page)
        return self.file_pages[page - 1]

    async def file_info(self, file_id: str) -> Dict[str, Any]:
        self._record("file_info", file_id)
        if file_id not in self.file_infos:
            raise slack_error("file_not_found")
        return self.file_infos[file_id]

    async def _delete(self, item_id: str) -> DeleteResult:
        scripted = self.delete_results.get(item_id)
        if scripted:
            result = scripted.pop(0)
            if isinstance(result, BaseException):
                raise result
            return result
        if item_id in self.deleted:
            return DeleteResult.ALREADY_ABSENT
        self.deleted.add(item_id)
        return DeleteResult.DELETED

    async def delete_message(self, channel_id: str, ts: str) -> DeleteResult:
        self._record("delete_message", channel_id, ts)
        return await self._delete(ts)

    async def delete_file(self, file_id: str) -> DeleteResult:
        self._record("delete_file", file_id)
        return await self._delete(file_id)
