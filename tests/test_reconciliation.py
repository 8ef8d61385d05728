"""Tests for the reconciliation scanner."""
import logging

import pytest
import trio

from core.errors import FatalError
from core.models import ChannelPolicy, MessageEvent
from features.file_expiry import FileExpiryFeature
from features.message_expiry import MessageExpiryFeature
from features.reconciliation import ReconciliationScanner
from utils.scheduling import DeletionScheduler
from utils.ttl import TTLResolver

from helpers import WALL_BASE, FakeSlackClient, run_trio, slack_error, wall_clock

CHANNELS = [{"id": "C_DEV", "name": "dev_null"}, {"id": "C_GEN", "name": "general"}]


def ts(offset):
    return f"{WALL_BASE + offset:.6f}"


def build(client, resolver=None, interval=3600, **scheduler_kwargs):
    resolver = resolver or TTLResolver(
        {"C_DEV": ChannelPolicy("C_DEV", message_ttl_seconds=600, file_ttl_seconds=60)}
    )
    scheduler = DeletionScheduler(client, clock=wall_clock, **scheduler_kwargs)
    messages = MessageExpiryFeature(resolver=resolver, scheduler=scheduler)
    files = FileExpiryFeature(client=client, resolver=resolver, scheduler=scheduler)
    scanner = ReconciliationScanner(client, resolver, messages, files, interval_seconds=interval)
    return scanner, scheduler


class TestScanAll:

    def test_pages_through_history_and_files(self):
        client = FakeSlackClient(
            channels=CHANNELS,
            history={
                "C_DEV": [
                    {"messages": [{"ts": ts(30)}, {"ts": ts(20)}], "has_more": True},
                    {"messages": [{"ts": ts(10)}], "has_more": False},
                ],
            },
            file_pages=[
                {"files": [{"id": "F1", "created": WALL_BASE, "channels": ["C_DEV"]}],
                 "paging": {"page": 1, "pages": 2}},
                {"files": [{"id": "F2", "created": WALL_BASE, "channels": ["C_DEV", "C_GEN"]}],
                 "paging": {"page": 2, "pages": 2}},
            ],
        )
        scanner, scheduler = build(client)

        report = run_trio(scanner.scan_all)

        history_calls = [c[1] for c in client.calls_to("channel_history")]
        assert history_calls == [("C_DEV", None), ("C_DEV", ts(20))]
        assert [c[1] for c in client.calls_to("list_files")] == [(1,), (2,)]
        assert report.channels_seen == 2
        assert report.channels_scanned == 1
        assert report.messages_seen == 3
        assert report.files_seen == 2
        assert report.scheduled == 4
        assert scheduler.pending_count() == 4

    def test_default_ttl_scans_every_channel(self):
        client = FakeSlackClient(channels=CHANNELS)
        scanner, _ = build(client, resolver=TTLResolver({}, default_message_ttl=60))
        run_trio(scanner.scan_all)
        assert [c[1][0] for c in client.calls_to("channel_history")] == ["C_DEV", "C_GEN"]

    def test_empty_page_with_has_more_stops(self):
        client = FakeSlackClient(
            channels=CHANNELS,
            history={"C_DEV": [{"messages": [], "has_more": True}]},
        )
        scanner, _ = build(client)
        run_trio(scanner.scan_all)
        assert len(client.calls_to("channel_history")) == 1

    def test_deletion_notifications_in_history_are_skipped(self):
        client = FakeSlackClient(
            channels=CHANNELS,
            history={"C_DEV": [{"messages": [
                {"ts": ts(20), "subtype": "message_deleted"},
                {"ts": ts(10)},
            ], "has_more": False}]},
        )
        scanner, _ = build(client)
        assert run_trio(scanner.scan_all).scheduled == 1

    def test_history_error_skips_only_that_channel(self, caplog):
        client = FakeSlackClient(
            channels=[{"id": "C_PRIV", "name": "private"}, {"id": "C_DEV", "name": "dev_null"}],
            history={"C_DEV": [{"messages": [{"ts": ts(10)}], "has_more": False}]},
            file_pages=[{"files": [{"id": "F1", "created": WALL_BASE, "channels": ["C_DEV"]}],
                         "paging": {"page": 1, "pages": 1}}],
        )
        client.history_errors["C_PRIV"] = slack_error("not_in_channel")
        resolver = TTLResolver(
            {"C_DEV": ChannelPolicy("C_DEV", message_ttl_seconds=600, file_ttl_seconds=60)},
            default_message_ttl=600,
        )
        scanner, scheduler = build(client, resolver=resolver)

        report = run_trio(scanner.scan_all)

        assert [c[1][0] for c in client.calls_to("channel_history")] == ["C_PRIV", "C_DEV"]
        assert client.calls_to("list_files") != []
        assert report.channels_scanned == 1
        assert report.channels_failed == 1
        assert report.scheduled == 2
        assert scheduler.pending_count() == 2
        assert "Scanning history of C_PRIV failed" in caplog.text

    def test_missing_file_metadata_is_fatal(self):
        client = FakeSlackClient(
            channels=CHANNELS,
            file_pages=[{"files": [{"id": "F404", "created": WALL_BASE}], "paging": {"page": 1, "pages": 1}}],
        )
        scanner, _ = build(client)
        with pytest.raises(FatalError):
            run_trio(scanner.scan_all)


class TestRun:

    def test_rescan_of_deleted_message_is_quiet_success(self, caplog):
        caplog.set_level(logging.INFO)
        page = {"messages": [{"ts": ts(0)}], "has_more": False}
        client = FakeSlackClient(channels=CHANNELS, history={"C_DEV": [page, page]})
        scanner, scheduler = build(client, interval=3600)

        async def main():
            async with trio.open_nursery() as nursery:
                nursery.start_soon(scheduler.run)
                # live event arrives before the first scan
                assert scanner.messages.consider(MessageEvent("C_DEV", ts(0), None)) is not None
                nursery.start_soon(scanner.run)
                await trio.sleep(5000)
                nursery.cancel_scope.cancel()

        run_trio(main)
        deletes = client.calls_to("delete_message")
        # startup scan found it still pending; the hourly rescan found it deleted
        assert [c[2] for c in deletes] == pytest.approx([600, 3600])
        assert scheduler.stats["duplicates"] == 1
        assert scheduler.stats["deleted"] == 1
        assert scheduler.stats["already_absent"] == 1
        assert [r for r in caplog.records if r.levelno >= logging.ERROR] == []

    def test_failed_scan_is_retried_next_period(self, caplog):
        client = FakeSlackClient(channels=CHANNELS)
        client.list_channels_errors.append(slack_error("internal_error"))
        scanner, _ = build(client, interval=100)

        async def main():
            async with trio.open_nursery() as nursery:
                nursery.start_soon(scanner.run)
                await trio.sleep(150)
                nursery.cancel_scope.cancel()

        run_trio(main)
        assert [c[2] for c in client.calls_to("list_channels")] == pytest.approx([0, 100])
        assert "Reconciliation scan aborted" in caplog.text

    def test_channel_history_error_does_not_abort_periodic_scans(self, caplog):
        client = FakeSlackClient(channels=[{"id": "C_PRIV", "name": "private"}] + CHANNELS)
        client.history_errors["C_PRIV"] = slack_error("not_in_channel")
        scanner, _ = build(client, resolver=TTLResolver({}, default_message_ttl=60), interval=100)

        async def main():
            async with trio.open_nursery() as nursery:
                nursery.start_soon(scanner.run)
                await trio.sleep(250)
                nursery.cancel_scope.cancel()

        caplog.set_level(logging.INFO)
        run_trio(main)
        assert [c[2] for c in client.calls_to("list_files")] == pytest.approx([0, 100, 200])
        assert "Reconciliation scan aborted" not in caplog.text
        assert "2/3 channels scanned (1 failed)" in caplog.text
