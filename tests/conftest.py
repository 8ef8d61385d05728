"""Shared pytest fixtures for slack-blackhole tests."""
import pytest

from core.models import ChannelPolicy
from utils.scheduling import DeletionScheduler
from utils.ttl import TTLResolver

from helpers import FakeSlackClient, wall_clock


@pytest.fixture
def fake_client():
    return FakeSlackClient()


@pytest.fixture
def resolver():
    """C_DEV has a 600s message TTL and 60s file TTL; C_GEN has no override."""
    return TTLResolver(
        {"C_DEV": ChannelPolicy("C_DEV", message_ttl_seconds=600, file_ttl_seconds=60)},
        default_message_ttl=0,
        default_file_ttl=0,
    )


@pytest.fixture
def scheduler(fake_client):
    return DeletionScheduler(
        fake_client,
        max_retries=5,
        backoff_base_seconds=1,
        clock=wall_clock,
    )
