"""
Shared fixtures: a throwaway database and a controllable clock.
"""

import os
import tempfile
from datetime import datetime, timedelta, timezone

import pytest

from redeem_panel.core.lifecycle import RedeemService
from redeem_panel.core.throttle import OriginRatePolicy, SubmitterCooldownPolicy
from redeem_panel.storage.repository import (
    CooldownTracker,
    KeyRegistry,
    RequestStore,
    initialize_schema,
)

START = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        initialize_schema(path)
        yield path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(db_path, clock):
    return RedeemService(
        store=RequestStore(db_path, clock=clock),
        keys=KeyRegistry(db_path, clock=clock),
        cooldowns=CooldownTracker(db_path, clock=clock),
        contact_email="orders@example.com",
        submitter_cooldown=SubmitterCooldownPolicy(window=timedelta(minutes=10)),
        origin_rate=OriginRatePolicy(max_requests=3, lookback=timedelta(minutes=15)),
    )
