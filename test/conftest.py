from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import pytest

from throughput.components.config_parser import Parameters
from throughput.sources import BaseCounterSource


class FakeCounterSource(BaseCounterSource):
    """
    Replays scripted snapshots. The last one repeats forever; exceptions in the script are
    raised instead of returned.
    """

    def __init__(self, *snapshots, volatile: bool = False, name: str = "fake"):
        super().__init__()
        self.snapshots = list(snapshots)
        self.volatile = volatile
        self.name = name
        self.calls = 0

    async def get_snapshot(self) -> Mapping[str, Optional[int]]:
        self.calls += 1
        if len(self.snapshots) > 1:
            item = self.snapshots.pop(0)
        else:
            item = self.snapshots[0]

        if isinstance(item, Exception):
            raise item
        return dict(item)


class FakeAuditLog:
    """
    Newest first log of `count` records, `spacing` apart, the newest at `newest`.
    """

    def __init__(self, count: int, spacing: timedelta, newest: datetime):
        self.timestamps = [newest - i * spacing for i in range(count)]
        self.requested: list[int] = []

    async def get_page(self, page_index: int, page_size: int):
        self.requested.append(page_index)
        start = (page_index - 1) * page_size
        return self.timestamps[start : start + page_size]

    def count_since(self, cutoff: datetime) -> int:
        return sum(1 for ts in self.timestamps if ts >= cutoff)


@pytest.fixture
def now() -> datetime:
    return datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def ten_day_log(now: datetime) -> FakeAuditLog:
    # 10,000 records evenly spread over 10 days
    return FakeAuditLog(10_000, timedelta(seconds=86.4), now)


@pytest.fixture
def audit_log_factory():
    return FakeAuditLog


@pytest.fixture
def fake_source_factory():
    return FakeCounterSource


@pytest.fixture
def config() -> dict:
    return {
        "sampling": {
            "duration_hours": 2,
            "test_mode": True,
            "test_duration_minutes": 0.002,
            "wait_tick_seconds": 0.01,
            "final_sampling_minutes": 0.001,
        },
        "failure_budget": {"threshold": 3, "reset_after": 2},
        "estimator": {"test_page_size": 5},
        "poller": {"permit_limit": 10, "window_seconds": 0.1, "request_timeout_seconds": 2},
        "report": {"customer_name": "Acme Corp", "queue_name_masks": ["secret"]},
    }


@pytest.fixture
def params(config: dict, tmp_path) -> Parameters:
    params = Parameters(config)
    params.report.output_directory = str(tmp_path)
    return params


@pytest.fixture
def aws_clients(mocker) -> dict:
    """
    Replaces the AWS session so that entering a client yields one AsyncMock per service.
    """
    clients = {"sqs": mocker.AsyncMock(), "cloudwatch": mocker.AsyncMock()}

    def client(service_name, **kwargs):
        context = mocker.MagicMock()
        context.__aenter__.return_value = clients[service_name]
        return context

    session = mocker.patch("throughput.sources.amazon_sqs.aioboto3.Session")
    session.return_value.client.side_effect = client
    return clients
