import asyncio

import pytest

from throughput.components import FixedWindowRateLimiter
from throughput.components.errors import (
    InvalidEnvironment,
    QueryFailureReason,
    SourceUnavailable,
)
from throughput.engine import FanOutPoller
from throughput.model import ThroughputResult


def by_name(outcome) -> dict:
    return {result.queue_name: result.throughput for result in outcome.results}


@pytest.mark.asyncio
async def test_one_failure_does_not_block_others():
    async def query(name: str):
        if name == "broken":
            raise SourceUnavailable("metrics API down", QueryFailureReason.NETWORK)
        return len(name)

    outcome = await FanOutPoller(source="asb").poll_all(["orders", "broken", "billing"], query)

    assert outcome.ok
    assert by_name(outcome) == {"billing": 7, "broken": None, "orders": 6}
    assert [r.queue_name for r in outcome.results] == ["billing", "broken", "orders"]


@pytest.mark.asyncio
async def test_unexpected_error_is_no_data():
    async def query(name: str):
        if name == "odd":
            raise KeyError("timeseries")
        return ThroughputResult(name, 5, "ns")

    outcome = await FanOutPoller().poll_all(["odd", "fine"], query)

    assert by_name(outcome) == {"fine": 5, "odd": None}
    assert outcome.results[0].scope == "ns"


@pytest.mark.asyncio
async def test_every_query_failing_is_source_unavailable():
    async def query(name: str):
        raise SourceUnavailable("unauthorized", QueryFailureReason.AUTH)

    outcome = await FanOutPoller(source="asb").poll_all(["a", "b"], query)

    assert isinstance(outcome.error, SourceUnavailable)
    assert outcome.error.reason == QueryFailureReason.AUTH
    assert outcome.total == 2 and outcome.captured == 0


@pytest.mark.asyncio
async def test_query_timeout():
    async def query(name: str):
        if name == "slow":
            await asyncio.sleep(5)
        return 1

    outcome = await FanOutPoller(timeout=0.05).poll_all(["slow", "fast"], query)

    assert by_name(outcome) == {"fast": 1, "slow": None}


@pytest.mark.asyncio
async def test_empty_queue_list():
    async def query(name: str):
        raise InvalidEnvironment("never called")

    outcome = await FanOutPoller().poll_all([], query)

    assert outcome.ok and outcome.total == 0


@pytest.mark.asyncio
async def test_cancellation_reports_pending_as_no_data():
    cancel = asyncio.Event()

    async def query(name: str):
        if name == "stuck":
            await asyncio.sleep(10)
        return 3

    async def cancel_later():
        await asyncio.sleep(0.05)
        cancel.set()

    task = asyncio.create_task(cancel_later())
    outcome = await FanOutPoller().poll_all(["stuck", "quick"], query, cancel)
    await task

    assert outcome.ok
    assert outcome.cancelled
    assert by_name(outcome) == {"quick": 3, "stuck": None}


@pytest.mark.asyncio
async def test_queries_rate_limited():
    limiter = FixedWindowRateLimiter(permit_limit=2, window=0.1)
    calls = []
    loop = asyncio.get_running_loop()

    async def query(name: str):
        calls.append(loop.time())
        return 1

    start = loop.time()
    outcome = await FanOutPoller(limiter=limiter).poll_all([f"q{i}" for i in range(6)], query)

    assert outcome.captured == 6
    # six queries at two per window span three windows
    assert max(calls) - start >= 0.15


class RecordingReporter:
    def __init__(self):
        self.messages = []
        self.finished = False

    def progress(self, message, fields=None):
        self.messages.append(fields["completed"])

    def done(self):
        self.finished = True


@pytest.mark.asyncio
async def test_progress_counts_completed_queries():
    reporter = RecordingReporter()

    async def query(name: str):
        return 0

    await FanOutPoller(reporter=reporter).poll_all(["a", "b", "c"], query)

    assert sorted(reporter.messages) == ["1/3", "2/3", "3/3"]
    assert reporter.finished
