from dataclasses import dataclass
from datetime import datetime
from typing import Mapping, Optional, Protocol, Sequence, runtime_checkable

IGNORED_PREFIXES = ("nsb.delay-level-", "nsb.v2.delay-level-", "nsb.v2.verify-")
IGNORED_NAMES = ("error", "audit", "ServiceControl.ThroughputData")
IGNORED_SUFFIXES = (".timeouts", ".timeoutsdispatcher")


def is_infrastructure_queue(name: str) -> bool:
    """
    Queues that belong to the messaging infrastructure rather than to an endpoint.
    """
    if name in IGNORED_NAMES:
        return True
    if name.startswith(IGNORED_PREFIXES):
        return True
    if name.lower().startswith("particular."):
        return True
    if name.lower().endswith(IGNORED_SUFFIXES):
        return True
    return False


@runtime_checkable
class CounterSource(Protocol):
    """
    Anything exposing a non-decreasing counter per queue. Counters may restart and are only
    comparable within one source instance. Every call must be safe to repeat.
    """

    name: str
    volatile: bool
    deleted_queues: frozenset[str]

    async def get_snapshot(self) -> Mapping[str, Optional[int]]:
        """
        One counter per queue, None where the source could not answer for that queue.

        Raises:
            SourceUnavailable: On transient I/O or authentication failure.
        """
        ...

    def include_queue(self, name: str) -> bool: ...


@runtime_checkable
class PageSource(Protocol):
    async def get_page(self, page_index: int, page_size: int) -> Sequence[datetime]:
        """
        Timestamps of one page of the log, newest first. Page indices start at 1.

        Raises:
            SourceUnavailable: On transient I/O or authentication failure.
        """
        ...


@dataclass(frozen=True)
class KnownEndpoint:
    name: str
    audited: bool = False
    heartbeats_enabled: bool = False


class MonitoringSource(Protocol):
    name: str

    async def known_endpoints(self) -> list[KnownEndpoint]: ...

    async def monitored_throughput(self, minutes: float) -> Mapping[str, float]:
        """
        Average messages per second over the last `minutes`, per monitored endpoint.
        """
        ...

    def audit_log(self, endpoint: str) -> PageSource: ...


class BaseCounterSource:
    """
    Defaults shared by the concrete counter sources.
    """

    name: str = "source"
    volatile: bool = False

    def __init__(self):
        self.deleted_queues: frozenset[str] = frozenset()

    def include_queue(self, name: str) -> bool:
        return not is_infrastructure_queue(name)

    async def get_snapshot(self) -> Mapping[str, Optional[int]]:
        raise NotImplementedError
