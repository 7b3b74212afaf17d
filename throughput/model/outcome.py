from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..components.errors import EngineError
from .throughput import ThroughputResult


@dataclass(frozen=True)
class SamplingOutcome:
    """
    What one source contributed to a run: the results, or the error that aborted it.
    A cancelled run is not an error and keeps whatever was captured.
    """

    source: str
    results: tuple[ThroughputResult, ...] = ()
    error: Optional[EngineError] = None
    cancelled: bool = False
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    observation: Optional[timedelta] = None
    ignored: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def captured(self) -> int:
        return sum(1 for result in self.results if result.throughput is not None)

    def measured(self) -> list[ThroughputResult]:
        return [result for result in self.results if result.throughput is not None]

    def unwrap(self) -> tuple[ThroughputResult, ...]:
        if self.error is not None:
            raise self.error
        return self.results

    @classmethod
    def failed(cls, source: str, error: EngineError, **kwargs) -> "SamplingOutcome":
        return cls(source, (), error, **kwargs)
