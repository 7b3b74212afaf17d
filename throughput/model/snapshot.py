from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterator, Mapping, Optional


@dataclass(frozen=True)
class QueueCounterSnapshot:
    queue_name: str
    counter_value: Optional[int]
    captured_at: datetime


@dataclass(frozen=True)
class Snapshot:
    """
    One reading of every queue's counter from a single source. Immutable once captured.
    A `None` counter means the source did not answer for that queue on this pass.
    """

    counters: Mapping[str, Optional[int]]
    captured_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        frozen = MappingProxyType(
            {name: None if value is None else int(value) for name, value in self.counters.items()}
        )
        object.__setattr__(self, "counters", frozen)

    def __len__(self) -> int:
        return len(self.counters)

    def __contains__(self, queue_name: str) -> bool:
        return queue_name in self.counters

    def get(self, queue_name: str) -> Optional[int]:
        return self.counters.get(queue_name)

    @property
    def answered(self) -> set[str]:
        return {name for name, value in self.counters.items() if value is not None}

    def entries(self) -> Iterator[QueueCounterSnapshot]:
        for name, value in self.counters.items():
            yield QueueCounterSnapshot(name, value, self.captured_at)
