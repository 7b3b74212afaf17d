from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class SamplingWindow:
    start_time: datetime
    duration_target: timedelta
    end_time: Optional[datetime] = None

    def __post_init__(self):
        if self.duration_target < timedelta(0):
            raise ValueError("duration_target cannot be negative")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time cannot be before start_time")

    @classmethod
    def open(cls, duration: timedelta, start_time: Optional[datetime] = None):
        return cls(start_time or utcnow(), duration)

    @property
    def deadline(self) -> datetime:
        return self.start_time + self.duration_target

    def remaining(self, now: Optional[datetime] = None) -> timedelta:
        return max(self.deadline - (now or utcnow()), timedelta(0))

    def elapsed(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.deadline

    def close(self, end_time: Optional[datetime] = None) -> "SamplingWindow":
        return replace(self, end_time=max(end_time or utcnow(), self.start_time))

    @property
    def observed(self) -> timedelta:
        if self.end_time is None:
            return timedelta(0)
        return self.end_time - self.start_time
