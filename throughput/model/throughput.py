from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class DailyThroughput:
    date: date
    message_count: int

    def as_dict(self) -> dict:
        return {"dateUTC": self.date.isoformat(), "messageCount": self.message_count}


@dataclass(frozen=True)
class ThroughputResult:
    """
    Throughput of one queue for one run. A `None` throughput means no data or send-only.
    """

    queue_name: str
    throughput: Optional[int] = None
    scope: Optional[str] = None
    daily: tuple[DailyThroughput, ...] = ()

    @property
    def no_data(self) -> bool:
        return self.throughput is None

    def renamed(self, queue_name: str) -> "ThroughputResult":
        return ThroughputResult(queue_name, self.throughput, self.scope, self.daily)

    @classmethod
    def from_daily(
        cls, queue_name: str, daily: list[DailyThroughput], scope: Optional[str] = None
    ) -> "ThroughputResult":
        """
        Report the busiest day. A history without a single processed message is no data.
        """
        peak = max((day.message_count for day in daily), default=0)
        ordered = tuple(sorted(daily, key=lambda day: day.date))
        return cls(queue_name, peak if peak > 0 else None, scope, ordered)

    def as_dict(self) -> dict:
        result = {"queueName": self.queue_name}
        if self.throughput is not None:
            result["throughput"] = self.throughput
        else:
            result["noDataOrSendOnly"] = True
        if self.scope:
            result["scope"] = self.scope
        if self.daily:
            result["dailyThroughputFromBroker"] = [day.as_dict() for day in self.daily]
        return result
