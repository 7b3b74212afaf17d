from .audit_page import AuditRecordPage
from .outcome import SamplingOutcome
from .snapshot import QueueCounterSnapshot, Snapshot
from .throughput import DailyThroughput, ThroughputResult
from .window import SamplingWindow, utcnow

__all__ = [
    "AuditRecordPage",
    "DailyThroughput",
    "QueueCounterSnapshot",
    "SamplingOutcome",
    "SamplingWindow",
    "Snapshot",
    "ThroughputResult",
    "utcnow",
]
