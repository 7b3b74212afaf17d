from .estimator import AuditEstimator, AuditSampler
from .failure_budget import BudgetState, FailureBudget
from .poller import FanOutPoller
from .sampler import DelaySchedule, SnapshotSampler, interruptible, sample_sources
from .tracker import QueueTracker, feed

__all__ = [
    "AuditEstimator",
    "AuditSampler",
    "BudgetState",
    "DelaySchedule",
    "FailureBudget",
    "FanOutPoller",
    "QueueTracker",
    "SnapshotSampler",
    "feed",
    "interruptible",
    "sample_sources",
]
