from dataclasses import dataclass
from typing import Optional


@dataclass
class QueueTracker:
    """
    Accumulates a queue's counter across readings, surviving counter resets.

    A reading at or above the baseline adds the difference. A reading below it means the
    counter restarted (for instance a broker node restarted), so the reading itself is what
    accumulated since the restart. The baseline always moves to the latest reading.
    """

    name: str
    baseline: Optional[int] = None
    accumulated: int = 0
    readings: int = 0
    resets: int = 0
    final: Optional[int] = None

    @property
    def has_baseline(self) -> bool:
        return self.baseline is not None

    def add(self, reading: Optional[int]):
        if reading is None:
            return

        if self.baseline is None:
            self.baseline = reading
            return

        if reading >= self.baseline:
            self.accumulated += reading - self.baseline
        else:
            self.accumulated += reading
            self.resets += 1

        self.baseline = reading
        self.readings += 1

    def close(self, reading: Optional[int]):
        """
        Apply the final reading of the window.
        """
        if reading is None or self.baseline is None:
            return
        self.add(reading)
        self.final = reading


def feed(trackers: dict[str, QueueTracker], counters, final: bool = False) -> int:
    """
    Apply one snapshot's counters to the trackers of the queues being sampled. Queues the
    trackers do not know are ignored. Returns the number of queues with a baseline.
    """
    for name, value in counters.items():
        tracker = trackers.get(name)
        if tracker is None:
            continue
        if final:
            if tracker.final is None:
                tracker.close(value)
        else:
            tracker.add(value)

    return sum(1 for tracker in trackers.values() if tracker.has_baseline)
