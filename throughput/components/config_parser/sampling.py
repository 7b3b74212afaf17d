from dataclasses import dataclass
from datetime import timedelta

from .base_classes import ExplicitParams

MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 24


@dataclass(init=False)
class SamplingParams(ExplicitParams):
    duration_hours: float = 24
    test_mode: bool = False
    test_duration_minutes: float = 1
    wait_tick_seconds: float = 0.25
    poll_interval_seconds: float = 300
    test_poll_interval_seconds: float = 10
    final_sampling_minutes: float = 15

    def window(self) -> timedelta:
        """
        Observation window length. Minutes in test mode, otherwise hours within 1-24.
        """
        if self.test_mode:
            return timedelta(minutes=self.test_duration_minutes)

        if not MIN_DURATION_HOURS <= self.duration_hours <= MAX_DURATION_HOURS:
            raise ValueError(
                f"duration_hours must be between {MIN_DURATION_HOURS} and "
                + f"{MAX_DURATION_HOURS}, got {self.duration_hours}"
            )
        return timedelta(hours=self.duration_hours)

    @property
    def poll_interval(self) -> float:
        return self.test_poll_interval_seconds if self.test_mode else self.poll_interval_seconds
