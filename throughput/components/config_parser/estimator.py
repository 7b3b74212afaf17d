from dataclasses import dataclass

from .base_classes import ExplicitParams


@dataclass(init=False)
class EstimatorParams(ExplicitParams):
    page_size: int = 500
    safety_factor: float = 1.2
    max_page_fetches: int = 200
    samples: int = 24
    minutes_per_sample: float = 60

    test_page_size: int = 5
    test_samples: int = 3
    test_minutes_per_sample: float = 1

    def plan(self, test_mode: bool) -> tuple[int, int, float]:
        """
        (page_size, samples, minutes_per_sample) for the current mode.
        """
        if test_mode:
            return self.test_page_size, self.test_samples, self.test_minutes_per_sample
        return self.page_size, self.samples, self.minutes_per_sample
