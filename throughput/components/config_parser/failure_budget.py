from dataclasses import dataclass

from .base_classes import ExplicitParams


@dataclass(init=False)
class FailureBudgetParams(ExplicitParams):
    # 15 failed passes out of 288 five-minute passes a day is just over 5%
    threshold: int = 15
    reset_after: int = 5
    keep_errors: int = 5
