from dataclasses import dataclass

from .base_classes import ExplicitParams


@dataclass(init=False)
class PollerParams(ExplicitParams):
    permit_limit: int = 100
    window_seconds: float = 1.0
    request_timeout_seconds: float = 30
    history_days: int = 30
