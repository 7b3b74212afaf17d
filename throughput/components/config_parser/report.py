from dataclasses import dataclass, field

from .base_classes import ExplicitParams


@dataclass(init=False)
class ReportParams(ExplicitParams):
    customer_name: str = None
    queue_name_masks: list = field(default_factory=list)
    output_directory: str = "."
    allow_overwrite: bool = False
