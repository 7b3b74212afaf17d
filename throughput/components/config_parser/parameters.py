from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from .base_classes import ExplicitParams
from .estimator import EstimatorParams
from .failure_budget import FailureBudgetParams
from .poller import PollerParams
from .report import ReportParams
from .sampling import SamplingParams
from .sources import SourcesParams


@dataclass(init=False)
class Parameters(ExplicitParams):
    sampling: SamplingParams
    failure_budget: FailureBudgetParams
    estimator: EstimatorParams
    poller: PollerParams
    report: ReportParams
    sources: SourcesParams
    environment: str = "production"

    @classmethod
    def from_file(cls, path: Optional[Union[str, Path]]) -> "Parameters":
        if path is None:
            return cls()

        with open(path, "r") as file:
            config = yaml.safe_load(file) or {}

        return cls(config)

    def load_secrets(self):
        self.sources.rabbitmq.set_attribute_from_env("username", "RABBITMQ_USERNAME")
        self.sources.rabbitmq.set_attribute_from_env("password", "RABBITMQ_PASSWORD")
        self.sources.azure_servicebus.set_attribute_from_env("token", "AZURE_ACCESS_TOKEN")
