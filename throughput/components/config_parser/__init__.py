from .base_classes import ExplicitParams
from .estimator import EstimatorParams
from .failure_budget import FailureBudgetParams
from .parameters import Parameters
from .poller import PollerParams
from .report import ReportParams
from .sampling import SamplingParams
from .sources import (
    AmazonSqsParams,
    AzureServiceBusParams,
    QueueTableParams,
    RabbitMQParams,
    ServiceControlParams,
    SourcesParams,
)

__all__ = [
    "ExplicitParams",
    "Parameters",
    "SamplingParams",
    "FailureBudgetParams",
    "EstimatorParams",
    "PollerParams",
    "ReportParams",
    "SourcesParams",
    "RabbitMQParams",
    "QueueTableParams",
    "ServiceControlParams",
    "AzureServiceBusParams",
    "AmazonSqsParams",
]
