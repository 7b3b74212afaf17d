from .amazon_sqs import AmazonSqsMetrics
from .azure_monitor import AzureMonitorMetrics
from .http import JSONClient
from .protocols import (
    BaseCounterSource,
    CounterSource,
    KnownEndpoint,
    MonitoringSource,
    PageSource,
    is_infrastructure_queue,
)
from .rabbitmq import RabbitMQSource
from .servicecontrol import AuditLog, ServiceControlClient
from .sqltransport import QueueTableSource

__all__ = [
    "AmazonSqsMetrics",
    "AuditLog",
    "AzureMonitorMetrics",
    "BaseCounterSource",
    "CounterSource",
    "JSONClient",
    "KnownEndpoint",
    "MonitoringSource",
    "PageSource",
    "QueueTableSource",
    "RabbitMQSource",
    "ServiceControlClient",
    "is_infrastructure_queue",
]
