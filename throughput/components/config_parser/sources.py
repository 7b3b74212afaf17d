from dataclasses import dataclass, field

from .base_classes import ExplicitParams


@dataclass(init=False, repr=False)
class RabbitMQParams(ExplicitParams):
    url: str = "http://localhost:15672"
    username: str = None
    password: str = None
    vhost: str = None


@dataclass(init=False)
class QueueTableParams(ExplicitParams):
    urls: list = field(default_factory=list)
    counter_column: str = "RowVersion"
    required_columns: list = field(
        default_factory=lambda: [
            "Id",
            "CorrelationId",
            "ReplyToAddress",
            "Recoverable",
            "Expires",
            "Headers",
            "Body",
            "RowVersion",
        ]
    )


@dataclass(init=False)
class ServiceControlParams(ExplicitParams):
    url: str = "http://localhost:33333/api"
    monitoring_url: str = "http://localhost:33633"


@dataclass(init=False, repr=False)
class AzureServiceBusParams(ExplicitParams):
    resource_id: str = None
    token: str = None
    management_url: str = "https://management.azure.com"


@dataclass(init=False)
class AmazonSqsParams(ExplicitParams):
    region: str = None
    profile: str = None
    queue_name_prefix: str = ""


@dataclass(init=False)
class SourcesParams(ExplicitParams):
    rabbitmq: RabbitMQParams
    queue_tables: QueueTableParams
    servicecontrol: ServiceControlParams
    azure_servicebus: AzureServiceBusParams
    amazon_sqs: AmazonSqsParams
