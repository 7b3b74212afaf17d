import logging
import sys

import click
from prometheus_client import start_http_server

from .components import AsyncLoop
from .components.config_parser import Parameters
from .components.errors import ExitCode
from .components.logs import configure_logging
from .components.reporter import ConsoleReporter, LoggingReporter
from .runner import Runner

configure_logging()
logger = logging.getLogger(__name__)


def start_metrics(port: int):
    try:
        start_http_server(port)
    except OSError as err:
        logger.error(
            "Could not start the prometheus client",
            {"port": port, "error": f"[Errno {err.args[0]}]: {err.args[-1]}"},
        )
    else:
        logger.info("Prometheus client started", {"port": port})


@click.group()
@click.option("--configfile", type=click.Path(exists=True), help="The .yaml configuration file")
@click.option("--customer-name", help="Organization name to put in the report")
@click.option("--queue-name-masks", help="Comma separated strings to mask in the report")
@click.option("--runtime-hours", type=float, help="Observation window, 1 to 24 hours")
@click.option("--test-mode", is_flag=True, default=False, help="Minute long runs for testing")
@click.option("--metrics-port", type=int, help="Expose prometheus metrics on this port")
@click.option("--log-level", help="Overrides LOG_LEVEL")
@click.option("--console/--no-console", default=True, help="Single line progress display")
@click.pass_context
def main(
    ctx: click.Context,
    configfile: str,
    customer_name: str,
    queue_name_masks: str,
    runtime_hours: float,
    test_mode: bool,
    metrics_port: int,
    log_level: str,
    console: bool,
):
    if log_level:
        configure_logging(log_level)

    try:
        params = Parameters.from_file(configfile)
    except (TypeError, ValueError) as err:
        logger.error("Invalid configuration file", {"file": configfile, "error": str(err)})
        sys.exit(ExitCode.INVALID_CONFIG.value)

    if customer_name:
        params.report.customer_name = customer_name
    if queue_name_masks:
        params.report.queue_name_masks = [m.strip() for m in queue_name_masks.split(",")]
    if runtime_hours is not None:
        params.sampling.duration_hours = runtime_hours
    if test_mode:
        params.sampling.test_mode = True

    params.load_secrets()
    logger.info("Safe parameters loaded", {"params": str(params)})

    if metrics_port:
        start_metrics(metrics_port)

    reporter = ConsoleReporter() if console else LoggingReporter()
    ctx.obj = Runner(params, reporter)


def run(runner: Runner, kind: str):
    try:
        code = AsyncLoop().run(lambda cancel: runner.execute(kind, cancel))
    except Exception as err:
        logger.exception("Unexpected error", {"command": kind, "error": str(err)})
        code = ExitCode.UNEXPECTED

    logger.info("Exiting", {"command": kind, "exit_code": code.name})
    sys.exit(code.value)


@main.command(help="Measure throughput using the RabbitMQ management API")
@click.option("--api-url", help="RabbitMQ management API URL")
@click.option("--vhost", help="Virtual host to measure")
@click.pass_obj
def rabbitmq(runner: Runner, api_url: str, vhost: str):
    if api_url:
        runner.params.sources.rabbitmq.url = api_url
    if vhost:
        runner.params.sources.rabbitmq.vhost = vhost
    run(runner, "rabbitmq")


@main.command(help="Measure throughput of database backed queue tables")
@click.option("--url", "urls", multiple=True, help="SQLAlchemy database URL, repeatable")
@click.pass_obj
def sqltransport(runner: Runner, urls: tuple[str, ...]):
    if urls:
        runner.params.sources.queue_tables.urls = list(urls)
    run(runner, "sqltransport")


@main.command(help="Measure endpoints and throughput using the ServiceControl API")
@click.option("--api-url", help="ServiceControl API URL")
@click.option("--monitoring-url", help="ServiceControl Monitoring API URL")
@click.pass_obj
def servicecontrol(runner: Runner, api_url: str, monitoring_url: str):
    if api_url:
        runner.params.sources.servicecontrol.url = api_url
    if monitoring_url:
        runner.params.sources.servicecontrol.monitoring_url = monitoring_url
    run(runner, "servicecontrol")


@main.command(help="Measure throughput of an Azure Service Bus namespace from Azure Monitor")
@click.option("--resource-id", help="Resource id of the Service Bus namespace")
@click.pass_obj
def azureservicebus(runner: Runner, resource_id: str):
    if resource_id:
        runner.params.sources.azure_servicebus.resource_id = resource_id
    run(runner, "azureservicebus")


@main.command(help="Measure throughput of Amazon SQS queues from CloudWatch metrics")
@click.option("--region", help="AWS region of the queues")
@click.option("--prefix", help="Only measure queues whose name starts with this prefix")
@click.pass_obj
def sqs(runner: Runner, region: str, prefix: str):
    params = runner.params.sources.amazon_sqs
    if region:
        params.region = region
    if prefix:
        params.queue_name_prefix = prefix
    run(runner, "sqs")


if __name__ == "__main__":
    main()
