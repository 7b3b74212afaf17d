import asyncio
import json
from datetime import date, datetime, timezone
from pathlib import Path

import pytest
from click.testing import CliRunner
from pytest_mock import MockerFixture
from sqlalchemy import Column, Integer, MetaData, String, Table, create_engine, insert

from throughput.__main__ import main
from throughput.components.config_parser import Parameters
from throughput.components.errors import ExitCode, QueryFailureReason, SourceUnavailable
from throughput.components.reporter import NullReporter
from throughput.model import DailyThroughput, ThroughputResult
from throughput.runner import Runner
from throughput.sources import (
    AzureMonitorMetrics,
    JSONClient,
    KnownEndpoint,
    RabbitMQSource,
    ServiceControlClient,
)

RESOURCE_ID = (
    "/subscriptions/0000/resourceGroups/rg/providers/Microsoft.ServiceBus/namespaces/acme-bus"
)


@pytest.fixture
def database_url(tmp_path) -> str:
    url = f"sqlite:///{tmp_path / 'orders.db'}"
    engine = create_engine(url)
    metadata = MetaData()

    tables = {}
    for name in ("orders", "secret_billing", "error"):
        tables[name] = Table(
            name,
            metadata,
            Column("Id", String(36)),
            Column("RowVersion", Integer, primary_key=True, autoincrement=True),
        )
    metadata.create_all(engine)

    with engine.begin() as conn:
        for name in ("orders", "secret_billing"):
            conn.execute(insert(tables[name]).values(Id="1"))

    engine.dispose()
    return url


@pytest.fixture
def sql_params(params: Parameters, database_url: str) -> Parameters:
    params.sources.queue_tables.urls = [database_url]
    params.sources.queue_tables.required_columns = ["Id", "RowVersion"]
    return params


def reports(params: Parameters) -> list[Path]:
    return list(Path(params.report.output_directory).glob("*-throughput-report-*.json"))


def written_report(params: Parameters) -> dict:
    (path,) = reports(params)
    return json.loads(path.read_text())


@pytest.mark.asyncio
async def test_sqltransport_run(sql_params: Parameters):
    code = await Runner(sql_params).execute("sqltransport")

    assert code == ExitCode.SUCCESS
    report = written_report(sql_params)
    assert report["customerName"] == "Acme Corp"
    assert report["messageTransport"] == "SqlTransport"
    assert report["reportMethod"] == "sqlite database orders"
    assert report["queues"] == [
        {"queueName": "***_billing", "throughput": 0},
        {"queueName": "orders", "throughput": 0},
    ]
    assert report["ignoredQueues"] == ["error"]
    assert report["totalQueues"] == 2


@pytest.mark.asyncio
async def test_cancelled_run_writes_partial_report(sql_params: Parameters):
    sql_params.sampling.test_duration_minutes = 10
    cancel = asyncio.Event()

    class CancelOnProgress(NullReporter):
        def progress(self, message, fields=None):
            cancel.set()

    code = await Runner(sql_params, CancelOnProgress()).execute("sqltransport", cancel)

    assert code == ExitCode.USER_CANCELLATION
    assert written_report(sql_params)["totalQueues"] == 2


@pytest.mark.asyncio
async def test_missing_customer_name(sql_params: Parameters):
    sql_params.report.customer_name = None

    assert await Runner(sql_params).execute("sqltransport") == ExitCode.MISSING_CONFIG


@pytest.mark.asyncio
async def test_missing_source_configuration(params: Parameters):
    assert await Runner(params).execute("sqltransport") == ExitCode.MISSING_CONFIG
    assert await Runner(params).execute("azureservicebus") == ExitCode.MISSING_CONFIG


@pytest.mark.asyncio
async def test_invalid_duration(sql_params: Parameters):
    sql_params.sampling.test_mode = False
    sql_params.sampling.duration_hours = 48

    assert await Runner(sql_params).execute("sqltransport") == ExitCode.INVALID_CONFIG


@pytest.mark.asyncio
async def test_unusable_output_directory(sql_params: Parameters, tmp_path):
    sql_params.report.output_directory = str(tmp_path / "does" / "not" / "exist")

    assert await Runner(sql_params).execute("sqltransport") == ExitCode.OUTPUT_FILE


@pytest.mark.asyncio
async def test_unreachable_broker(params: Parameters, mocker: MockerFixture):
    mocker.patch.object(
        RabbitMQSource,
        "get_snapshot",
        side_effect=SourceUnavailable("connection refused", QueryFailureReason.NETWORK),
    )
    params.sampling.test_duration_minutes = 10

    code = await Runner(params).execute("rabbitmq")

    assert code == ExitCode.RUNTIME_ERROR
    assert reports(params) == []


@pytest.mark.asyncio
async def test_azureservicebus_run(params: Parameters, mocker: MockerFixture):
    params.sources.azure_servicebus.resource_id = RESOURCE_ID
    mocker.patch.object(
        AzureMonitorMetrics, "queue_names", return_value=["billing", "error", "orders"]
    )

    async def busy_query(queue_name: str):
        if queue_name == "billing":
            raise SourceUnavailable("throttled")
        return ThroughputResult.from_daily(queue_name, [DailyThroughput(date(2024, 3, 1), 42)])

    mocker.patch.object(AzureMonitorMetrics, "query", side_effect=busy_query)

    code = await Runner(params).execute("azureservicebus")

    assert code == ExitCode.SUCCESS
    report = written_report(params)
    assert report["reportDuration"] == "1 day, 0:00:00"
    assert report["reportMethod"] == "AzureServiceBus Metrics: acme-bus"
    assert report["ignoredQueues"] == ["error"]
    assert report["queues"][0] == {"queueName": "billing", "noDataOrSendOnly": True}
    assert report["queues"][1]["throughput"] == 42


@pytest.mark.asyncio
async def test_azureservicebus_unreachable(params: Parameters, mocker: MockerFixture):
    params.sources.azure_servicebus.resource_id = RESOURCE_ID
    mocker.patch.object(
        AzureMonitorMetrics,
        "queue_names",
        side_effect=SourceUnavailable("unauthorized", QueryFailureReason.AUTH),
    )

    assert await Runner(params).execute("azureservicebus") == ExitCode.RUNTIME_ERROR


@pytest.mark.asyncio
async def test_servicecontrol_reports_configured_transport(
    params: Parameters, mocker: MockerFixture
):
    params.estimator.test_samples = 1
    mocker.patch.object(
        JSONClient,
        "get_json",
        return_value={
            "transport": {
                "transport_type": "ServiceControl.Transports.ASBS.ASBSTransportCustomization, "
                + "ServiceControl.Transports.ASBS"
            }
        },
    )
    mocker.patch.object(
        ServiceControlClient, "known_endpoints", return_value=[KnownEndpoint("Sales")]
    )
    mocker.patch.object(ServiceControlClient, "monitored_throughput", return_value={"Sales": 0.5})

    code = await Runner(params).execute("servicecontrol")

    assert code == ExitCode.SUCCESS
    report = written_report(params)
    assert report["messageTransport"] == "ASBS"
    assert report["reportMethod"] == "ServiceControl API"
    assert report["queues"] == [{"queueName": "Sales", "throughput": 30}]


@pytest.mark.asyncio
async def test_sqs_run(params: Parameters, aws_clients: dict):
    params.sources.amazon_sqs.region = "eu-west-1"
    aws_clients["sqs"].list_queues.return_value = {
        "QueueUrls": [
            f"https://sqs.eu-west-1.amazonaws.com/123456789012/{name}"
            for name in ("orders", "error", "billing")
        ]
    }

    def statistics(**request):
        if request["Dimensions"][0]["Value"] == "billing":
            return {"Datapoints": []}
        day = datetime(2024, 3, 1, tzinfo=timezone.utc)
        return {"Datapoints": [{"Timestamp": day, "Sum": 42.0}]}

    aws_clients["cloudwatch"].get_metric_statistics.side_effect = statistics

    code = await Runner(params).execute("sqs")

    assert code == ExitCode.SUCCESS
    report = written_report(params)
    assert report["messageTransport"] == "AmazonSQS"
    assert report["reportMethod"] == "AWS CloudWatch Metrics"
    assert report["ignoredQueues"] == ["error"]
    assert report["queues"][0] == {"queueName": "billing", "noDataOrSendOnly": True}
    assert report["queues"][1]["throughput"] == 42


def test_cli_sqltransport(tmp_path, database_url: str):
    config = tmp_path / "config.yaml"
    config.write_text(
        "sampling:\n  test_duration_minutes: 0.002\n  wait_tick_seconds: 0.01\n"
        + "  final_sampling_minutes: 0.001\n"
        + f"report:\n  output_directory: {tmp_path}\n"
        + "sources:\n  queue_tables:\n    required_columns: [Id, RowVersion]\n"
    )

    result = CliRunner().invoke(
        main,
        [
            "--configfile",
            str(config),
            "--customer-name",
            "Acme Corp",
            "--test-mode",
            "--no-console",
            "sqltransport",
            "--url",
            database_url,
        ],
    )

    assert result.exit_code == ExitCode.SUCCESS.value
    assert len(list(tmp_path.glob("acme-corp-throughput-report-*.json"))) == 1


def test_cli_invalid_configuration(tmp_path):
    config = tmp_path / "config.yaml"
    config.write_text("sampling:\n  test_mode: maybe\n")

    result = CliRunner().invoke(main, ["--configfile", str(config), "rabbitmq"])

    assert result.exit_code == ExitCode.INVALID_CONFIG.value


@pytest.mark.asyncio
async def test_cancel_before_first_snapshot(sql_params: Parameters):
    cancel = asyncio.Event()
    cancel.set()

    code = await Runner(sql_params).execute("sqltransport", cancel)

    assert code == ExitCode.USER_CANCELLATION
    assert written_report(sql_params)["totalQueues"] == 0
