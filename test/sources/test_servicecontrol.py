from datetime import datetime, timezone

import pytest
from pytest_mock import MockerFixture

from throughput.components.config_parser import ServiceControlParams
from throughput.components.errors import InvalidEnvironment, QueryFailureReason, SourceUnavailable
from throughput.sources import JSONClient, ServiceControlClient
from throughput.sources.servicecontrol import parse_timestamp


@pytest.fixture
def servicecontrol() -> ServiceControlClient:
    return ServiceControlClient(
        JSONClient("http://sc:33333/api"), JSONClient("http://sc-monitoring:33633")
    )


def test_parse_timestamp():
    expected = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)

    assert parse_timestamp("2024-03-01T12:00:00Z") == expected
    assert parse_timestamp("2024-03-01T12:00:00") == expected
    assert parse_timestamp("2024-03-01T13:00:00+01:00") == expected


@pytest.mark.asyncio
async def test_known_endpoints(servicecontrol: ServiceControlClient, mocker: MockerFixture):
    async def primary(path, params=None):
        if path == "/endpoints":
            return [
                {"name": "Sales", "monitored": False},
                {"name": "Sales", "monitored": True},
                {"name": "Billing"},
            ]
        if path == "/endpoints/Sales/messages/":
            return []
        if path == "/endpoints/Billing/messages/":
            return [{"processed_at": "2024-03-01T12:00:00Z"}]
        raise AssertionError(path)

    mocker.patch.object(servicecontrol.primary, "get_json", side_effect=primary)

    endpoints = await servicecontrol.known_endpoints()

    assert [(e.name, e.audited, e.heartbeats_enabled) for e in endpoints] == [
        ("Billing", True, False),
        ("Sales", False, True),
    ]


@pytest.mark.asyncio
async def test_known_endpoints_wrong_url(
    servicecontrol: ServiceControlClient, mocker: MockerFixture
):
    mocker.patch.object(servicecontrol.primary, "get_json", return_value=[{"id": 1}])

    with pytest.raises(InvalidEnvironment):
        await servicecontrol.known_endpoints()


@pytest.mark.asyncio
async def test_monitored_throughput(servicecontrol: ServiceControlClient, mocker: MockerFixture):
    get_json = mocker.patch.object(
        servicecontrol.monitoring,
        "get_json",
        return_value=[
            {"name": "Sales", "metrics": {"throughput": {"average": 2.5}}},
            {"name": "Billing", "metrics": {"throughput": {"average": None}}},
        ],
    )

    assert await servicecontrol.monitored_throughput(60) == {"Sales": 2.5, "Billing": 0.0}
    get_json.assert_called_once_with("/monitored-endpoints", {"history": 60})


@pytest.mark.asyncio
async def test_monitored_throughput_retried(
    servicecontrol: ServiceControlClient, mocker: MockerFixture
):
    get_json = mocker.patch.object(
        servicecontrol.monitoring,
        "get_json",
        side_effect=[SourceUnavailable("blip"), SourceUnavailable("blip"), []],
    )

    assert await servicecontrol.monitored_throughput(5) == {}
    assert get_json.call_count == 3


@pytest.mark.asyncio
async def test_audit_page(servicecontrol: ServiceControlClient, mocker: MockerFixture):
    get_json = mocker.patch.object(
        servicecontrol.primary,
        "get_json",
        return_value=[
            {"processed_at": "2024-03-01T12:00:00Z"},
            {"processed_at": "2024-03-01T11:59:00Z"},
        ],
    )

    page = await servicecontrol.audit_log("Sales Endpoint").get_page(3, 500)

    assert page[0] > page[1]
    get_json.assert_called_once_with(
        "/endpoints/Sales%20Endpoint/messages/",
        {"page": 3, "per_page": 500, "sort": "processed_at", "direction": "desc"},
    )


@pytest.mark.asyncio
async def test_malformed_audit_page(servicecontrol: ServiceControlClient, mocker: MockerFixture):
    mocker.patch.object(servicecontrol.primary, "get_json", return_value={"error": "nope"})

    with pytest.raises(SourceUnavailable) as exc_info:
        await servicecontrol.audit_log("Sales").get_page(1, 500)

    assert exc_info.value.reason == QueryFailureReason.MALFORMED_RESPONSE


def test_from_params():
    client = ServiceControlClient.from_params(ServiceControlParams(), timeout=10)

    assert client.primary.url == "http://localhost:33333/api"
    assert client.monitoring.url == "http://localhost:33633"
    assert client.report_method == "ServiceControl API"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "transport, expected",
    [
        (
            {
                "transport_customization_type": "ServiceControl.Transports.RabbitMQ."
                + "RabbitMQConventionalRoutingTransportCustomization, "
                + "ServiceControl.Transports.RabbitMQ"
            },
            "RabbitMQConventionalRouting",
        ),
        (
            {
                "transport_type": "ServiceControl.Transports.SqlServer."
                + "SqlServerTransportCustomization, ServiceControl.Transports.SqlServer"
            },
            "SqlServer",
        ),
        ({"transport_customization_type": "Acme.Messaging.InHouseBus"}, "InHouseBus"),
    ],
)
async def test_resolve_transport(
    servicecontrol: ServiceControlClient, mocker: MockerFixture, transport, expected
):
    get_json = mocker.patch.object(
        servicecontrol.primary, "get_json", return_value={"transport": transport}
    )

    assert await servicecontrol.resolve_transport() == expected
    assert servicecontrol.transport == expected
    get_json.assert_called_once_with("/configuration")


@pytest.mark.asyncio
async def test_resolve_transport_unsupported_version(
    servicecontrol: ServiceControlClient, mocker: MockerFixture
):
    mocker.patch.object(servicecontrol.primary, "get_json", return_value={"transport": {}})

    with pytest.raises(InvalidEnvironment):
        await servicecontrol.resolve_transport()
    assert servicecontrol.transport == "ServiceControl"
