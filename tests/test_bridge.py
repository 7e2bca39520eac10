import json

import httpx
import pytest
from loguru import logger

from hl7_gateway.commons.payloads import to_bridge_payload, to_order_payload, to_result_payload
from hl7_gateway.commons.types import Settings
from hl7_gateway.parsers.models import Observation, OrderNotification, ResultNotification
from hl7_gateway.services.bridge import HttpNotificationSink, LoggingSink
from hl7_gateway.services.gateway_service import GatewayService, build_sink

RESULT_URL = "http://oms.local/api/internal/hl7-result"
ORDER_URL = "http://oms.local/api/internal/hl7-order"

RESULT = ResultNotification(
    filler_order_number="FIL-2001",
    universal_service_id="GLU^Glucose",
    priority="R",
    result_status="F",
    observations=(
        Observation(set_id="1", value_type="NM", code="GLU", name="Glucose", value="95", units="mg/dL", ref_range="70-140", abnormal_flag="N"),
        Observation(set_id="2", value_type="NM", code="GLU", name="Glucose", value="180", units="mg/dL", ref_range="70-140", abnormal_flag="H", observed_at="20250101123000"),
    ),
)

ORDER = OrderNotification(order_control="NW", placer_order_number="PLC-1001", filler_order_number="FIL-2001", test_code="GLU^Glucose", priority="R")


def make_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class LogCapture:
    def __init__(self, level="ERROR"):
        self.messages = []
        self._id = logger.add(lambda m: self.messages.append(m.record["message"]), level=level)

    def close(self):
        logger.remove(self._id)


# ----------------- payload shape -----------------
def test_result_payload_shape():
    payload = to_result_payload(RESULT)
    assert payload["resultInfo"] == {
        "fillerOrderNumber": "FIL-2001",
        "universalServiceId": "GLU^Glucose",
        "priority": "R",
        "resultStatus": "F",
    }
    assert payload["observations"][0] == {
        "setId": "1",
        "code": "GLU",
        "name": "Glucose",
        "value": "95",
        "units": "mg/dL",
        "referenceRange": "70-140",
        "isAbnormal": False,
        "dateTimeOfTheObservation": "",
    }
    assert payload["observations"][1]["isAbnormal"] is True
    assert payload["observations"][1]["dateTimeOfTheObservation"] == "20250101123000"
    # must survive json round trip unchanged
    assert json.loads(json.dumps(payload)) == payload


def test_order_payload_shape():
    info = to_order_payload(ORDER)["orderInfo"]
    assert set(info) == {
        "orderControl",
        "placerOrderNumber",
        "fillerOrderNumber",
        "testCode",
        "priority",
        "requestedDateTime",
        "observationDateTime",
        "collectorIdentifier",
        "specimenReceivedDateTime",
    }
    assert info["placerOrderNumber"] == "PLC-1001"


def test_bridge_payload_dispatches_by_type():
    assert "resultInfo" in to_bridge_payload(RESULT)
    assert "orderInfo" in to_bridge_payload(ORDER)
    with pytest.raises(TypeError):
        to_bridge_payload(object())


# ----------------- HttpNotificationSink -----------------
@pytest.mark.asyncio
async def test_result_is_posted_as_json():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((request.method, str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    client = make_client(handler)
    sink = HttpNotificationSink(RESULT_URL, client=client)
    await sink.deliver(RESULT)
    await client.aclose()

    assert len(seen) == 1
    method, url, body = seen[0]
    assert (method, url) == ("POST", RESULT_URL)
    assert body == to_result_payload(RESULT)
    assert len(body["observations"]) == 2


@pytest.mark.asyncio
async def test_order_without_endpoint_is_only_logged():
    calls = []
    client = make_client(lambda request: calls.append(request) or httpx.Response(200))
    await HttpNotificationSink(RESULT_URL, client=client).deliver(ORDER)
    await client.aclose()
    assert calls == []


@pytest.mark.asyncio
async def test_order_posted_when_endpoint_configured():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append((str(request.url), json.loads(request.content)))
        return httpx.Response(201)

    client = make_client(handler)
    await HttpNotificationSink(RESULT_URL, ORDER_URL, client=client).deliver(ORDER)
    await client.aclose()
    assert seen == [(ORDER_URL, to_order_payload(ORDER))]


@pytest.mark.asyncio
async def test_connection_failure_is_logged_not_raised():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = make_client(handler)
    cap = LogCapture()
    try:
        await HttpNotificationSink(RESULT_URL, client=client).deliver(RESULT)
    finally:
        cap.close()
        await client.aclose()
    assert any("Error sending HL7 result" in m for m in cap.messages)


@pytest.mark.asyncio
async def test_error_status_is_logged_not_raised():
    client = make_client(lambda request: httpx.Response(500, text="boom"))
    cap = LogCapture()
    try:
        await HttpNotificationSink(RESULT_URL, client=client).deliver(RESULT)
    finally:
        cap.close()
        await client.aclose()
    assert any("500" in m for m in cap.messages)


@pytest.mark.asyncio
async def test_owned_client_is_closed():
    sink = HttpNotificationSink(RESULT_URL)
    client = sink._get_client()
    await sink.aclose()
    assert client.is_closed


@pytest.mark.asyncio
async def test_logging_sink_accepts_both_kinds():
    sink = LoggingSink()
    await sink.deliver(RESULT)
    await sink.deliver(ORDER)


# ----------------- build_sink -----------------
def test_build_sink_disabled_bridge_logs_only():
    settings = Settings.model_validate({"bridge": {"enabled": False}})
    assert isinstance(build_sink(settings), LoggingSink)
    assert isinstance(GatewayService(settings).sink, LoggingSink)


@pytest.mark.asyncio
async def test_build_sink_http_uses_bridge_settings():
    settings = Settings.model_validate(
        {"bridge": {"result_url": RESULT_URL, "order_url": ORDER_URL, "timeout_sec": 2}}
    )
    sink = build_sink(settings)
    assert isinstance(sink, HttpNotificationSink)
    assert (sink.result_url, sink.order_url, sink.timeout) == (RESULT_URL, ORDER_URL, 2)
    await sink.aclose()
