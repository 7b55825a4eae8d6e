import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlsplit

import pytest
import requests

from application.dtos.payments import PrepayRequest, RefundRequest
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import TradeState
from infrastructure.external.payments.exceptions import (
    PaymentProtocolError,
    PaymentProviderError,
    PaymentTransportError,
)
from infrastructure.external.payments.wechatpay_client import minute_after
from tests.conftest import APP_ID, MCH_ID


def _path(request) -> str:
    return urlsplit(request.url).path


def _prepay(**overrides) -> PrepayRequest:
    data = {
        "amount": Decimal("12.34"),
        "trade_no": "ORDER_20240101_0001",
        "expire_minutes": 15,
        "notify_url": "https://merchant.example.com/api/v1/payments/wechat/notify",
        "description": "Image形象店-深圳腾大-QQ公仔",
    }
    data.update(overrides)
    return PrepayRequest(**data)


def test_minute_after_is_rfc3339_with_offset():
    now = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone(timedelta(hours=8)))
    assert minute_after(30, now=now) == "2024-01-01T12:30:00+08:00"


@pytest.mark.asyncio
async def test_prepay_sends_minor_units_and_returns_code_url(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {"code_url": "weixin://wxpay/bizpayurl?pr=p4lpSuKzz"})

    code_url = await wechatpay.client.prepay(_prepay())

    assert code_url == "weixin://wxpay/bizpayurl?pr=p4lpSuKzz"
    request = wechatpay.http.requests[0]
    assert request.method == "POST"
    assert _path(request) == "/v3/pay/transactions/native"
    body = json.loads(request.body)
    assert body["amount"] == {"total": 1234, "currency": "CNY"}
    assert isinstance(body["amount"]["total"], int)
    assert body["appid"] == APP_ID
    assert body["mchid"] == MCH_ID
    assert body["out_trade_no"] == "ORDER_20240101_0001"
    # None-valued optionals are omitted
    assert "attach" not in body and "detail" not in body
    expire = datetime.fromisoformat(body["time_expire"])
    assert expire.utcoffset() is not None
    delta = expire - datetime.now(timezone.utc)
    assert timedelta(minutes=14) < delta <= timedelta(minutes=15, seconds=1)
    authorization = request.headers["Authorization"]
    assert authorization.startswith("WECHATPAY2-SHA256-RSA2048 ")
    assert f'mchid="{MCH_ID}"' in authorization


@pytest.mark.asyncio
async def test_prepay_request_app_id_overrides_default(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {"code_url": "weixin://x"})

    await wechatpay.client.prepay(_prepay(app_id="wx_other_app"))

    assert json.loads(wechatpay.http.requests[0].body)["appid"] == "wx_other_app"


@pytest.mark.asyncio
async def test_prepay_without_any_app_id(wechatpay):
    wechatpay.client.app_id = None
    with pytest.raises(DomainValidationException):
        await wechatpay.client.prepay(_prepay())
    assert wechatpay.http.requests == []


@pytest.mark.asyncio
async def test_prepay_non_200_is_transport_error(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(
        400, {"code": "PARAM_ERROR", "message": "out_trade_no duplicated"}, signed=False
    )

    with pytest.raises(PaymentTransportError) as ei:
        await wechatpay.client.prepay(_prepay())
    assert ei.value.status_code == 400
    assert ei.value.provider_code == "PARAM_ERROR"
    assert ei.value.message == "out_trade_no duplicated"


@pytest.mark.asyncio
async def test_prepay_missing_code_url_is_protocol_error(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {"prepay_id": "wx26112221580621e9b071c00d9e093b0000"})

    with pytest.raises(PaymentProtocolError):
        await wechatpay.client.prepay(_prepay())


@pytest.mark.asyncio
async def test_unsigned_success_response_rejected(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {"code_url": "weixin://x"}, signed=False)

    with pytest.raises(PaymentProviderError):
        await wechatpay.client.prepay(_prepay())


@pytest.mark.asyncio
async def test_network_error_is_transport_error_without_retry(wechatpay):
    def handler(request):
        raise requests.ConnectionError("connection refused")

    wechatpay.http.handler = handler
    with pytest.raises(PaymentTransportError) as ei:
        await wechatpay.client.prepay(_prepay())
    assert ei.value.status_code is None
    assert len(wechatpay.http.requests) == 1


@pytest.mark.asyncio
async def test_close_order_204(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(204)

    assert await wechatpay.client.close_order("ORDER_20240101_0001") is True
    request = wechatpay.http.requests[0]
    assert _path(request) == "/v3/pay/transactions/out-trade-no/ORDER_20240101_0001/close"
    assert json.loads(request.body) == {"mchid": MCH_ID}


@pytest.mark.asyncio
async def test_close_order_200_is_not_success(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {})

    with pytest.raises(PaymentTransportError) as ei:
        await wechatpay.client.close_order("ORDER_20240101_0001")
    assert ei.value.status_code == 200


@pytest.mark.asyncio
async def test_query_by_trade_no(wechatpay, platform, transaction_payload):
    wechatpay.http.handler = lambda request: platform.respond(200, transaction_payload)

    tx = await wechatpay.client.query_order_by_trade_no("ORDER_20240101_0001")

    assert tx.state is TradeState.SUCCESS
    assert tx.trade_state_desc == "支付成功"
    assert tx.amount.total == 1234
    request = wechatpay.http.requests[0]
    assert request.method == "GET"
    assert _path(request) == "/v3/pay/transactions/out-trade-no/ORDER_20240101_0001"
    assert parse_qs(urlsplit(request.url).query)["mchid"] == MCH_ID


@pytest.mark.asyncio
async def test_query_by_id_passes_through_unknown_state(wechatpay, platform, transaction_payload):
    payload = {**transaction_payload, "trade_state": "NOTPAY", "trade_state_desc": "订单未支付"}
    wechatpay.http.handler = lambda request: platform.respond(200, payload)

    tx = await wechatpay.client.query_order_by_id("1217752501201407033233368018")

    assert tx.state == "NOTPAY"
    assert _path(wechatpay.http.requests[0]) == "/v3/pay/transactions/id/1217752501201407033233368018"


@pytest.mark.asyncio
async def test_query_without_trade_state_is_protocol_error(wechatpay, platform, transaction_payload):
    payload = {k: v for k, v in transaction_payload.items() if k != "trade_state"}
    wechatpay.http.handler = lambda request: platform.respond(200, payload)

    with pytest.raises(PaymentProtocolError):
        await wechatpay.client.query_order_by_trade_no("ORDER_20240101_0001")


@pytest.mark.asyncio
async def test_query_not_found(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(
        404, {"code": "ORDER_NOT_EXIST", "message": "订单不存在"}, signed=False
    )

    with pytest.raises(PaymentTransportError) as ei:
        await wechatpay.client.query_order_by_trade_no("ORDER_MISSING")
    assert ei.value.status_code == 404
    assert ei.value.provider_code == "ORDER_NOT_EXIST"


@pytest.mark.asyncio
async def test_refund_body_and_result(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {
        "refund_id": "50000000382019052709732678859",
        "out_refund_no": "REFUND_0001",
        "status": "PROCESSING",
        "amount": {"total": 1234, "refund": 100, "currency": "CNY"},
    })
    req = RefundRequest(
        trade_no="ORDER_20240101_0001",
        refund_no="REFUND_0001",
        refund_amount=Decimal("1.00"),
        total_amount=Decimal("12.34"),
        reason="商品已售完",
    )

    result = await wechatpay.client.refund(req)

    assert result.refund_id == "50000000382019052709732678859"
    assert result.status == "PROCESSING"
    request = wechatpay.http.requests[0]
    assert _path(request) == "/v3/refund/domestic/refunds"
    body = json.loads(request.body)
    assert body["out_trade_no"] == "ORDER_20240101_0001"
    assert "transaction_id" not in body
    assert body["out_refund_no"] == "REFUND_0001"
    assert body["amount"] == {"refund": 100, "total": 1234, "currency": "CNY"}


@pytest.mark.asyncio
async def test_refund_missing_status_is_protocol_error(wechatpay, platform):
    wechatpay.http.handler = lambda request: platform.respond(200, {"refund_id": "5000"})
    req = RefundRequest(
        transaction_id="1217752501201407033233368018",
        refund_no="REFUND_0002",
        refund_amount=Decimal("1"),
        total_amount=Decimal("1"),
    )

    with pytest.raises(PaymentProtocolError):
        await wechatpay.client.refund(req)


@pytest.mark.asyncio
async def test_prepay_notify_url_falls_back_to_configured(wechatpay, platform):
    wechatpay.client.notify_url = "https://merchant.example.com/default/notify"
    wechatpay.http.handler = lambda request: platform.respond(200, {"code_url": "weixin://x"})

    await wechatpay.client.prepay(_prepay(notify_url=None))

    assert json.loads(wechatpay.http.requests[0].body)["notify_url"] == "https://merchant.example.com/default/notify"


@pytest.mark.asyncio
async def test_prepay_without_any_notify_url(wechatpay):
    with pytest.raises(DomainValidationException) as ei:
        await wechatpay.client.prepay(_prepay(notify_url=None))
    assert ei.value.field == "notify_url"


@pytest.mark.asyncio
@pytest.mark.parametrize("trade_no", ["ORDER?mchid=other&x=1", "ORDER/../refunds", "订单0001"])
async def test_query_rejects_ids_that_would_alter_the_path(wechatpay, trade_no):
    with pytest.raises(DomainValidationException) as ei:
        await wechatpay.client.query_order_by_trade_no(trade_no)
    assert ei.value.field == "trade_no"
    assert wechatpay.http.requests == []


@pytest.mark.asyncio
async def test_close_and_query_by_id_reject_unsafe_ids(wechatpay):
    with pytest.raises(DomainValidationException):
        await wechatpay.client.close_order("ORDER#1")
    with pytest.raises(DomainValidationException):
        await wechatpay.client.query_order_by_id("4200 0001")
    assert wechatpay.http.requests == []


@pytest.mark.asyncio
async def test_query_with_empty_trade_state_is_protocol_error(wechatpay, platform, transaction_payload):
    payload = {**transaction_payload, "trade_state": ""}
    wechatpay.http.handler = lambda request: platform.respond(200, payload)

    with pytest.raises(PaymentProtocolError):
        await wechatpay.client.query_order_by_trade_no("ORDER_20240101_0001")


@pytest.mark.asyncio
async def test_per_call_timeout_is_transport_error(wechatpay, platform, transaction_payload):
    def slow(request):
        time.sleep(0.5)
        return platform.respond(200, transaction_payload)

    wechatpay.http.handler = slow
    with pytest.raises(PaymentTransportError) as ei:
        await wechatpay.client.query_order_by_trade_no("ORDER_20240101_0001", timeout=0.05)
    assert "timed out" in ei.value.message
