"""
WeChat Pay v3 Native adapter using the community `wechatpayv3` SDK.

The SDK signs requests and verifies the platform signature on 2xx
responses. Every operation is one round trip with no local retry; the
status policy for each endpoint is applied here.
"""
from __future__ import annotations

import json
import re
from datetime import datetime, timedelta
from http import HTTPStatus
from typing import Any, Optional

from pydantic import ValidationError
from wechatpayv3 import WeChatPayType

from application.dtos.payments import (
    PrepayRequest,
    RefundRequest,
    RefundResult,
    Transaction,
    to_minor_units,
)
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import MerchantIdentity
from infrastructure.external.payments.base import BasePaymentClient
from infrastructure.external.payments.exceptions import (
    PaymentProtocolError,
    PaymentTransportError,
)


# Ids are formatted into the request path by the SDK
IDENTIFIER_PATTERN = re.compile(r"^[0-9A-Za-z_\-|*]{1,64}$")


def minute_after(minutes: int, *, now: Optional[datetime] = None) -> str:
    """RFC 3339 timestamp `minutes` from now, with the local UTC offset."""
    base = now or datetime.now().astimezone()
    return (base + timedelta(minutes=minutes)).isoformat(timespec="seconds")


def _check_identifier(value: Optional[str], field: str) -> None:
    if value is not None and not IDENTIFIER_PATTERN.match(value):
        raise DomainValidationException(
            f"{field} may only contain letters, digits, _ - | *",
            field=field,
        )


class WechatPayClient(BasePaymentClient):
    provider = "wechat"

    def __init__(
        self,
        merchant: MerchantIdentity,
        wxpay: Any,
        *,
        app_id: Optional[str] = None,
        notify_url: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        super().__init__(wxpay, timeout=timeout)
        self.merchant = merchant
        self.app_id = app_id
        self.notify_url = notify_url

    async def prepay(self, req: PrepayRequest, *, timeout: Optional[float] = None) -> str:
        """Create a Native order and return its QR ``code_url``."""
        app_id = req.app_id or self.app_id
        if not app_id:
            raise DomainValidationException("app_id is required", field="app_id")
        notify_url = req.notify_url or self.notify_url
        if not notify_url:
            raise DomainValidationException("notify_url is required", field="notify_url")
        _check_identifier(req.trade_no, "trade_no")
        code, message = await self._call(
            "prepay",
            self.wxpay.pay,
            timeout=timeout,
            description=req.description,
            out_trade_no=req.trade_no,
            amount={"total": to_minor_units(req.amount), "currency": req.currency},
            time_expire=minute_after(req.expire_minutes),
            attach=req.attach,
            goods_tag=req.goods_tag,
            detail=req.detail.model_dump(exclude_none=True) if req.detail else None,
            scene_info=req.scene_info.model_dump(exclude_none=True) if req.scene_info else None,
            settle_info=req.settle_info.model_dump(exclude_none=True) if req.settle_info else None,
            notify_url=notify_url,
            appid=app_id,
            support_fapiao=req.support_fapiao or None,
            pay_type=WeChatPayType.NATIVE,
        )
        self._expect_status("prepay", code, message, HTTPStatus.OK)
        code_url = self._json(code, message).get("code_url")
        if not code_url:
            raise PaymentProtocolError("prepay response code_url is empty", status_code=code)
        self._log("wechatpay_prepay_created", trade_no=req.trade_no)
        return code_url

    async def refund(self, req: RefundRequest, *, timeout: Optional[float] = None) -> RefundResult:
        _check_identifier(req.trade_no, "trade_no")
        _check_identifier(req.transaction_id, "transaction_id")
        code, message = await self._call(
            "refund",
            self.wxpay.refund,
            timeout=timeout,
            out_refund_no=req.refund_no,
            amount={
                "refund": to_minor_units(req.refund_amount),
                "total": to_minor_units(req.total_amount),
                "currency": req.currency,
            },
            transaction_id=req.transaction_id,
            out_trade_no=req.trade_no,
            reason=req.reason,
            notify_url=req.notify_url,
            sub_mchid=req.sub_mch_id,
        )
        self._expect_status("refund", code, message, HTTPStatus.OK)
        try:
            result = RefundResult.model_validate(self._json(code, message))
        except ValidationError as exc:
            raise PaymentProtocolError(
                "refund response missing required fields",
                status_code=code,
                details={"errors": [e["loc"] for e in exc.errors()]},
            ) from exc
        self._log("wechatpay_refund_created", refund_no=req.refund_no, status=result.status)
        return result

    async def query_order_by_trade_no(self, trade_no: str, *, timeout: Optional[float] = None) -> Transaction:
        """Order status by merchant trade number (``out_trade_no``)."""
        _check_identifier(trade_no, "trade_no")
        return await self._query(timeout=timeout, out_trade_no=trade_no)

    async def query_order_by_id(self, transaction_id: str, *, timeout: Optional[float] = None) -> Transaction:
        """Order status by the provider transaction id."""
        _check_identifier(transaction_id, "transaction_id")
        return await self._query(timeout=timeout, transaction_id=transaction_id)

    async def close_order(self, trade_no: str, *, timeout: Optional[float] = None) -> bool:
        # Success is 204 only; a 200 here means the provider did something else
        _check_identifier(trade_no, "trade_no")
        code, message = await self._call("close_order", self.wxpay.close, timeout=timeout, out_trade_no=trade_no)
        self._expect_status("close_order", code, message, HTTPStatus.NO_CONTENT)
        self._log("wechatpay_order_closed", trade_no=trade_no)
        return True

    async def _query(self, *, timeout: Optional[float], **ids: str) -> Transaction:
        code, message = await self._call("query_order", self.wxpay.query, timeout=timeout, **ids)
        self._expect_status("query_order", code, message, HTTPStatus.OK)
        try:
            tx = Transaction.model_validate(self._json(code, message))
        except ValidationError as exc:
            raise PaymentProtocolError("query order response malformed", status_code=code) from exc
        if not tx.trade_state:
            raise PaymentProtocolError("query order response trade state is empty", status_code=code)
        return tx

    def _expect_status(self, operation: str, code: int, message: Any, expected: int) -> None:
        if code == expected:
            return
        provider_code = None
        text = f"response http code is [{code}]"
        try:
            payload = json.loads(message)
            provider_code = payload.get("code")
            text = payload.get("message") or text
        except (TypeError, ValueError, AttributeError):
            pass
        self._log(
            "wechatpay_unexpected_status",
            operation=operation,
            status_code=code,
            expected=int(expected),
            provider_code=provider_code,
        )
        raise PaymentTransportError(text, status_code=code, provider_code=provider_code)

    @staticmethod
    def _json(code: int, message: Any) -> dict[str, Any]:
        # The SDK hands back text for JSON responses and raw bytes otherwise
        try:
            payload = json.loads(message)
        except (TypeError, ValueError) as exc:
            raise PaymentProtocolError("response body is not JSON", status_code=code) from exc
        if not isinstance(payload, dict):
            raise PaymentProtocolError("response body is not an object", status_code=code)
        return payload
