"""
Payments API routes.

Exposes the WeChat Pay callback endpoint and thin endpoints for prepay,
refund, query and close via the application service. Keep this thin: no
SDK details here.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from api.dependencies import get_payment_service
from application.dtos.payments import NotifyAck, PrepayRequest, RefundRequest, Transaction
from application.services.payment_service import PaymentService
from core.logging_config import get_logger
from core.response import success_response
from infrastructure.external.payments.exceptions import PaymentNotifyError
from shared.codes.payment_codes import WECHAT_TRADE_STATE_TO_INTERNAL


router = APIRouter(prefix="/payments", tags=["Payments"])
logger = get_logger(__name__)


def _ack(ack: NotifyAck, status_code: int) -> Response:
    return Response(content=ack.json_bytes(), status_code=status_code, media_type="application/json")


def _order_view(tx: Transaction) -> dict:
    data = tx.model_dump(mode="json", exclude_none=True)
    data["status"] = WECHAT_TRADE_STATE_TO_INTERNAL.get(tx.trade_state or "", tx.trade_state)
    return data


@router.post("/wechat/notify", summary="WeChat Pay callback")
async def wechat_notify(request: Request, service: PaymentService = Depends(get_payment_service)):
    try:
        await service.handle_notification(request)
    except PaymentNotifyError as exc:
        # Non-2xx without the success body: the provider redelivers later
        logger.warning("wechatpay_notify_rejected", error_type=exc.error_type, error=exc.message)
        return _ack(NotifyAck.fail(exc.message), 400)
    return _ack(NotifyAck.success(), 200)


@router.post("/prepay", summary="Create Native (QR) payment")
async def prepay(
    payload: PrepayRequest,
    timeout: Optional[float] = Query(None, gt=0),
    service: PaymentService = Depends(get_payment_service),
):
    code_url = await service.prepay(payload, timeout=timeout)
    return success_response(data={"trade_no": payload.trade_no, "code_url": code_url}, message="Prepay created")


@router.post("/refunds", summary="Create refund")
async def refund(
    payload: RefundRequest,
    timeout: Optional[float] = Query(None, gt=0),
    service: PaymentService = Depends(get_payment_service),
):
    result = await service.refund(payload, timeout=timeout)
    return success_response(data=result.model_dump(mode="json", exclude_none=True), message="Refund created")


@router.get("/orders/{trade_no}", summary="Query order by merchant trade number")
async def query_order(
    trade_no: str,
    timeout: Optional[float] = Query(None, gt=0),
    service: PaymentService = Depends(get_payment_service),
):
    tx = await service.query_order(trade_no=trade_no, timeout=timeout)
    return success_response(data=_order_view(tx), message="Order status")


@router.get("/transactions/{transaction_id}", summary="Query order by provider transaction id")
async def query_transaction(
    transaction_id: str,
    timeout: Optional[float] = Query(None, gt=0),
    service: PaymentService = Depends(get_payment_service),
):
    tx = await service.query_order(transaction_id=transaction_id, timeout=timeout)
    return success_response(data=_order_view(tx), message="Order status")


@router.post("/orders/{trade_no}/close", summary="Close order")
async def close_order(
    trade_no: str,
    timeout: Optional[float] = Query(None, gt=0),
    service: PaymentService = Depends(get_payment_service),
):
    closed = await service.close_order(trade_no, timeout=timeout)
    return success_response(data={"trade_no": trade_no, "closed": closed}, message="Order closed")
