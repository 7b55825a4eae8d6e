"""
Application service orchestrating payment use-cases.

This class depends only on the application ports and DTOs. Gateway
implementations are provided by infrastructure and injected from the
composition root (main.py lifespan), keeping dependencies one-way.

No deduplication happens here: the provider deduplicates by out_trade_no
and out_refund_no.
"""
from __future__ import annotations

from typing import Any, Optional

from application.dtos.payments import (
    PrepayRequest,
    RefundRequest,
    RefundResult,
    Transaction,
)
from application.ports.payment_gateway import NotificationVerifier, PaymentGateway
from core.logging_config import get_logger
from domain.common.exceptions import BusinessException, DomainValidationException
from shared.codes.payment_codes import PaymentCode


logger = get_logger(__name__)


class PaymentService:
    def __init__(self, gateway: PaymentGateway, verifier: Optional[NotificationVerifier] = None) -> None:
        self.gateway = gateway
        self.verifier = verifier

    async def prepay(self, req: PrepayRequest, *, timeout: Optional[float] = None) -> str:
        logger.info(
            "payment_prepay_request",
            trade_no=req.trade_no,
            amount=str(req.amount),
            currency=req.currency,
            provider=self.gateway.provider,
        )
        code_url = await self.gateway.prepay(req, timeout=timeout)
        logger.info("payment_prepay_response", trade_no=req.trade_no, provider=self.gateway.provider)
        return code_url

    async def refund(self, req: RefundRequest, *, timeout: Optional[float] = None) -> RefundResult:
        logger.info(
            "payment_refund_request",
            trade_no=req.trade_no,
            transaction_id=req.transaction_id,
            refund_no=req.refund_no,
            provider=self.gateway.provider,
        )
        result = await self.gateway.refund(req, timeout=timeout)
        logger.info("payment_refund_response", refund_no=req.refund_no, status=result.status)
        return result

    async def query_order(
        self,
        *,
        trade_no: Optional[str] = None,
        transaction_id: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> Transaction:
        if bool(trade_no) == bool(transaction_id):
            raise DomainValidationException("exactly one of trade_no or transaction_id is required")
        logger.info("payment_query_request", trade_no=trade_no, transaction_id=transaction_id)
        if trade_no:
            return await self.gateway.query_order_by_trade_no(trade_no, timeout=timeout)
        return await self.gateway.query_order_by_id(transaction_id, timeout=timeout)  # type: ignore[arg-type]

    async def close_order(self, trade_no: str, *, timeout: Optional[float] = None) -> bool:
        logger.info("payment_close_request", trade_no=trade_no, provider=self.gateway.provider)
        return await self.gateway.close_order(trade_no, timeout=timeout)

    async def handle_notification(self, request: Any, writer: Any = None) -> Transaction:
        if self.verifier is None:
            raise BusinessException(
                code=PaymentCode.CONFIG_ERROR,
                message="notification verifier not configured",
                error_type="PaymentConfigurationError",
            )
        tx = await self.verifier.handle_notification(request, writer)
        logger.info(
            "payment_notify_handled",
            trade_no=tx.out_trade_no,
            transaction_id=tx.transaction_id,
            trade_state=tx.trade_state,
        )
        return tx
