"""
Payment gateway port (application/ports) exposing a replaceable protocol.

Application depends on these Protocols; infrastructure implements adapters.
"""
from __future__ import annotations

from typing import Any, Mapping, Optional, Protocol, runtime_checkable

from application.dtos.payments import (
    PrepayRequest,
    RefundRequest,
    RefundResult,
    Transaction,
)


@runtime_checkable
class PaymentGateway(Protocol):
    """Gateway protocol for the payment provider.

    Each call is a single round trip; implementations do not retry.
    """

    provider: str

    async def prepay(self, req: PrepayRequest, *, timeout: Optional[float] = None) -> str: ...

    async def refund(self, req: RefundRequest, *, timeout: Optional[float] = None) -> RefundResult: ...

    async def query_order_by_trade_no(self, trade_no: str, *, timeout: Optional[float] = None) -> Transaction: ...

    async def query_order_by_id(self, transaction_id: str, *, timeout: Optional[float] = None) -> Transaction: ...

    async def close_order(self, trade_no: str, *, timeout: Optional[float] = None) -> bool: ...


@runtime_checkable
class NotificationVerifier(Protocol):
    """Turns an inbound callback into a verified, decrypted transaction."""

    def parse_notify(self, headers: Mapping[str, str], body: bytes) -> Transaction: ...

    async def handle_notification(self, request: Any, writer: Any = None) -> Transaction: ...
