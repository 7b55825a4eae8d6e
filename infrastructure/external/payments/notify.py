"""
Payment-result callback verification and decryption.

Signature verification and AES-GCM decryption are done by the shared
`wechatpayv3` SDK instance; this module adds the header, timestamp and
payload checks and maps failures onto the notify error taxonomy.
"""
from __future__ import annotations

import asyncio
import inspect
import time
from typing import Any, Awaitable, Callable, Mapping, Optional, Union

import requests
from cryptography.exceptions import InvalidTag
from pydantic import ValidationError

from application.dtos.payments import NotifyAck, NotifyEnvelope, Transaction
from core.logging_config import get_logger
from core.settings import payment_settings
from domain.payment.entity import MerchantIdentity
from infrastructure.external.payments.exceptions import (
    PaymentDecryptError,
    PaymentPayloadError,
    PaymentSignatureError,
)


logger = get_logger(__name__)

HEADER_SERIAL = "Wechatpay-Serial"
HEADER_SIGNATURE = "Wechatpay-Signature"
HEADER_TIMESTAMP = "Wechatpay-Timestamp"
HEADER_NONCE = "Wechatpay-Nonce"
SIGNATURE_HEADERS = (HEADER_SERIAL, HEADER_SIGNATURE, HEADER_TIMESTAMP, HEADER_NONCE)

ENCRYPT_RESOURCE = "encrypt-resource"
AEAD_AES_256_GCM = "AEAD_AES_256_GCM"

# Called with (status_code, body) to acknowledge the delivery
AckWriter = Callable[[int, bytes], Union[Awaitable[None], None]]


def _signature_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Pick the ``Wechatpay-*`` headers case-insensitively, under their canonical names."""
    lowered = {k.lower(): v for k, v in headers.items()}
    picked = {name: lowered.get(name.lower()) for name in SIGNATURE_HEADERS}
    missing = [name for name, value in picked.items() if not value]
    if missing:
        raise PaymentSignatureError("missing signature headers", details={"missing": missing})
    return picked


class NotifyHandler:
    """Verifies, decrypts and parses WeChat Pay callback deliveries."""

    provider = "wechat"

    def __init__(
        self,
        merchant: MerchantIdentity,
        wxpay: Any,
        *,
        tolerance_seconds: Optional[int] = None,
    ) -> None:
        self.merchant = merchant
        self.wxpay = wxpay
        self.tolerance_seconds = (
            tolerance_seconds if tolerance_seconds is not None else payment_settings.webhook.tolerance_seconds
        )

    def parse_notify(self, headers: Mapping[str, str], body: bytes) -> Transaction:
        """Verify the signature, decrypt ``resource`` and return the transaction.

        The call may block: an unknown certificate serial makes the SDK
        download the platform certificates.

        Raises:
            PaymentSignatureError: missing headers, unknown certificate serial,
                signature mismatch or stale timestamp.
            PaymentDecryptError: AES-GCM decryption failed.
            PaymentPayloadError: body not UTF-8, envelope or decrypted payload
                has the wrong shape.
        """
        signed = _signature_headers(headers)
        try:
            text = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise PaymentPayloadError("notify body is not valid UTF-8") from exc

        try:
            envelope = NotifyEnvelope.model_validate_json(text)
        except ValidationError as exc:
            raise PaymentPayloadError("notify envelope malformed") from exc
        if envelope.resource_type != ENCRYPT_RESOURCE:
            raise PaymentPayloadError(
                "unsupported resource type",
                details={"resource_type": envelope.resource_type},
            )
        if envelope.resource.algorithm != AEAD_AES_256_GCM:
            raise PaymentPayloadError(
                "unsupported resource algorithm",
                details={"algorithm": envelope.resource.algorithm},
            )

        try:
            result = self.wxpay.callback(signed, text)
        except InvalidTag as exc:
            raise PaymentDecryptError("notify resource decryption failed") from exc
        except requests.RequestException as exc:
            raise PaymentSignatureError(f"platform certificate refresh failed: {exc}") from exc
        except (ValueError, TypeError, AttributeError, KeyError) as exc:
            raise PaymentPayloadError("notify resource is not valid JSON") from exc
        if result is None:
            raise PaymentSignatureError(
                "notify signature verification failed",
                details={"serial_no": signed[HEADER_SERIAL]},
            )
        self._check_timestamp(signed[HEADER_TIMESTAMP])

        try:
            tx = Transaction.model_validate(result.get("resource"))
        except ValidationError as exc:
            raise PaymentPayloadError("notify resource is not a transaction") from exc

        logger.info(
            "wechatpay_notify_parsed",
            notify_id=envelope.id,
            event_type=envelope.event_type,
            serial_no=signed[HEADER_SERIAL],
            trade_no=tx.out_trade_no,
            trade_state=tx.trade_state,
        )
        return tx

    async def handle_notification(self, request: Any, writer: Optional[AckWriter] = None) -> Transaction:
        """Parse a callback from a Starlette/FastAPI request.

        When ``writer`` is given the success acknowledgement is written through
        it; otherwise the caller acknowledges. Nothing is written on failure.
        """
        body = await request.body()
        headers = {k: v for k, v in request.headers.items()}
        tx = await asyncio.to_thread(self.parse_notify, headers, body)
        if writer is not None:
            try:
                result = writer(200, NotifyAck.success().json_bytes())
                if inspect.isawaitable(result):
                    await result
            except Exception as exc:
                logger.warning("wechatpay_notify_ack_failed", error=str(exc), trade_no=tx.out_trade_no)
        return tx

    def _check_timestamp(self, timestamp: str) -> None:
        if self.tolerance_seconds <= 0:
            return
        try:
            ts = int(timestamp)
        except ValueError as exc:
            raise PaymentSignatureError("invalid Wechatpay-Timestamp") from exc
        if abs(time.time() - ts) > self.tolerance_seconds:
            raise PaymentSignatureError(
                "notify timestamp outside tolerance",
                details={"timestamp": ts, "tolerance_seconds": self.tolerance_seconds},
            )
