"""
Exceptions for the WeChat Pay integration mapped to unified BusinessException variants.
"""
from __future__ import annotations

from typing import Optional
from domain.common.exceptions import BusinessException
from shared.codes.payment_codes import PaymentCode


PROVIDER = "wechat"


def _details(provider: str, extra: Optional[dict] = None, **fields) -> dict:
    full_details = {"provider": provider, **fields}
    if extra:
        full_details.update(extra)
    return full_details


class PaymentConfigurationError(BusinessException):
    """Merchant key or identity unusable; nothing may run without a valid key."""

    def __init__(self, message: str, *, provider: str = PROVIDER, details: Optional[dict] = None):
        super().__init__(
            code=PaymentCode.CONFIG_ERROR,
            message=message,
            error_type="PaymentConfigurationError",
            details=_details(provider, details),
        )


class PaymentProviderError(BusinessException):
    def __init__(
        self,
        message: str,
        *,
        provider: str = PROVIDER,
        provider_code: str | None = None,
        details: Optional[dict] = None,
        code: int = PaymentCode.PROVIDER_ERROR,
        error_type: str = "PaymentProviderError",
    ):
        self.provider = provider
        self.provider_code = provider_code
        super().__init__(
            code=code,
            message=message,
            error_type=error_type,
            details=_details(provider, details, provider_code=provider_code),
        )


class PaymentTransportError(PaymentProviderError):
    """Network failure or an HTTP status other than the one the operation expects."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str = PROVIDER,
        provider_code: str | None = None,
        details: Optional[dict] = None,
    ):
        self.status_code = status_code
        super().__init__(
            message,
            provider=provider,
            provider_code=provider_code,
            details={"status_code": status_code, **(details or {})},
            code=PaymentCode.TRANSPORT_ERROR,
            error_type="PaymentTransportError",
        )


class PaymentProtocolError(PaymentProviderError):
    """Expected status received but the body lacks a required field."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        provider: str = PROVIDER,
        details: Optional[dict] = None,
    ):
        self.status_code = status_code
        super().__init__(
            message,
            provider=provider,
            details={"status_code": status_code, **(details or {})},
            code=PaymentCode.PROTOCOL_ERROR,
            error_type="PaymentProtocolError",
        )


class PaymentNotifyError(BusinessException):
    """Base for callback failures; the delivery must not be acknowledged."""

    code_value: int = PaymentCode.NOTIFY_ERROR
    error_type_name: str = "PaymentNotifyError"

    def __init__(self, message: str, *, provider: str = PROVIDER, details: Optional[dict] = None):
        super().__init__(
            code=self.code_value,
            message=message,
            error_type=self.error_type_name,
            details=_details(provider, details),
        )


class PaymentSignatureError(PaymentNotifyError):
    code_value = PaymentCode.SIGNATURE_ERROR
    error_type_name = "PaymentSignatureError"


class PaymentDecryptError(PaymentNotifyError):
    code_value = PaymentCode.DECRYPT_ERROR
    error_type_name = "PaymentDecryptError"


class PaymentPayloadError(PaymentNotifyError):
    code_value = PaymentCode.PAYLOAD_ERROR
    error_type_name = "PaymentPayloadError"
