"""
Payment specific codes and provider trade-state mapping.
"""
from __future__ import annotations

from enum import IntEnum


class PaymentCode(IntEnum):
    # Generic success
    SUCCESS = 0

    # Configuration (59xxx)
    CONFIG_ERROR = 59000

    # Provider/Network errors (6xxxx)
    PROVIDER_ERROR = 60000
    TRANSPORT_ERROR = 60001
    PROTOCOL_ERROR = 60002

    # Callback verification (61xxx)
    NOTIFY_ERROR = 61000
    SIGNATURE_ERROR = 61001
    DECRYPT_ERROR = 61002
    PAYLOAD_ERROR = 61003


# WeChat Pay trade_state -> internal status. Values not listed are passed through.
WECHAT_TRADE_STATE_TO_INTERNAL = {
    "SUCCESS": "succeeded",
    "ACCEPTED": "processing",
    "PAY_FAIL": "failed",
    "REFUND": "refund_pending",
    "NOTPAY": "created",
    "USERPAYING": "pending",
    "CLOSED": "canceled",
    "REVOKED": "canceled",
    "PAYERROR": "failed",
}
