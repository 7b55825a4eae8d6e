"""
Payment DTOs (Pydantic v2) used at application boundaries.

Amounts on request DTOs are major currency units (Decimal, yuan); the
gateway converts them to minor units (fen) once, in `to_minor_units`.
"""
from __future__ import annotations

import json
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from pydantic.types import condecimal

from domain.payment.entity import TradeState

# WeChat Pay only settles CNY for domestic Native payments
SUPPORTED_CURRENCIES = {"CNY"}

MINOR_UNITS_PER_MAJOR = Decimal(100)


def to_minor_units(amount: Decimal) -> int:
    """Convert a major-unit amount (yuan) to integer minor units (fen)."""
    return int((Decimal(amount) * MINOR_UNITS_PER_MAJOR).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _validate_currency(v: str) -> str:
    u = (v or "").upper()
    if len(u) != 3 or not u.isalpha():
        raise ValueError("currency must be ISO-4217 alpha-3")
    if u not in SUPPORTED_CURRENCIES:
        raise ValueError("unsupported currency")
    return u


class GoodsDetail(BaseModel):
    merchant_goods_id: str
    quantity: int = Field(gt=0)
    unit_price: int  # minor units, as the provider expects
    wechatpay_goods_id: Optional[str] = None
    goods_name: Optional[str] = None


class Detail(BaseModel):
    cost_price: Optional[int] = None
    invoice_id: Optional[str] = None
    goods_detail: list[GoodsDetail] = Field(default_factory=list)


class SettleInfo(BaseModel):
    profit_sharing: Optional[bool] = None


class StoreInfo(BaseModel):
    id: str
    name: Optional[str] = None
    area_code: Optional[str] = None
    address: Optional[str] = None


class SceneInfo(BaseModel):
    payer_client_ip: str
    device_id: Optional[str] = None
    store_info: Optional[StoreInfo] = None


class PrepayRequest(BaseModel):
    """Native (QR code) prepay request."""

    app_id: Optional[str] = None
    amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="CNY")
    trade_no: str = Field(min_length=6, max_length=32, pattern=r"^[0-9A-Za-z_\-|*]+$")
    expire_minutes: int = Field(gt=0)
    notify_url: Optional[str] = None
    description: str
    attach: Optional[str] = None
    goods_tag: Optional[str] = None
    support_fapiao: bool = False
    detail: Optional[Detail] = None
    settle_info: Optional[SettleInfo] = None
    scene_info: Optional[SceneInfo] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency(cls, v: str) -> str:
        return _validate_currency(v)


class RefundRequest(BaseModel):
    """Domestic refund request; exactly one of trade_no / transaction_id."""

    trade_no: Optional[str] = None
    transaction_id: Optional[str] = None
    refund_no: str = Field(min_length=1, max_length=64)
    refund_amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    total_amount: condecimal(gt=0, decimal_places=2)  # type: ignore[valid-type]
    currency: str = Field(default="CNY")
    sub_mch_id: Optional[str] = None
    notify_url: Optional[str] = None
    reason: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _upper_and_validate_currency_refund(cls, v: str) -> str:
        return _validate_currency(v)

    @model_validator(mode="after")
    def _exactly_one_order_reference(self):
        # refund_amount <= total_amount is enforced by the provider, not here
        if bool(self.trade_no) == bool(self.transaction_id):
            raise ValueError("exactly one of trade_no or transaction_id is required")
        return self


class TransactionAmount(BaseModel):
    total: Optional[int] = None
    payer_total: Optional[int] = None
    currency: Optional[str] = None
    payer_currency: Optional[str] = None


class Payer(BaseModel):
    openid: Optional[str] = None


class Transaction(BaseModel):
    """Order as reported by the provider (query response or callback payload)."""

    appid: Optional[str] = None
    mchid: Optional[str] = None
    out_trade_no: Optional[str] = None
    transaction_id: Optional[str] = None
    trade_type: Optional[str] = None
    trade_state: Optional[str] = None
    trade_state_desc: Optional[str] = None
    bank_type: Optional[str] = None
    attach: Optional[str] = None
    success_time: Optional[str] = None
    payer: Optional[Payer] = None
    amount: Optional[TransactionAmount] = None
    scene_info: Optional[dict[str, Any]] = None
    promotion_detail: Optional[list[dict[str, Any]]] = None

    model_config = ConfigDict(extra="allow")

    @property
    def state(self) -> Union[TradeState, str, None]:
        if self.trade_state is None:
            return None
        return TradeState.parse(self.trade_state)


class RefundAmount(BaseModel):
    total: Optional[int] = None
    refund: Optional[int] = None
    payer_total: Optional[int] = None
    payer_refund: Optional[int] = None
    settlement_refund: Optional[int] = None
    settlement_total: Optional[int] = None
    discount_refund: Optional[int] = None
    currency: Optional[str] = None


class RefundResult(BaseModel):
    refund_id: str
    out_refund_no: Optional[str] = None
    transaction_id: Optional[str] = None
    out_trade_no: Optional[str] = None
    channel: Optional[str] = None
    user_received_account: Optional[str] = None
    success_time: Optional[str] = None
    create_time: Optional[str] = None
    status: str
    funds_account: Optional[str] = None
    amount: Optional[RefundAmount] = None

    model_config = ConfigDict(extra="allow")


class EncryptedResource(BaseModel):
    algorithm: str
    ciphertext: str
    nonce: str
    associated_data: str = ""
    original_type: Optional[str] = None


class NotifyEnvelope(BaseModel):
    id: Optional[str] = None
    create_time: Optional[str] = None
    event_type: Optional[str] = None
    resource_type: Optional[str] = None
    summary: Optional[str] = None
    resource: EncryptedResource


class NotifyAck(BaseModel):
    """Body returned to the provider after a callback delivery."""

    code: str
    message: str

    @classmethod
    def success(cls) -> "NotifyAck":
        return cls(code="0", message="SUCCESS")

    @classmethod
    def fail(cls, message: str) -> "NotifyAck":
        return cls(code="FAIL", message=message)

    def json_bytes(self) -> bytes:
        return json.dumps(self.model_dump(), separators=(",", ":")).encode("utf-8")
