"""
Payment-related settings using pydantic-settings v2 with nested env keys.

Example: PAYMENT__WECHAT__MCH_ID=1900000001
"""
from __future__ import annotations

from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import BaseModel, Field


class PaymentTimeouts(BaseModel):
    # connect/read go to the SDK's HTTP session; total is the per-call deadline
    connect: float = 1.0
    read: float = 3.0
    total: float = 5.0


class PaymentRetry(BaseModel):
    # Only used for the platform certificate bootstrap; business calls are single attempt
    max: int = 2
    base_backoff: float = 0.2


class WebhookSettings(BaseModel):
    tolerance_seconds: int = 300


class WechatSettings(BaseModel):
    mch_id: Optional[str] = None
    mch_cert_serial_no: Optional[str] = None
    api_v3_key: Optional[str] = None
    # PEM file path (*.pem) or the key body itself
    private_key: Optional[str] = None
    app_id: Optional[str] = None
    notify_url: Optional[str] = None
    # Platform certificates are cached here by the SDK between restarts
    platform_cert_dir: Optional[str] = None


class PaymentSettings(BaseSettings):
    timeouts: PaymentTimeouts = Field(default_factory=PaymentTimeouts)
    retry: PaymentRetry = Field(default_factory=PaymentRetry)
    webhook: WebhookSettings = Field(default_factory=WebhookSettings)
    wechat: WechatSettings = Field(default_factory=WechatSettings)

    model_config = SettingsConfigDict(
        env_prefix="PAYMENT__",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        env_nested_delimiter="__",
    )


payment_settings = PaymentSettings()
