"""
Factory for the WeChat Pay components.

The merchant key is loaded once and one `WeChatPay` SDK instance is built per
merchant; the gateway client and the notify handler share it, and with it
the SDK's platform certificate cache.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Any, Optional

import requests
from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from wechatpayv3 import WeChatPay, WeChatPayType

from core.logging_config import get_logger
from core.settings import PaymentSettings, payment_settings
from domain.common.exceptions import DomainValidationException
from domain.payment.entity import MerchantIdentity
from infrastructure.external.payments.exceptions import (
    PaymentConfigurationError,
    PaymentTransportError,
)
from infrastructure.external.payments.keys import private_key_pem
from infrastructure.external.payments.notify import NotifyHandler
from infrastructure.external.payments.wechatpay_client import WechatPayClient


logger = get_logger(__name__)


@dataclass
class WechatPayComponents:
    merchant: MerchantIdentity
    wxpay: Any
    client: WechatPayClient
    notify_handler: NotifyHandler


def merchant_from_settings(cfg: Optional[PaymentSettings] = None) -> MerchantIdentity:
    wechat = (cfg or payment_settings).wechat
    required = {
        "mch_id": wechat.mch_id,
        "mch_cert_serial_no": wechat.mch_cert_serial_no,
        "api_v3_key": wechat.api_v3_key,
        "private_key": wechat.private_key,
    }
    missing = sorted(name for name, value in required.items() if not value)
    if missing:
        raise PaymentConfigurationError("WECHAT configuration incomplete", details={"missing": missing})
    try:
        return MerchantIdentity(
            mch_id=wechat.mch_id,
            cert_serial_no=wechat.mch_cert_serial_no,
            api_v3_key=wechat.api_v3_key,
            private_key=wechat.private_key,
        )
    except DomainValidationException as exc:
        raise PaymentConfigurationError(exc.message, details={"field": exc.field}) from exc


def _create_sdk(cfg: PaymentSettings, merchant: MerchantIdentity, private_key: str) -> Any:
    cert_dir = cfg.wechat.platform_cert_dir
    if cert_dir:
        os.makedirs(cert_dir, exist_ok=True)
        # The SDK joins file names onto the directory as plain strings
        cert_dir = os.path.join(cert_dir, "")
    kwargs = {
        "wechatpay_type": WeChatPayType.NATIVE,
        "mchid": merchant.mch_id,
        "private_key": private_key,
        "cert_serial_no": merchant.cert_serial_no,
        "appid": cfg.wechat.app_id,
        "apiv3_key": merchant.api_v3_key,
        "notify_url": cfg.wechat.notify_url,
        "cert_dir": cert_dir,
        "logger": logging.getLogger("wechatpayv3"),
        "timeout": (cfg.timeouts.connect, cfg.timeouts.read),
    }
    # Without cached certificates the constructor downloads them over the network
    for attempt in Retrying(
        stop=stop_after_attempt(cfg.retry.max + 1),
        wait=wait_exponential(multiplier=cfg.retry.base_backoff, min=0.1, max=2.0),
        retry=retry_if_exception_type(requests.RequestException),
        reraise=True,
    ):
        with attempt:
            return WeChatPay(**kwargs)


def build_wechatpay(
    cfg: Optional[PaymentSettings] = None,
    *,
    merchant: Optional[MerchantIdentity] = None,
) -> WechatPayComponents:
    """Build the SDK, gateway client and notify handler for one merchant.

    Blocks while platform certificates are downloaded when none are cached.

    Raises:
        PaymentConfigurationError: incomplete settings, bad key, or no usable
            platform certificate.
        PaymentTransportError: certificate download kept failing on the network.
    """
    cfg = cfg or payment_settings
    merchant = merchant or merchant_from_settings(cfg)
    private_key = private_key_pem(merchant.private_key)
    try:
        wxpay = _create_sdk(cfg, merchant, private_key)
    except requests.RequestException as exc:
        logger.error("wechatpay_certificate_download_failed", mch_id=merchant.mch_id, error=str(exc))
        raise PaymentTransportError(f"platform certificate download failed: {exc}") from exc
    except Exception as exc:
        # The SDK raises a plain Exception when no platform certificate could be obtained
        logger.error("wechatpay_sdk_init_failed", mch_id=merchant.mch_id, error=str(exc))
        raise PaymentConfigurationError(f"wechatpay SDK initialisation failed: {exc}") from exc

    client = WechatPayClient(
        merchant,
        wxpay,
        app_id=cfg.wechat.app_id,
        notify_url=cfg.wechat.notify_url,
        timeout=cfg.timeouts.total,
    )
    notify_handler = NotifyHandler(merchant, wxpay, tolerance_seconds=cfg.webhook.tolerance_seconds)
    return WechatPayComponents(
        merchant=merchant,
        wxpay=wxpay,
        client=client,
        notify_handler=notify_handler,
    )


__all__ = [
    "WechatPayComponents",
    "build_wechatpay",
    "merchant_from_settings",
]
