"""
Base payment client implementing shared concerns: SDK dispatch, deadlines and logging.

The `wechatpayv3` SDK is synchronous, so each call runs in a worker thread
under a per-call deadline. Concrete clients subclass and implement provider
endpoints.
"""
from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

import requests

from core.logging_config import get_logger
from core.settings import payment_settings
from infrastructure.external.payments.exceptions import (
    PaymentProviderError,
    PaymentTransportError,
)


logger = get_logger(__name__)


class BasePaymentClient:
    provider: str = "wechat"

    def __init__(self, wxpay: Any, *, timeout: Optional[float] = None) -> None:
        self.wxpay = wxpay
        self.default_timeout = timeout if timeout is not None else payment_settings.timeouts.total

    async def _call(
        self,
        operation: str,
        fn: Callable[..., tuple[int, Any]],
        *,
        timeout: Optional[float] = None,
        **kwargs: Any,
    ) -> tuple[int, Any]:
        """Run one SDK call; returns its ``(http_status, body)`` pair."""
        deadline = timeout if timeout is not None else self.default_timeout
        # The SDK formats absent keyword arguments into the request body
        params = {k: v for k, v in kwargs.items() if v is not None}
        self._log("payment_sdk_request", operation=operation)
        try:
            code, message = await asyncio.wait_for(asyncio.to_thread(fn, **params), deadline)
        except asyncio.TimeoutError as exc:
            self._log("payment_sdk_timeout", operation=operation, timeout=deadline)
            raise PaymentTransportError(f"{operation} timed out after {deadline}s") from exc
        except requests.RequestException as exc:
            self._log("payment_sdk_failed", operation=operation, error=str(exc))
            raise PaymentTransportError(f"{operation} request failed: {exc}") from exc
        except Exception as exc:
            # The SDK raises a plain Exception when a response signature does not verify
            self._log("payment_sdk_failed", operation=operation, error=str(exc))
            raise PaymentProviderError(f"{operation} failed: {exc}") from exc
        self._log("payment_sdk_response", operation=operation, status_code=code)
        return code, message

    # Helpers
    def _log(self, event: str, **kwargs) -> None:
        logger.info(
            event,
            provider=self.provider,
            **kwargs,
        )
