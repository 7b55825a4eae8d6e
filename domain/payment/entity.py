"""
支付领域实体 - 商户身份与交易状态
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Union

from domain.common.exceptions import DomainValidationException


API_V3_KEY_BYTES = 32


class TradeState(str, Enum):
    """交易状态枚举（未建模的渠道状态按原字符串透传）"""
    SUCCESS = "SUCCESS"      # 成功
    ACCEPTED = "ACCEPTED"    # 处理中
    PAY_FAIL = "PAY_FAIL"    # 支付失败
    REFUND = "REFUND"        # 已退款

    @classmethod
    def parse(cls, value: str) -> Union["TradeState", str]:
        try:
            return cls(value)
        except ValueError:
            return value


@dataclass(frozen=True)
class MerchantIdentity:
    """
    商户身份 - 构造后不可变

    由网关客户端、平台证书管理器和回调处理器共享，只读。
    """

    mch_id: str
    cert_serial_no: str
    api_v3_key: str = field(repr=False)
    private_key: str = field(repr=False)  # PEM 文件路径或私钥字符串

    def __post_init__(self):
        for name in ("mch_id", "cert_serial_no", "api_v3_key", "private_key"):
            if not getattr(self, name):
                raise DomainValidationException(f"{name} must not be empty", field=name)
        if len(self.api_v3_key.encode("utf-8")) != API_V3_KEY_BYTES:
            raise DomainValidationException(
                f"api_v3_key must be {API_V3_KEY_BYTES} bytes",
                field="api_v3_key",
            )
