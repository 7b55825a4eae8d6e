"""Pytest bootstrap configuration.

Provides a fake WeChat Pay platform: merchant and platform RSA keys, a
self-signed platform certificate, and helpers that sign responses and
callbacks the way the provider does. The SDK talks HTTP through `requests`;
the transport adapter is replaced so no request leaves the process.
"""
import base64
import json
import os
import time
import uuid
from datetime import datetime, timedelta, timezone

# Keep settings deterministic regardless of a developer .env
os.environ.setdefault("DEBUG", "false")

import pytest
import requests
import requests.adapters
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.x509.oid import NameOID
from requests.structures import CaseInsensitiveDict

from domain.payment.entity import MerchantIdentity


MCH_ID = "1900000109"
MCH_SERIAL = "3775B6A45ACD588826D15E583A95F5DD********"
API_V3_KEY = "0123456789abcdef0123456789abcdef"
APP_ID = "wxd678efh567hg6787"
PLATFORM_SERIAL = "5157F09EFDC096DE15EBE81A47057A7232F1B8E1"


def _rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def _self_signed(key: rsa.RSAPrivateKey, serial_hex: str) -> x509.Certificate:
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "Tenpay.com Root CA")])
    now = datetime.now(timezone.utc)
    return (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(int(serial_hex, 16))
        .not_valid_before(now - timedelta(days=1))
        .not_valid_after(now + timedelta(days=365))
        .sign(key, hashes.SHA256())
    )


def encrypt_resource(plaintext: bytes, *, key: str = API_V3_KEY, associated_data: str = "transaction") -> dict:
    nonce = uuid.uuid4().hex[:12]
    ciphertext = AESGCM(key.encode()).encrypt(nonce.encode(), plaintext, associated_data.encode())
    return {
        "algorithm": "AEAD_AES_256_GCM",
        "ciphertext": base64.b64encode(ciphertext).decode(),
        "nonce": nonce,
        "associated_data": associated_data,
    }


class Reply:
    """A canned provider response, turned into a `requests.Response` on delivery."""

    def __init__(self, status_code: int, body: bytes, headers: dict) -> None:
        self.status_code = status_code
        self.body = body
        self.headers = headers

    def to_response(self, request: requests.PreparedRequest) -> requests.Response:
        response = requests.Response()
        response.status_code = self.status_code
        response._content = self.body
        response.headers = CaseInsensitiveDict(self.headers)
        response.encoding = "utf-8"
        response.url = request.url
        response.request = request
        return response


class FakePlatform:
    """Signs responses/callbacks with a platform key and serves certificates."""

    def __init__(self, serial: str = PLATFORM_SERIAL) -> None:
        self.serial = serial
        self.key = _rsa_key()
        self.certificate = _self_signed(self.key, serial)

    def sign(self, timestamp: str, nonce: str, body: bytes) -> str:
        message = f"{timestamp}\n{nonce}\n{body.decode('utf-8')}\n".encode()
        return base64.b64encode(self.key.sign(message, padding.PKCS1v15(), hashes.SHA256())).decode()

    def signed_headers(self, body: bytes, *, timestamp: int | None = None, serial: str | None = None) -> dict:
        ts = str(timestamp if timestamp is not None else int(time.time()))
        nonce = uuid.uuid4().hex
        return {
            "Wechatpay-Serial": serial or self.serial,
            "Wechatpay-Signature": self.sign(ts, nonce, body),
            "Wechatpay-Timestamp": ts,
            "Wechatpay-Nonce": nonce,
            "Request-ID": uuid.uuid4().hex,
        }

    def respond(self, status_code: int, payload: dict | None = None, *, signed: bool = True) -> "Reply":
        body = json.dumps(payload).encode() if payload is not None else b""
        headers = {"Content-Type": "application/json"}
        if signed:
            headers.update(self.signed_headers(body))
        return Reply(status_code, body, headers)

    def certificates_response(self, *, api_v3_key: str = API_V3_KEY) -> "Reply":
        pem = self.certificate.public_bytes(serialization.Encoding.PEM)
        return self.respond(200, {
            "data": [{
                "serial_no": self.serial,
                "effective_time": "2024-01-01T00:00:00+08:00",
                "expire_time": "2029-01-01T00:00:00+08:00",
                "encrypt_certificate": encrypt_resource(pem, key=api_v3_key, associated_data="certificate"),
            }]
        })

    def notification(self, transaction: dict, *, api_v3_key: str = API_V3_KEY) -> tuple[dict, bytes]:
        body = json.dumps({
            "id": "EV-2018022511223320873",
            "create_time": "2015-05-20T13:29:35+08:00",
            "resource_type": "encrypt-resource",
            "event_type": "TRANSACTION.SUCCESS",
            "summary": "支付成功",
            "resource": {
                **encrypt_resource(json.dumps(transaction).encode(), key=api_v3_key),
                "original_type": "transaction",
            },
        }).encode()
        return self.signed_headers(body), body


@pytest.fixture(scope="session")
def merchant_key() -> rsa.RSAPrivateKey:
    return _rsa_key()


@pytest.fixture(scope="session")
def merchant_pem(merchant_key) -> str:
    return merchant_key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode()


@pytest.fixture(scope="session")
def platform() -> FakePlatform:
    return FakePlatform()


@pytest.fixture
def merchant(merchant_pem) -> MerchantIdentity:
    return MerchantIdentity(
        mch_id=MCH_ID,
        cert_serial_no=MCH_SERIAL,
        api_v3_key=API_V3_KEY,
        private_key=merchant_pem,
    )


@pytest.fixture
def transaction_payload() -> dict:
    return {
        "appid": APP_ID,
        "mchid": MCH_ID,
        "out_trade_no": "ORDER_20240101_0001",
        "transaction_id": "1217752501201407033233368018",
        "trade_type": "NATIVE",
        "trade_state": "SUCCESS",
        "trade_state_desc": "支付成功",
        "bank_type": "CMC",
        "success_time": "2018-06-08T10:34:56+08:00",
        "payer": {"openid": "oUpF8uMuAJO_M2pxb1Q9zNjWeS6o"},
        "amount": {"total": 1234, "payer_total": 1234, "currency": "CNY", "payer_currency": "CNY"},
    }


class FakeWechatHttp:
    """Records outgoing requests and answers them through `handler`."""

    def __init__(self) -> None:
        self.handler = None
        self.requests: list[requests.PreparedRequest] = []

    def send(self, request: requests.PreparedRequest, **kwargs) -> requests.Response:
        self.requests.append(request)
        if self.handler is None:
            raise AssertionError(f"unexpected request {request.method} {request.url}")
        return self.handler(request).to_response(request)


@pytest.fixture
def wechat_http(monkeypatch) -> FakeWechatHttp:
    http = FakeWechatHttp()
    monkeypatch.setattr(
        requests.adapters.HTTPAdapter,
        "send",
        lambda adapter, request, **kwargs: http.send(request, **kwargs),
    )
    return http


@pytest.fixture
def cert_dir(tmp_path, platform):
    """Platform certificate cache, pre-seeded so the SDK starts without a download."""
    path = tmp_path / "certs"
    path.mkdir()
    (path / f"{platform.serial}.pem").write_bytes(platform.certificate.public_bytes(serialization.Encoding.PEM))
    return path


@pytest.fixture
def wechatpay(merchant, wechat_http, cert_dir):
    """Build components on the real SDK; tests assign `wechatpay.http.handler`."""
    from core.settings import PaymentSettings
    from infrastructure.external.payments import build_wechatpay

    cfg = PaymentSettings(
        wechat={"app_id": APP_ID, "platform_cert_dir": str(cert_dir)},
        retry={"max": 2, "base_backoff": 0.01},
    )
    components = build_wechatpay(cfg, merchant=merchant)
    components.http = wechat_http
    return components
