"""
Webhook 签名校验

两种服务商各自的认证方式，均为纯函数，只读原始请求字节：

- RevenueCat: 控制台配置的 Authorization 头，格式 "Bearer <token>"
- Paddle Billing: Paddle-Signature 头，格式 "ts=<unix 秒>;h1=<hex>"，
  签名内容为 "<ts>:<原始请求体>" 的 HMAC-SHA256

文档:
- https://www.revenuecat.com/docs/integrations/webhooks
- https://developer.paddle.com/webhooks/signature-verification
"""

import hashlib
import hmac
import time
from dataclasses import dataclass


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    reason: str = ""

    def __bool__(self) -> bool:
        return self.ok


_OK = VerificationResult(ok=True)


def _reject(reason: str) -> VerificationResult:
    return VerificationResult(ok=False, reason=reason)


def verify_bearer(authorization: str | None, secret: str | None) -> VerificationResult:
    """
    校验 Bearer token

    Args:
        authorization: Authorization 头原值
        secret: 配置的 token；未配置时一律拒绝

    Returns:
        校验结果
    """
    if not secret:
        return _reject("webhook secret not configured")
    if not authorization:
        return _reject("missing authorization header")

    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return _reject("authorization header is not a bearer token")

    if not hmac.compare_digest(token.strip().encode(), secret.encode()):
        return _reject("bearer token mismatch")
    return _OK


def parse_signature_header(header: str) -> tuple[str | None, list[str]]:
    """
    解析 "ts=...;h1=..." 形式的签名头

    键的顺序不限；密钥轮换期间可能出现多个 h1。
    """
    ts: str | None = None
    digests: list[str] = []
    for chunk in header.split(";"):
        key, sep, value = chunk.strip().partition("=")
        if not sep:
            continue
        key = key.strip()
        value = value.strip()
        if key == "ts":
            ts = value
        elif key == "h1" and value:
            digests.append(value)
    return ts, digests


def compute_hmac_signature(secret: str, ts: str | int, raw_body: bytes) -> str:
    """计算 HMAC-SHA256("<ts>:<raw_body>") 的十六进制摘要"""
    signed = f"{ts}:".encode() + raw_body
    return hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()


def verify_hmac(
    signature_header: str | None,
    raw_body: bytes,
    secret: str | None,
    *,
    tolerance_seconds: int,
    now: float | None = None,
) -> VerificationResult:
    """
    校验 HMAC 签名并做重放保护

    时间戳超出窗口的请求即使摘要正确也会被拒绝。

    Args:
        signature_header: 签名头原值
        raw_body: 原始请求体（不可重新序列化）
        secret: HMAC 密钥；未配置时一律拒绝
        tolerance_seconds: 允许的时钟偏差（秒）
        now: 当前 unix 时间，测试时注入

    Returns:
        校验结果
    """
    if not secret:
        return _reject("webhook secret not configured")
    if not signature_header:
        return _reject("missing signature header")

    ts, digests = parse_signature_header(signature_header)
    if ts is None or not digests:
        return _reject("signature header missing ts or h1")
    try:
        ts_int = int(ts)
    except ValueError:
        return _reject("signature timestamp is not an integer")

    current = time.time() if now is None else now
    if abs(current - ts_int) > tolerance_seconds:
        return _reject("signature timestamp outside tolerance window")

    expected = compute_hmac_signature(secret, ts, raw_body)
    if not any(hmac.compare_digest(expected.encode(), d.lower().encode()) for d in digests):
        return _reject("signature digest mismatch")
    return _OK
