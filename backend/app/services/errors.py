"""
Webhook 处理异常

终态错误（TerminalEventError 及其子类）会把账本行标记为 failed 且不再自动重试；
其他任何异常都视为暂时性故障，账本行保持 pending，等待服务商重投或对账任务。
"""
from __future__ import annotations


class WebhookError(Exception):
    """webhook 处理异常基类"""


class TerminalEventError(WebhookError):
    """重试无法修复的错误"""


class UnresolvableIdentityError(TerminalEventError):
    def __init__(self, candidates: list[str]) -> None:
        self.candidates = candidates
        shown = ", ".join(candidates) if candidates else "<none>"
        super().__init__(f"No local user for identifiers: {shown}")


class UnsupportedEventError(TerminalEventError):
    def __init__(self, event_type: str) -> None:
        self.event_type = event_type
        super().__init__(f"Unsupported event type: {event_type}")


class InvalidEventPayloadError(TerminalEventError):
    """事件体未通过 schema 校验"""


class SignatureVerificationError(WebhookError):
    """签名/认证失败，请求在边界被拒绝，不入账"""

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"{source} webhook rejected: {reason}")
