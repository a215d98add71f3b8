"""
自定义异常模块

所有业务异常都继承自 AppError，在 main.py 中有统一的异常处理器。

webhook 相关错误码：
- 400001: 请求体无法解析（签名有效但 JSON/字段非法）
- 401001: 签名或 token 校验失败（服务商不会重试）
- 500001: 暂时性故障（账本不可用等，服务商会退避重试）
- 500002: 超过应答时限
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码
    - message: 错误消息
    - status_code: HTTP 状态码

    使用示例：
        raise AppError(code=401001, message="Invalid webhook signature", status_code=401)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def invalid_signature() -> AppError:
    return AppError(code=401001, message="Invalid webhook signature", status_code=401)


def malformed_payload(detail: str) -> AppError:
    return AppError(code=400001, message=f"Malformed webhook payload: {detail}", status_code=400)


def transient_failure() -> AppError:
    # 500 触发服务商的退避重试
    return AppError(code=500001, message="Temporary failure, please retry", status_code=500)


def ack_deadline_exceeded() -> AppError:
    return AppError(code=500002, message="Acknowledgement deadline exceeded", status_code=500)
