"""
API 请求/响应数据模型（Schema）

使用 Pydantic 进行数据验证和序列化。
这些模型不是数据库表，只用于 API 数据交换。
webhook 请求体不在这里定义：验签需要原始字节，解析见 app/services/events.py。
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict

from app.enums import EntitlementStatus, Platform, WebhookSource

# ============================================================
# 通用响应模型
# ============================================================


class TokenPayload(BaseModel):
    """
    JWT Token 载荷模型

    sub (subject) 存储用户 ID。
    """
    sub: str | None = None


class ApiEnvelope(BaseModel):
    """
    API 统一响应格式

    - code: 状态码（0 表示成功，非 0 表示错误）
    - message: 消息
    - data: 业务数据

    示例响应：
        {"code": 0, "message": "success", "data": {"status": "accepted"}}
        {"code": 401001, "message": "Invalid webhook signature", "data": None}
    """
    code: int = 0
    message: str = "success"
    data: Any | None = None


# ============================================================
# Webhook
# ============================================================


class WebhookAckData(BaseModel):
    """
    Webhook 应答

    status:
    - accepted: 首次收到，已入账并排入后台处理
    - already_processed: 重复投递，幂等忽略
    """
    status: str
    source: WebhookSource
    event_id: str


# ============================================================
# 权益查询
# ============================================================


class EntitlementPublic(BaseModel):
    """用户权益对外视图"""
    model_config = ConfigDict(from_attributes=True)

    entitlement_id: str
    product_id: str | None = None  # 取消/过期事件先于购买到达且未带商品时为空
    status: EntitlementStatus
    platform: Platform
    purchase_date: datetime | None = None
    expiration_date: datetime | None = None
    auto_renew_status: bool
    is_trial_period: bool
    is_active: bool = False  # 当前是否放行付费功能


class EntitlementsData(BaseModel):
    is_premium: bool
    data: list[EntitlementPublic]
    count: int
