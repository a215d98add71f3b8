"""
数据库模型定义模块

模型按功能拆分：
- user.py: 用户模型（应用其余部分维护，这里只读身份、写 is_premium）
- webhook_event.py: Webhook 幂等账本
- entitlement.py: 用户权益
"""
from sqlmodel import SQLModel

from .base import as_utc, utc_now
from .entitlement import Entitlement
from .user import User
from .webhook_event import WebhookEvent

__all__ = [
    "SQLModel",
    "as_utc",
    "utc_now",
    "User",
    "Entitlement",
    "WebhookEvent",
]
