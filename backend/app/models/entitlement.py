"""
权益模型模块

每个用户的每个权益（entitlement_id，如 "premium"）一行，
只由 Event Processor 创建和修改，永不删除。
"""
from datetime import datetime

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    String,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import EntitlementStatus, Platform, WebhookSource

from .base import utc_now


class Entitlement(SQLModel, table=True):
    """
    权益记录模型

    字段说明：
    - user_id: 规范用户 ID（外键）
    - entitlement_id: 权益逻辑标识
    - product_id: 当前对应的商品 ID（未知时为空）
    - status: active / cancelled / expired / billing_issue
    - platform: 购买平台
    - source: 最后写入该行的服务商
    - purchase_date / expiration_date: 当前周期
    - auto_renew_status: 是否会自动续费
    - is_trial_period: 是否处于试用期
    - provider_subscription_id: 服务商侧订阅 ID
    - latest_transaction_id: 最近一次交易 ID
    - last_event_at: 已应用的最新事件时间，早于它的事件不再生效
    - billing_issue_at: 最近一次扣款异常时间
    """
    __tablename__ = "entitlements"
    __table_args__ = (
        UniqueConstraint("user_id", "entitlement_id", name="uq_entitlements_user_entitlement"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: int = Field(
        sa_column=Column(
            BigInteger, ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    entitlement_id: str = Field(sa_column=Column(String(64), nullable=False))
    product_id: str | None = Field(default=None, sa_column=Column(String(128), nullable=True))

    status: EntitlementStatus = Field(sa_column=Column(String(16), nullable=False))
    platform: Platform = Field(
        default=Platform.unknown, sa_column=Column(String(16), nullable=False)
    )
    source: WebhookSource = Field(sa_column=Column(String(16), nullable=False))

    purchase_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    expiration_date: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    auto_renew_status: bool = Field(default=True)
    is_trial_period: bool = Field(default=False)

    provider_subscription_id: str | None = Field(default=None, max_length=128)
    latest_transaction_id: str | None = Field(default=None, max_length=128)

    last_event_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    billing_issue_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
