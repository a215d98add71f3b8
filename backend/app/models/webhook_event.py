"""
Webhook 事件账本模型模块

幂等账本：每个 (source, external_event_id) 只会有一行。
唯一约束由数据库保证，并发的重复投递在 INSERT 时竞争，只有一个能成功。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, Integer, String, Text, UniqueConstraint
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id
from app.enums import WebhookEventStatus, WebhookSource

from .base import utc_now


class WebhookEvent(SQLModel, table=True):
    """
    Webhook 事件记录

    字段说明：
    - source: 服务商（revenuecat / paddle）
    - external_event_id: 服务商事件 ID，同一来源内唯一
    - event_type: 服务商原始事件类型（如 "RENEWAL"、"subscription.updated"）
    - raw_payload: 原始请求体，逐字保存，用于审计与重放排查
    - signature: 签名头原文（仅 HMAC 签名；Bearer 密钥不落库）
    - status: pending / succeeded / failed
    - processing_attempts: 已尝试处理次数（对账任务据此放弃）
    - error_message: 失败或跳过原因
    - received_at / processed_at: 接收与最后一次处理完成时间

    行永不删除，构成审计轨迹。
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("source", "external_event_id", name="uq_webhook_events_source_external_id"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    source: WebhookSource = Field(sa_column=Column(String(16), nullable=False))
    external_event_id: str = Field(sa_column=Column(String(128), nullable=False))
    event_type: str = Field(sa_column=Column(String(64), nullable=False))
    raw_payload: str = Field(sa_column=Column(Text, nullable=False))
    signature: str | None = Field(default=None, sa_column=Column(String(512), nullable=True))

    status: WebhookEventStatus = Field(
        default=WebhookEventStatus.pending,
        sa_column=Column(String(16), index=True, nullable=False),
    )
    processing_attempts: int = Field(
        default=0, sa_column=Column(Integer, nullable=False, default=0)
    )
    error_message: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    received_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), index=True, nullable=False),
    )
    processed_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
