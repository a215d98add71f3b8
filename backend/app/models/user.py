"""
用户模型模块

用户表由应用其余部分维护，webhook 服务只读取身份标识并写入 is_premium。
"""
from datetime import datetime

from sqlalchemy import BigInteger, Column, DateTime, String
from sqlmodel import Field, SQLModel

from app.core.snowflake import generate_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（Snowflake），也是客户端登录 RevenueCat 时使用的 app_user_id
    - revenuecat_customer_id: RevenueCat 侧的客户标识（匿名 ID 迁移前的身份）
    - paddle_customer_id: Paddle 客户 ID（ctm_...）
    - is_premium: 是否拥有付费权益，由 Event Processor 维护
    """
    __tablename__ = "users"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    nickname: str | None = Field(default=None, max_length=64)

    revenuecat_customer_id: str | None = Field(
        default=None, sa_column=Column(String(128), unique=True, index=True, nullable=True)
    )
    paddle_customer_id: str | None = Field(
        default=None, sa_column=Column(String(128), unique=True, index=True, nullable=True)
    )
    is_premium: bool = Field(default=False)

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
