"""
应用配置模块

使用 Pydantic Settings 管理所有环境变量和配置。
配置从项目根目录的 .env 文件读取，支持类型验证和默认值。

配置分组：
- 基础：项目名、环境、JWT 密钥
- 数据库：PostgreSQL 连接（测试时可用 DATABASE_URL 覆盖为 SQLite）
- Redis：分布式锁与账单告警流
- Webhook：RevenueCat Bearer 密钥、Paddle HMAC 密钥、重放窗口、应答时限
- 对账：pending 事件扫描间隔、阈值、最大重试次数
"""
import secrets
import warnings
from typing import Literal

from pydantic import (
    HttpUrl,
    PostgresDsn,
    computed_field,
    model_validator,
)
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing_extensions import Self


class Settings(BaseSettings):
    """
    应用配置类

    配置来源优先级：
    1. 环境变量（最高优先级）
    2. .env 文件
    3. 代码中的默认值（最低优先级）
    """
    model_config = SettingsConfigDict(
        env_file="../.env",
        env_ignore_empty=True,
        extra="ignore",
    )
    API_V1_STR: str = "/api/v1"
    SECRET_KEY: str = secrets.token_urlsafe(32)  # JWT 签名密钥（默认随机生成）
    ENVIRONMENT: Literal["local", "staging", "production"] = "local"

    PROJECT_NAME: str = "entitlement-webhooks"
    SENTRY_DSN: HttpUrl | None = None

    # Snowflake
    SNOWFLAKE_NODE_ID: int = 0

    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""
    POSTGRES_DB: str = ""
    DATABASE_URL: str | None = None  # 显式连接串，优先于 POSTGRES_* 拼接

    @computed_field  # type: ignore[prop-decorator]
    @property
    def SQLALCHEMY_DATABASE_URI(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return str(
            PostgresDsn.build(
                scheme="postgresql+psycopg",
                username=self.POSTGRES_USER,
                password=self.POSTGRES_PASSWORD,
                host=self.POSTGRES_SERVER,
                port=self.POSTGRES_PORT,
                path=self.POSTGRES_DB,
            )
        )

    # Redis（对账锁、账单告警流）
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str | None = None
    BILLING_ALERT_STREAM: str = "billing_alerts"

    # RevenueCat：控制台中配置的 Authorization 头（Bearer <token>）
    REVENUECAT_WEBHOOK_SECRET: str | None = None

    # Paddle Billing：Paddle-Signature 头的 HMAC 密钥
    PADDLE_WEBHOOK_SECRET: str | None = None
    PADDLE_SIGNATURE_TOLERANCE_SECONDS: int = 5 * 60  # 重放窗口

    # Receiver 必须在该时限内应答，超时返回 500 让服务商重试
    WEBHOOK_ACK_TIMEOUT_SECONDS: float = 5.0

    # 事件中未携带 entitlement 标识时使用
    DEFAULT_ENTITLEMENT_ID: str = "premium"

    # billing_issue 处理策略：notify 仅告警；suspend 立即暂停权益
    BILLING_ISSUE_POLICY: Literal["notify", "suspend"] = "notify"

    # 对账任务：重新处理卡在 pending 的 webhook 事件
    RECONCILE_INTERVAL_SECONDS: int = 60
    RECONCILE_PENDING_AFTER_SECONDS: int = 5 * 60
    RECONCILE_MAX_ATTEMPTS: int = 10
    RECONCILE_BATCH_SIZE: int = 100
    RECONCILE_LOCK_TTL_SECONDS: int = 5 * 60

    def _check_default_secret(self, var_name: str, value: str | None) -> None:
        """
        检查敏感配置是否使用了默认值 "changethis"

        本地环境只发出警告，其他环境直接报错。
        """
        if value == "changethis":
            message = (
                f'The value of {var_name} is "changethis", '
                "for security, please change it, at least for deployments."
            )
            if self.ENVIRONMENT == "local":
                warnings.warn(message, stacklevel=1)
            else:
                raise ValueError(message)

    @model_validator(mode="after")
    def _enforce_non_default_secrets(self) -> Self:
        self._check_default_secret("SECRET_KEY", self.SECRET_KEY)
        self._check_default_secret("POSTGRES_PASSWORD", self.POSTGRES_PASSWORD)
        self._check_default_secret("REVENUECAT_WEBHOOK_SECRET", self.REVENUECAT_WEBHOOK_SECRET)
        self._check_default_secret("PADDLE_WEBHOOK_SECRET", self.PADDLE_WEBHOOK_SECRET)

        return self


# 全局配置实例，整个应用共享（只读）
settings = Settings()  # type: ignore
