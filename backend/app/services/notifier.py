"""
账单告警发布

billing_issue 事件提交后发布一条告警，供下游（推送、邮件）消费。
生产环境写入 Redis Stream，本地与测试可用日志实现。
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Protocol

from app.core.redis_client import RedisClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BillingAlert:
    user_id: int
    entitlement_id: str
    source: str
    external_event_id: str
    occurred_at: datetime
    suspended: bool


class BillingNotifier(Protocol):
    def publish(self, alert: BillingAlert) -> None: ...


class LoggingNotifier:
    def publish(self, alert: BillingAlert) -> None:
        logger.warning(
            "Billing issue for user %s entitlement %s (%s event %s, suspended=%s)",
            alert.user_id,
            alert.entitlement_id,
            alert.source,
            alert.external_event_id,
            alert.suspended,
        )


class RedisStreamNotifier:
    """把告警写入 Redis Stream（字段全部序列化为字符串）"""

    def __init__(self, redis_client: RedisClient, stream_key: str):
        self._redis = redis_client
        self._stream_key = stream_key

    def publish(self, alert: BillingAlert) -> None:
        fields = {
            key: value.isoformat() if isinstance(value, datetime) else str(value)
            for key, value in asdict(alert).items()
        }
        message_id = self._redis.xadd(self._stream_key, fields)
        logger.info("Published billing alert %s to %s", message_id, self._stream_key)
