"""
服务装配

启动时显式构造 Ledger / Resolver / Processor / Receiver / Reconciler，
通过 app.state 与依赖注入提供给路由和 worker，不使用模块级可变单例。
"""

import logging
from dataclasses import dataclass

from sqlalchemy import Engine

from app.core.config import Settings
from app.core.db import SessionFactory, session_factory
from app.core.redis_client import RedisClient, build_redis_client
from app.services.identity import IdentityResolver
from app.services.ledger import IdempotencyLedger
from app.services.notifier import BillingNotifier, LoggingNotifier, RedisStreamNotifier
from app.services.processor import BillingIssuePolicy, EventProcessor
from app.services.receiver import WebhookReceiver
from app.services.reconciler import PendingEventReconciler

logger = logging.getLogger(__name__)


@dataclass
class BillingServices:
    settings: Settings
    sessions: SessionFactory
    ledger: IdempotencyLedger
    resolver: IdentityResolver
    processor: EventProcessor
    receiver: WebhookReceiver
    reconciler: PendingEventReconciler
    redis: RedisClient | None = None


def build_services(
    settings: Settings,
    db_engine: Engine,
    *,
    redis_client: RedisClient | None = None,
    notifier: BillingNotifier | None = None,
) -> BillingServices:
    """
    构造全部服务

    Args:
        settings: 配置
        db_engine: 数据库引擎
        redis_client: 不传时本地环境不连 Redis，其他环境按配置创建
        notifier: 不传时有 Redis 则写入告警流，否则只记日志
    """
    sessions = session_factory(db_engine)
    if redis_client is None and settings.ENVIRONMENT != "local":
        redis_client = build_redis_client(settings)
    if notifier is None:
        notifier = (
            RedisStreamNotifier(redis_client, settings.BILLING_ALERT_STREAM)
            if redis_client is not None
            else LoggingNotifier()
        )

    ledger = IdempotencyLedger(sessions)
    resolver = IdentityResolver()
    processor = EventProcessor(
        sessions=sessions,
        ledger=ledger,
        resolver=resolver,
        notifier=notifier,
        default_entitlement_id=settings.DEFAULT_ENTITLEMENT_ID,
        billing_issue_policy=BillingIssuePolicy(settings.BILLING_ISSUE_POLICY),
    )
    receiver = WebhookReceiver(
        ledger=ledger,
        revenuecat_secret=settings.REVENUECAT_WEBHOOK_SECRET,
        paddle_secret=settings.PADDLE_WEBHOOK_SECRET,
        paddle_tolerance_seconds=settings.PADDLE_SIGNATURE_TOLERANCE_SECONDS,
    )
    reconciler = PendingEventReconciler(
        ledger=ledger,
        processor=processor,
        pending_after_seconds=settings.RECONCILE_PENDING_AFTER_SECONDS,
        max_attempts=settings.RECONCILE_MAX_ATTEMPTS,
        batch_size=settings.RECONCILE_BATCH_SIZE,
    )
    logger.info(
        "Billing services ready (billing_issue_policy=%s, redis=%s)",
        settings.BILLING_ISSUE_POLICY,
        redis_client is not None,
    )
    return BillingServices(
        settings=settings,
        sessions=sessions,
        ledger=ledger,
        resolver=resolver,
        processor=processor,
        receiver=receiver,
        reconciler=reconciler,
        redis=redis_client,
    )
