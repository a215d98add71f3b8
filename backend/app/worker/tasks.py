"""
定时任务逻辑
"""

import logging
from uuid import uuid4

from app.services.container import BillingServices
from app.services.reconciler import SweepReport

logger = logging.getLogger(__name__)

RECONCILE_LOCK_KEY = "webhooks:reconcile:lock"


def reconcile_pending_events(services: BillingServices) -> SweepReport | None:
    """
    重新处理卡在 pending 的 webhook 事件

    多实例部署时通过 Redis 锁保证同一时刻只有一个实例在扫描；
    未配置 Redis（本地单实例）时直接执行。
    """
    redis_client = services.redis
    if redis_client is None:
        return services.reconciler.sweep()

    lock_value = str(uuid4())
    acquired = redis_client.acquire_lock(
        RECONCILE_LOCK_KEY,
        lock_value,
        expire_seconds=services.settings.RECONCILE_LOCK_TTL_SECONDS,
    )
    if not acquired:
        logger.info("Reconciliation sweep already running elsewhere, skip this run.")
        return None

    try:
        return services.reconciler.sweep()
    finally:
        redis_client.release_lock(RECONCILE_LOCK_KEY, lock_value)
