"""
Redis 客户端

为 webhook 服务提供两类能力：
- 分布式锁：保证多实例部署时同一时刻只有一个对账任务在扫描 pending 事件
- Redis Streams：发布账单告警（billing_issue），供下游通知服务消费
"""

import logging

import redis

from app.core.config import Settings

logger = logging.getLogger(__name__)

_RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisClient:
    """Redis 客户端封装"""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: str | None = None,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.client = redis.Redis(
            host=host,
            port=port,
            db=db,
            password=password,
            decode_responses=True,
        )
        logger.info("Redis client initialized: %s:%s/%s", host, port, db)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as e:
            logger.error("Redis ping failed: %s", e)
            return False

    # ========================================================================
    # 分布式锁
    # ========================================================================

    def acquire_lock(self, lock_key: str, lock_value: str, expire_seconds: int = 60) -> bool:
        """
        获取分布式锁（SET NX EX）

        Args:
            lock_key: 锁键
            lock_value: 锁值（释放时校验，避免误删他人的锁）
            expire_seconds: 锁过期时间（秒）

        Returns:
            是否获取成功；Redis 不可用时返回 False
        """
        try:
            return bool(self.client.set(lock_key, lock_value, ex=expire_seconds, nx=True))
        except redis.RedisError as e:
            logger.error("Failed to acquire lock %s: %s", lock_key, e)
            return False

    def release_lock(self, lock_key: str, lock_value: str) -> bool:
        """释放分布式锁，Lua 脚本保证比较与删除的原子性"""
        try:
            result = self.client.eval(_RELEASE_LOCK_SCRIPT, 1, lock_key, lock_value)
            return result == 1
        except redis.RedisError as e:
            logger.error("Failed to release lock %s: %s", lock_key, e)
            return False

    # ========================================================================
    # Redis Streams
    # ========================================================================

    def xadd(
        self,
        stream_key: str,
        fields: dict[str, str],
        maxlen: int | None = 10000,
    ) -> str:
        """
        添加消息到 Stream

        与锁不同，发布失败会抛出 redis.RedisError，由调用方决定如何记录。
        """
        return self.client.xadd(stream_key, fields, maxlen=maxlen, approximate=True)

    def close(self) -> None:
        try:
            self.client.close()
        except redis.RedisError as e:
            logger.error("Failed to close Redis client: %s", e)


def build_redis_client(settings: Settings) -> RedisClient:
    """根据配置构造 Redis 客户端（由服务容器在启动时调用）"""
    return RedisClient(
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
    )
