"""
Snowflake ID 生成器模块

生成 64 位、按时间递增的分布式唯一 ID，用作各表主键。

ID 结构：
- 41 位：时间戳（毫秒，从 _EPOCH_MS 开始）
- 10 位：节点 ID（0-1023，每个服务实例不同，见 SNOWFLAKE_NODE_ID）
- 12 位：同一毫秒内的序列号
"""
from __future__ import annotations

import threading
import time

from app.core.config import settings

# 2024-01-01T00:00:00Z
_EPOCH_MS = 1704067200000
_MAX_BACKWARD_DRIFT_MS = 5000


class Snowflake:
    """线程安全的 Snowflake 生成器"""

    def __init__(self, *, node_id: int) -> None:
        if not (0 <= node_id <= 1023):
            raise ValueError("SNOWFLAKE_NODE_ID must be in [0, 1023]")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ts = -1
        self._seq = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        """
        生成下一个 ID

        小幅时钟回拨（< 5 秒）时等待时间追上，超过则报错，避免生成重复 ID。
        """
        with self._lock:
            ts = self._now_ms()
            if ts < self._last_ts:
                diff = self._last_ts - ts
                if diff > _MAX_BACKWARD_DRIFT_MS:
                    raise RuntimeError(
                        f"Clock moved backwards by {diff}ms. "
                        "Refusing to generate IDs to prevent duplicates."
                    )
                ts = self._wait_until(self._last_ts)

            if ts == self._last_ts:
                self._seq = (self._seq + 1) & 0xFFF
                if self._seq == 0:
                    # 序列号溢出，等待下一毫秒
                    ts = self._wait_until(self._last_ts + 1)
            else:
                self._seq = 0

            self._last_ts = ts
            return ((ts - _EPOCH_MS) << 22) | (self._node_id << 12) | self._seq

    @classmethod
    def _wait_until(cls, target_ms: int) -> int:
        ts = cls._now_ms()
        while ts < target_ms:
            time.sleep(0.001)
            ts = cls._now_ms()
        return ts


_GENERATOR: Snowflake | None = None
_GENERATOR_LOCK = threading.Lock()


def _get_generator() -> Snowflake:
    global _GENERATOR
    if _GENERATOR is None:
        with _GENERATOR_LOCK:
            if _GENERATOR is None:
                _GENERATOR = Snowflake(node_id=settings.SNOWFLAKE_NODE_ID)
    return _GENERATOR


def generate_id() -> int:
    """生成唯一 ID（模型主键的 default_factory）"""
    return _get_generator().next_id()
