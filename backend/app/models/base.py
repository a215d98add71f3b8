"""
基础模型模块

定义所有模型共用的工具函数。
"""
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    获取当前 UTC 时间

    Returns:
        当前 UTC 时区的日期时间对象
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    补齐时区信息

    SQLite 读回的 DateTime(timezone=True) 不带 tzinfo，
    与带时区的时间比较前统一视为 UTC。
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


__all__ = ["SQLModel", "as_utc", "utc_now"]
