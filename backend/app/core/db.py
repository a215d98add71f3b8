"""
数据库连接模块

管理数据库引擎和会话工厂。

重要提示：
- 表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（app.models）
"""
from collections.abc import Callable

from sqlalchemy import Engine
from sqlmodel import Session, create_engine

from app.core.config import settings

engine = create_engine(settings.SQLALCHEMY_DATABASE_URI, pool_pre_ping=True)

SessionFactory = Callable[[], Session]


def session_factory(db_engine: Engine) -> SessionFactory:
    """
    为指定引擎构造会话工厂

    Processor、Ledger 等服务在后台任务中需要自行开启会话，
    通过工厂注入而不是直接引用全局 engine，测试时可替换为 SQLite。
    """

    def _factory() -> Session:
        return Session(db_engine, expire_on_commit=False)

    return _factory
