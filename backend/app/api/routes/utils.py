"""
工具路由模块

- health-check: 存活探针，进程在即返回 True
- ready: 就绪探针，检查账本数据库可用
"""
from fastapi import APIRouter
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from app.api.deps import SessionDep
from app.api.errors import transient_failure

router = APIRouter(prefix="/utils", tags=["utils"])


@router.get("/health-check/")
async def health_check() -> bool:
    return True


@router.get("/ready/")
def ready(session: SessionDep) -> bool:
    """数据库不可用时返回 500，负载均衡器据此摘除实例"""
    try:
        session.exec(select(1))
    except SQLAlchemyError:
        raise transient_failure()
    return True
