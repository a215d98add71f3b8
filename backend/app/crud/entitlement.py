"""权益 CRUD 操作（Entitlement Store）

写操作只供 Event Processor 在其事务内调用，不自行提交；
读操作是对应用其余部分开放的查询接口。
"""
from collections.abc import Sequence

from sqlmodel import Session, select

from app.enums import EntitlementStatus
from app.models import Entitlement, as_utc, utc_now

# 仍可使用权益的状态（cancelled 到期前保留访问）
ACCESS_GRANTING_STATUSES = (EntitlementStatus.active, EntitlementStatus.cancelled)


def get_entitlement(*, session: Session, user_id: int, entitlement_id: str) -> Entitlement | None:
    """查询用户的某项权益，不存在返回 None"""
    statement = select(Entitlement).where(
        Entitlement.user_id == user_id, Entitlement.entitlement_id == entitlement_id
    )
    return session.exec(statement).first()


def list_entitlements(*, session: Session, user_id: int) -> Sequence[Entitlement]:
    """查询用户的全部权益"""
    statement = (
        select(Entitlement)
        .where(Entitlement.user_id == user_id)
        .order_by(Entitlement.entitlement_id)
    )
    return session.exec(statement).all()


def grants_access(entitlement: Entitlement) -> bool:
    """权益当前是否放行付费功能"""
    if entitlement.status not in ACCESS_GRANTING_STATUSES:
        return False
    expires = as_utc(entitlement.expiration_date)
    return expires is None or expires > utc_now()


def has_active_entitlement(*, session: Session, user_id: int, entitlement_id: str) -> bool:
    """用户是否当前持有某项权益"""
    entitlement = get_entitlement(session=session, user_id=user_id, entitlement_id=entitlement_id)
    return entitlement is not None and grants_access(entitlement)


def lock_entitlement(*, session: Session, user_id: int, entitlement_id: str) -> Entitlement | None:
    """
    以 SELECT ... FOR UPDATE 读取权益行

    同一 (user_id, entitlement_id) 的并发更新在行锁上串行化。
    """
    statement = (
        select(Entitlement)
        .where(Entitlement.user_id == user_id, Entitlement.entitlement_id == entitlement_id)
        .with_for_update()
    )
    return session.exec(statement).first()


def user_has_other_access(*, session: Session, user_id: int, exclude_entitlement_id: str) -> bool:
    """除指定权益外，用户是否还有其他放行中的权益"""
    statement = select(Entitlement).where(
        Entitlement.user_id == user_id,
        Entitlement.entitlement_id != exclude_entitlement_id,
        Entitlement.status.in_([s.value for s in ACCESS_GRANTING_STATUSES]),  # type: ignore[attr-defined]
    )
    return any(grants_access(e) for e in session.exec(statement).all())
