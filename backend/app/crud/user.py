"""用户 CRUD 操作"""
from sqlmodel import Session, select

from app.models import User, utc_now


def create(
    *,
    session: Session,
    nickname: str | None = None,
    revenuecat_customer_id: str | None = None,
    paddle_customer_id: str | None = None,
) -> User:
    """创建用户（测试与初始化数据使用）"""
    user = User(
        nickname=nickname,
        revenuecat_customer_id=revenuecat_customer_id,
        paddle_customer_id=paddle_customer_id,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def find_by_external_id(*, session: Session, candidate: str) -> User | None:
    """
    用单个服务商标识查找用户

    数字标识先按主键查，再按两家服务商的客户 ID 列查。
    """
    if candidate.isdigit():
        user = session.get(User, int(candidate))
        if user:
            return user
    statement = select(User).where(
        (User.revenuecat_customer_id == candidate) | (User.paddle_customer_id == candidate)
    )
    return session.exec(statement).first()


def set_premium(*, session: Session, user: User, is_premium: bool) -> None:
    """更新付费标记（在调用方事务内，不提交）"""
    if user.is_premium == is_premium:
        return
    user.is_premium = is_premium
    user.updated_at = utc_now()
    session.add(user)
