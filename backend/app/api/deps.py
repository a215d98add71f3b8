"""
FastAPI 依赖注入模块

提供可复用的依赖项：
- BillingServicesDep: 启动时装配在 app.state 上的服务容器
- SessionDep: 数据库会话（由服务容器的会话工厂创建）
- CurrentUser: 从 Bearer JWT 解析出的当前用户（仅权益查询接口使用）
"""
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jwt.exceptions import InvalidTokenError
from pydantic import ValidationError
from sqlmodel import Session

from app.api.schemas import TokenPayload
from app.core import security
from app.models import User
from app.services.container import BillingServices

reusable_oauth2 = HTTPBearer()


def get_services(request: Request) -> BillingServices:
    """获取启动时装配的服务容器"""
    return request.app.state.services


BillingServicesDep = Annotated[BillingServices, Depends(get_services)]


def get_db(services: BillingServicesDep) -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    yield 确保会话在请求结束后自动关闭。
    """
    with services.sessions() as session:
        yield session


SessionDep = Annotated[Session, Depends(get_db)]
TokenDep = Annotated[HTTPAuthorizationCredentials, Depends(reusable_oauth2)]


def get_current_user(session: SessionDep, token: TokenDep) -> User:
    """
    获取当前登录用户（依赖注入）

    token 无效、缺少 sub、sub 非整数或用户不存在时返回 401。
    """
    credentials_error = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )
    try:
        token_data = TokenPayload(**security.decode_access_token(token.credentials))
    except (InvalidTokenError, ValidationError):
        raise credentials_error
    if not token_data.sub:
        raise credentials_error
    try:
        user_id = int(token_data.sub)
    except ValueError:
        raise credentials_error
    user = session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    return user


CurrentUser = Annotated[User, Depends(get_current_user)]
