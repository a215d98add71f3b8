"""
API 路由聚合模块

路由模块说明：
- webhooks: RevenueCat / Paddle webhook 接收
- entitlements: 当前用户权益查询
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from app.api.routes import (
    entitlements,  # 权益路由
    utils,  # 工具路由
    webhooks,  # webhook 路由
)

api_router = APIRouter()

api_router.include_router(webhooks.router)  # /webhooks/*
api_router.include_router(entitlements.router)  # /entitlements/*
api_router.include_router(utils.router)  # /utils/*
