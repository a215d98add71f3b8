"""
枚举类型定义模块

所有枚举都继承自 str 和 Enum，既可以直接作为字符串写入数据库，
又保留枚举的类型约束。
"""
from enum import Enum


class WebhookSource(str, Enum):
    """
    Webhook 来源（两家账单服务商）

    - revenuecat: RevenueCat（移动端订阅，Bearer 认证）
    - paddle: Paddle Billing（Web 订阅，HMAC 签名）
    """
    revenuecat = "revenuecat"
    paddle = "paddle"


class WebhookEventStatus(str, Enum):
    """
    Webhook 事件处理状态

    - pending: 已入账，等待处理（或处理中途崩溃，等待对账任务重试）
    - succeeded: 处理成功
    - failed: 终态失败（身份无法解析、事件类型不支持等），不会自动重试
    """
    pending = "pending"
    succeeded = "succeeded"
    failed = "failed"


class EntitlementStatus(str, Enum):
    """
    权益状态

    - active: 有效
    - cancelled: 已取消自动续费，到期前仍可使用
    - expired: 已过期
    - billing_issue: 扣款异常且策略为 suspend 时暂停
    """
    active = "active"
    cancelled = "cancelled"
    expired = "expired"
    billing_issue = "billing_issue"


class Platform(str, Enum):
    """购买发生的平台"""
    ios = "ios"
    android = "android"
    web = "web"
    amazon = "amazon"
    paddle = "paddle"
    unknown = "unknown"


class EventKind(str, Enum):
    """
    标准化后的账单事件类型

    两家服务商的原始事件类型都会映射到这里的闭合集合，
    Event Processor 只依据这个枚举决定状态迁移。
    """
    initial_purchase = "initial_purchase"
    renewal = "renewal"
    cancellation = "cancellation"
    expiration = "expiration"
    billing_issue = "billing_issue"
    product_change = "product_change"
