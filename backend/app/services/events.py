"""
服务商事件解析

把 RevenueCat / Paddle 的原始 JSON 校验并归一化为 BillingEvent。
事件类型集合是闭合的：映射表里没有的类型一律抛出 UnsupportedEventError，
不会带着缺失字段继续往下走。

RevenueCat: https://www.revenuecat.com/docs/integrations/webhooks/event-types-and-fields
Paddle:     https://developer.paddle.com/webhooks/subscriptions
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from app.enums import EventKind, Platform, WebhookSource
from app.services.errors import InvalidEventPayloadError, UnsupportedEventError
from app.services.identity import candidate_ids

REVENUECAT_EVENT_KINDS: dict[str, EventKind] = {
    "INITIAL_PURCHASE": EventKind.initial_purchase,
    "NON_RENEWING_PURCHASE": EventKind.initial_purchase,
    "RENEWAL": EventKind.renewal,
    "UNCANCELLATION": EventKind.renewal,
    "CANCELLATION": EventKind.cancellation,
    "EXPIRATION": EventKind.expiration,
    "BILLING_ISSUE": EventKind.billing_issue,
    "PRODUCT_CHANGE": EventKind.product_change,
}
REVENUECAT_TEST_EVENT = "TEST"

PADDLE_EVENT_KINDS: dict[str, EventKind] = {
    "subscription.created": EventKind.initial_purchase,
    "subscription.activated": EventKind.initial_purchase,
    "subscription.resumed": EventKind.renewal,
    "subscription.updated": EventKind.product_change,
    "subscription.canceled": EventKind.expiration,
    "subscription.past_due": EventKind.billing_issue,
}

_REVENUECAT_STORES: dict[str, Platform] = {
    "APP_STORE": Platform.ios,
    "MAC_APP_STORE": Platform.ios,
    "PLAY_STORE": Platform.android,
    "AMAZON": Platform.amazon,
    "STRIPE": Platform.web,
    "RC_BILLING": Platform.web,
    "PADDLE": Platform.paddle,
}


# ============================================================
# 通用归一化结果
# ============================================================


class BillingEvent(BaseModel):
    """归一化后的账单事件，Event Processor 只消费这个结构"""

    source: WebhookSource
    external_event_id: str
    raw_type: str
    kind: EventKind
    occurred_at: datetime
    candidate_ids: list[str]
    entitlement_ids: list[str]
    product_id: str | None = None
    purchase_date: datetime | None = None
    expiration_date: datetime | None = None
    platform: Platform = Platform.unknown
    is_trial: bool = False
    provider_subscription_id: str | None = None
    transaction_id: str | None = None


class EventEnvelope(BaseModel):
    """Receiver 入账所需的最少字段"""

    external_event_id: str
    event_type: str


def _ms_to_datetime(ms: int | None) -> datetime | None:
    if ms is None:
        return None
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


def _ensure_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _load_json(raw_payload: str | bytes) -> dict[str, Any]:
    try:
        data = json.loads(raw_payload)
    except (TypeError, ValueError) as e:
        raise InvalidEventPayloadError(f"Body is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise InvalidEventPayloadError("Body must be a JSON object")
    return data


def _validation_message(exc: ValidationError) -> str:
    first = exc.errors()[0]
    loc = ".".join(str(p) for p in first.get("loc", ()))
    return f"Invalid payload at {loc}: {first.get('msg')}"


# ============================================================
# RevenueCat
# ============================================================


class RevenueCatEventBody(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    type: str = Field(min_length=1)
    app_user_id: str | None = None
    original_app_user_id: str | None = None
    aliases: list[str] | None = None
    product_id: str | None = None
    new_product_id: str | None = None
    entitlement_id: str | None = None
    entitlement_ids: list[str] | None = None
    entitlements: list[str] | None = None
    period_type: str | None = None
    purchased_at_ms: int | None = None
    expiration_at_ms: int | None = None
    event_timestamp_ms: int | None = None
    store: str | None = None
    transaction_id: str | None = None
    original_transaction_id: str | None = None


class RevenueCatPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event: RevenueCatEventBody


class _RevenueCatEnvelopeEvent(BaseModel):
    id: str = Field(min_length=1)
    type: str = Field(min_length=1)


class _RevenueCatEnvelope(BaseModel):
    event: _RevenueCatEnvelopeEvent


# ============================================================
# Paddle Billing
# ============================================================


class PaddlePrice(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str | None = None
    product_id: str | None = None


class PaddleItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    price: PaddlePrice | None = None


class PaddleBillingPeriod(BaseModel):
    starts_at: datetime | None = None
    ends_at: datetime | None = None


class PaddleScheduledChange(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str | None = None
    effective_at: datetime | None = None


class PaddleCustomData(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    user_id: str | None = None
    entitlement_id: str | None = None


class PaddleSubscriptionData(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str = Field(min_length=1)
    status: str | None = None
    customer_id: str | None = None
    custom_data: PaddleCustomData | None = None
    items: list[PaddleItem] = Field(default_factory=list)
    current_billing_period: PaddleBillingPeriod | None = None
    scheduled_change: PaddleScheduledChange | None = None
    started_at: datetime | None = None
    transaction_id: str | None = None


class PaddlePayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    event_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)
    occurred_at: datetime | None = None
    data: PaddleSubscriptionData


class _PaddleEnvelope(BaseModel):
    event_id: str = Field(min_length=1)
    event_type: str = Field(min_length=1)


# ============================================================
# 解析入口
# ============================================================


def extract_envelope(source: WebhookSource, raw_body: bytes) -> EventEnvelope:
    """
    只解析事件 ID 与类型，供 Receiver 入账

    Raises:
        InvalidEventPayloadError: 请求体无法解析或缺少 ID/类型
    """
    return _envelope_from_dict(source, _load_json(raw_body))


def _envelope_from_dict(source: WebhookSource, data: dict[str, Any]) -> EventEnvelope:
    try:
        if source is WebhookSource.revenuecat:
            rc = _RevenueCatEnvelope.model_validate(data)
            return EventEnvelope(external_event_id=rc.event.id, event_type=rc.event.type)
        pd = _PaddleEnvelope.model_validate(data)
        return EventEnvelope(external_event_id=pd.event_id, event_type=pd.event_type)
    except ValidationError as e:
        raise InvalidEventPayloadError(_validation_message(e)) from e


def is_test_event(source: WebhookSource, event_type: str) -> bool:
    return source is WebhookSource.revenuecat and event_type.upper() == REVENUECAT_TEST_EVENT


def parse_event(
    source: WebhookSource,
    raw_payload: str | bytes,
    *,
    default_entitlement_id: str,
    received_at: datetime | None = None,
) -> BillingEvent:
    """
    校验并归一化完整事件

    Args:
        source: 来源
        raw_payload: 账本中保存的原始请求体
        default_entitlement_id: 事件未指明权益时使用
        received_at: 事件缺少时间戳时的兜底时间

    Raises:
        InvalidEventPayloadError: schema 校验失败
        UnsupportedEventError: 事件类型不在映射表中
    """
    data = _load_json(raw_payload)
    envelope = _envelope_from_dict(source, data)
    kinds = REVENUECAT_EVENT_KINDS if source is WebhookSource.revenuecat else PADDLE_EVENT_KINDS
    lookup = envelope.event_type.upper() if source is WebhookSource.revenuecat else envelope.event_type
    if lookup not in kinds:
        raise UnsupportedEventError(envelope.event_type)

    try:
        if source is WebhookSource.revenuecat:
            payload = RevenueCatPayload.model_validate(data)
            return _normalize_revenuecat(payload, default_entitlement_id, received_at)
        paddle = PaddlePayload.model_validate(data)
        return _normalize_paddle(paddle, default_entitlement_id, received_at)
    except ValidationError as e:
        raise InvalidEventPayloadError(_validation_message(e)) from e


def _normalize_revenuecat(
    payload: RevenueCatPayload, default_entitlement_id: str, received_at: datetime | None
) -> BillingEvent:
    ev = payload.event
    kind = REVENUECAT_EVENT_KINDS.get(ev.type.upper())
    if kind is None:
        raise UnsupportedEventError(ev.type)

    candidates = candidate_ids(ev.app_user_id, ev.original_app_user_id, ev.aliases)
    entitlement_ids = candidate_ids(
        ev.entitlement_id, ev.entitlement_ids, ev.entitlements
    ) or [default_entitlement_id]

    product_id = ev.product_id
    if kind is EventKind.product_change and ev.new_product_id:
        product_id = ev.new_product_id

    occurred_at = (
        _ms_to_datetime(ev.event_timestamp_ms)
        or _ms_to_datetime(ev.purchased_at_ms)
        or _ensure_utc(received_at)
        or datetime.now(timezone.utc)
    )
    return BillingEvent(
        source=WebhookSource.revenuecat,
        external_event_id=ev.id,
        raw_type=ev.type,
        kind=kind,
        occurred_at=occurred_at,
        candidate_ids=candidates,
        entitlement_ids=entitlement_ids,
        product_id=product_id,
        purchase_date=_ms_to_datetime(ev.purchased_at_ms),
        expiration_date=_ms_to_datetime(ev.expiration_at_ms),
        platform=_REVENUECAT_STORES.get((ev.store or "").upper(), Platform.unknown),
        is_trial=(ev.period_type or "").upper() == "TRIAL",
        provider_subscription_id=ev.original_transaction_id,
        transaction_id=ev.transaction_id,
    )


def _normalize_paddle(
    payload: PaddlePayload, default_entitlement_id: str, received_at: datetime | None
) -> BillingEvent:
    kind = PADDLE_EVENT_KINDS.get(payload.event_type)
    if kind is None:
        raise UnsupportedEventError(payload.event_type)

    data = payload.data
    if (
        payload.event_type == "subscription.updated"
        and data.scheduled_change is not None
        and data.scheduled_change.action == "cancel"
    ):
        kind = EventKind.cancellation

    custom = data.custom_data or PaddleCustomData()
    candidates = candidate_ids(custom.user_id, data.customer_id)
    product_id = next(
        (item.price.product_id for item in data.items if item.price and item.price.product_id),
        None,
    )
    period = data.current_billing_period or PaddleBillingPeriod()

    return BillingEvent(
        source=WebhookSource.paddle,
        external_event_id=payload.event_id,
        raw_type=payload.event_type,
        kind=kind,
        occurred_at=_ensure_utc(payload.occurred_at)
        or _ensure_utc(received_at)
        or datetime.now(timezone.utc),
        candidate_ids=candidates,
        entitlement_ids=[custom.entitlement_id or default_entitlement_id],
        product_id=product_id,
        purchase_date=_ensure_utc(period.starts_at or data.started_at),
        expiration_date=_ensure_utc(period.ends_at),
        platform=Platform.paddle,
        is_trial=data.status == "trialing",
        provider_subscription_id=data.id,
        transaction_id=data.transaction_id,
    )
