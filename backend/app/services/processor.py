"""
事件处理器（Event Processor）

读取账本中的 pending 事件，解析、解析身份，然后在单个事务中完成：
权益 upsert + 用户付费标记 + 账本状态 succeeded。要么全部提交，
要么全部回滚（终态错误再单独把账本行标记为 failed）。

状态迁移（按 EventKind）：
- initial_purchase / renewal: active，写入商品与周期，自动续费 true，付费标记 true
- cancellation: cancelled，自动续费 false，付费标记不变（到期前仍可使用）
- expiration: expired，自动续费 false，无其他放行权益时付费标记 false
- billing_issue: 记录 billing_issue_at 并发布告警；策略为 suspend 时状态改为 billing_issue
- product_change: 更新商品与周期，状态不变

顺序策略：早于 last_event_at 的事件不生效（reject-if-older），
账本仍标记 succeeded 并注明被更新事件取代。
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session

from app import crud
from app.core.db import SessionFactory
from app.enums import EntitlementStatus, EventKind, WebhookEventStatus, WebhookSource
from app.models import Entitlement, User, as_utc, utc_now
from app.services.errors import TerminalEventError, UnresolvableIdentityError
from app.services.events import BillingEvent, is_test_event, parse_event
from app.services.identity import IdentityResolver, NotFound
from app.services.ledger import IdempotencyLedger
from app.services.locks import KeyedLocks
from app.services.notifier import BillingAlert, BillingNotifier

logger = logging.getLogger(__name__)

STALE_EVENT_NOTE = "Skipped: superseded by newer event"
TEST_EVENT_NOTE = "Test event, no entitlement change"
NO_ENTITLEMENT_NOTE = "No entitlement to update"


class ProcessOutcome(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    retry = "retry"  # 暂时性故障，行保持 pending
    skipped = "skipped"  # 行不存在或已被处理


class BillingIssuePolicy(str, Enum):
    notify = "notify"
    suspend = "suspend"


@dataclass
class _Transition:
    applied: bool
    note: str | None = None
    alert: BillingAlert | None = None


@dataclass
class _EventResult:
    notes: list[str] = field(default_factory=list)
    alerts: list[BillingAlert] = field(default_factory=list)


class EventProcessor:
    """把一条已入账事件应用到权益模型"""

    def __init__(
        self,
        *,
        sessions: SessionFactory,
        ledger: IdempotencyLedger,
        resolver: IdentityResolver,
        notifier: BillingNotifier,
        default_entitlement_id: str,
        billing_issue_policy: BillingIssuePolicy = BillingIssuePolicy.notify,
        locks: KeyedLocks | None = None,
        max_conflict_retries: int = 3,
    ):
        self._sessions = sessions
        self._ledger = ledger
        self._resolver = resolver
        self._notifier = notifier
        self._default_entitlement_id = default_entitlement_id
        self._billing_issue_policy = BillingIssuePolicy(billing_issue_policy)
        self._locks = locks or KeyedLocks()
        self._max_conflict_retries = max_conflict_retries

    def process(self, source: WebhookSource, external_event_id: str) -> ProcessOutcome:
        """
        处理一条账本事件（后台任务与对账任务的入口）

        不向上抛出异常：终态错误记为 failed，其余错误保持 pending 等待重试。
        """
        for attempt in range(1, self._max_conflict_retries + 1):
            try:
                return self._process_once(source, external_event_id)
            except IntegrityError:
                # 并发首次创建同一权益行，另一方已提交，重试即可读到
                logger.info(
                    "Entitlement insert conflict for %s/%s (attempt %d)",
                    source.value,
                    external_event_id,
                    attempt,
                )
                continue
            except TerminalEventError as e:
                logger.warning(
                    "Webhook event %s/%s failed permanently: %s", source.value, external_event_id, e
                )
                try:
                    self._ledger.mark_status(source, external_event_id, WebhookEventStatus.failed, str(e))
                except SQLAlchemyError:
                    # 行仍为 pending，交给对账任务再次处理
                    logger.exception(
                        "Could not mark %s/%s as failed", source.value, external_event_id
                    )
                    return ProcessOutcome.retry
                return ProcessOutcome.failed
            except Exception as e:
                logger.exception("Transient failure processing %s/%s", source.value, external_event_id)
                self._ledger.record_transient_error(source, external_event_id, f"{type(e).__name__}: {e}")
                return ProcessOutcome.retry

        self._ledger.record_transient_error(
            source, external_event_id, "Entitlement insert conflict persisted"
        )
        return ProcessOutcome.retry

    def _process_once(self, source: WebhookSource, external_event_id: str) -> ProcessOutcome:
        snapshot = self._ledger.begin_attempt(source, external_event_id)
        if snapshot is None:
            logger.info("Webhook event %s/%s is not pending, skip", source.value, external_event_id)
            return ProcessOutcome.skipped

        if is_test_event(source, snapshot.event_type):
            self._ledger.mark_status(source, external_event_id, WebhookEventStatus.succeeded, TEST_EVENT_NOTE)
            return ProcessOutcome.succeeded

        event = parse_event(
            source,
            snapshot.raw_payload,
            default_entitlement_id=self._default_entitlement_id,
            received_at=snapshot.received_at,
        )

        with self._sessions() as session:
            row = self._ledger.lock_pending(session, source, external_event_id)
            if row is None:
                return ProcessOutcome.skipped

            resolved = self._resolver.resolve(session, event.candidate_ids)
            if isinstance(resolved, NotFound):
                raise UnresolvableIdentityError(resolved.candidates)
            user = session.get(User, resolved.user_id)
            if user is None:
                raise UnresolvableIdentityError(event.candidate_ids)

            result = _EventResult()
            keys = [(user.id, ent_id) for ent_id in event.entitlement_ids]
            with self._locks.hold(keys):
                for entitlement_id in event.entitlement_ids:
                    transition = self._apply(session, user, entitlement_id, event)
                    if transition.note:
                        result.notes.append(f"{entitlement_id}: {transition.note}")
                    if transition.alert:
                        result.alerts.append(transition.alert)

                note = "; ".join(result.notes) or None
                self._ledger.mark_in_session(session, row, WebhookEventStatus.succeeded, note)
                session.commit()

        logger.info(
            "Applied %s (%s) for user %s entitlements %s",
            event.kind.value,
            event.raw_type,
            user.id,
            event.entitlement_ids,
        )
        for alert in result.alerts:
            self._publish(alert)
        return ProcessOutcome.succeeded

    def _publish(self, alert: BillingAlert) -> None:
        try:
            self._notifier.publish(alert)
        except Exception:
            logger.exception("Failed to publish billing alert for user %s", alert.user_id)

    # ------------------------------------------------------------------
    # 状态迁移
    # ------------------------------------------------------------------

    def _apply(self, session: Session, user: User, entitlement_id: str, event: BillingEvent) -> _Transition:
        entitlement = crud.lock_entitlement(
            session=session, user_id=user.id, entitlement_id=entitlement_id
        )

        if entitlement is not None:
            last = as_utc(entitlement.last_event_at)
            if last is not None and event.occurred_at < last:
                logger.info(
                    "Ignoring %s for user %s/%s: event at %s is older than %s",
                    event.kind.value,
                    user.id,
                    entitlement_id,
                    event.occurred_at.isoformat(),
                    last.isoformat(),
                )
                return _Transition(applied=False, note=STALE_EVENT_NOTE)

        kind = event.kind
        if kind in (EventKind.initial_purchase, EventKind.renewal):
            entitlement = entitlement or self._new_entitlement(user, entitlement_id, event)
            entitlement.status = EntitlementStatus.active
            entitlement.auto_renew_status = True
            self._copy_period(entitlement, event)
            entitlement.is_trial_period = event.is_trial
            entitlement.platform = event.platform
            crud.set_user_premium(session=session, user=user, is_premium=True)
            transition = _Transition(applied=True)

        elif kind is EventKind.cancellation:
            # 取消订单可能先于购买事件到达，先落一行，避免更旧的购买事件把它覆盖为 active
            entitlement = entitlement or self._new_entitlement(user, entitlement_id, event)
            entitlement.status = EntitlementStatus.cancelled
            entitlement.auto_renew_status = False
            transition = _Transition(applied=True)

        elif kind is EventKind.expiration:
            entitlement = entitlement or self._new_entitlement(user, entitlement_id, event)
            entitlement.status = EntitlementStatus.expired
            entitlement.auto_renew_status = False
            if event.expiration_date is not None:
                entitlement.expiration_date = event.expiration_date
            self._touch(session, entitlement, event)
            keep = crud.user_has_other_access(
                session=session, user_id=user.id, exclude_entitlement_id=entitlement_id
            )
            crud.set_user_premium(session=session, user=user, is_premium=keep)
            return _Transition(applied=True)

        elif kind is EventKind.billing_issue:
            suspend = self._billing_issue_policy is BillingIssuePolicy.suspend
            alert = BillingAlert(
                user_id=user.id,
                entitlement_id=entitlement_id,
                source=event.source.value,
                external_event_id=event.external_event_id,
                occurred_at=event.occurred_at,
                suspended=suspend and entitlement is not None,
            )
            if entitlement is None:
                return _Transition(applied=False, note=NO_ENTITLEMENT_NOTE, alert=alert)
            entitlement.billing_issue_at = event.occurred_at
            if suspend:
                entitlement.status = EntitlementStatus.billing_issue
            self._touch(session, entitlement, event)
            if suspend:
                keep = crud.user_has_other_access(
                    session=session, user_id=user.id, exclude_entitlement_id=entitlement_id
                )
                crud.set_user_premium(session=session, user=user, is_premium=keep)
            return _Transition(applied=True, alert=alert)

        elif kind is EventKind.product_change:
            if entitlement is None:
                return _Transition(applied=False, note=NO_ENTITLEMENT_NOTE)
            self._copy_period(entitlement, event)
            transition = _Transition(applied=True)

        else:  # pragma: no cover - EventKind is closed
            raise TerminalEventError(f"Unhandled event kind: {kind}")

        self._touch(session, entitlement, event)
        return transition

    def _new_entitlement(self, user: User, entitlement_id: str, event: BillingEvent) -> Entitlement:
        return Entitlement(
            user_id=user.id,
            entitlement_id=entitlement_id,
            product_id=event.product_id,
            status=EntitlementStatus.active,
            platform=event.platform,
            source=event.source,
            purchase_date=event.purchase_date,
            expiration_date=event.expiration_date,
            is_trial_period=event.is_trial,
        )

    @staticmethod
    def _copy_period(entitlement: Entitlement, event: BillingEvent) -> None:
        if event.product_id:
            entitlement.product_id = event.product_id
        if event.purchase_date is not None:
            entitlement.purchase_date = event.purchase_date
        if event.expiration_date is not None:
            entitlement.expiration_date = event.expiration_date

    @staticmethod
    def _touch(session: Session, entitlement: Entitlement, event: BillingEvent) -> None:
        entitlement.source = event.source
        entitlement.last_event_at = event.occurred_at
        if event.provider_subscription_id:
            entitlement.provider_subscription_id = event.provider_subscription_id
        if event.transaction_id:
            entitlement.latest_transaction_id = event.transaction_id
        entitlement.updated_at = utc_now()
        session.add(entitlement)
