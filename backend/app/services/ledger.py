"""
幂等账本（Idempotency Ledger）

(source, external_event_id) 上的唯一约束是唯一的幂等机制：
并发的重复投递同时 INSERT，数据库只让一个成功，其余得到 IntegrityError。
行永不删除。

写入方：
- Receiver：insert_pending
- Processor / 对账任务：claim / mark_status / requeue
"""

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from app.core.db import SessionFactory
from app.enums import WebhookEventStatus, WebhookSource
from app.models import WebhookEvent, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InsertResult:
    inserted: bool
    event_id: int | None = None


class IdempotencyLedger:
    """Webhook 事件账本"""

    def __init__(self, sessions: SessionFactory):
        self._sessions = sessions

    def insert_pending(
        self,
        source: WebhookSource,
        external_event_id: str,
        event_type: str,
        raw_payload: str,
        signature: str | None = None,
    ) -> InsertResult:
        """
        插入 pending 行

        Returns:
            inserted=False 表示该事件已入账（重复投递）

        Raises:
            sqlalchemy.exc.SQLAlchemyError: 数据库不可用等暂时性故障
        """
        row = WebhookEvent(
            source=source,
            external_event_id=external_event_id,
            event_type=event_type,
            raw_payload=raw_payload,
            signature=signature,
            status=WebhookEventStatus.pending,
        )
        with self._sessions() as session:
            session.add(row)
            try:
                session.commit()
            except IntegrityError:
                session.rollback()
                logger.info("Duplicate webhook delivery %s/%s", source.value, external_event_id)
                return InsertResult(inserted=False)
            return InsertResult(inserted=True, event_id=row.id)

    def get(self, source: WebhookSource, external_event_id: str) -> WebhookEvent | None:
        with self._sessions() as session:
            return self._select(session, source, external_event_id).first()

    @staticmethod
    def _select(session: Session, source: WebhookSource, external_event_id: str, *, for_update: bool = False):
        stmt = select(WebhookEvent).where(
            WebhookEvent.source == source.value,
            WebhookEvent.external_event_id == external_event_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        return session.exec(stmt)

    def begin_attempt(self, source: WebhookSource, external_event_id: str) -> WebhookEvent | None:
        """
        独立事务递增 pending 行的尝试次数

        业务事务回滚时计数也会保留，对账任务据此判断何时放弃。
        行不存在或已不是 pending（已被其他 worker 处理完）时返回 None。
        """
        with self._sessions() as session:
            row = self._select(session, source, external_event_id, for_update=True).first()
            if row is None or row.status != WebhookEventStatus.pending:
                return None
            row.processing_attempts += 1
            session.add(row)
            session.commit()
            return row

    def lock_pending(self, session: Session, source: WebhookSource, external_event_id: str) -> WebhookEvent | None:
        """在调用方事务内锁定仍为 pending 的行，否则返回 None"""
        row = self._select(session, source, external_event_id, for_update=True).first()
        if row is None or row.status != WebhookEventStatus.pending:
            return None
        return row

    @staticmethod
    def mark_in_session(
        session: Session,
        row: WebhookEvent,
        status: WebhookEventStatus,
        error_message: str | None = None,
    ) -> None:
        """在调用方事务内更新状态，与业务写入一起提交"""
        row.status = status
        row.error_message = error_message
        row.processed_at = utc_now()
        session.add(row)

    def mark_status(
        self,
        source: WebhookSource,
        external_event_id: str,
        status: WebhookEventStatus,
        error_message: str | None = None,
    ) -> bool:
        """独立事务更新状态，返回是否找到该行"""
        with self._sessions() as session:
            row = self._select(session, source, external_event_id, for_update=True).first()
            if row is None:
                return False
            self.mark_in_session(session, row, status, error_message)
            session.commit()
            return True

    def record_transient_error(self, source: WebhookSource, external_event_id: str, error_message: str) -> None:
        """记录暂时性错误信息，行保持 pending；数据库仍不可用时只记日志"""
        try:
            with self._sessions() as session:
                row = self._select(session, source, external_event_id).first()
                if row is None or row.status != WebhookEventStatus.pending:
                    return
                row.error_message = error_message
                session.add(row)
                session.commit()
        except Exception:
            logger.exception("Could not record transient error for %s/%s", source.value, external_event_id)

    def list_stale_pending(self, older_than: datetime, limit: int = 100) -> Sequence[WebhookEvent]:
        """列出接收时间早于 older_than 且仍为 pending 的行（最早的优先）"""
        with self._sessions() as session:
            stmt = (
                select(WebhookEvent)
                .where(
                    WebhookEvent.status == WebhookEventStatus.pending.value,
                    WebhookEvent.received_at < older_than,
                )
                .order_by(WebhookEvent.received_at)
                .limit(limit)
            )
            return session.exec(stmt).all()

    def requeue(self, source: WebhookSource, external_event_id: str) -> bool:
        """
        人工重新排队：failed -> pending

        身份关联修复后使用；只作用于 failed 行，返回是否发生变更。
        """
        with self._sessions() as session:
            row = self._select(session, source, external_event_id, for_update=True).first()
            if row is None or row.status != WebhookEventStatus.failed:
                return False
            row.status = WebhookEventStatus.pending
            row.error_message = None
            row.processing_attempts = 0
            session.add(row)
            session.commit()
            logger.info("Requeued webhook event %s/%s", source.value, external_event_id)
            return True
