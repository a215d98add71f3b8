"""
对账（Reconciliation Sweep）

后台任务在应答之后执行，进程崩溃或数据库抖动会让账本行停留在 pending。
对账任务周期性扫描超过阈值仍为 pending 的行并重新交给 Processor；
尝试次数达到上限的行标记为 failed，等待人工处理。
"""

import logging
from dataclasses import dataclass
from datetime import timedelta

from app.enums import WebhookEventStatus, WebhookSource
from app.models import utc_now
from app.services.ledger import IdempotencyLedger
from app.services.processor import EventProcessor, ProcessOutcome

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    scanned: int = 0
    succeeded: int = 0
    failed: int = 0
    retry: int = 0
    gave_up: int = 0


class PendingEventReconciler:
    def __init__(
        self,
        *,
        ledger: IdempotencyLedger,
        processor: EventProcessor,
        pending_after_seconds: int,
        max_attempts: int,
        batch_size: int = 100,
    ):
        self._ledger = ledger
        self._processor = processor
        self._pending_after = timedelta(seconds=pending_after_seconds)
        self._max_attempts = max_attempts
        self._batch_size = batch_size

    def sweep(self) -> SweepReport:
        """扫描一批过期的 pending 行（单行出错不影响同批其他行）"""
        report = SweepReport()
        cutoff = utc_now() - self._pending_after
        for row in self._ledger.list_stale_pending(cutoff, limit=self._batch_size):
            report.scanned += 1
            source = WebhookSource(row.source)
            try:
                self._sweep_row(source, row.external_event_id, row.processing_attempts, report)
            except Exception:
                logger.exception(
                    "Reconciliation of %s/%s failed, keep pending", source.value, row.external_event_id
                )
                report.retry += 1

        if report.scanned:
            logger.info("Reconciliation sweep: %s", report)
        return report

    def _sweep_row(
        self, source: WebhookSource, external_event_id: str, attempts: int, report: SweepReport
    ) -> None:
        if attempts >= self._max_attempts:
            self._ledger.mark_status(
                source,
                external_event_id,
                WebhookEventStatus.failed,
                f"Gave up after {attempts} attempts",
            )
            logger.error(
                "Webhook event %s/%s gave up after %d attempts",
                source.value,
                external_event_id,
                attempts,
            )
            report.gave_up += 1
            return

        outcome = self._processor.process(source, external_event_id)
        if outcome is ProcessOutcome.succeeded:
            report.succeeded += 1
        elif outcome is ProcessOutcome.failed:
            report.failed += 1
        elif outcome is ProcessOutcome.retry:
            report.retry += 1
