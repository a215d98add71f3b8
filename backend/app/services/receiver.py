"""
Webhook 接收器（Webhook Receiver）

同步部分只做三件事：验签、解析事件 ID、入账。业务处理由路由层在响应发出后
以后台任务触发，应答不等待业务逻辑。

接收过程中若崩溃，已入账的 pending 行由对账任务兜底重新处理。
"""

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from app.enums import WebhookSource
from app.services.errors import InvalidEventPayloadError, SignatureVerificationError
from app.services.events import extract_envelope
from app.services.ledger import IdempotencyLedger
from app.services.signatures import VerificationResult, verify_bearer, verify_hmac

logger = logging.getLogger(__name__)


class ReceiveStatus(str, Enum):
    accepted = "accepted"
    already_processed = "already_processed"


@dataclass(frozen=True)
class ReceiveResult:
    status: ReceiveStatus
    source: WebhookSource
    external_event_id: str
    event_type: str


class WebhookReceiver:
    """两个服务商共用的接收流程，验签方式按来源区分"""

    def __init__(
        self,
        *,
        ledger: IdempotencyLedger,
        revenuecat_secret: str | None,
        paddle_secret: str | None,
        paddle_tolerance_seconds: int,
        clock: Callable[[], float] = time.time,
    ):
        self._ledger = ledger
        self._revenuecat_secret = revenuecat_secret
        self._paddle_secret = paddle_secret
        self._paddle_tolerance_seconds = paddle_tolerance_seconds
        self._clock = clock

    def verify(
        self,
        source: WebhookSource,
        raw_body: bytes,
        *,
        authorization: str | None = None,
        signature: str | None = None,
    ) -> VerificationResult:
        if source is WebhookSource.revenuecat:
            return verify_bearer(authorization, self._revenuecat_secret)
        return verify_hmac(
            signature,
            raw_body,
            self._paddle_secret,
            tolerance_seconds=self._paddle_tolerance_seconds,
            now=self._clock(),
        )

    def receive(
        self,
        source: WebhookSource,
        raw_body: bytes,
        *,
        authorization: str | None = None,
        signature: str | None = None,
    ) -> ReceiveResult:
        """
        验签并入账

        Raises:
            SignatureVerificationError: 认证失败（401，不入账）
            InvalidEventPayloadError: 签名有效但请求体无法解析（400）
            sqlalchemy.exc.SQLAlchemyError: 账本不可用（500，服务商会重试）
        """
        result = self.verify(source, raw_body, authorization=authorization, signature=signature)
        if not result:
            logger.warning("Rejected %s webhook: %s", source.value, result.reason)
            raise SignatureVerificationError(source.value, result.reason)

        try:
            text = raw_body.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidEventPayloadError("Body is not UTF-8 encoded") from e
        envelope = extract_envelope(source, raw_body)
        inserted = self._ledger.insert_pending(
            source,
            envelope.external_event_id,
            envelope.event_type,
            text,
            signature=signature if source is WebhookSource.paddle else None,
        )
        status = ReceiveStatus.accepted if inserted.inserted else ReceiveStatus.already_processed
        logger.info(
            "Received %s webhook %s (%s): %s",
            source.value,
            envelope.external_event_id,
            envelope.event_type,
            status.value,
        )
        return ReceiveResult(
            status=status,
            source=source,
            external_event_id=envelope.external_event_id,
            event_type=envelope.event_type,
        )
