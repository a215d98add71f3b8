from __future__ import annotations

import functools
import logging

import anyio
import anyio.to_thread
from fastapi import APIRouter, BackgroundTasks, Header, Request
from sqlalchemy.exc import SQLAlchemyError

from app.api.deps import BillingServicesDep
from app.api.errors import (
    ack_deadline_exceeded,
    invalid_signature,
    malformed_payload,
    transient_failure,
)
from app.api.schemas import ApiEnvelope, WebhookAckData
from app.enums import WebhookSource
from app.services.container import BillingServices
from app.services.errors import InvalidEventPayloadError, SignatureVerificationError
from app.services.receiver import ReceiveStatus

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


async def _receive(
    services: BillingServices,
    background_tasks: BackgroundTasks,
    source: WebhookSource,
    raw_body: bytes,
    *,
    authorization: str | None = None,
    signature: str | None = None,
) -> ApiEnvelope:
    timeout = services.settings.WEBHOOK_ACK_TIMEOUT_SECONDS
    receive = functools.partial(
        services.receiver.receive,
        source,
        raw_body,
        authorization=authorization,
        signature=signature,
    )
    try:
        with anyio.fail_after(timeout):
            # 超时后放弃等待工作线程，立即应答 500
            result = await anyio.to_thread.run_sync(receive, abandon_on_cancel=True)
    except SignatureVerificationError:
        raise invalid_signature()
    except InvalidEventPayloadError as e:
        logger.warning("Malformed %s webhook: %s", source.value, e)
        raise malformed_payload(str(e))
    except TimeoutError:
        # 若入账已完成，pending 行由对账任务处理
        logger.error("%s webhook missed the %.1fs acknowledgement deadline", source.value, timeout)
        raise ack_deadline_exceeded()
    except SQLAlchemyError:
        logger.exception("Ledger unavailable while receiving %s webhook", source.value)
        raise transient_failure()

    if result.status is ReceiveStatus.accepted:
        # 响应发出后执行，应答不等待业务处理
        background_tasks.add_task(services.processor.process, source, result.external_event_id)

    return ApiEnvelope(
        data=WebhookAckData(
            status=result.status.value,
            source=source,
            event_id=result.external_event_id,
        )
    )


@router.post("/revenuecat", response_model=ApiEnvelope)
async def revenuecat_webhook(
    request: Request,
    services: BillingServicesDep,
    background_tasks: BackgroundTasks,
    authorization: str | None = Header(default=None),
) -> ApiEnvelope:
    raw_body = await request.body()
    return await _receive(
        services,
        background_tasks,
        WebhookSource.revenuecat,
        raw_body,
        authorization=authorization,
    )


@router.post("/paddle", response_model=ApiEnvelope)
async def paddle_webhook(
    request: Request,
    services: BillingServicesDep,
    background_tasks: BackgroundTasks,
    paddle_signature: str | None = Header(default=None),
) -> ApiEnvelope:
    raw_body = await request.body()
    return await _receive(
        services,
        background_tasks,
        WebhookSource.paddle,
        raw_body,
        signature=paddle_signature,
    )
