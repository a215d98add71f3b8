"""
人工重新排队

身份关联修复后，把 failed 的 webhook 事件改回 pending 并立即处理：
    python -m app.worker.requeue revenuecat <event_id> [<event_id> ...]
"""

import argparse
import logging

from app.core.config import settings
from app.core.db import engine
from app.enums import WebhookSource
from app.services.container import BillingServices, build_services
from app.services.processor import ProcessOutcome

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def requeue_events(
    services: BillingServices, source: WebhookSource, event_ids: list[str]
) -> dict[str, ProcessOutcome | None]:
    """返回每个事件的处理结果；未能重新排队（不存在或不是 failed）的为 None"""
    results: dict[str, ProcessOutcome | None] = {}
    for event_id in event_ids:
        if not services.ledger.requeue(source, event_id):
            logger.warning("Event %s/%s is not in failed state, skip", source.value, event_id)
            results[event_id] = None
            continue
        results[event_id] = services.processor.process(source, event_id)
        logger.info("Event %s/%s -> %s", source.value, event_id, results[event_id].value)
    return results


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Requeue failed webhook events")
    parser.add_argument("source", choices=[s.value for s in WebhookSource])
    parser.add_argument("event_ids", nargs="+")
    args = parser.parse_args(argv)

    services = build_services(settings, engine)
    results = requeue_events(services, WebhookSource(args.source), args.event_ids)
    ok = all(outcome is ProcessOutcome.succeeded for outcome in results.values())
    return 0 if ok else 1


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
