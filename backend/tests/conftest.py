from __future__ import annotations

import os

os.environ["ENVIRONMENT"] = "local"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["REVENUECAT_WEBHOOK_SECRET"] = "rc_test_secret"
os.environ["PADDLE_WEBHOOK_SECRET"] = "pdl_test_secret"

import json  # noqa: E402
import time  # noqa: E402
import uuid  # noqa: E402
from collections.abc import Callable, Generator  # noqa: E402
from datetime import datetime, timedelta, timezone  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete  # noqa: E402

from app import crud  # noqa: E402
from app.core.config import settings  # noqa: E402
from app.main import app  # noqa: E402
from app.models import Entitlement, User, WebhookEvent  # noqa: E402
from app.services.container import BillingServices, build_services  # noqa: E402
from app.services.notifier import BillingAlert  # noqa: E402
from app.services.signatures import compute_hmac_signature  # noqa: E402


class FakeNotifier:
    def __init__(self) -> None:
        self.alerts: list[BillingAlert] = []

    def publish(self, alert: BillingAlert) -> None:
        self.alerts.append(alert)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(autouse=True)
def _clean_tables(engine) -> Generator[None, None, None]:
    yield
    # Children first.
    with Session(engine) as session:
        session.exec(delete(Entitlement))
        session.exec(delete(WebhookEvent))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture(scope="function")
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture(scope="function")
def services(engine, notifier) -> BillingServices:
    return build_services(settings, engine, notifier=notifier)


@pytest.fixture(scope="function")
def client(services) -> Generator[TestClient, None, None]:
    app.state.services = services
    with TestClient(app) as c:
        yield c
    app.state.services = None


@pytest.fixture(scope="function")
def user(db) -> User:
    return crud.create_user(
        session=db,
        nickname="alice",
        revenuecat_customer_id="$RCAnonymousID:legacy-1",
        paddle_customer_id="ctm_test_1",
    )


# ============================================================
# 请求体构造
# ============================================================


def now_ms() -> int:
    return int(time.time() * 1000)


@pytest.fixture
def rc_body() -> Callable[..., bytes]:
    """RevenueCat webhook 请求体"""

    def _build(
        event_type: str,
        *,
        app_user_id: str,
        event_id: str | None = None,
        event_ts_ms: int | None = None,
        aliases: list[str] | None = None,
        original_app_user_id: str | None = None,
        product_id: str | None = "premium_monthly",
        expiration_at_ms: int | None = None,
        entitlement_ids: list[str] | None = None,
        **extra: Any,
    ) -> bytes:
        ts = event_ts_ms if event_ts_ms is not None else now_ms()
        event: dict[str, Any] = {
            "id": event_id or uuid.uuid4().hex.upper(),
            "type": event_type,
            "app_user_id": app_user_id,
            "original_app_user_id": original_app_user_id or app_user_id,
            "aliases": aliases if aliases is not None else [app_user_id],
            "product_id": product_id,
            "entitlement_ids": entitlement_ids if entitlement_ids is not None else ["premium"],
            "period_type": "NORMAL",
            "purchased_at_ms": ts,
            "expiration_at_ms": (
                expiration_at_ms if expiration_at_ms is not None else ts + 30 * 24 * 3600 * 1000
            ),
            "event_timestamp_ms": ts,
            "store": "APP_STORE",
            "environment": "SANDBOX",
            "transaction_id": "1000000" + str(ts),
            "original_transaction_id": "1000000123",
        }
        event.update(extra)
        return json.dumps({"api_version": "1.0", "event": event}).encode()

    return _build


@pytest.fixture
def paddle_body() -> Callable[..., bytes]:
    """Paddle Billing webhook 请求体"""

    def _build(
        event_type: str,
        *,
        user_id: str | int | None = None,
        customer_id: str = "ctm_test_1",
        event_id: str | None = None,
        occurred_at: datetime | None = None,
        product_id: str = "pro_web_monthly",
        status: str = "active",
        scheduled_change: dict[str, Any] | None = None,
    ) -> bytes:
        at = occurred_at or datetime.now(timezone.utc)
        custom_data = {"user_id": user_id} if user_id is not None else None
        payload = {
            "event_id": event_id or f"evt_{uuid.uuid4().hex}",
            "event_type": event_type,
            "occurred_at": at.isoformat(),
            "notification_id": f"ntf_{uuid.uuid4().hex}",
            "data": {
                "id": "sub_01test",
                "status": status,
                "customer_id": customer_id,
                "custom_data": custom_data,
                "items": [{"price": {"id": "pri_01test", "product_id": product_id}}],
                "current_billing_period": {
                    "starts_at": at.isoformat(),
                    "ends_at": (at + timedelta(days=30)).isoformat(),
                },
                "scheduled_change": scheduled_change,
            },
        }
        return json.dumps(payload).encode()

    return _build


@pytest.fixture
def post_revenuecat(client) -> Callable[..., Any]:
    def _post(body: bytes, *, token: str | None = None):
        headers = {
            "Authorization": f"Bearer {token or settings.REVENUECAT_WEBHOOK_SECRET}",
            "Content-Type": "application/json",
        }
        return client.post("/api/v1/webhooks/revenuecat", content=body, headers=headers)

    return _post


@pytest.fixture
def paddle_signature() -> Callable[..., str]:
    def _sign(body: bytes, *, ts: int | None = None, secret: str | None = None) -> str:
        ts = ts if ts is not None else int(time.time())
        digest = compute_hmac_signature(secret or settings.PADDLE_WEBHOOK_SECRET, ts, body)
        return f"ts={ts};h1={digest}"

    return _sign


@pytest.fixture
def post_paddle(client, paddle_signature) -> Callable[..., Any]:
    def _post(body: bytes, *, signature: str | None = None):
        headers = {
            "Paddle-Signature": signature or paddle_signature(body),
            "Content-Type": "application/json",
        }
        return client.post("/api/v1/webhooks/paddle", content=body, headers=headers)

    return _post
