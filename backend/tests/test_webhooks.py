from __future__ import annotations

import json
import time
from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from app import crud
from app.core.config import settings
from app.enums import EntitlementStatus, Platform, WebhookEventStatus, WebhookSource
from app.models import Entitlement, User, WebhookEvent
from app.services.processor import STALE_EVENT_NOTE, TEST_EVENT_NOTE


def _event_id(body: bytes) -> str:
    data = json.loads(body)
    return data["event"]["id"] if "event" in data else data["event_id"]


def _ledger_rows(engine) -> list[WebhookEvent]:
    with Session(engine) as session:
        return list(session.exec(select(WebhookEvent)).all())


def _entitlement(engine, user_id: int, entitlement_id: str = "premium") -> Entitlement | None:
    with Session(engine) as session:
        return crud.get_entitlement(session=session, user_id=user_id, entitlement_id=entitlement_id)


def _is_premium(engine, user_id: int) -> bool:
    with Session(engine) as session:
        return session.get(User, user_id).is_premium


def test_initial_purchase_grants_entitlement(engine, services, user, rc_body, post_revenuecat):
    body = rc_body("INITIAL_PURCHASE", app_user_id=str(user.id))
    r = post_revenuecat(body)
    assert r.status_code == 200
    payload = r.json()
    assert payload["code"] == 0
    assert payload["data"] == {
        "status": "accepted",
        "source": "revenuecat",
        "event_id": _event_id(body),
    }

    row = services.ledger.get(WebhookSource.revenuecat, _event_id(body))
    assert row.status == WebhookEventStatus.succeeded
    assert row.raw_payload == body.decode()
    assert row.processed_at is not None

    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.active
    assert entitlement.auto_renew_status is True
    assert entitlement.product_id == "premium_monthly"
    assert entitlement.platform == Platform.ios
    assert _is_premium(engine, user.id) is True


def test_duplicate_delivery_is_acknowledged_once(engine, services, user, rc_body, post_revenuecat):
    body = rc_body("INITIAL_PURCHASE", app_user_id=str(user.id))
    first = post_revenuecat(body)
    second = post_revenuecat(body)

    assert first.json()["data"]["status"] == "accepted"
    assert second.status_code == 200
    assert second.json()["data"]["status"] == "already_processed"

    rows = _ledger_rows(engine)
    assert len(rows) == 1
    assert rows[0].processing_attempts == 1


def test_wrong_bearer_token_is_rejected_without_ledger_row(engine, user, rc_body, post_revenuecat):
    r = post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id)), token="nope")
    assert r.status_code == 401
    assert r.json()["code"] == 401001
    assert _ledger_rows(engine) == []
    assert _entitlement(engine, user.id) is None


def test_missing_authorization_header_is_rejected(engine, client, user, rc_body):
    r = client.post(
        "/api/v1/webhooks/revenuecat",
        content=rc_body("RENEWAL", app_user_id=str(user.id)),
    )
    assert r.status_code == 401
    assert _ledger_rows(engine) == []


def test_paddle_altered_body_is_rejected(engine, user, paddle_body, paddle_signature, post_paddle):
    body = paddle_body("subscription.created", user_id=user.id)
    signature = paddle_signature(body)
    tampered = body.replace(b"pro_web_monthly", b"pro_web_lifetime")

    r = post_paddle(tampered, signature=signature)
    assert r.status_code == 401
    assert r.json()["code"] == 401001
    assert _ledger_rows(engine) == []


def test_paddle_replayed_signature_is_rejected(engine, user, paddle_body, paddle_signature, post_paddle):
    body = paddle_body("subscription.created", user_id=user.id)
    stale = paddle_signature(body, ts=int(time.time()) - 10 * 60)

    r = post_paddle(body, signature=stale)
    assert r.status_code == 401
    assert _ledger_rows(engine) == []


def test_malformed_body_with_valid_auth_is_bad_request(engine, post_revenuecat):
    r = post_revenuecat(b'{"event": {"type": "RENEWAL"}}')
    assert r.status_code == 400
    assert r.json()["code"] == 400001
    assert _ledger_rows(engine) == []

    r = post_revenuecat(b"\xff\xfe not utf-8")
    assert r.status_code == 400


def test_lifecycle_purchase_cancel_expire(engine, services, user, rc_body, post_revenuecat):
    t0 = int(time.time() * 1000) - 60_000
    post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id), event_ts_ms=t0))

    post_revenuecat(rc_body("CANCELLATION", app_user_id=str(user.id), event_ts_ms=t0 + 1_000))
    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.cancelled
    assert entitlement.auto_renew_status is False
    assert _is_premium(engine, user.id) is True

    post_revenuecat(
        rc_body(
            "EXPIRATION",
            app_user_id=str(user.id),
            event_ts_ms=t0 + 2_000,
            expiration_at_ms=t0 + 2_000,
        )
    )
    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.expired
    assert entitlement.auto_renew_status is False
    assert _is_premium(engine, user.id) is False
    assert all(row.status == WebhookEventStatus.succeeded for row in _ledger_rows(engine))


def test_alias_resolves_to_canonical_user(engine, user, rc_body, post_revenuecat):
    body = rc_body(
        "INITIAL_PURCHASE",
        app_user_id="$RCAnonymousID:brand-new",
        original_app_user_id="$RCAnonymousID:brand-new",
        aliases=["$RCAnonymousID:brand-new", "$RCAnonymousID:legacy-1"],
    )
    post_revenuecat(body)

    entitlement = _entitlement(engine, user.id)
    assert entitlement is not None
    assert entitlement.status == EntitlementStatus.active
    assert _is_premium(engine, user.id) is True


def test_unresolvable_identity_fails_without_mutation(engine, services, user, rc_body, post_revenuecat):
    body = rc_body("INITIAL_PURCHASE", app_user_id="$RCAnonymousID:stranger", aliases=[])
    r = post_revenuecat(body)
    assert r.json()["data"]["status"] == "accepted"

    row = services.ledger.get(WebhookSource.revenuecat, _event_id(body))
    assert row.status == WebhookEventStatus.failed
    assert row.error_message == "No local user for identifiers: $RCAnonymousID:stranger"
    assert _entitlement(engine, user.id) is None

    again = post_revenuecat(body)
    assert again.json()["data"]["status"] == "already_processed"
    row = services.ledger.get(WebhookSource.revenuecat, _event_id(body))
    assert row.status == WebhookEventStatus.failed
    assert row.processing_attempts == 1


def test_older_event_does_not_override_newer_state(engine, services, user, rc_body, post_revenuecat):
    t0 = int(time.time() * 1000) - 60_000
    purchase = rc_body("INITIAL_PURCHASE", app_user_id=str(user.id), event_ts_ms=t0)
    cancel = rc_body("CANCELLATION", app_user_id=str(user.id), event_ts_ms=t0 + 5_000)

    # 取消先到，购买后到
    post_revenuecat(cancel)
    post_revenuecat(purchase)

    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.cancelled
    assert entitlement.auto_renew_status is False

    row = services.ledger.get(WebhookSource.revenuecat, _event_id(purchase))
    assert row.status == WebhookEventStatus.succeeded
    assert STALE_EVENT_NOTE in row.error_message


def test_late_renewal_does_not_revive_expired_entitlement(engine, user, rc_body, post_revenuecat):
    t0 = int(time.time() * 1000) - 60_000
    post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id), event_ts_ms=t0))
    post_revenuecat(
        rc_body("EXPIRATION", app_user_id=str(user.id), event_ts_ms=t0 + 3_000, expiration_at_ms=t0)
    )
    post_revenuecat(rc_body("RENEWAL", app_user_id=str(user.id), event_ts_ms=t0 + 1_000))

    assert _entitlement(engine, user.id).status == EntitlementStatus.expired
    assert _is_premium(engine, user.id) is False


def test_unknown_event_type_is_marked_failed(engine, services, user, rc_body, post_revenuecat):
    body = rc_body("SUBSCRIPTION_PAUSED", app_user_id=str(user.id))
    r = post_revenuecat(body)
    assert r.status_code == 200

    row = services.ledger.get(WebhookSource.revenuecat, _event_id(body))
    assert row.status == WebhookEventStatus.failed
    assert row.error_message == "Unsupported event type: SUBSCRIPTION_PAUSED"
    assert row.event_type == "SUBSCRIPTION_PAUSED"
    assert _entitlement(engine, user.id) is None


def test_revenuecat_test_event_is_acknowledged(engine, services, post_revenuecat):
    body = json.dumps({"api_version": "1.0", "event": {"id": "TEST-1", "type": "TEST"}}).encode()
    r = post_revenuecat(body)
    assert r.status_code == 200

    row = services.ledger.get(WebhookSource.revenuecat, "TEST-1")
    assert row.status == WebhookEventStatus.succeeded
    assert row.error_message == TEST_EVENT_NOTE


def test_billing_issue_notifies_without_revoking(engine, notifier, user, rc_body, post_revenuecat):
    t0 = int(time.time() * 1000) - 60_000
    post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id), event_ts_ms=t0))
    billing = rc_body("BILLING_ISSUE", app_user_id=str(user.id), event_ts_ms=t0 + 1_000)
    post_revenuecat(billing)

    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.active
    assert entitlement.billing_issue_at is not None
    assert _is_premium(engine, user.id) is True

    assert len(notifier.alerts) == 1
    alert = notifier.alerts[0]
    assert alert.user_id == user.id
    assert alert.entitlement_id == "premium"
    assert alert.external_event_id == _event_id(billing)
    assert alert.suspended is False


def test_paddle_subscription_lifecycle(engine, services, user, paddle_body, post_paddle):
    t0 = datetime.now(timezone.utc) - timedelta(minutes=10)
    created = paddle_body("subscription.created", user_id=user.id, occurred_at=t0)
    r = post_paddle(created)
    assert r.status_code == 200
    assert r.json()["data"]["status"] == "accepted"

    entitlement = _entitlement(engine, user.id)
    assert entitlement.status == EntitlementStatus.active
    assert entitlement.platform == Platform.paddle
    assert entitlement.product_id == "pro_web_monthly"
    assert entitlement.provider_subscription_id == "sub_01test"

    row = services.ledger.get(WebhookSource.paddle, _event_id(created))
    assert row.signature is not None and row.signature.startswith("ts=")

    post_paddle(
        paddle_body(
            "subscription.updated",
            user_id=user.id,
            occurred_at=t0 + timedelta(minutes=1),
            scheduled_change={"action": "cancel", "effective_at": None},
        )
    )
    assert _entitlement(engine, user.id).status == EntitlementStatus.cancelled

    post_paddle(
        paddle_body(
            "subscription.canceled",
            user_id=user.id,
            occurred_at=t0 + timedelta(minutes=2),
            status="canceled",
        )
    )
    assert _entitlement(engine, user.id).status == EntitlementStatus.expired
    assert _is_premium(engine, user.id) is False


def test_paddle_resolves_by_customer_id(engine, user, paddle_body, post_paddle):
    post_paddle(paddle_body("subscription.activated", customer_id="ctm_test_1"))
    assert _entitlement(engine, user.id).status == EntitlementStatus.active


def test_ack_deadline_returns_server_error(engine, services, user, rc_body, post_revenuecat, monkeypatch):
    def _slow_receive(*args, **kwargs):
        time.sleep(0.5)

    monkeypatch.setattr(settings, "WEBHOOK_ACK_TIMEOUT_SECONDS", 0.05)
    monkeypatch.setattr(services.receiver, "receive", _slow_receive)

    r = post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id)))
    assert r.status_code == 500
    assert r.json()["code"] == 500002


def test_ledger_outage_returns_server_error(engine, services, user, rc_body, post_revenuecat, monkeypatch):
    def _down(*args, **kwargs):
        raise OperationalError("INSERT INTO webhook_events", {}, Exception("database is down"))

    monkeypatch.setattr(services.ledger, "insert_pending", _down)

    r = post_revenuecat(rc_body("INITIAL_PURCHASE", app_user_id=str(user.id)))
    assert r.status_code == 500
    assert r.json()["code"] == 500001
    assert _ledger_rows(engine) == []
