from __future__ import annotations

import time

from app.services.signatures import (
    compute_hmac_signature,
    parse_signature_header,
    verify_bearer,
    verify_hmac,
)

SECRET = "whsec_test"
BODY = b'{"event_id":"evt_1","event_type":"subscription.created"}'


def _header(ts: int, body: bytes = BODY, secret: str = SECRET) -> str:
    return f"ts={ts};h1={compute_hmac_signature(secret, ts, body)}"


def test_bearer_accepts_matching_token():
    assert verify_bearer("Bearer rc_secret", "rc_secret")
    assert verify_bearer("bearer rc_secret", "rc_secret")


def test_bearer_rejections():
    assert verify_bearer("Bearer wrong", "rc_secret").reason == "bearer token mismatch"
    assert verify_bearer(None, "rc_secret").reason == "missing authorization header"
    assert not verify_bearer("rc_secret", "rc_secret")
    assert not verify_bearer("Basic rc_secret", "rc_secret")


def test_bearer_fails_closed_without_secret():
    result = verify_bearer("Bearer anything", None)
    assert not result
    assert result.reason == "webhook secret not configured"
    assert not verify_bearer("Bearer ", "")


def test_parse_signature_header_is_order_independent():
    assert parse_signature_header("h1=abc;ts=123") == ("123", ["abc"])
    assert parse_signature_header("ts=1; h1=a; h1=b") == ("1", ["a", "b"])
    assert parse_signature_header("garbage") == (None, [])


def test_hmac_accepts_valid_signature():
    now = time.time()
    assert verify_hmac(_header(int(now)), BODY, SECRET, tolerance_seconds=300, now=now)


def test_hmac_rejects_altered_body():
    now = time.time()
    header = _header(int(now))
    altered = BODY.replace(b"evt_1", b"evt_2")
    result = verify_hmac(header, altered, SECRET, tolerance_seconds=300, now=now)
    assert not result
    assert result.reason == "signature digest mismatch"


def test_hmac_rejects_replayed_timestamp_even_with_valid_digest():
    now = time.time()
    old_ts = int(now) - 600
    result = verify_hmac(_header(old_ts), BODY, SECRET, tolerance_seconds=300, now=now)
    assert not result
    assert result.reason == "signature timestamp outside tolerance window"

    future_ts = int(now) + 600
    assert not verify_hmac(_header(future_ts), BODY, SECRET, tolerance_seconds=300, now=now)


def test_hmac_accepts_any_matching_digest_during_rotation():
    now = int(time.time())
    good = compute_hmac_signature(SECRET, now, BODY)
    header = f"h1={'0' * 64};ts={now};h1={good}"
    assert verify_hmac(header, BODY, SECRET, tolerance_seconds=300, now=now)


def test_hmac_rejects_malformed_header_and_missing_secret():
    now = int(time.time())
    assert verify_hmac(None, BODY, SECRET, tolerance_seconds=300, now=now).reason == (
        "missing signature header"
    )
    assert verify_hmac(f"ts={now}", BODY, SECRET, tolerance_seconds=300, now=now).reason == (
        "signature header missing ts or h1"
    )
    assert not verify_hmac("ts=abc;h1=00", BODY, SECRET, tolerance_seconds=300, now=now)
    assert verify_hmac(_header(now), BODY, None, tolerance_seconds=300, now=now).reason == (
        "webhook secret not configured"
    )


def test_hmac_rejects_wrong_secret():
    now = int(time.time())
    header = _header(now, secret="other_secret")
    assert not verify_hmac(header, BODY, SECRET, tolerance_seconds=300, now=now)
