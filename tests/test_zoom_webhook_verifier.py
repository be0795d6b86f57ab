import hashlib
import hmac
import json

from app.services.zoom_webhook_verifier import (
    VerificationOutcome,
    ZoomWebhookVerifier,
    extract_url_validation_token,
    parse_webhook_body,
)

SECRET = "verifier-secret"
NOW = 1_700_000_000
BODY = json.dumps({"event": "recording.completed", "payload": {"object": {}}}).encode("utf-8")


def _sign(body: bytes, timestamp: int | str, secret: str = SECRET) -> str:
    message = f"v0:{timestamp}:".encode("utf-8") + body
    digest = hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()
    return f"v0={digest}"


def test_accepts_valid_signature_and_returns_payload() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    result = verifier.verify(BODY, _sign(BODY, NOW), str(NOW), now=NOW)

    assert result.is_valid
    assert result.payload == {"event": "recording.completed", "payload": {"object": {}}}


def test_compute_signature_matches_zoom_scheme() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    assert verifier.compute_signature(BODY, str(NOW)) == _sign(BODY, NOW)


def test_rejects_tampered_body() -> None:
    verifier = ZoomWebhookVerifier(SECRET)
    signature = _sign(BODY, NOW)

    result = verifier.verify(BODY.replace(b"recording", b"meeting"), signature, str(NOW), now=NOW)

    assert result.outcome == VerificationOutcome.invalid_signature
    assert result.payload is None


def test_rejects_signature_made_with_other_secret() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    result = verifier.verify(BODY, _sign(BODY, NOW, secret="other"), str(NOW), now=NOW)

    assert result.outcome == VerificationOutcome.invalid_signature


def test_timestamp_at_tolerance_boundary_is_accepted() -> None:
    verifier = ZoomWebhookVerifier(SECRET, timestamp_tolerance_seconds=300)
    timestamp = NOW - 300

    result = verifier.verify(BODY, _sign(BODY, timestamp), str(timestamp), now=NOW)

    assert result.is_valid


def test_timestamp_past_tolerance_is_rejected() -> None:
    verifier = ZoomWebhookVerifier(SECRET, timestamp_tolerance_seconds=300)
    timestamp = NOW - 301

    result = verifier.verify(BODY, _sign(BODY, timestamp), str(timestamp), now=NOW)

    assert result.outcome == VerificationOutcome.stale_timestamp


def test_unparseable_timestamp_is_rejected_as_stale() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    result = verifier.verify(BODY, _sign(BODY, "soon"), "soon", now=NOW)

    assert result.outcome == VerificationOutcome.stale_timestamp


def test_missing_headers_are_rejected() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    assert verifier.verify(BODY, None, str(NOW), now=NOW).outcome == (
        VerificationOutcome.missing_headers
    )
    assert verifier.verify(BODY, _sign(BODY, NOW), "", now=NOW).outcome == (
        VerificationOutcome.missing_headers
    )


def test_unset_secret_rejects_everything() -> None:
    verifier = ZoomWebhookVerifier("")

    result = verifier.verify(BODY, _sign(BODY, NOW, secret=""), str(NOW), now=NOW)

    assert result.outcome == VerificationOutcome.invalid_signature


def test_signed_malformed_body_is_reported() -> None:
    verifier = ZoomWebhookVerifier(SECRET)
    body = b"not json"

    result = verifier.verify(body, _sign(body, NOW), str(NOW), now=NOW)

    assert result.outcome == VerificationOutcome.malformed_body


def test_url_validation_response_encrypts_plain_token() -> None:
    verifier = ZoomWebhookVerifier(SECRET)

    response = verifier.build_url_validation_response("plain-123")

    expected = hmac.new(SECRET.encode("utf-8"), b"plain-123", hashlib.sha256).hexdigest()
    assert response == {"plainToken": "plain-123", "encryptedToken": expected}


def test_extract_url_validation_token() -> None:
    payload = {"event": "endpoint.url_validation", "payload": {"plainToken": "abc"}}

    assert extract_url_validation_token(payload) == "abc"
    assert extract_url_validation_token({"event": "recording.completed"}) is None
    assert extract_url_validation_token({"event": "endpoint.url_validation"}) is None
    assert extract_url_validation_token(None) is None


def test_parse_webhook_body_requires_json_object() -> None:
    assert parse_webhook_body(b'{"event": "x"}') == {"event": "x"}
    assert parse_webhook_body(b"[1, 2]") is None
    assert parse_webhook_body(b"") is None
    assert parse_webhook_body(b"\xff\xfe") is None
