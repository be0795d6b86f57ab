import hashlib
import hmac
import json
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

logger = logging.getLogger(__name__)

URL_VALIDATION_EVENT = "endpoint.url_validation"
SIGNATURE_HEADER = "x-zm-signature"
TIMESTAMP_HEADER = "x-zm-request-timestamp"
SIGNATURE_VERSION = "v0"


class VerificationOutcome(StrEnum):
    valid = "valid"
    missing_headers = "missing_headers"
    stale_timestamp = "stale_timestamp"
    invalid_signature = "invalid_signature"
    malformed_body = "malformed_body"


@dataclass(frozen=True)
class VerificationResult:
    outcome: VerificationOutcome
    payload: dict[str, Any] | None = None

    @property
    def is_valid(self) -> bool:
        return self.outcome == VerificationOutcome.valid


class ZoomWebhookVerifier:
    def __init__(self, secret_token: str, timestamp_tolerance_seconds: int = 300) -> None:
        self.secret_token = secret_token
        self.timestamp_tolerance_seconds = timestamp_tolerance_seconds

    def verify(
        self,
        raw_body: bytes,
        signature: str | None,
        timestamp: str | None,
        now: float | None = None,
    ) -> VerificationResult:
        if not self.secret_token:
            logger.error("Zoom webhook rejected reason=secret_token_not_configured")
            return VerificationResult(VerificationOutcome.invalid_signature)

        if not signature or not signature.strip() or not timestamp or not timestamp.strip():
            logger.warning("Zoom webhook rejected reason=missing_headers")
            return VerificationResult(VerificationOutcome.missing_headers)

        try:
            request_timestamp = int(timestamp.strip())
        except ValueError:
            logger.warning("Zoom webhook rejected reason=unparseable_timestamp")
            return VerificationResult(VerificationOutcome.stale_timestamp)

        current_time = int(time.time() if now is None else now)
        if current_time - request_timestamp > self.timestamp_tolerance_seconds:
            logger.warning(
                "Zoom webhook rejected reason=stale_timestamp age_seconds=%s",
                current_time - request_timestamp,
            )
            return VerificationResult(VerificationOutcome.stale_timestamp)

        expected_signature = self.compute_signature(raw_body, timestamp.strip())
        if not hmac.compare_digest(
            expected_signature.encode("utf-8"),
            signature.strip().encode("utf-8"),
        ):
            logger.warning("Zoom webhook rejected reason=invalid_signature")
            return VerificationResult(VerificationOutcome.invalid_signature)

        payload = parse_webhook_body(raw_body)
        if payload is None:
            logger.warning("Zoom webhook rejected reason=malformed_body")
            return VerificationResult(VerificationOutcome.malformed_body)
        return VerificationResult(VerificationOutcome.valid, payload)

    def compute_signature(self, raw_body: bytes, timestamp: str) -> str:
        message = f"{SIGNATURE_VERSION}:{timestamp}:".encode("utf-8") + raw_body
        digest = hmac.new(
            key=self.secret_token.encode("utf-8"),
            msg=message,
            digestmod=hashlib.sha256,
        ).hexdigest()
        return f"{SIGNATURE_VERSION}={digest}"

    def build_url_validation_response(self, plain_token: str) -> dict[str, str]:
        encrypted_token = hmac.new(
            key=self.secret_token.encode("utf-8"),
            msg=plain_token.encode("utf-8"),
            digestmod=hashlib.sha256,
        ).hexdigest()
        return {"plainToken": plain_token, "encryptedToken": encrypted_token}


def parse_webhook_body(raw_body: bytes) -> dict[str, Any] | None:
    try:
        parsed_body = json.loads(raw_body or b"")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(parsed_body, dict):
        return None
    return parsed_body


def extract_url_validation_token(payload: Mapping[str, Any] | None) -> str | None:
    if not isinstance(payload, Mapping):
        return None
    if payload.get("event") != URL_VALIDATION_EVENT:
        return None
    inner_payload = payload.get("payload")
    if not isinstance(inner_payload, Mapping):
        return None
    plain_token = inner_payload.get("plainToken")
    if not isinstance(plain_token, str) or not plain_token:
        return None
    return plain_token
