import logging

from fastapi import APIRouter, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.zoom_webhook import ErrorResponse, UrlValidationResponse, WebhookResponse
from app.services.zoom_event_reconciler import (
    AuthenticationError,
    MalformedInputError,
    ReconciliationError,
    create_zoom_event_reconciler,
)
from app.services.zoom_webhook_verifier import (
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    VerificationOutcome,
    ZoomWebhookVerifier,
    extract_url_validation_token,
    parse_webhook_body,
)

router = APIRouter(prefix="/webhook", tags=["webhooks"])
logger = logging.getLogger(__name__)

_AUTHENTICATION_MESSAGES = {
    VerificationOutcome.missing_headers: "Missing signature headers",
    VerificationOutcome.stale_timestamp: "Timestamp validation failed",
    VerificationOutcome.invalid_signature: "Invalid signature",
}


@router.post(
    "/zoom",
    response_model=WebhookResponse | UrlValidationResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_401_UNAUTHORIZED: {"model": ErrorResponse},
        status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
    },
)
async def receive_zoom_webhook(request: Request) -> JSONResponse:
    settings = get_settings()
    raw_body = await request.body()
    signature = request.headers.get(SIGNATURE_HEADER)
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    logger.info(
        "Webhook received provider=zoom path=%s has_signature=%s",
        str(request.url.path),
        bool(signature),
    )

    verifier = ZoomWebhookVerifier(
        secret_token=settings.zoom_webhook_secret_token,
        timestamp_tolerance_seconds=settings.zoom_webhook_timestamp_tolerance_seconds,
    )

    if not settings.zoom_url_validation_requires_signature:
        plain_token = extract_url_validation_token(parse_webhook_body(raw_body))
        if plain_token:
            logger.info("Answering Zoom URL validation before signature verification")
            return JSONResponse(content=verifier.build_url_validation_response(plain_token))

    verification = verifier.verify(raw_body, signature, timestamp)
    if verification.outcome == VerificationOutcome.malformed_body:
        raise MalformedInputError("Invalid request body")
    if not verification.is_valid or verification.payload is None:
        raise AuthenticationError(_AUTHENTICATION_MESSAGES[verification.outcome])

    plain_token = extract_url_validation_token(verification.payload)
    if plain_token:
        logger.info("Answering Zoom URL validation")
        return JSONResponse(content=verifier.build_url_validation_response(plain_token))

    reconciler = create_zoom_event_reconciler(settings)
    try:
        result = await run_in_threadpool(reconciler.reconcile, verification.payload)
    except ReconciliationError as exc:
        logger.warning(
            "Webhook rejected provider=zoom path=%s status_code=%s detail=%s",
            str(request.url.path),
            exc.status_code,
            exc.message,
        )
        raise

    logger.info(
        "Webhook processed provider=zoom path=%s status_code=%s meeting_uuid=%s event_id=%s message=%s",
        str(request.url.path),
        result.status_code,
        result.meeting_uuid,
        result.event_id,
        result.message,
    )
    return JSONResponse(status_code=result.status_code, content=result.to_body())
