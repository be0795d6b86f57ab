import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.router import api_router, root_router
from app.core.config import get_settings
from app.services.zoom_event_reconciler import ReconciliationError


logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def create_application() -> FastAPI:
    _configure_logging()
    settings = get_settings()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
    )

    app.include_router(root_router)
    app.include_router(api_router, prefix=settings.api_prefix)

    app.add_exception_handler(ReconciliationError, _handle_reconciliation_error)
    app.add_exception_handler(StarletteHTTPException, _handle_http_exception)
    app.add_exception_handler(Exception, _handle_unexpected_error)
    app.add_event_handler("startup", _log_startup_configuration)

    return app


async def _handle_reconciliation_error(request: Request, exc: ReconciliationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"message": exc.message})


async def _handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == status.HTTP_404_NOT_FOUND:
        return JSONResponse(status_code=exc.status_code, content={"message": "Not Found"})
    return JSONResponse(
        status_code=exc.status_code,
        content={"message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "Unhandled error method=%s path=%s",
        request.method,
        str(request.url.path),
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"message": "Internal Server Error"},
    )


def _log_startup_configuration() -> None:
    settings = get_settings()
    if not settings.zoom_webhook_secret_token:
        logger.warning("ZOOM_WEBHOOK_SECRET_TOKEN is not set; Zoom webhooks will be rejected")
    if not settings.salesforce_client_id or not settings.salesforce_client_secret:
        logger.warning("Salesforce OAuth credentials are not set; Event writes will fail")
    logger.info(
        "Starting %s env=%s meeting_lock_store=%s",
        settings.app_name,
        settings.app_env,
        settings.meeting_lock_store,
    )


app = create_application()
