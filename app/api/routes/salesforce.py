import logging
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.zoom_webhook import QueryErrorResponse, SalesforceTokenResponse
from app.services.salesforce_client import SalesforceApiError, create_salesforce_client

router = APIRouter(prefix="/salesforce", tags=["salesforce"])
logger = logging.getLogger(__name__)


@router.get(
    "/token",
    response_model=SalesforceTokenResponse,
    responses={status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": QueryErrorResponse}},
)
def get_salesforce_token() -> Any:
    client = create_salesforce_client(get_settings())
    try:
        token = client.get_token_info()
    except SalesforceApiError as exc:
        logger.error("Failed to fetch Salesforce token error=%s", exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to fetch Salesforce token"},
        )

    expires_in = max(int(token.expires_at - token.issued_at), 0)
    return SalesforceTokenResponse(
        access_token=token.access_token,
        instance_url=token.instance_url or "",
        token_type=token.token_type,
        issued_at=int(token.issued_at * 1000),
        expires_in=expires_in,
        expires_at=int(token.expires_at * 1000),
    )
