import logging
from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Query, status
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.schemas.zoom_webhook import QueryErrorResponse
from app.services.zoom_api_client import ZoomApiError, create_zoom_api_client

router = APIRouter(tags=["zoom"])
logger = logging.getLogger(__name__)

_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": QueryErrorResponse},
}


@router.get("/meetings", responses=_ERROR_RESPONSES)
def list_current_user_meetings(
    meeting_type: str = Query("scheduled", alias="type"),
    page_size: int = Query(30, alias="pageSize"),
    page_number: int = Query(1, alias="pageNumber"),
) -> Any:
    return _proxy(
        "Failed to fetch user meetings",
        lambda client: client.get_user_meetings("me", meeting_type, page_size, page_number),
    )


@router.get("/meetings/{meeting_uuid:path}/summary", responses=_ERROR_RESPONSES)
def get_meeting_summary(meeting_uuid: str) -> Any:
    return _proxy(
        "Failed to fetch meeting summary",
        lambda client: client.get_meeting_summary(meeting_uuid),
    )


@router.get("/meetings/{meeting_uuid:path}/recordings", responses=_ERROR_RESPONSES)
def get_meeting_recordings(meeting_uuid: str) -> Any:
    return _proxy(
        "Failed to fetch meeting recordings",
        lambda client: client.get_meeting_recordings(meeting_uuid),
    )


@router.get("/meetings/{meeting_uuid:path}", responses=_ERROR_RESPONSES)
def get_meeting_details(meeting_uuid: str) -> Any:
    return _proxy(
        "Failed to fetch meeting details",
        lambda client: client.get_meeting_details(meeting_uuid),
    )


@router.get("/users", responses=_ERROR_RESPONSES)
def list_users(
    user_status: str = Query("active", alias="status"),
    page_size: int = Query(30, alias="pageSize"),
    page_number: int = Query(1, alias="pageNumber"),
    next_page_token: str | None = Query(None, alias="nextPageToken"),
) -> Any:
    return _proxy(
        "Failed to fetch users",
        lambda client: client.list_users(user_status, page_size, page_number, next_page_token),
    )


@router.get("/users/{user_id}/meetings", responses=_ERROR_RESPONSES)
def list_user_meetings(
    user_id: str,
    meeting_type: str = Query("scheduled", alias="type"),
    page_size: int = Query(30, alias="pageSize"),
    page_number: int = Query(1, alias="pageNumber"),
) -> Any:
    return _proxy(
        "Failed to fetch user meetings",
        lambda client: client.get_user_meetings(user_id, meeting_type, page_size, page_number),
    )


@router.get("/users/{user_id}", responses=_ERROR_RESPONSES)
def get_user(user_id: str) -> Any:
    return _proxy("Failed to fetch user details", lambda client: client.get_user(user_id))


@router.get("/past_meetings/{meeting_id:path}/instances", responses=_ERROR_RESPONSES)
def get_past_meeting_instances(meeting_id: str) -> Any:
    return _proxy(
        "Failed to fetch past meeting instances",
        lambda client: client.get_past_meeting_instances(meeting_id),
    )


@router.get("/past_meetings/{meeting_id:path}", responses=_ERROR_RESPONSES)
def get_past_meeting_details(meeting_id: str) -> Any:
    return _proxy(
        "Failed to fetch past meeting details",
        lambda client: client.get_past_meeting_details(meeting_id),
    )


def _proxy(failure_message: str, call: Callable[[Any], dict[str, Any]]) -> Any:
    client = create_zoom_api_client(get_settings())
    try:
        return call(client)
    except ZoomApiError as exc:
        logger.error("%s error=%s", failure_message, exc)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": failure_message},
        )
