import http.client
import json
import logging
from typing import Any
from urllib import error, parse, request

from app.core.config import Settings
from app.services.credential_providers import (
    CredentialError,
    ZoomCredentialProvider,
    create_zoom_credential_provider,
)
from app.services.transcript_parser import parse_transcript

logger = logging.getLogger(__name__)


class ZoomApiError(Exception):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def encode_meeting_uuid(meeting_uuid: str) -> str:
    """Encode a meeting UUID for use as a Zoom API path segment.

    Zoom requires UUIDs that begin with ``/`` or contain ``//`` to be
    URL-encoded twice.
    """
    encoded = parse.quote(meeting_uuid, safe="")
    if meeting_uuid.startswith("/") or "//" in meeting_uuid:
        return parse.quote(encoded, safe="")
    return encoded


class ZoomApiClient:
    def __init__(
        self,
        credentials: ZoomCredentialProvider,
        api_base_url: str = "https://api.zoom.us/v2",
        timeout_seconds: float = 10.0,
    ) -> None:
        self.credentials = credentials
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds

    def get_meeting_details(self, meeting_uuid: str) -> dict[str, Any]:
        return self._request_json(f"/meetings/{encode_meeting_uuid(meeting_uuid)}")

    def get_meeting_recordings(self, meeting_uuid: str) -> dict[str, Any]:
        return self._request_json(f"/meetings/{encode_meeting_uuid(meeting_uuid)}/recordings")

    def get_meeting_summary(self, meeting_uuid: str) -> dict[str, Any]:
        return self._request_json(
            f"/meetings/{encode_meeting_uuid(meeting_uuid)}/meeting_summary",
        )

    def get_user_meetings(
        self,
        user_id: str = "me",
        meeting_type: str = "scheduled",
        page_size: int = 30,
        page_number: int = 1,
    ) -> dict[str, Any]:
        return self._request_json(
            f"/users/{parse.quote(user_id, safe='')}/meetings",
            query={"type": meeting_type, "page_size": page_size, "page_number": page_number},
        )

    def get_past_meeting_details(self, meeting_id: str) -> dict[str, Any]:
        return self._request_json(f"/past_meetings/{encode_meeting_uuid(meeting_id)}")

    def get_past_meeting_instances(self, meeting_id: str) -> dict[str, Any]:
        return self._request_json(f"/past_meetings/{encode_meeting_uuid(meeting_id)}/instances")

    def list_users(
        self,
        status: str = "active",
        page_size: int = 30,
        page_number: int = 1,
        next_page_token: str | None = None,
    ) -> dict[str, Any]:
        query: dict[str, Any] = {
            "status": status,
            "page_size": page_size,
            "page_number": page_number,
        }
        if next_page_token:
            query["next_page_token"] = next_page_token
        return self._request_json("/users", query=query)

    def get_user(self, user_id: str) -> dict[str, Any]:
        return self._request_json(f"/users/{parse.quote(user_id, safe='')}")

    def download_transcript_text(
        self,
        download_url: str,
        download_token: str | None = None,
    ) -> str:
        logger.info("Downloading Zoom transcript")
        caption_document = self._download_text(download_url, download_token=download_token)
        return parse_transcript(caption_document)

    def _download_text(self, download_url: str, download_token: str | None = None) -> str:
        bearer_token = download_token or self._get_access_token()
        try:
            req = request.Request(
                download_url,
                headers={"Authorization": f"Bearer {bearer_token}"},
                method="GET",
            )
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ZoomApiError("Zoom download timed out.") from exc
        except error.HTTPError as exc:
            raise ZoomApiError(f"Zoom download HTTP {exc.code}", status_code=exc.code) from exc
        except error.URLError as exc:
            raise ZoomApiError(f"Zoom download connection error: {exc.reason}") from exc
        except (http.client.HTTPException, OSError) as exc:
            raise ZoomApiError(f"Zoom download failed: {exc}") from exc
        except ValueError as exc:
            raise ZoomApiError("Invalid Zoom download URL.") from exc
        return response_body.decode("utf-8", errors="replace")

    def _request_json(
        self,
        path: str,
        query: dict[str, Any] | None = None,
        retry_on_unauthorized: bool = True,
    ) -> dict[str, Any]:
        target = f"{self.api_base_url}{path}"
        if query:
            target = f"{target}?{parse.urlencode(query)}"

        req = request.Request(
            target,
            headers={
                "Authorization": f"Bearer {self._get_access_token()}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            method="GET",
        )
        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise ZoomApiError("Zoom API request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401 and retry_on_unauthorized:
                self.credentials.invalidate()
                return self._request_json(path, query=query, retry_on_unauthorized=False)
            body = exc.read().decode("utf-8", errors="ignore")
            logger.warning("Zoom API request failed path=%s status_code=%s", path, exc.code)
            raise ZoomApiError(
                f"Zoom API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
            ) from exc
        except error.URLError as exc:
            raise ZoomApiError(f"Zoom API connection error: {exc.reason}") from exc

        if not response_body:
            return {}
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ZoomApiError("Zoom API returned invalid JSON.") from exc
        if not isinstance(parsed_body, dict):
            raise ZoomApiError("Zoom API response is not a JSON object.")
        return parsed_body

    def _get_access_token(self) -> str:
        try:
            return self.credentials.get_access_token()
        except CredentialError as exc:
            raise ZoomApiError(str(exc)) from exc


def create_zoom_api_client(settings: Settings) -> ZoomApiClient:
    credentials = create_zoom_credential_provider(
        account_id=settings.zoom_account_id,
        client_id=settings.zoom_client_id,
        client_secret=settings.zoom_client_secret,
        oauth_token_url=settings.zoom_oauth_token_url,
        timeout_seconds=settings.zoom_api_timeout_seconds,
    )
    return ZoomApiClient(
        credentials=credentials,
        api_base_url=settings.zoom_api_base_url,
        timeout_seconds=settings.zoom_api_timeout_seconds,
    )
