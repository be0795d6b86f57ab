import json
import logging
import re
from collections.abc import Mapping
from typing import Any
from urllib import error, parse, request

from app.core.config import Settings
from app.services.credential_providers import (
    AccessToken,
    CredentialError,
    SalesforceCredentialProvider,
    create_salesforce_credential_provider,
)

logger = logging.getLogger(__name__)

_SALESFORCE_ID_PATTERN = re.compile(r"^[a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?$")
_FIELD_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9_]*$")


class SalesforceApiError(Exception):
    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        errors: list[dict[str, Any]] | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.errors = errors or []


def escape_soql_literal(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


def is_salesforce_id(value: str | None) -> bool:
    return bool(value) and bool(_SALESFORCE_ID_PATTERN.match(value))


class SalesforceClient:
    def __init__(
        self,
        credentials: SalesforceCredentialProvider,
        api_version: str = "v60.0",
        zoom_uuid_field: str = "ZoomMeetingUUID__c",
        timeout_seconds: float = 10.0,
    ) -> None:
        if not _FIELD_NAME_PATTERN.match(zoom_uuid_field):
            raise ValueError(f"Invalid Salesforce field name: {zoom_uuid_field!r}")
        self.credentials = credentials
        self.api_version = api_version if api_version.startswith("v") else f"v{api_version}"
        self.zoom_uuid_field = zoom_uuid_field
        self.timeout_seconds = timeout_seconds

    def find_opportunity_by_id(self, opportunity_id: str) -> dict[str, Any] | None:
        if not is_salesforce_id(opportunity_id):
            logger.warning("Invalid Opportunity id format opportunity_id=%s", opportunity_id)
            return None

        try:
            record = self._request_json(
                "GET",
                f"/sobjects/Opportunity/{opportunity_id}",
                query={"fields": "Id,Name"},
            )
        except SalesforceApiError as exc:
            if exc.status_code == 404:
                logger.info("Salesforce Opportunity not found opportunity_id=%s", opportunity_id)
                return None
            raise

        logger.info(
            "Found Salesforce Opportunity opportunity_id=%s name=%r",
            record.get("Id"),
            record.get("Name"),
        )
        return {"Id": record.get("Id"), "Name": record.get("Name")}

    def find_event_by_zoom_uuid(self, meeting_uuid: str) -> dict[str, Any] | None:
        soql = (
            f"SELECT Id, Description FROM Event "
            f"WHERE {self.zoom_uuid_field} = '{escape_soql_literal(meeting_uuid)}' LIMIT 1"
        )
        result = self._request_json("GET", "/query", query={"q": soql})
        records = result.get("records")
        if not isinstance(records, list) or not records:
            return None
        record = records[0]
        if not isinstance(record, Mapping) or not record.get("Id"):
            return None
        return {"Id": record["Id"], "Description": record.get("Description")}

    def create_event(self, fields: Mapping[str, Any]) -> str:
        for required_field in ("Subject", "StartDateTime", "EndDateTime"):
            if not fields.get(required_field):
                raise SalesforceApiError(
                    f"Missing required field for Event creation: {required_field}",
                )

        logger.info(
            "Creating Salesforce Event subject=%r what_id=%s",
            fields.get("Subject"),
            fields.get("WhatId"),
        )
        result = self._request_json("POST", "/sobjects/Event", payload=dict(fields))
        event_id = result.get("id")
        if not result.get("success", True) or not isinstance(event_id, str) or not event_id:
            errors = result.get("errors")
            raise SalesforceApiError(
                "Salesforce Event creation was not successful.",
                errors=errors if isinstance(errors, list) else None,
            )
        return event_id

    def update_event(self, event_id: str, fields: Mapping[str, Any]) -> None:
        if not is_salesforce_id(event_id):
            raise SalesforceApiError(f"Invalid Event id: {event_id!r}")
        logger.info("Updating Salesforce Event event_id=%s fields=%s", event_id, sorted(fields))
        self._request_json("PATCH", f"/sobjects/Event/{event_id}", payload=dict(fields))

    def get_token_info(self) -> AccessToken:
        try:
            return self.credentials.get_token()
        except CredentialError as exc:
            raise SalesforceApiError(str(exc)) from exc

    def _request_json(
        self,
        method: str,
        path: str,
        query: dict[str, str] | None = None,
        payload: dict[str, Any] | None = None,
        retry_on_unauthorized: bool = True,
    ) -> dict[str, Any]:
        token = self.get_token_info()
        target = f"{token.instance_url}/services/data/{self.api_version}{path}"
        if query:
            target = f"{target}?{parse.urlencode(query)}"

        raw_payload: bytes | None = None
        if payload is not None:
            raw_payload = json.dumps(payload).encode("utf-8")

        req = request.Request(
            target,
            data=raw_payload,
            method=method,
            headers={
                "Authorization": f"Bearer {token.access_token}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
        )

        try:
            with request.urlopen(req, timeout=self.timeout_seconds) as response:
                response_body = response.read()
        except TimeoutError as exc:
            raise SalesforceApiError("Salesforce API request timed out.") from exc
        except error.HTTPError as exc:
            if exc.code == 401 and retry_on_unauthorized:
                logger.info("Salesforce session expired, refreshing access token")
                self.credentials.invalidate()
                return self._request_json(
                    method,
                    path,
                    query=query,
                    payload=payload,
                    retry_on_unauthorized=False,
                )
            body = exc.read().decode("utf-8", errors="ignore")
            errors = _parse_error_list(body)
            raise SalesforceApiError(
                f"Salesforce API HTTP {exc.code}: {body or 'empty response body'}",
                status_code=exc.code,
                errors=errors,
            ) from exc
        except error.URLError as exc:
            raise SalesforceApiError(f"Salesforce API connection error: {exc.reason}") from exc

        if not response_body:
            return {}
        try:
            parsed_body = json.loads(response_body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise SalesforceApiError("Salesforce API returned invalid JSON.") from exc
        if not isinstance(parsed_body, dict):
            raise SalesforceApiError("Salesforce API response is not a JSON object.")
        return parsed_body


def _parse_error_list(body: str) -> list[dict[str, Any]]:
    try:
        parsed_body = json.loads(body)
    except json.JSONDecodeError:
        return []
    if isinstance(parsed_body, dict):
        parsed_body = [parsed_body]
    if not isinstance(parsed_body, list):
        return []
    return [item for item in parsed_body if isinstance(item, dict)]


def create_salesforce_client(settings: Settings) -> SalesforceClient:
    credentials = create_salesforce_credential_provider(
        login_url=settings.salesforce_login_url,
        client_id=settings.salesforce_client_id,
        client_secret=settings.salesforce_client_secret,
        username=settings.salesforce_username,
        password=settings.salesforce_password,
        token_ttl_seconds=settings.salesforce_token_ttl_seconds,
        timeout_seconds=settings.salesforce_api_timeout_seconds,
    )
    return SalesforceClient(
        credentials=credentials,
        api_version=settings.salesforce_api_version,
        zoom_uuid_field=settings.salesforce_zoom_uuid_field,
        timeout_seconds=settings.salesforce_api_timeout_seconds,
    )
