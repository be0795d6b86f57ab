import re
from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_OPPORTUNITY_ID_REGEX = r"\[Opp-([a-zA-Z0-9]{15}(?:[a-zA-Z0-9]{3})?)\]"
DEFAULT_EVENT_DESCRIPTION_TEMPLATE = (
    "Zoom recording: {{recordingUrl}}\n"
    "\n"
    "Meeting summary:\n"
    "{{meetingSummary}}\n"
    "\n"
    "Transcript:\n"
    "{{transcript}}"
)


class Settings(BaseSettings):
    app_name: str = "Zoom Salesforce Relay"
    app_env: str = "development"
    app_version: str = "0.1.0"
    api_prefix: str = "/api"
    status_message: str = "Zoom-Salesforce Integration App is running!"

    zoom_webhook_secret_token: str = ""
    zoom_webhook_timestamp_tolerance_seconds: int = 300
    zoom_url_validation_requires_signature: bool = True
    zoom_account_id: str = ""
    zoom_client_id: str = ""
    zoom_client_secret: str = ""
    zoom_api_base_url: str = "https://api.zoom.us/v2"
    zoom_oauth_token_url: str = "https://zoom.us/oauth/token"
    zoom_api_timeout_seconds: float = 10.0

    salesforce_login_url: str = "https://login.salesforce.com"
    salesforce_client_id: str = ""
    salesforce_client_secret: str = ""
    salesforce_username: str = ""
    salesforce_password: str = ""
    salesforce_api_version: str = "v60.0"
    salesforce_api_timeout_seconds: float = 10.0
    salesforce_token_ttl_seconds: int = 7200

    salesforce_opportunity_id_regex: str = DEFAULT_OPPORTUNITY_ID_REGEX
    salesforce_event_subject_prefix: str = "Zoom: "
    salesforce_event_description_template: str = DEFAULT_EVENT_DESCRIPTION_TEMPLATE
    salesforce_event_duration_minutes: int = 60
    salesforce_zoom_uuid_field: str = "ZoomMeetingUUID__c"
    salesforce_recording_url_field: str = "ZoomRecordingURL__c"
    salesforce_transcript_field: str = ""
    salesforce_meeting_summary_field: str = ""

    meeting_summary_placeholder: str = "(Zoom meeting summary pending)"
    transcript_unavailable_text: str = "Transcript unavailable."
    summary_unavailable_text: str = "Meeting summary unavailable."
    reconciliation_timeout_seconds: float = 25.0

    meeting_lock_store: str = "memory"
    meeting_lock_wait_seconds: float = 10.0
    meeting_lock_ttl_seconds: int = 120
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "zoom_salesforce_relay"
    mongodb_meeting_locks_collection: str = "meeting_locks"
    mongodb_connect_timeout_ms: int = 2000

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    @property
    def opportunity_id_pattern(self) -> re.Pattern[str]:
        return _compile_pattern(self.salesforce_opportunity_id_regex)

    @field_validator("salesforce_opportunity_id_regex")
    @classmethod
    def validate_opportunity_id_regex(cls, value: str) -> str:
        try:
            pattern = _compile_pattern(value)
        except re.error as exc:
            raise ValueError(f"SALESFORCE_OPPORTUNITY_ID_REGEX is not a valid pattern: {exc}") from exc
        if pattern.groups < 1:
            raise ValueError("SALESFORCE_OPPORTUNITY_ID_REGEX must contain a capture group.")
        return value

    @field_validator("salesforce_zoom_uuid_field", mode="before")
    @classmethod
    def require_zoom_uuid_field(cls, value: str) -> str:
        cleaned = str(value).strip()
        if not cleaned:
            raise ValueError("SALESFORCE_ZOOM_UUID_FIELD is required for deduplication.")
        if not re.fullmatch(r"[A-Za-z][A-Za-z0-9_]*", cleaned):
            raise ValueError("SALESFORCE_ZOOM_UUID_FIELD must be a Salesforce field API name.")
        return cleaned

    @field_validator(
        "salesforce_recording_url_field",
        "salesforce_transcript_field",
        "salesforce_meeting_summary_field",
        mode="before",
    )
    @classmethod
    def normalize_optional_field_name(cls, value: str | None) -> str:
        if value is None:
            return ""
        return str(value).strip()

    @field_validator("meeting_lock_store", mode="before")
    @classmethod
    def normalize_meeting_lock_store(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator("salesforce_login_url", "zoom_api_base_url", mode="before")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.strip().rstrip("/")

    @field_validator("zoom_api_timeout_seconds", "salesforce_api_timeout_seconds", mode="before")
    @classmethod
    def normalize_api_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 10.0
        return parsed_value

    @field_validator("reconciliation_timeout_seconds", mode="before")
    @classmethod
    def normalize_reconciliation_timeout(cls, value: float | str) -> float:
        parsed_value = float(value)
        if parsed_value <= 0:
            return 25.0
        return parsed_value

    @field_validator("salesforce_event_duration_minutes", mode="before")
    @classmethod
    def normalize_event_duration(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value < 0:
            return 60
        return parsed_value

    @field_validator("zoom_webhook_timestamp_tolerance_seconds", mode="before")
    @classmethod
    def normalize_timestamp_tolerance(cls, value: int | str) -> int:
        parsed_value = int(value)
        if parsed_value <= 0:
            return 300
        return parsed_value


@lru_cache
def _compile_pattern(raw_pattern: str) -> re.Pattern[str]:
    return re.compile(raw_pattern)


@lru_cache
def get_settings() -> Settings:
    return Settings()
