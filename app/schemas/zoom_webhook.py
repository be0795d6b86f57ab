from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator


class ZoomRecordingFile(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str | int | None = None
    file_type: str | None = None
    file_extension: str | None = None
    recording_type: str | None = None
    status: str | None = None
    download_url: str | None = None


class MeetingRecordingFact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    meeting_uuid: str
    topic: str
    start_time: str | None = None
    duration_minutes: int | None = Field(default=None, ge=0)
    share_url: str | None = None
    recording_play_passcode: str | None = None
    transcript_file: ZoomRecordingFile | None = None
    download_token: str | None = None

    @field_validator("meeting_uuid", "topic")
    @classmethod
    def require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value


class MeetingSummaryDetail(BaseModel):
    model_config = ConfigDict(extra="ignore")

    label: str | None = None
    summary: str | None = None


class MeetingSummaryContent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    summary_content: str | None = None
    summary_overview: str | None = None
    summary_details: list[MeetingSummaryDetail] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not (
            (self.summary_content and self.summary_content.strip())
            or (self.summary_overview and self.summary_overview.strip())
            or any((detail.summary or "").strip() for detail in self.summary_details)
            or any(step.strip() for step in self.next_steps)
        )


class MeetingSummaryFact(BaseModel):
    model_config = ConfigDict(extra="ignore")

    meeting_uuid: str
    topic: str
    start_time: datetime | None = None
    end_time: datetime | None = None
    content: MeetingSummaryContent = Field(default_factory=MeetingSummaryContent)

    @field_validator("meeting_uuid", "topic")
    @classmethod
    def require_text(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @property
    def duration_minutes(self) -> int | None:
        if self.start_time is None or self.end_time is None:
            return None
        elapsed_seconds = (self.end_time - self.start_time).total_seconds()
        return max(int(elapsed_seconds // 60), 0)


class WebhookResponse(BaseModel):
    message: str
    event_id: str | None = None
    meeting_uuid: str | None = None


class UrlValidationResponse(BaseModel):
    plainToken: str
    encryptedToken: str


class ErrorResponse(BaseModel):
    message: str


class QueryErrorResponse(BaseModel):
    error: str


class SalesforceTokenResponse(BaseModel):
    access_token: str
    instance_url: str
    token_type: str
    issued_at: int
    expires_in: int
    expires_at: int
