from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from app.schemas.zoom_webhook import (
    MeetingRecordingFact,
    MeetingSummaryContent,
    MeetingSummaryFact,
    ZoomRecordingFile,
)
from app.services.zoom_webhook_verifier import URL_VALIDATION_EVENT

RECORDING_COMPLETED_EVENT = "recording.completed"
TRANSCRIPT_COMPLETED_EVENT = "recording.transcript_completed"
MEETING_SUMMARY_COMPLETED_EVENT = "meeting.summary_completed"


class MalformedEventError(ValueError):
    pass


@dataclass(frozen=True)
class RecordingCompleted:
    event_type: str
    fact: MeetingRecordingFact


@dataclass(frozen=True)
class MeetingSummaryCompleted:
    event_type: str
    fact: MeetingSummaryFact


@dataclass(frozen=True)
class TranscriptCompleted:
    event_type: str
    meeting_uuid: str | None


@dataclass(frozen=True)
class UrlValidation:
    event_type: str
    plain_token: str | None


@dataclass(frozen=True)
class IgnoredEvent:
    event_type: str | None


ZoomWebhookEvent = (
    RecordingCompleted
    | MeetingSummaryCompleted
    | TranscriptCompleted
    | UrlValidation
    | IgnoredEvent
)


def decode_zoom_webhook_event(envelope: Mapping[str, Any]) -> ZoomWebhookEvent:
    event_type = _to_text(envelope.get("event"))

    if event_type == URL_VALIDATION_EVENT:
        inner_payload = envelope.get("payload")
        plain_token = None
        if isinstance(inner_payload, Mapping):
            plain_token = _to_text(inner_payload.get("plainToken"))
        return UrlValidation(event_type=event_type, plain_token=plain_token)

    if event_type == RECORDING_COMPLETED_EVENT:
        return RecordingCompleted(
            event_type=event_type,
            fact=_decode_recording_fact(envelope),
        )

    if event_type == MEETING_SUMMARY_COMPLETED_EVENT:
        return MeetingSummaryCompleted(
            event_type=event_type,
            fact=_decode_summary_fact(envelope),
        )

    if event_type == TRANSCRIPT_COMPLETED_EVENT:
        meeting_object = _extract_object(envelope, required=False)
        return TranscriptCompleted(
            event_type=event_type,
            meeting_uuid=_to_text(meeting_object.get("uuid")) if meeting_object else None,
        )

    return IgnoredEvent(event_type=event_type)


def _decode_recording_fact(envelope: Mapping[str, Any]) -> MeetingRecordingFact:
    meeting_object = _extract_object(envelope, required=True)
    meeting_uuid = _to_text(meeting_object.get("uuid"))
    topic = _to_text(meeting_object.get("topic"))
    if not meeting_uuid or not topic:
        raise MalformedEventError("Invalid payload structure (UUID or Topic missing)")

    try:
        return MeetingRecordingFact(
            meeting_uuid=meeting_uuid,
            topic=topic,
            start_time=_to_text(meeting_object.get("start_time")),
            duration_minutes=_to_non_negative_int(meeting_object.get("duration")),
            share_url=_to_text(meeting_object.get("share_url")),
            recording_play_passcode=_to_text(meeting_object.get("recording_play_passcode")),
            transcript_file=_find_completed_transcript_file(meeting_object.get("recording_files")),
            download_token=_to_text(envelope.get("download_token")),
        )
    except ValidationError as exc:
        raise MalformedEventError("Invalid recording payload structure") from exc


def _decode_summary_fact(envelope: Mapping[str, Any]) -> MeetingSummaryFact:
    meeting_object = _extract_object(envelope, required=True)
    meeting_uuid = _to_text(meeting_object.get("meeting_uuid")) or _to_text(
        meeting_object.get("uuid"),
    )
    topic = _to_text(meeting_object.get("meeting_topic")) or _to_text(meeting_object.get("topic"))
    if not meeting_uuid or not topic:
        raise MalformedEventError("Invalid payload structure (UUID or Topic missing)")

    try:
        return MeetingSummaryFact(
            meeting_uuid=meeting_uuid,
            topic=topic,
            start_time=_to_datetime(meeting_object.get("meeting_start_time")),
            end_time=_to_datetime(meeting_object.get("meeting_end_time")),
            content=decode_summary_content(meeting_object),
        )
    except ValidationError as exc:
        raise MalformedEventError("Invalid meeting summary payload structure") from exc


def decode_summary_content(summary_document: Mapping[str, Any]) -> MeetingSummaryContent:
    """Read the summary sections shared by the webhook object and the summary API."""
    edited_summary = summary_document.get("edited_summary")
    source: Mapping[str, Any] = summary_document
    if isinstance(edited_summary, Mapping) and (
        edited_summary.get("summary_details") or edited_summary.get("next_steps")
    ):
        # Host edits in the Zoom UI take precedence over the generated sections.
        source = {**summary_document, **edited_summary}

    details: list[dict[str, Any]] = []
    raw_details = source.get("summary_details")
    if isinstance(raw_details, list):
        for raw_detail in raw_details:
            if isinstance(raw_detail, Mapping):
                details.append(
                    {
                        "label": _to_text(raw_detail.get("label")),
                        "summary": _to_text(raw_detail.get("summary")),
                    },
                )

    next_steps: list[str] = []
    raw_next_steps = source.get("next_steps")
    if isinstance(raw_next_steps, list):
        for raw_step in raw_next_steps:
            step = _to_text(raw_step)
            if step:
                next_steps.append(step)

    try:
        return MeetingSummaryContent(
            summary_content=_to_text(source.get("summary_content")),
            summary_overview=_to_text(source.get("summary_overview")),
            summary_details=details,
            next_steps=next_steps,
        )
    except ValidationError as exc:
        raise MalformedEventError("Invalid meeting summary content") from exc


def _extract_object(envelope: Mapping[str, Any], required: bool) -> Mapping[str, Any]:
    inner_payload = envelope.get("payload")
    meeting_object = inner_payload.get("object") if isinstance(inner_payload, Mapping) else None
    if isinstance(meeting_object, Mapping):
        return meeting_object
    if required:
        raise MalformedEventError("Invalid payload structure (payload.object missing)")
    return {}


def _find_completed_transcript_file(raw_files: Any) -> ZoomRecordingFile | None:
    if not isinstance(raw_files, list):
        return None
    for raw_file in raw_files:
        if not isinstance(raw_file, Mapping):
            continue
        if raw_file.get("file_type") != "TRANSCRIPT" or raw_file.get("status") != "completed":
            continue
        try:
            return ZoomRecordingFile.model_validate(dict(raw_file))
        except ValidationError:
            continue
    return None


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, str):
        cleaned = value.strip()
        return cleaned or None
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        return str(value)
    return None


def _to_non_negative_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if value >= 0 else None
    if isinstance(value, str):
        cleaned = value.strip()
        if not cleaned:
            return None
        try:
            parsed_value = int(cleaned)
        except ValueError:
            return None
        return parsed_value if parsed_value >= 0 else None
    return None


def _to_datetime(value: Any) -> datetime | None:
    text = _to_text(value)
    if not text:
        return None
    try:
        parsed_value = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed_value.tzinfo is None:
        return parsed_value.replace(tzinfo=UTC)
    return parsed_value
