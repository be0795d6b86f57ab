import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from fastapi import status

from app.core.config import Settings
from app.schemas.zoom_webhook import (
    MeetingRecordingFact,
    MeetingSummaryContent,
    MeetingSummaryFact,
)
from app.services.meeting_lock_store import MeetingLockStore, create_meeting_lock_store
from app.services.salesforce_client import (
    SalesforceApiError,
    SalesforceClient,
    create_salesforce_client,
)
from app.services.topic_parser import extract_record_id
from app.services.zoom_api_client import ZoomApiClient, ZoomApiError, create_zoom_api_client
from app.services.zoom_webhook_events import (
    IgnoredEvent,
    MalformedEventError,
    MeetingSummaryCompleted,
    RecordingCompleted,
    TranscriptCompleted,
    UrlValidation,
    ZoomWebhookEvent,
    decode_summary_content,
    decode_zoom_webhook_event,
)

logger = logging.getLogger(__name__)

SALESFORCE_LONG_TEXT_LIMIT = 32_000
SALESFORCE_SUBJECT_LIMIT = 255
RECORDING_URL_PLACEHOLDER = "{{recordingUrl}}"
TRANSCRIPT_PLACEHOLDER = "{{transcript}}"
MEETING_SUMMARY_PLACEHOLDER = "{{meetingSummary}}"


class ReconciliationError(Exception):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class AuthenticationError(ReconciliationError):
    status_code = status.HTTP_401_UNAUTHORIZED


class MalformedInputError(ReconciliationError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotLinkableError(ReconciliationError):
    status_code = status.HTTP_200_OK


class DownstreamFetchError(ReconciliationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class DownstreamWriteError(ReconciliationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class ReconciliationTimeoutError(ReconciliationError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


@dataclass(frozen=True)
class ReconciliationResult:
    status_code: int
    message: str
    event_id: str | None = None
    meeting_uuid: str | None = None

    def to_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {"message": self.message}
        if self.event_id:
            body["event_id"] = self.event_id
        if self.meeting_uuid:
            body["meeting_uuid"] = self.meeting_uuid
        return body


class _Deadline:
    def __init__(self, timeout_seconds: float, clock: Callable[[], float]) -> None:
        self._clock = clock
        self._expires_at = clock() + timeout_seconds

    def check(self, step: str) -> None:
        if self._clock() >= self._expires_at:
            raise ReconciliationTimeoutError(f"Reconciliation deadline exceeded before {step}")


class ZoomEventReconciler:
    """Turns verified Zoom webhooks into Salesforce Event writes.

    ``recording.completed`` creates one Event on the Opportunity named in the
    meeting topic. ``meeting.summary_completed`` fills the summary into that
    same Event. Both paths run under a per-meeting lock so concurrent
    deliveries for one meeting cannot both pass the duplicate check.
    """

    def __init__(
        self,
        settings: Settings,
        salesforce_client: SalesforceClient | None = None,
        zoom_client: ZoomApiClient | None = None,
        lock_store: MeetingLockStore | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.salesforce_client = salesforce_client or create_salesforce_client(settings)
        self.zoom_client = zoom_client or create_zoom_api_client(settings)
        self.lock_store = lock_store or create_meeting_lock_store(
            store_name=settings.meeting_lock_store,
            mongodb_uri=settings.mongodb_uri,
            mongodb_db_name=settings.mongodb_db_name,
            mongodb_collection_name=settings.mongodb_meeting_locks_collection,
            mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
            ttl_seconds=settings.meeting_lock_ttl_seconds,
        )
        self._clock = clock

    def reconcile(self, envelope: Mapping[str, Any]) -> ReconciliationResult:
        try:
            event = decode_zoom_webhook_event(envelope)
        except MalformedEventError as exc:
            logger.warning("Zoom webhook payload rejected reason=%s", exc)
            raise MalformedInputError(str(exc)) from exc
        return self.reconcile_event(event)

    def reconcile_event(self, event: ZoomWebhookEvent) -> ReconciliationResult:
        logger.info("Received Zoom webhook event_type=%s", getattr(event, "event_type", None))
        deadline = _Deadline(self.settings.reconciliation_timeout_seconds, self._clock)

        if isinstance(event, RecordingCompleted):
            return self._with_meeting_lock(
                event.fact.meeting_uuid,
                lambda: self._reconcile_recording(event.fact, deadline),
            )
        if isinstance(event, MeetingSummaryCompleted):
            return self._with_meeting_lock(
                event.fact.meeting_uuid,
                lambda: self._reconcile_summary(event.fact, deadline),
            )
        if isinstance(event, TranscriptCompleted):
            logger.info(
                "Transcript completion acknowledged meeting_uuid=%s",
                event.meeting_uuid,
            )
            return ReconciliationResult(
                status_code=status.HTTP_200_OK,
                message="Transcript completion acknowledged; no action required",
                meeting_uuid=event.meeting_uuid,
            )
        if isinstance(event, UrlValidation):
            # Handshakes are answered by the verifier before reconciliation.
            raise MalformedInputError("URL validation request is missing plainToken")
        if isinstance(event, IgnoredEvent):
            logger.info("Ignoring Zoom webhook event_type=%s", event.event_type)
            return ReconciliationResult(
                status_code=status.HTTP_200_OK,
                message="Event type not relevant for Opportunity linking",
            )
        raise MalformedInputError("Unsupported webhook event")

    def _with_meeting_lock(
        self,
        meeting_uuid: str,
        operation: Callable[[], ReconciliationResult],
    ) -> ReconciliationResult:
        with self.lock_store.hold(meeting_uuid, self.settings.meeting_lock_wait_seconds) as held:
            if not held:
                logger.warning("Meeting is already being processed meeting_uuid=%s", meeting_uuid)
                return ReconciliationResult(
                    status_code=status.HTTP_200_OK,
                    message="Meeting is already being processed",
                    meeting_uuid=meeting_uuid,
                )
            try:
                return operation()
            except NotLinkableError as exc:
                return ReconciliationResult(
                    status_code=status.HTTP_200_OK,
                    message=exc.message,
                    meeting_uuid=meeting_uuid,
                )

    def _reconcile_recording(
        self,
        fact: MeetingRecordingFact,
        deadline: _Deadline,
    ) -> ReconciliationResult:
        meeting_uuid = fact.meeting_uuid
        logger.info("Processing recording meeting_uuid=%s topic=%r", meeting_uuid, fact.topic)

        deadline.check("duplicate lookup")
        existing_event = self._find_linked_event(meeting_uuid)
        if existing_event:
            logger.info(
                "Event already exists meeting_uuid=%s event_id=%s",
                meeting_uuid,
                existing_event["Id"],
            )
            return ReconciliationResult(
                status_code=status.HTTP_200_OK,
                message="Event already created for this meeting",
                event_id=existing_event["Id"],
                meeting_uuid=meeting_uuid,
            )

        opportunity_id = extract_record_id(fact.topic, self.settings.opportunity_id_pattern)
        if not opportunity_id:
            logger.warning("Opportunity id not found in topic=%r", fact.topic)
            raise NotLinkableError("Opportunity ID not found in topic")

        deadline.check("opportunity lookup")
        opportunity = self._find_opportunity(opportunity_id)
        if not opportunity:
            raise NotLinkableError("Salesforce Opportunity not found")

        start_at = _parse_start_time(fact.start_time)
        if start_at is None:
            logger.error(
                "Invalid start time meeting_uuid=%s start_time=%r",
                meeting_uuid,
                fact.start_time,
            )
            raise MalformedInputError("Invalid start or end time for event")
        duration_minutes = fact.duration_minutes
        if duration_minutes is None:
            duration_minutes = self.settings.salesforce_event_duration_minutes
        try:
            start_date_time = format_salesforce_datetime(start_at)
            end_date_time = format_salesforce_datetime(
                start_at + timedelta(minutes=duration_minutes),
            )
        except OverflowError as exc:
            logger.error(
                "Event time bounds out of range meeting_uuid=%s start_time=%r duration_minutes=%s",
                meeting_uuid,
                fact.start_time,
                duration_minutes,
            )
            raise MalformedInputError("Invalid start or end time for event") from exc

        recording_link = build_recording_link(fact.share_url, fact.recording_play_passcode)
        deadline.check("transcript download")
        transcript_text = self._fetch_transcript_text(fact)

        fields: dict[str, Any] = {
            "Subject": f"{self.settings.salesforce_event_subject_prefix}{fact.topic}"[
                :SALESFORCE_SUBJECT_LIMIT
            ],
            "StartDateTime": start_date_time,
            "EndDateTime": end_date_time,
            "Description": render_description(
                self.settings.salesforce_event_description_template,
                recording_url=recording_link or "N/A",
                transcript=transcript_text,
                meeting_summary=self.settings.meeting_summary_placeholder,
            ),
            "WhatId": opportunity["Id"],
            self.settings.salesforce_zoom_uuid_field: meeting_uuid,
        }
        if self.settings.salesforce_recording_url_field and recording_link:
            fields[self.settings.salesforce_recording_url_field] = recording_link
        if self.settings.salesforce_transcript_field:
            fields[self.settings.salesforce_transcript_field] = transcript_text

        deadline.check("event creation")
        try:
            event_id = self.salesforce_client.create_event(fields)
        except SalesforceApiError as exc:
            logger.error(
                "Failed to create Salesforce Event opportunity_id=%s meeting_uuid=%s error=%s errors=%s",
                opportunity_id,
                meeting_uuid,
                exc,
                exc.errors,
            )
            raise DownstreamWriteError("Failed to create Salesforce Event") from exc

        logger.info(
            "Created Salesforce Event opportunity_id=%s meeting_uuid=%s event_id=%s",
            opportunity_id,
            meeting_uuid,
            event_id,
        )
        return ReconciliationResult(
            status_code=status.HTTP_200_OK,
            message="Salesforce Event created successfully",
            event_id=event_id,
            meeting_uuid=meeting_uuid,
        )

    def _reconcile_summary(
        self,
        fact: MeetingSummaryFact,
        deadline: _Deadline,
    ) -> ReconciliationResult:
        meeting_uuid = fact.meeting_uuid
        logger.info(
            "Processing meeting summary meeting_uuid=%s topic=%r duration_minutes=%s",
            meeting_uuid,
            fact.topic,
            fact.duration_minutes,
        )

        deadline.check("event lookup")
        existing_event = self._find_linked_event(meeting_uuid)
        if not existing_event:
            logger.info("No Salesforce Event to update meeting_uuid=%s", meeting_uuid)
            raise NotLinkableError("No existing event, nothing to update")

        content = fact.content
        if content.is_empty:
            deadline.check("summary download")
            content = self._fetch_summary_content(meeting_uuid)
        summary_text = render_summary_text(content) or self.settings.summary_unavailable_text

        fields: dict[str, Any] = {}
        current_description = existing_event.get("Description") or ""
        placeholder = self.settings.meeting_summary_placeholder
        if placeholder and placeholder in current_description:
            updated_description = current_description.replace(placeholder, summary_text)
            fields["Description"] = updated_description[:SALESFORCE_LONG_TEXT_LIMIT]
        if self.settings.salesforce_meeting_summary_field:
            fields[self.settings.salesforce_meeting_summary_field] = summary_text[
                :SALESFORCE_LONG_TEXT_LIMIT
            ]

        event_id = existing_event["Id"]
        if not fields:
            logger.info(
                "Salesforce Event already up to date meeting_uuid=%s event_id=%s",
                meeting_uuid,
                event_id,
            )
            return ReconciliationResult(
                status_code=status.HTTP_200_OK,
                message="Salesforce Event already up to date",
                event_id=event_id,
                meeting_uuid=meeting_uuid,
            )

        deadline.check("event update")
        try:
            self.salesforce_client.update_event(event_id, fields)
        except SalesforceApiError as exc:
            logger.error(
                "Failed to update Salesforce Event event_id=%s meeting_uuid=%s error=%s errors=%s",
                event_id,
                meeting_uuid,
                exc,
                exc.errors,
            )
            raise DownstreamWriteError("Failed to update Salesforce Event") from exc

        logger.info(
            "Updated Salesforce Event with meeting summary meeting_uuid=%s event_id=%s",
            meeting_uuid,
            event_id,
        )
        return ReconciliationResult(
            status_code=status.HTTP_200_OK,
            message="Salesforce Event updated with meeting summary",
            event_id=event_id,
            meeting_uuid=meeting_uuid,
        )

    def _find_linked_event(self, meeting_uuid: str) -> dict[str, Any] | None:
        try:
            return self.salesforce_client.find_event_by_zoom_uuid(meeting_uuid)
        except SalesforceApiError as exc:
            logger.error(
                "Salesforce Event lookup failed meeting_uuid=%s error=%s",
                meeting_uuid,
                exc,
            )
            raise NotLinkableError("Unable to look up existing Salesforce Event") from exc

    def _find_opportunity(self, opportunity_id: str) -> dict[str, Any] | None:
        try:
            opportunity = self.salesforce_client.find_opportunity_by_id(opportunity_id)
        except SalesforceApiError as exc:
            logger.error(
                "Salesforce Opportunity lookup failed opportunity_id=%s error=%s",
                opportunity_id,
                exc,
            )
            return None
        if not opportunity:
            logger.warning("Salesforce Opportunity not found opportunity_id=%s", opportunity_id)
        return opportunity

    def _fetch_transcript_text(self, fact: MeetingRecordingFact) -> str:
        transcript_file = fact.transcript_file
        if not transcript_file or not transcript_file.download_url:
            logger.info("Transcript file not available meeting_uuid=%s", fact.meeting_uuid)
            return self.settings.transcript_unavailable_text

        try:
            transcript_text = self.zoom_client.download_transcript_text(
                transcript_file.download_url,
                download_token=fact.download_token,
            )
        except ZoomApiError as exc:
            logger.error(
                "Failed to download transcript meeting_uuid=%s error=%s",
                fact.meeting_uuid,
                exc,
            )
            return self.settings.transcript_unavailable_text

        if not transcript_text:
            return self.settings.transcript_unavailable_text
        return transcript_text[:SALESFORCE_LONG_TEXT_LIMIT]

    def _fetch_summary_content(self, meeting_uuid: str) -> MeetingSummaryContent:
        try:
            summary_document = self.zoom_client.get_meeting_summary(meeting_uuid)
            return decode_summary_content(summary_document)
        except (ZoomApiError, MalformedEventError) as exc:
            logger.error(
                "Failed to fetch meeting summary meeting_uuid=%s error=%s",
                meeting_uuid,
                exc,
            )
            raise DownstreamFetchError("Failed to fetch Zoom meeting summary") from exc


def build_recording_link(share_url: str | None, passcode: str | None) -> str | None:
    if not share_url:
        return None
    if passcode:
        return f"{share_url}?pwd={passcode}"
    return share_url


def render_description(
    template: str,
    *,
    recording_url: str,
    transcript: str,
    meeting_summary: str,
) -> str:
    description = (
        template.replace(RECORDING_URL_PLACEHOLDER, recording_url)
        .replace(MEETING_SUMMARY_PLACEHOLDER, meeting_summary)
        .replace(TRANSCRIPT_PLACEHOLDER, transcript)
    )
    return description[:SALESFORCE_LONG_TEXT_LIMIT]


def render_summary_text(content: MeetingSummaryContent) -> str:
    """Render the summary, preferring Zoom's pre-rendered summary content.

    Falls back to overview, labeled detail sections and a bulleted next-steps
    list. Returns an empty string when the summary has no text at all.
    """
    if content.summary_content and content.summary_content.strip():
        return content.summary_content.strip()

    sections: list[str] = []
    if content.summary_overview and content.summary_overview.strip():
        sections.append(content.summary_overview.strip())

    detail_blocks: list[str] = []
    for detail in content.summary_details:
        detail_text = (detail.summary or "").strip()
        if not detail_text:
            continue
        label = (detail.label or "").strip()
        detail_blocks.append(f"{label}\n{detail_text}" if label else detail_text)
    if detail_blocks:
        sections.append("Details:\n" + "\n\n".join(detail_blocks))

    steps = [step.strip() for step in content.next_steps if step.strip()]
    if steps:
        sections.append("Next steps:\n" + "\n".join(f"- {step}" for step in steps))

    return "\n\n".join(sections)


def format_salesforce_datetime(value: datetime) -> str:
    return value.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_start_time(raw_value: str | None) -> datetime | None:
    if not raw_value:
        return None
    try:
        parsed_value = datetime.fromisoformat(raw_value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed_value.tzinfo is None:
        return parsed_value.replace(tzinfo=UTC)
    return parsed_value


def create_zoom_event_reconciler(settings: Settings) -> ZoomEventReconciler:
    return ZoomEventReconciler(settings)
