import itertools
import threading
from datetime import datetime
from typing import Any

import pytest

from app.core.config import Settings
from app.schemas.zoom_webhook import MeetingSummaryContent, MeetingSummaryDetail
from app.services.credential_providers import ZoomCredentialProvider
from app.services.meeting_lock_store import InMemoryMeetingLockStore
from app.services.salesforce_client import SalesforceApiError
from app.services.zoom_api_client import ZoomApiClient, ZoomApiError
from app.services.zoom_event_reconciler import (
    DownstreamFetchError,
    DownstreamWriteError,
    MalformedInputError,
    ReconciliationTimeoutError,
    ZoomEventReconciler,
    build_recording_link,
    format_salesforce_datetime,
    render_description,
    render_summary_text,
)

OPPORTUNITY_ID = "001234567890123"


class _FakeSalesforceClient:
    def __init__(self, create_delay: threading.Event | None = None) -> None:
        self.events: dict[str, dict[str, Any]] = {}
        self.created: list[dict[str, Any]] = []
        self.updated: list[tuple[str, dict[str, Any]]] = []
        self.lookup_error: SalesforceApiError | None = None
        self._create_delay = create_delay

    def find_event_by_zoom_uuid(self, meeting_uuid: str) -> dict[str, Any] | None:
        if self.lookup_error:
            raise self.lookup_error
        return self.events.get(meeting_uuid)

    def find_opportunity_by_id(self, opportunity_id: str) -> dict[str, Any] | None:
        if opportunity_id == OPPORTUNITY_ID:
            return {"Id": OPPORTUNITY_ID, "Name": "Acme"}
        return None

    def create_event(self, fields: dict[str, Any]) -> str:
        if self._create_delay:
            self._create_delay.wait(0.2)
        event_id = f"00U00000000000{len(self.created) + 1}"
        self.created.append(dict(fields))
        self.events[fields["ZoomMeetingUUID__c"]] = {
            "Id": event_id,
            "Description": fields["Description"],
        }
        return event_id

    def update_event(self, event_id: str, fields: dict[str, Any]) -> None:
        self.updated.append((event_id, dict(fields)))


class _FakeZoomClient:
    def __init__(self, summary: dict[str, Any] | None = None) -> None:
        self.summary = summary
        self.summary_requests: list[str] = []

    def download_transcript_text(self, download_url: str, download_token: str | None = None) -> str:
        return "Transcript text"

    def get_meeting_summary(self, meeting_uuid: str) -> dict[str, Any]:
        self.summary_requests.append(meeting_uuid)
        if self.summary is None:
            raise ZoomApiError("Zoom API HTTP 404", status_code=404)
        return self.summary


def _settings(**overrides: Any) -> Settings:
    values: dict[str, Any] = {
        "zoom_webhook_secret_token": "secret",
        "meeting_lock_wait_seconds": 1,
        "salesforce_transcript_field": "",
        "salesforce_meeting_summary_field": "",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def _reconciler(
    salesforce: _FakeSalesforceClient | None = None,
    zoom: _FakeZoomClient | None = None,
    lock_store: InMemoryMeetingLockStore | None = None,
    **settings_overrides: Any,
) -> ZoomEventReconciler:
    return ZoomEventReconciler(
        _settings(**settings_overrides),
        salesforce_client=salesforce or _FakeSalesforceClient(),  # type: ignore[arg-type]
        zoom_client=zoom or _FakeZoomClient(),  # type: ignore[arg-type]
        lock_store=lock_store or InMemoryMeetingLockStore(),
    )


def _recording_envelope(**object_overrides: Any) -> dict[str, Any]:
    meeting_object = {
        "uuid": "abc-123",
        "topic": f"[Opp-{OPPORTUNITY_ID}] Demo",
        "start_time": "2024-01-01T10:00:00Z",
        "duration": 45,
    }
    meeting_object.update(object_overrides)
    return {"event": "recording.completed", "payload": {"object": meeting_object}}


def _summary_envelope(**object_overrides: Any) -> dict[str, Any]:
    meeting_object = {"meeting_uuid": "abc-123", "meeting_topic": "Demo"}
    meeting_object.update(object_overrides)
    return {"event": "meeting.summary_completed", "payload": {"object": meeting_object}}


def test_missing_duration_uses_configured_default() -> None:
    salesforce = _FakeSalesforceClient()
    reconciler = _reconciler(salesforce, salesforce_event_duration_minutes=30)

    reconciler.reconcile(_recording_envelope(duration=None))

    assert salesforce.created[0]["EndDateTime"] == "2024-01-01T10:30:00Z"


def test_zero_duration_event_ends_at_start() -> None:
    salesforce = _FakeSalesforceClient()

    _reconciler(salesforce).reconcile(_recording_envelope(duration=0))

    assert salesforce.created[0]["EndDateTime"] == "2024-01-01T10:00:00Z"


def test_invalid_start_time_is_rejected() -> None:
    salesforce = _FakeSalesforceClient()

    with pytest.raises(MalformedInputError) as exc_info:
        _reconciler(salesforce).reconcile(_recording_envelope(start_time="yesterday"))

    assert exc_info.value.status_code == 400
    assert salesforce.created == []


def test_missing_transcript_file_uses_placeholder() -> None:
    salesforce = _FakeSalesforceClient()

    _reconciler(salesforce).reconcile(_recording_envelope())

    assert salesforce.created[0]["Description"].endswith("Transcript unavailable.")
    assert "Zoom recording: N/A" in salesforce.created[0]["Description"]


def test_optional_transcript_field_is_populated() -> None:
    salesforce = _FakeSalesforceClient()
    envelope = _recording_envelope(
        recording_files=[
            {
                "id": 42,
                "file_type": "TRANSCRIPT",
                "status": "completed",
                "download_url": "https://zoom.us/rec/download/t",
            },
        ],
    )

    _reconciler(salesforce, salesforce_transcript_field="Transcript__c").reconcile(envelope)

    assert salesforce.created[0]["Transcript__c"] == "Transcript text"


def test_dedup_lookup_failure_is_not_linkable() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.lookup_error = SalesforceApiError("Salesforce API HTTP 503", status_code=503)

    result = _reconciler(salesforce).reconcile(_recording_envelope())

    assert result.status_code == 200
    assert result.message == "Unable to look up existing Salesforce Event"
    assert salesforce.created == []


def test_concurrent_deliveries_create_single_event() -> None:
    salesforce = _FakeSalesforceClient(create_delay=threading.Event())
    reconciler = _reconciler(salesforce, meeting_lock_wait_seconds=5)
    results = []

    def deliver() -> None:
        results.append(reconciler.reconcile(_recording_envelope()))

    threads = [threading.Thread(target=deliver) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(salesforce.created) == 1
    messages = sorted(result.message for result in results)
    assert messages == [
        "Event already created for this meeting",
        "Event already created for this meeting",
        "Event already created for this meeting",
        "Salesforce Event created successfully",
    ]


def test_busy_meeting_lock_returns_already_processing() -> None:
    salesforce = _FakeSalesforceClient()
    lock_store = InMemoryMeetingLockStore()
    owner_token = lock_store.acquire("abc-123", 0)
    assert owner_token is not None

    result = _reconciler(
        salesforce,
        lock_store=lock_store,
        meeting_lock_wait_seconds=0,
    ).reconcile(_recording_envelope())

    assert result.status_code == 200
    assert result.message == "Meeting is already being processed"
    assert salesforce.created == []
    lock_store.release("abc-123", owner_token)


def test_deadline_exceeded_stops_before_downstream_calls() -> None:
    salesforce = _FakeSalesforceClient()
    ticks = itertools.chain([0.0], itertools.repeat(100.0))
    reconciler = ZoomEventReconciler(
        _settings(reconciliation_timeout_seconds=5),
        salesforce_client=salesforce,  # type: ignore[arg-type]
        zoom_client=_FakeZoomClient(),  # type: ignore[arg-type]
        lock_store=InMemoryMeetingLockStore(),
        clock=lambda: next(ticks),
    )

    with pytest.raises(ReconciliationTimeoutError) as exc_info:
        reconciler.reconcile(_recording_envelope())

    assert exc_info.value.status_code == 500
    assert salesforce.created == []


def test_summary_fetched_from_zoom_when_webhook_has_no_content() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {
        "Id": "00U000000000001",
        "Description": "Meeting summary:\n(Zoom meeting summary pending)",
    }
    zoom = _FakeZoomClient(summary={"summary_overview": "Fetched overview"})

    result = _reconciler(salesforce, zoom).reconcile(_summary_envelope())

    assert result.message == "Salesforce Event updated with meeting summary"
    assert zoom.summary_requests == ["abc-123"]
    assert salesforce.updated == [
        ("00U000000000001", {"Description": "Meeting summary:\nFetched overview"}),
    ]


def test_summary_fetch_failure_is_downstream_error() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {"Id": "00U000000000001", "Description": "pending"}

    with pytest.raises(DownstreamFetchError):
        _reconciler(salesforce, _FakeZoomClient(summary=None)).reconcile(_summary_envelope())

    assert salesforce.updated == []


def test_summary_without_placeholder_is_already_up_to_date() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {"Id": "00U000000000001", "Description": "Already filled"}

    result = _reconciler(salesforce).reconcile(_summary_envelope(summary_overview="Done"))

    assert result.message == "Salesforce Event already up to date"
    assert salesforce.updated == []


def test_summary_field_is_written_when_configured() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {"Id": "00U000000000001", "Description": "Already filled"}

    _reconciler(salesforce, salesforce_meeting_summary_field="Summary__c").reconcile(
        _summary_envelope(summary_content="Rendered summary"),
    )

    assert salesforce.updated == [("00U000000000001", {"Summary__c": "Rendered summary"})]


def test_edited_summary_overrides_generated_sections() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {
        "Id": "00U000000000001",
        "Description": "(Zoom meeting summary pending)",
    }

    _reconciler(salesforce).reconcile(
        _summary_envelope(
            next_steps=["Generated step"],
            edited_summary={"next_steps": ["Edited step"]},
        ),
    )

    assert salesforce.updated[0][1]["Description"] == "Next steps:\n- Edited step"


def test_render_summary_text_prefers_summary_content() -> None:
    content = MeetingSummaryContent(
        summary_content="Pre-rendered",
        summary_overview="Overview",
        next_steps=["Step"],
    )

    assert render_summary_text(content) == "Pre-rendered"


def test_render_summary_text_builds_sections() -> None:
    content = MeetingSummaryContent(
        summary_overview="Overview text",
        summary_details=[
            MeetingSummaryDetail(label="Pricing", summary="Discussed discounts"),
            MeetingSummaryDetail(label="Empty", summary="  "),
            MeetingSummaryDetail(summary="Unlabeled detail"),
        ],
        next_steps=["Send proposal", " "],
    )

    assert render_summary_text(content) == (
        "Overview text\n"
        "\n"
        "Details:\n"
        "Pricing\n"
        "Discussed discounts\n"
        "\n"
        "Unlabeled detail\n"
        "\n"
        "Next steps:\n"
        "- Send proposal"
    )


def test_render_summary_text_is_empty_without_content() -> None:
    assert render_summary_text(MeetingSummaryContent()) == ""


def test_render_description_truncates_to_long_text_limit() -> None:
    description = render_description(
        "{{recordingUrl}}|{{transcript}}",
        recording_url="https://zoom.us/rec/share/abc",
        transcript="x" * 40_000,
        meeting_summary="pending",
    )

    assert len(description) == 32_000
    assert description.startswith("https://zoom.us/rec/share/abc|xxx")


def test_build_recording_link_appends_passcode() -> None:
    assert build_recording_link("https://zoom.us/rec/share/a", "pw") == (
        "https://zoom.us/rec/share/a?pwd=pw"
    )
    assert build_recording_link("https://zoom.us/rec/share/a", None) == (
        "https://zoom.us/rec/share/a"
    )
    assert build_recording_link(None, "pw") is None


def test_format_salesforce_datetime_converts_to_utc() -> None:
    value = datetime.fromisoformat("2024-01-01T12:30:00+02:00")

    assert format_salesforce_datetime(value) == "2024-01-01T10:30:00Z"


def test_unreachable_transcript_url_falls_back_to_placeholder() -> None:
    salesforce = _FakeSalesforceClient()
    zoom = ZoomApiClient(
        credentials=ZoomCredentialProvider(account_id="", client_id="", client_secret=""),
    )
    envelope = _recording_envelope(
        recording_files=[
            {
                "file_type": "TRANSCRIPT",
                "status": "completed",
                "download_url": "zoom.us/rec/download/t",
            },
        ],
    )
    envelope["download_token"] = "download-token-1"

    result = _reconciler(salesforce, zoom).reconcile(envelope)  # type: ignore[arg-type]

    assert result.status_code == 200
    assert result.message == "Salesforce Event created successfully"
    assert salesforce.created[0]["Description"].endswith("Transcript unavailable.")


def test_start_time_near_max_date_is_rejected() -> None:
    salesforce = _FakeSalesforceClient()

    with pytest.raises(MalformedInputError) as exc_info:
        _reconciler(salesforce).reconcile(
            _recording_envelope(start_time="9999-12-31T23:30:00Z", duration=45),
        )

    assert exc_info.value.status_code == 400
    assert exc_info.value.message == "Invalid start or end time for event"
    assert salesforce.created == []


def test_huge_duration_is_rejected() -> None:
    salesforce = _FakeSalesforceClient()

    with pytest.raises(MalformedInputError):
        _reconciler(salesforce).reconcile(_recording_envelope(duration=10**12))

    assert salesforce.created == []


def test_summary_update_failure_is_downstream_write_error() -> None:
    salesforce = _FakeSalesforceClient()
    salesforce.events["abc-123"] = {
        "Id": "00U000000000001",
        "Description": "(Zoom meeting summary pending)",
    }

    def failing_update(event_id: str, fields: dict[str, Any]) -> None:
        raise SalesforceApiError("Salesforce API HTTP 400", status_code=400)

    salesforce.update_event = failing_update  # type: ignore[method-assign]

    with pytest.raises(DownstreamWriteError) as exc_info:
        _reconciler(salesforce).reconcile(_summary_envelope(summary_overview="Done"))

    assert exc_info.value.status_code == 500
    assert exc_info.value.message == "Failed to update Salesforce Event"
