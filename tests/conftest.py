import pytest

from app.core.config import get_settings
from app.services.credential_providers import clear_credential_provider_cache
from app.services.meeting_lock_store import clear_meeting_lock_store_cache

WEBHOOK_SECRET = "test-webhook-secret"


def _clear_caches() -> None:
    get_settings.cache_clear()
    clear_credential_provider_cache()
    clear_meeting_lock_store_cache()


@pytest.fixture(autouse=True)
def isolated_settings() -> None:
    monkeypatch = pytest.MonkeyPatch()
    monkeypatch.setenv("ZOOM_WEBHOOK_SECRET_TOKEN", WEBHOOK_SECRET)
    monkeypatch.setenv("ZOOM_URL_VALIDATION_REQUIRES_SIGNATURE", "true")
    monkeypatch.setenv("MEETING_LOCK_STORE", "memory")
    monkeypatch.setenv("MEETING_LOCK_WAIT_SECONDS", "1")
    monkeypatch.setenv("SALESFORCE_CLIENT_ID", "sf-client-id")
    monkeypatch.setenv("SALESFORCE_CLIENT_SECRET", "sf-client-secret")
    monkeypatch.setenv("SALESFORCE_TRANSCRIPT_FIELD", "")
    monkeypatch.setenv("SALESFORCE_MEETING_SUMMARY_FIELD", "")
    _clear_caches()
    yield
    monkeypatch.undo()
    _clear_caches()
