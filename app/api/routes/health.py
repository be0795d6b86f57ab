from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from app.core.config import get_settings
from app.services.health_service import HealthService

router = APIRouter(tags=["health"])


@router.get("/status", response_class=PlainTextResponse)
def status_check() -> str:
    settings = get_settings()
    service = HealthService(settings)
    return service.get_status()
