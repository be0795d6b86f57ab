from fastapi import APIRouter

from app.api.routes.health import router as health_router
from app.api.routes.meetings import router as meetings_router
from app.api.routes.salesforce import router as salesforce_router
from app.api.routes.webhook import router as webhook_router

root_router = APIRouter()
api_router = APIRouter()

root_router.include_router(health_router)
root_router.include_router(webhook_router)

# Read-only pass-through queries against the Zoom and Salesforce APIs.
api_router.include_router(meetings_router)
api_router.include_router(salesforce_router)
