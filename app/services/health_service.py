from app.core.config import Settings


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> str:
        return self.settings.status_message
