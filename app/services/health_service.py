from datetime import UTC, datetime

from app.core.config import Settings
from app.schemas.health import HealthResponse


class HealthService:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def get_status(self) -> HealthResponse:
        return HealthResponse(
            service=self.settings.app_name,
            version=self.settings.app_version,
            data_store=self.settings.data_store,
            calendar_timezone=self.settings.calendar_timezone,
            timestamp=datetime.now(UTC),
        )
