from datetime import datetime

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str
    version: str
    data_store: str
    calendar_timezone: str
    timestamp: datetime
