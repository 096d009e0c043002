from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from rentals.models import CalendarProvider, SyncStatus


class CalendarCreate(BaseModel):
    url: str
    provider: CalendarProvider = CalendarProvider.OTHER

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        # webcal:// - тот же https, так отдают ссылки Airbnb/VRBO
        if v.lower().startswith("webcal://"):
            v = "https://" + v[len("webcal://"):]
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError("Calendar URL must be http(s) or webcal")
        return v


class CalendarOut(BaseModel):
    id: int
    listing_id: int
    provider: CalendarProvider
    url: str
    active: bool
    last_sync_at: Optional[datetime] = None
    last_status: SyncStatus
    last_error: Optional[str] = None
    imported_events: int = 0
    removed_events: int = 0

    model_config = ConfigDict(from_attributes=True)


class ImportResult(BaseModel):
    calendar_id: int
    imported: int = 0
    removed: int = 0
    not_modified: bool = False
    status: SyncStatus = SyncStatus.SUCCESS
    error: Optional[str] = None
