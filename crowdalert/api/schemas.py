"""
Pydantic schemas for the report-alert API.

Separated from the route handler so background workers and tests can
build DisasterEvents from the same validated input.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, HttpUrl

from crowdalert.alerts.models import DisasterEvent, MediaKind
from crowdalert.spatial.distance import GeoPoint


class LocationInput(BaseModel):
    """Report location as sent by the client app."""
    lat: float = Field(..., ge=-90.0, le=90.0, examples=[19.0760])
    lon: float = Field(..., ge=-180.0, le=180.0, examples=[72.8777])


class ReportAlertRequest(BaseModel):
    """A stored report to verify and, if genuine, alert on."""
    title: str = Field(..., min_length=1, examples=["Building collapse near station"])
    description: str = Field(..., min_length=1, examples=["Four-storey building collapsed"])
    location: LocationInput
    media_url: HttpUrl = Field(..., examples=["https://res.cloudinary.com/demo/video/upload/r1.mp4"])
    media_kind: MediaKind = Field(MediaKind.IMAGE, examples=["video"])

    def to_event(self) -> DisasterEvent:
        return DisasterEvent(
            title=self.title,
            description=self.description,
            location=GeoPoint(self.location.lat, self.location.lon),
            media_url=str(self.media_url),
            media_kind=self.media_kind,
        )


class DispatchResultOut(BaseModel):
    user_id: str
    sent: bool
    status: str
    destination: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    completed_at: str


class AlertOutcomeResponse(BaseModel):
    """What one pipeline run reports back."""
    verified: bool
    pincode: Optional[str] = None
    dispatch: Optional[List[DispatchResultOut]] = None
    sent: int = 0
    failed: int = 0
    error: Optional[str] = None


class AcceptedResponse(BaseModel):
    accepted: bool = True
    message: str = "Report accepted; verification and alerting run in the background"
