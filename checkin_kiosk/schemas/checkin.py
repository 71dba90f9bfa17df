"""
==============================================================================
Check-In Schemas Module
==============================================================================

Wire bodies exchanged with the booking API and the kiosk state models
reported to the operator console.

Upstream Bodies:
---------------
- CheckInRequest:  POST /bookings/checkin-by-qr   {qr_code, schedule_id?}
- CheckInResult:   response                       {success, message, data?}
- BookingRecord:   GET /bookings/{id}              schedule_id | schedule.id, date, program_id
- ScheduleRecord:  GET /schedules                  [{id, ...}]

==============================================================================
"""

from enum import Enum
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


# =============================================================================
# OVERLAY
# =============================================================================

class OverlayVariant(str, Enum):
    """Feedback colour of the result overlay."""
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"
    WARNING = "warning"
    NONE = ""


OVERLAY_COLORS: Dict[OverlayVariant, str] = {
    OverlayVariant.SUCCESS: "#28a745",
    OverlayVariant.ERROR: "#dc3545",
    OverlayVariant.INFO: "#007bff",
    OverlayVariant.WARNING: "#ffc107",
    OverlayVariant.NONE: "#000",
}


class Overlay(BaseModel):
    """Message shown over the camera preview."""
    message: str = Field(default="")
    variant: OverlayVariant = Field(default=OverlayVariant.NONE)

    @property
    def visible(self) -> bool:
        return bool(self.message)

    @property
    def color(self) -> str:
        return OVERLAY_COLORS[self.variant]

    def to_event(self) -> Dict[str, Any]:
        return {
            "type": "overlay",
            "message": self.message,
            "variant": self.variant.value,
            "color": self.color,
        }


# =============================================================================
# UPSTREAM BODIES
# =============================================================================

class CheckInRequest(BaseModel):
    """Body of POST /bookings/checkin-by-qr."""
    qr_code: str
    schedule_id: Optional[int] = Field(default=None)

    @field_validator("qr_code")
    @classmethod
    def strip_payload(cls, v: str) -> str:
        return v.strip()

    def to_payload(self) -> Dict[str, Any]:
        """JSON body with schedule_id omitted when unresolved."""
        return self.model_dump(exclude_none=True)


class CheckInResult(BaseModel):
    """Outcome of a check-in, forwarded verbatim to the result callback."""
    success: bool
    message: str = Field(default="")
    data: Optional[Any] = Field(default=None)

    @field_validator("message", mode="before")
    @classmethod
    def none_message(cls, v: Any) -> Any:
        return "" if v is None else v


class ScheduleRecord(BaseModel):
    """Schedule entity (one showing of a program in a hall)."""
    model_config = ConfigDict(extra="allow")

    id: int
    date: Optional[str] = Field(default=None)
    program_id: Optional[int] = Field(default=None)


class BookingRecord(BaseModel):
    """Booking fields used to resolve a schedule id."""
    model_config = ConfigDict(extra="allow")

    id: Optional[int] = Field(default=None)
    schedule_id: Optional[int] = Field(default=None)
    schedule: Optional[ScheduleRecord] = Field(default=None)
    date: Optional[str] = Field(default=None)
    program_id: Optional[int] = Field(default=None)

    @property
    def resolved_schedule_id(self) -> Optional[int]:
        """Direct schedule_id, then nested schedule.id."""
        if self.schedule_id:
            return self.schedule_id
        if self.schedule is not None and self.schedule.id:
            return self.schedule.id
        return None


# =============================================================================
# KIOSK STATE
# =============================================================================

class ScanContext(BaseModel):
    """Where the kiosk was opened from: a schedule screen or a booking screen."""
    schedule_id: Optional[int] = Field(default=None, gt=0)
    booking_id: Optional[int] = Field(default=None, gt=0)

    def label(self) -> str:
        if self.schedule_id:
            return f"schedule-{self.schedule_id}"
        if self.booking_id:
            return f"booking-{self.booking_id}"
        return "unscoped"


class CheckInStats(BaseModel):
    """Counters for one kiosk session."""
    scans: int = 0
    succeeded: int = 0
    rejected: int = 0
    failed: int = 0
    dropped: int = 0


# =============================================================================
# REST SCHEMAS
# =============================================================================

class StartSessionRequest(BaseModel):
    """Open the kiosk for a schedule or booking."""
    schedule_id: Optional[int] = Field(default=None, gt=0)
    booking_id: Optional[int] = Field(default=None, gt=0)
    source: Literal["camera", "stream"] = Field(default="camera")
    token: Optional[str] = Field(default=None)

    @property
    def context(self) -> ScanContext:
        return ScanContext(schedule_id=self.schedule_id, booking_id=self.booking_id)


class ManualScanRequest(BaseModel):
    """Payload typed or read by a keyboard-wedge scanner."""
    payload: str = Field(..., min_length=1, max_length=2048)


class SessionStatusResponse(BaseModel):
    """Snapshot of the kiosk."""
    success: bool = Field(default=True)
    active: bool
    scanner_state: Optional[str] = Field(default=None)
    processing: bool = Field(default=False)
    overlay: Optional[Overlay] = Field(default=None)
    context: Optional[ScanContext] = Field(default=None)
    stats: Optional[CheckInStats] = Field(default=None)


class ManualScanResponse(BaseModel):
    """Outcome of a manually submitted payload."""
    success: bool
    dropped: bool = Field(default=False)
    message: str = Field(default="")
    data: Optional[Any] = Field(default=None)
