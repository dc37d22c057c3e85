"""
models.py — Shared data structures for the alert pipeline.

Defines:
    • MediaKind          — image | video, selects the analysis MIME type
    • DisasterEvent      — one submitted report under verification
    • UserRecord         — a directory entry (read-only to the pipeline)
    • AlertCandidate     — user + resolved home point, selection only
    • VerificationVerdict — fail-closed boolean verdict
    • DispatchStatus / DispatchResult — per-candidate delivery outcome
    • AlertOutcome       — what one orchestrator run reports back

═══════════════════════════════════════════════════════════════════════════
LIFECYCLE
═══════════════════════════════════════════════════════════════════════════

    DisasterEvent ──1:1──► PostalCode ──1:N──► AlertCandidate ──1:≤1──► DispatchResult

Nothing here is persisted. An event lives for one orchestrator run;
candidates live for one selection.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

from crowdalert.core.errors import InvalidInputError
from crowdalert.spatial.distance import GeoPoint


# ═══════════════════════════════════════════════════════════════════════════
# Enums
# ═══════════════════════════════════════════════════════════════════════════

class MediaKind(str, Enum):
    """Kind of media attached to a report."""
    IMAGE = "image"
    VIDEO = "video"

    @property
    def mime_type(self) -> str:
        return MEDIA_MIME_TYPES[self]


MEDIA_MIME_TYPES: Dict[MediaKind, str] = {
    MediaKind.IMAGE: "image/jpeg",
    MediaKind.VIDEO: "video/mp4",
}


class DispatchStatus(str, Enum):
    """Delivery outcome per candidate."""
    SENT    = "sent"
    FAILED  = "failed"
    SKIPPED = "skipped"   # no usable contact on file


# ═══════════════════════════════════════════════════════════════════════════
# Inputs
# ═══════════════════════════════════════════════════════════════════════════

def validate_media_url(url: Any) -> str:
    """Absolute http(s) URL with a host, else InvalidInputError."""
    if not isinstance(url, str) or not url.strip():
        raise InvalidInputError("Media URL is required", field="media_url")
    parsed = urlparse(url.strip())
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise InvalidInputError(
            f"Media URL must be an absolute http(s) URL, got {url!r}",
            field="media_url",
        )
    return url.strip()


@dataclass(frozen=True)
class DisasterEvent:
    """A single crowd-submitted report with its stored media reference."""
    title: str
    description: str
    location: GeoPoint
    media_url: str
    media_kind: MediaKind = MediaKind.IMAGE

    def __post_init__(self) -> None:
        if not (self.title or "").strip():
            raise InvalidInputError("Report title is required", field="title")
        if not (self.description or "").strip():
            raise InvalidInputError("Report description is required", field="description")
        if not isinstance(self.media_kind, MediaKind):
            try:
                object.__setattr__(self, "media_kind", MediaKind(self.media_kind))
            except ValueError as e:
                raise InvalidInputError(
                    f"Unknown media kind {self.media_kind!r}", field="media_kind",
                ) from e


@dataclass(frozen=True)
class UserRecord:
    """A registered user as exposed by the user directory."""
    id: str
    contact_channel: str
    pincode: Optional[str] = None

    @property
    def has_pincode(self) -> bool:
        return bool(self.pincode and self.pincode.strip())


# ═══════════════════════════════════════════════════════════════════════════
# Pipeline products
# ═══════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class AlertCandidate:
    """A user selected for notification, with the point used to select them."""
    user: UserRecord
    location: GeoPoint
    distance_m: float = 0.0

    @property
    def user_id(self) -> str:
        return self.user.id


@dataclass(frozen=True)
class VerificationVerdict:
    """
    Outcome of report verification. Only ``verified`` is meaningful to
    callers; the rest is kept for logs.
    """
    verified: bool
    response_text: str = ""
    failure_reason: Optional[str] = None

    @classmethod
    def rejected(cls, reason: str) -> "VerificationVerdict":
        return cls(verified=False, failure_reason=reason)


@dataclass
class DispatchResult:
    """Delivery record for one candidate."""
    user_id: str
    sent: bool
    status: DispatchStatus = DispatchStatus.FAILED
    destination: Optional[str] = None
    provider_message_id: Optional[str] = None
    error: Optional[str] = None
    completed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "sent": self.sent,
            "status": self.status.value,
            "destination": self.destination,
            "provider_message_id": self.provider_message_id,
            "error": self.error,
            "completed_at": self.completed_at.isoformat(),
        }


@dataclass
class AlertOutcome:
    """Result of one orchestrator run."""
    verified: bool
    pincode: Optional[str] = None
    dispatch: Optional[List[DispatchResult]] = None
    error: Optional[str] = None

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.dispatch or [] if r.sent)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.dispatch or [] if not r.sent)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verified": self.verified,
            "pincode": self.pincode,
            "dispatch": (
                [r.to_dict() for r in self.dispatch]
                if self.dispatch is not None else None
            ),
            "sent": self.sent_count,
            "failed": self.failed_count,
            "error": self.error,
        }
