"""WhatsApp message and contact models."""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping

MessageDirection = Literal["incoming", "outgoing"]

MessageKind = Literal[
    "text",
    "image",
    "document",
    "audio",
    "video",
    "sticker",
    "location",
    "contact",
    "unknown",
]

MessageStatus = Literal["sending", "sent", "delivered", "read", "failed"]

VALID_STATUSES: frozenset[str] = frozenset({"sending", "sent", "delivered", "read", "failed"})

# Happy-path order; "failed" sits outside it
STATUS_RANK: dict[str, int] = {
    "sending": 0,
    "sent": 1,
    "delivered": 2,
    "read": 3,
}


def resolve_transition(current: str, new: str) -> str:
    """Return the status a message ends up in after observing ``new``.

    Forward moves are applied. Regressions (e.g. a stale "sent" arriving
    after "read") keep the current status. "failed" wins over anything
    except "read", and a failed message can still move forward.
    """
    if new == current:
        return current
    if new == "failed":
        return current if current == "read" else "failed"
    if current == "failed":
        return new
    if STATUS_RANK.get(new, -1) > STATUS_RANK.get(current, -1):
        return new
    return current


@dataclass(frozen=True)
class MediaAttributes:
    """Kind-specific attachment data. Unset fields stay None."""

    media_id: str | None = None
    url: str | None = None
    mime_type: str | None = None
    file_size: int | None = None
    file_name: str | None = None
    sha256: str | None = None
    caption: str | None = None
    thumbnail: str | None = None
    duration: int | None = None
    width: int | None = None
    height: int | None = None
    latitude: float | None = None
    longitude: float | None = None
    location_name: str | None = None
    address: str | None = None
    contact_name: str | None = None
    contact_phone: str | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize without the unset fields."""
        return {k: v for k, v in asdict(self).items() if v is not None}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any] | None) -> "MediaAttributes | None":
        if not data:
            return None
        known = cls.__dataclass_fields__.keys()
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class ExtractedContent:
    """Content Extractor output for one raw message."""

    body: str
    kind: MessageKind
    media: MediaAttributes | None = None


@dataclass(frozen=True)
class StatusChange:
    """One audit entry in a message's status history."""

    from_status: str | None
    to_status: str
    observed_at: datetime
    source_payload_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "observed_at": self.observed_at.isoformat(),
            "source_payload_id": self.source_payload_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StatusChange":
        return cls(
            from_status=data.get("from_status"),
            to_status=data["to_status"],
            observed_at=datetime.fromisoformat(data["observed_at"]),
            source_payload_id=data.get("source_payload_id"),
        )


@dataclass(frozen=True)
class NewMessage:
    """A normalized message ready for the Message Store.

    ``status`` is only set when the source supplied one explicitly.
    """

    message_key: str
    wa_id: str
    from_number: str
    to_number: str
    direction: MessageDirection
    direction_confidence: int
    kind: MessageKind
    body: str
    timestamp: datetime
    media: MediaAttributes | None = None
    status: MessageStatus | None = None
    alternate_key: str | None = None
    source_payload_id: str | None = None
    is_placeholder: bool = False


@dataclass(frozen=True)
class Message:
    """A stored message, keyed by ``message_key``."""

    message_key: str
    wa_id: str
    from_number: str
    to_number: str
    direction: MessageDirection
    direction_confidence: int
    kind: MessageKind
    body: str
    status: MessageStatus
    timestamp: datetime
    created_at: datetime
    media: MediaAttributes | None = None
    status_timestamps: Mapping[str, datetime] = field(default_factory=dict)
    status_history: tuple[StatusChange, ...] = ()
    alternate_key: str | None = None
    error_reason: str | None = None
    source_payload_id: str | None = None
    is_placeholder: bool = False

    @property
    def is_outgoing(self) -> bool:
        return self.direction == "outgoing"

    def repeats_last_observation(
        self, status: str, observed_at: datetime, source_payload_id: str | None
    ) -> bool:
        """True if the newest history entry records this exact observation.

        A retried status event must not be logged twice.
        """
        if not self.status_history:
            return False
        last = self.status_history[-1]
        return (
            last.to_status == status
            and last.observed_at == observed_at
            and last.source_payload_id == source_payload_id
        )

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation for collaborators."""
        return {
            "message_key": self.message_key,
            "wa_id": self.wa_id,
            "from_number": self.from_number,
            "to_number": self.to_number,
            "direction": self.direction,
            "direction_confidence": self.direction_confidence,
            "kind": self.kind,
            "body": self.body,
            "media": self.media.to_dict() if self.media else None,
            "status": self.status,
            "status_timestamps": {k: v.isoformat() for k, v in self.status_timestamps.items()},
            "status_history": [change.to_dict() for change in self.status_history],
            "timestamp": self.timestamp.isoformat(),
            "created_at": self.created_at.isoformat(),
            "alternate_key": self.alternate_key,
            "error_reason": self.error_reason,
            "source_payload_id": self.source_payload_id,
            "is_placeholder": self.is_placeholder,
        }


@dataclass(frozen=True)
class ContactProfile:
    """A conversation partner as declared in a change's ``contacts[]``."""

    wa_id: str
    display_name: str | None = None
    profile_picture: str | None = None


@dataclass(frozen=True)
class Contact:
    """A conversation partner with rolling message statistics."""

    wa_id: str
    display_name: str
    created_at: datetime
    last_activity_at: datetime
    profile_picture: str | None = None
    last_message_preview: str = ""
    last_message_at: datetime | None = None
    unread_count: int = 0
    total_message_count: int = 0
    first_message_at: datetime | None = None
    is_active: bool = True
    is_blocked: bool = False
    block_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "wa_id": self.wa_id,
            "display_name": self.display_name,
            "profile_picture": self.profile_picture,
            "last_message_preview": self.last_message_preview,
            "last_message_at": self.last_message_at.isoformat() if self.last_message_at else None,
            "unread_count": self.unread_count,
            "total_message_count": self.total_message_count,
            "first_message_at": self.first_message_at.isoformat() if self.first_message_at else None,
            "last_activity_at": self.last_activity_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "is_active": self.is_active,
            "is_blocked": self.is_blocked,
            "block_reason": self.block_reason,
        }


@dataclass(frozen=True)
class StatusEvent:
    """An asynchronous delivery/read/failed notification from ``statuses[]``."""

    external_id: str
    status: MessageStatus
    observed_at: datetime
    alternate_id: str | None = None
    recipient_id: str | None = None
    error_message: str | None = None
    source_payload_id: str | None = None
