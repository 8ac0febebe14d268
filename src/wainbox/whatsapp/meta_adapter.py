"""WhatsApp Business payload adapter - validate shape and parse changes.

Accepts both the stored-webhook envelope and the raw Meta Cloud API body:

    {"id": "...", "metaData": {"entry": [...]}}     # stored envelope
    {"object": "whatsapp_business_account", "entry": [...]}   # raw Meta

Each entry holds ``changes[]``; only changes with ``field == "messages"``
carry data for the pipeline:

    {
      "field": "messages",
      "value": {
        "metadata": {"display_phone_number": "...", "phone_number_id": "..."},
        "contacts": [{"wa_id": "...", "profile": {"name": "..."}}],
        "messages": [{"from": "...", "id": "wamid...", "timestamp": "...", "type": "text", ...}],
        "statuses": [{"id": "wamid...", "status": "delivered", "recipient_id": "...", ...}]
      }
    }
"""

from dataclasses import dataclass, field
from typing import Any, Iterator

from wainbox.infra.time import from_unix_timestamp, utc_now

from .models import VALID_STATUSES, ContactProfile, StatusEvent
from .phone import normalize_digits


class MalformedPayloadError(Exception):
    """Raised when a payload has an invalid top-level shape."""

    pass


class InvalidStatusEventError(Exception):
    """Raised when a single status event cannot be parsed."""

    pass


@dataclass(frozen=True)
class MessageChange:
    """The parts of one ``field == "messages"`` change the pipeline consumes."""

    messages: list[dict[str, Any]] = field(default_factory=list)
    statuses: list[dict[str, Any]] = field(default_factory=list)
    contacts: list[dict[str, Any]] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def display_phone_number(self) -> str | None:
        digits = normalize_digits(self.metadata.get("display_phone_number"))
        return digits or None


def get_payload_id(payload: dict[str, Any]) -> str | None:
    """Return the payload's opaque identifier (``id`` or ``_id``)."""
    payload_id = payload.get("id") or payload.get("_id")
    return str(payload_id) if payload_id is not None else None


def get_entries(payload: Any) -> list[Any]:
    """Return the payload's ``entry`` array.

    Raises:
        MalformedPayloadError: If the payload is not an object or ``entry``
            is missing or not an array.
    """
    if not isinstance(payload, dict):
        raise MalformedPayloadError("payload must be a JSON object")

    container = payload.get("metaData")
    if container is None:
        container = payload
    if not isinstance(container, dict):
        raise MalformedPayloadError("metaData must be an object")

    entries = container.get("entry")
    if entries is None:
        raise MalformedPayloadError("invalid payload structure: missing metaData.entry")
    if not isinstance(entries, list):
        raise MalformedPayloadError("invalid payload structure: entry is not an array")
    return entries


def iter_message_changes(payload: dict[str, Any]) -> Iterator[MessageChange]:
    """Yield each ``messages`` change in entry/change order.

    Non-object entries, changes and values are skipped; only the top-level
    ``entry`` array is mandatory.

    Raises:
        MalformedPayloadError: If the top-level shape is invalid.
    """
    for entry in get_entries(payload):
        if not isinstance(entry, dict):
            continue
        changes = entry.get("changes") or []
        if not isinstance(changes, list):
            continue
        for change in changes:
            if not isinstance(change, dict) or change.get("field") != "messages":
                continue
            value = change.get("value")
            if not isinstance(value, dict):
                continue
            yield MessageChange(
                messages=_list_of_objects(value.get("messages")),
                statuses=_list_of_objects(value.get("statuses")),
                contacts=_list_of_objects(value.get("contacts")),
                metadata=value.get("metadata") if isinstance(value.get("metadata"), dict) else {},
            )


def _list_of_objects(value: Any) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, dict)]


def parse_contact(raw: dict[str, Any]) -> ContactProfile:
    """Parse one element of ``value.contacts[]``.

    The waId is normalized but not validated here.
    """
    profile = raw.get("profile") if isinstance(raw.get("profile"), dict) else {}
    name = str(profile.get("name") or "").strip()
    picture = profile.get("picture")
    return ContactProfile(
        wa_id=normalize_digits(raw.get("wa_id")),
        display_name=name or None,
        profile_picture=str(picture) if picture else None,
    )


def parse_status_event(raw: dict[str, Any], payload_id: str | None = None) -> StatusEvent:
    """Parse one element of ``value.statuses[]``.

    Raises:
        InvalidStatusEventError: If the id is missing or the status unknown.
    """
    external_id = raw.get("id")
    if not external_id or not isinstance(external_id, str):
        raise InvalidStatusEventError("missing or invalid status id")

    status = str(raw.get("status") or "").lower()
    if status not in VALID_STATUSES:
        raise InvalidStatusEventError(f"unknown status {status or '<missing>'!r}")

    alternate_id = raw.get("meta_msg_id")
    recipient_id = normalize_digits(raw.get("recipient_id"))

    return StatusEvent(
        external_id=external_id,
        status=status,  # type: ignore[arg-type]
        observed_at=from_unix_timestamp(raw.get("timestamp")) or utc_now(),
        alternate_id=str(alternate_id) if alternate_id else None,
        recipient_id=recipient_id or None,
        error_message=_status_error_message(raw),
        source_payload_id=payload_id,
    )


def _status_error_message(raw: dict[str, Any]) -> str | None:
    # Stored webhooks carry {"error": {...}}; Cloud API sends {"errors": [{...}]}
    error = raw.get("error")
    if not isinstance(error, dict):
        errors = raw.get("errors")
        error = errors[0] if isinstance(errors, list) and errors and isinstance(errors[0], dict) else None
    if not error:
        return None
    message = error.get("message") or error.get("title")
    if not message:
        details = error.get("error_data")
        if isinstance(details, dict):
            message = details.get("details")
    return str(message) if message else None
