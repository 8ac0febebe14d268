"""Content extraction - map a raw message object to body, kind and media.

Each raw message carries exactly one kind sub-object (``text``, ``image``,
...). Sub-objects are checked in a fixed priority order; the first present
one decides the kind. Absent fields map to None, never to an error.
"""

from typing import Any, Callable

from .models import ExtractedContent, MediaAttributes
from .text import sanitize_message_text

UNKNOWN_BODY = "[Unknown Message Type]"


def _sub(message: dict[str, Any], key: str) -> dict[str, Any]:
    value = message.get(key)
    return value if isinstance(value, dict) else {}


def _str(value: Any) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _file_media(obj: dict[str, Any], **extra: Any) -> MediaAttributes:
    """Fields shared by every downloadable attachment."""
    return MediaAttributes(
        media_id=_str(obj.get("id")),
        url=_str(obj.get("link") or obj.get("url")),
        mime_type=_str(obj.get("mime_type")),
        file_size=_int(obj.get("file_size")),
        sha256=_str(obj.get("sha256")),
        **extra,
    )


def _extract_text(message: dict[str, Any]) -> ExtractedContent:
    body = sanitize_message_text(_str(_sub(message, "text").get("body")))
    return ExtractedContent(body=body, kind="text")


def _extract_image(message: dict[str, Any]) -> ExtractedContent:
    image = _sub(message, "image")
    caption = _str(image.get("caption"))
    media = _file_media(
        image,
        caption=caption,
        width=_int(image.get("width")),
        height=_int(image.get("height")),
        thumbnail=_str(image.get("thumbnail")),
    )
    return ExtractedContent(body=caption or "[Image]", kind="image", media=media)


def _extract_document(message: dict[str, Any]) -> ExtractedContent:
    document = _sub(message, "document")
    caption = _str(document.get("caption"))
    filename = _str(document.get("filename"))
    media = _file_media(
        document,
        caption=caption,
        file_name=filename,
        thumbnail=_str(document.get("thumbnail")),
    )
    placeholder = f"[Document: {filename}]" if filename else "[Document]"
    return ExtractedContent(body=caption or placeholder, kind="document", media=media)


def _extract_audio(message: dict[str, Any]) -> ExtractedContent:
    audio = _sub(message, "audio")
    media = _file_media(audio, duration=_int(audio.get("duration")))
    return ExtractedContent(body="[Audio Message]", kind="audio", media=media)


def _extract_video(message: dict[str, Any]) -> ExtractedContent:
    video = _sub(message, "video")
    caption = _str(video.get("caption"))
    media = _file_media(
        video,
        caption=caption,
        duration=_int(video.get("duration")),
        width=_int(video.get("width")),
        height=_int(video.get("height")),
        thumbnail=_str(video.get("thumbnail")),
    )
    return ExtractedContent(body=caption or "[Video]", kind="video", media=media)


def _extract_sticker(message: dict[str, Any]) -> ExtractedContent:
    sticker = _sub(message, "sticker")
    media = _file_media(
        sticker,
        width=_int(sticker.get("width")),
        height=_int(sticker.get("height")),
    )
    return ExtractedContent(body="[Sticker]", kind="sticker", media=media)


def _extract_location(message: dict[str, Any]) -> ExtractedContent:
    location = _sub(message, "location")
    name = _str(location.get("name"))
    media = MediaAttributes(
        latitude=_float(location.get("latitude")),
        longitude=_float(location.get("longitude")),
        location_name=name,
        address=_str(location.get("address")),
        url=_str(location.get("url")),
    )
    return ExtractedContent(
        body=f"[Location: {name}]" if name else "[Location]",
        kind="location",
        media=media,
    )


def _first_contact_card(message: dict[str, Any]) -> dict[str, Any]:
    # Cloud API sends a "contacts" list; some sources send a single "contact"
    cards = message.get("contacts")
    if isinstance(cards, list) and cards and isinstance(cards[0], dict):
        return cards[0]
    return _sub(message, "contact")


def _extract_contact(message: dict[str, Any]) -> ExtractedContent:
    card = _first_contact_card(message)
    name_obj = card.get("name")
    if isinstance(name_obj, dict):
        name = _str(name_obj.get("formatted_name") or name_obj.get("first_name"))
    else:
        name = _str(name_obj)

    phone = None
    phones = card.get("phones")
    if isinstance(phones, list) and phones and isinstance(phones[0], dict):
        phone = _str(phones[0].get("wa_id") or phones[0].get("phone"))

    media = MediaAttributes(contact_name=name, contact_phone=phone)
    return ExtractedContent(
        body=f"[Contact: {name}]" if name else "[Contact]",
        kind="contact",
        media=media,
    )


def _has_contact_card(message: dict[str, Any]) -> bool:
    cards = message.get("contacts")
    if isinstance(cards, list) and cards:
        return True
    return isinstance(message.get("contact"), dict)


# Priority order: first matching sub-object decides the kind
_EXTRACTORS: tuple[tuple[Callable[[dict[str, Any]], bool], Callable[[dict[str, Any]], ExtractedContent]], ...] = (
    (lambda m: isinstance(m.get("text"), dict), _extract_text),
    (lambda m: isinstance(m.get("image"), dict), _extract_image),
    (lambda m: isinstance(m.get("document"), dict), _extract_document),
    (lambda m: isinstance(m.get("audio"), dict), _extract_audio),
    (lambda m: isinstance(m.get("video"), dict), _extract_video),
    (lambda m: isinstance(m.get("sticker"), dict), _extract_sticker),
    (lambda m: isinstance(m.get("location"), dict), _extract_location),
    (_has_contact_card, _extract_contact),
)


def extract_content(message: dict[str, Any]) -> ExtractedContent:
    """Classify a raw message and build its preview body and media attributes.

    Args:
        message: One element of ``value.messages[]``.

    Returns:
        ExtractedContent; kind "unknown" with body "[Unknown Message Type]"
        when no known sub-object is present.
    """
    for matches, extractor in _EXTRACTORS:
        if matches(message):
            return extractor(message)
    return ExtractedContent(body=UNKNOWN_BODY, kind="unknown")
