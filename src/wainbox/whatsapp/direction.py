"""Direction resolution - who is the conversation partner, and who sent it.

The wire format never states direction. It is inferred from the ``from`` and
``to`` fields against the business numbers, with a priority-ordered fallback
chain whose confidence drops at each step:

    100  ``from`` is a business number -> outgoing, partner is ``to``
    100  ``to`` is a business number   -> incoming, partner is ``from``
     80  ``from`` present, not business -> incoming, partner is ``from``
     60  ``from`` differs from primary  -> incoming, partner is ``from``
     60  ``to`` differs from primary    -> outgoing, partner is ``to``
     40  payload id contains a known conversation hint -> outgoing
     20  waId synthesized from the message timestamp, only when an
         endpoint was present but names the business itself

A message with neither ``from`` nor ``to`` and no matching hint is
unresolved and never stored.

The 20-confidence step cannot be semantically right; it exists so old
ingestions never hard-fail and already-stored data keeps matching. Rows
with confidence 20 are a known data-quality source.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Collection, Mapping

from wainbox.infra.time import to_epoch_millis

from .phone import normalize_digits

CONFIDENCE_EXPLICIT = 100
CONFIDENCE_NON_BUSINESS_SENDER = 80
CONFIDENCE_FALLBACK_ENDPOINT = 60
CONFIDENCE_CONTEXT_HINT = 40
CONFIDENCE_SYNTHETIC = 20

SYNTHETIC_WA_ID_PREFIX = "99"


class DirectionUnresolvedError(Exception):
    """Raised when no conversation partner can be determined for a message."""

    pass


@dataclass(frozen=True)
class Resolved:
    """Direction resolved. Numbers are digits-only."""

    wa_id: str
    is_outgoing: bool
    from_number: str
    to_number: str
    confidence: int
    strategy: str

    @property
    def direction(self) -> str:
        return "outgoing" if self.is_outgoing else "incoming"


@dataclass(frozen=True)
class Unresolved:
    """Every fallback was exhausted."""

    reason: str


DirectionResolution = Resolved | Unresolved


def resolve_direction(
    *,
    from_number: Any,
    to_number: Any,
    business_numbers: Collection[str],
    primary_business_number: str | None,
    conversation_hints: Mapping[str, str] | None = None,
    context_id: str | None = None,
    message_timestamp: datetime | None = None,
) -> DirectionResolution:
    """Decide conversation partner and direction for one message.

    Pure function: same inputs, same answer.

    Args:
        from_number: Raw ``from`` field (may be missing, formatted or junk).
        to_number: Raw ``to`` field.
        business_numbers: All known business numbers, digits only.
        primary_business_number: The payload's declared display number, or
            the first configured one.
        conversation_hints: Substring -> waId pairs matched against
            ``context_id``.
        context_id: Opaque payload identifier.
        message_timestamp: Message time, used by the synthetic fallback.

    Returns:
        Resolved or Unresolved.
    """
    sender = normalize_digits(from_number)
    recipient = normalize_digits(to_number)
    primary = normalize_digits(primary_business_number)
    business = {normalize_digits(n) for n in business_numbers if n}
    if primary:
        business.add(primary)

    wa_id = ""
    is_outgoing = False
    confidence = 0
    strategy = ""

    if sender and sender in business:
        wa_id, is_outgoing = recipient, True
        confidence, strategy = CONFIDENCE_EXPLICIT, "business_sender"
    elif recipient and recipient in business:
        wa_id, is_outgoing = sender, False
        confidence, strategy = CONFIDENCE_EXPLICIT, "business_recipient"
    elif sender:
        wa_id, is_outgoing = sender, False
        confidence, strategy = CONFIDENCE_NON_BUSINESS_SENDER, "non_business_sender"

    if not wa_id:
        fallback = _fallback(
            sender=sender,
            recipient=recipient,
            primary=primary,
            conversation_hints=conversation_hints or {},
            context_id=context_id,
            message_timestamp=message_timestamp,
        )
        if fallback is None:
            return Unresolved(
                reason="no waId from from/to and no matching conversation hint"
            )
        wa_id, is_outgoing, confidence, strategy = fallback

    wa_id = normalize_digits(wa_id)
    if not wa_id:
        return Unresolved(reason="resolved waId is empty")

    return Resolved(
        wa_id=wa_id,
        is_outgoing=is_outgoing,
        from_number=sender or primary,
        to_number=recipient or wa_id,
        confidence=confidence,
        strategy=strategy,
    )


def _fallback(
    *,
    sender: str,
    recipient: str,
    primary: str,
    conversation_hints: Mapping[str, str],
    context_id: str | None,
    message_timestamp: datetime | None,
) -> tuple[str, bool, int, str] | None:
    if sender and sender != primary:
        return sender, False, CONFIDENCE_FALLBACK_ENDPOINT, "fallback_sender"
    if recipient and recipient != primary:
        return recipient, True, CONFIDENCE_FALLBACK_ENDPOINT, "fallback_recipient"

    if context_id:
        for hint, hinted_wa_id in conversation_hints.items():
            if hint and hint in context_id:
                return hinted_wa_id, True, CONFIDENCE_CONTEXT_HINT, "context_hint"

    # Reached only with a business-number endpoint and no partner
    if message_timestamp is not None and (sender or recipient):
        millis = str(to_epoch_millis(message_timestamp))
        synthetic = SYNTHETIC_WA_ID_PREFIX + millis[-8:].rjust(8, "0")
        return synthetic, bool(sender) and sender == primary, CONFIDENCE_SYNTHETIC, "synthetic"

    return None


def require_resolved(resolution: DirectionResolution, message_key: str | None = None) -> Resolved:
    """Unwrap a resolution or raise DirectionUnresolvedError."""
    if isinstance(resolution, Resolved):
        return resolution
    raise DirectionUnresolvedError(
        f"could not determine conversation partner for message {message_key or '<no id>'}: "
        f"{resolution.reason}"
    )
