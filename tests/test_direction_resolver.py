"""Tests for resolve_direction() - the priority-ordered fallback chain."""

from datetime import datetime, timezone

import pytest

from helpers import BUSINESS_NUMBER, CUSTOMER, OTHER_CUSTOMER
from wainbox.whatsapp.direction import (
    DirectionUnresolvedError,
    Resolved,
    Unresolved,
    require_resolved,
    resolve_direction,
)


def _resolve(from_number, to_number, **kwargs):
    kwargs.setdefault("business_numbers", (BUSINESS_NUMBER,))
    kwargs.setdefault("primary_business_number", BUSINESS_NUMBER)
    return resolve_direction(from_number=from_number, to_number=to_number, **kwargs)


class TestExplicitBusinessNumber:
    def test_business_sender_is_outgoing(self):
        result = _resolve(BUSINESS_NUMBER, CUSTOMER)
        assert isinstance(result, Resolved)
        assert result.is_outgoing is True
        assert result.direction == "outgoing"
        assert result.wa_id == CUSTOMER
        assert result.confidence == 100

    @pytest.mark.parametrize("to_number", [CUSTOMER, OTHER_CUSTOMER, None, BUSINESS_NUMBER, "+1 (415) 555-0199"])
    def test_business_sender_always_outgoing_regardless_of_to(self, to_number):
        result = _resolve(BUSINESS_NUMBER, to_number)
        if isinstance(result, Resolved):
            assert result.is_outgoing is True
            assert result.confidence == 100
        else:
            # "to" missing or itself the business number: nothing to partner with
            assert to_number in (None, BUSINESS_NUMBER)

    def test_business_recipient_is_incoming(self):
        result = _resolve(CUSTOMER, BUSINESS_NUMBER)
        assert result.is_outgoing is False
        assert result.wa_id == CUSTOMER
        assert result.confidence == 100

    def test_any_configured_business_number_counts(self):
        result = _resolve("14155550100", CUSTOMER, business_numbers=(BUSINESS_NUMBER, "14155550100"))
        assert result.is_outgoing is True
        assert result.confidence == 100

    def test_formatted_numbers_are_normalized(self):
        result = _resolve("+91 83294 46654", "+91-99373-20320")
        assert result.wa_id == CUSTOMER
        assert result.from_number == BUSINESS_NUMBER
        assert result.to_number == CUSTOMER


class TestHeuristics:
    def test_non_business_sender_is_incoming_80(self):
        result = _resolve(CUSTOMER, None)
        assert result.is_outgoing is False
        assert result.wa_id == CUSTOMER
        assert result.confidence == 80
        assert result.strategy == "non_business_sender"

    def test_missing_to_defaults_to_wa_id_and_from_to_primary(self):
        result = _resolve(CUSTOMER, None)
        assert result.from_number == CUSTOMER
        assert result.to_number == CUSTOMER

        result = _resolve(None, CUSTOMER)
        assert result.from_number == BUSINESS_NUMBER
        assert result.to_number == CUSTOMER

    def test_recipient_only_is_outgoing_60(self):
        result = _resolve(None, CUSTOMER)
        assert result.is_outgoing is True
        assert result.wa_id == CUSTOMER
        assert result.confidence == 60
        assert result.strategy == "fallback_recipient"

    def test_sender_unknown_without_business_numbers(self):
        result = _resolve(CUSTOMER, OTHER_CUSTOMER, business_numbers=(), primary_business_number=None)
        assert result.wa_id == CUSTOMER
        assert result.is_outgoing is False
        assert result.confidence == 80

    def test_context_hint_40(self):
        result = _resolve(
            None,
            None,
            conversation_hints={"conv1": OTHER_CUSTOMER},
            context_id="conv1-msg1-api",
        )
        assert result.wa_id == OTHER_CUSTOMER
        assert result.confidence == 40
        assert result.strategy == "context_hint"

    def test_hint_not_matching_context(self):
        result = _resolve(
            None,
            None,
            conversation_hints={"conv2": OTHER_CUSTOMER},
            context_id="conv1-msg1-api",
        )
        assert isinstance(result, Unresolved)

    def test_synthetic_wa_id_from_timestamp_20(self):
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)  # 1704067200000 ms
        result = _resolve(BUSINESS_NUMBER, None, message_timestamp=ts)
        assert result.confidence == 20
        assert result.strategy == "synthetic"
        assert result.wa_id == "9967200000"
        assert result.is_outgoing is True

    def test_synthetic_from_business_recipient_is_incoming(self):
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = _resolve(None, BUSINESS_NUMBER, message_timestamp=ts)
        assert result.strategy == "synthetic"
        assert result.is_outgoing is False

    def test_synthetic_is_deterministic(self):
        ts = datetime(2024, 5, 5, 10, 30, tzinfo=timezone.utc)
        first = _resolve(BUSINESS_NUMBER, None, message_timestamp=ts)
        assert first == _resolve(BUSINESS_NUMBER, None, message_timestamp=ts)


class TestUnresolved:
    @pytest.mark.parametrize("junk", [None, "", "undefined", "null"])
    def test_no_from_no_to_no_hint(self, junk):
        result = _resolve(junk, junk)
        assert isinstance(result, Unresolved)

    def test_require_resolved_raises(self):
        with pytest.raises(DirectionUnresolvedError, match="wamid.X"):
            require_resolved(_resolve(None, None), "wamid.X")

    def test_require_resolved_passes_through(self):
        resolved = _resolve(CUSTOMER, BUSINESS_NUMBER)
        assert require_resolved(resolved) is resolved

    def test_timestamp_alone_does_not_synthesize(self):
        ts = datetime(2024, 1, 1, tzinfo=timezone.utc)
        result = _resolve(None, None, message_timestamp=ts)
        assert isinstance(result, Unresolved)
        assert "conversation hint" in result.reason
