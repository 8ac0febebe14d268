"""Tests for MessageStore - idempotent storage and initial status."""

import asyncio

import pytest

from helpers import BUSINESS_NUMBER, CUSTOMER, dt
from wainbox.domain.messages import MessageValidationError, initial_status
from wainbox.whatsapp.models import NewMessage
from wainbox.whatsapp.phone import InvalidWaIdError


def _new(message_key="wamid.1", *, direction="incoming", body="Hi", status=None, wa_id=CUSTOMER, at=100):
    incoming = direction == "incoming"
    return NewMessage(
        message_key=message_key,
        wa_id=wa_id,
        from_number=wa_id if incoming else BUSINESS_NUMBER,
        to_number=BUSINESS_NUMBER if incoming else wa_id,
        direction=direction,
        direction_confidence=100,
        kind="text",
        body=body,
        timestamp=dt(at),
        status=status,
    )


class TestInitialStatus:
    def test_incoming_defaults_to_delivered(self):
        assert initial_status(_new()) == "delivered"

    def test_outgoing_defaults_to_sent(self):
        assert initial_status(_new(direction="outgoing")) == "sent"

    def test_explicit_status_wins(self):
        assert initial_status(_new(direction="outgoing", status="read")) == "read"


class TestStore:
    @pytest.mark.asyncio
    async def test_new_message(self, store, ledger):
        result = await store.store(_new())

        assert result.was_new is True
        message = result.message
        assert message.status == "delivered"
        assert set(message.status_timestamps) == {"delivered"}
        assert len(message.status_history) == 1
        assert message.status_history[0].from_status is None
        assert message.status_history[0].to_status == "delivered"

        contact = await ledger.get(CUSTOMER)
        assert contact.total_message_count == 1
        assert contact.unread_count == 1
        assert contact.last_message_preview == "Hi"

    @pytest.mark.asyncio
    async def test_duplicate_is_noop(self, store, message_repo, ledger):
        first = await store.store(_new(body="original"))
        second = await store.store(_new(body="changed"))

        assert second.was_new is False
        assert second.message.body == "original"
        assert second.message.created_at == first.message.created_at
        assert len(await message_repo.list_for_conversation(CUSTOMER)) == 1

        contact = await ledger.get(CUSTOMER)
        assert contact.total_message_count == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicates_store_once(self, store, message_repo, ledger):
        results = await asyncio.gather(*(store.store(_new()) for _ in range(5)))

        assert sum(r.was_new for r in results) == 1
        assert len(await message_repo.list_for_conversation(CUSTOMER)) == 1
        assert (await ledger.get(CUSTOMER)).total_message_count == 1

    @pytest.mark.asyncio
    async def test_outgoing_does_not_bump_unread(self, store, ledger):
        await store.store(_new(direction="outgoing"))
        contact = await ledger.get(CUSTOMER)
        assert contact.unread_count == 0
        assert contact.total_message_count == 1

    @pytest.mark.asyncio
    async def test_contact_created_before_message(self, store, contact_repo):
        await store.store(_new())
        assert await contact_repo.get(CUSTOMER) is not None

    @pytest.mark.asyncio
    async def test_without_activity_leaves_aggregates(self, store, ledger):
        await store.store(_new(), record_activity=False)
        contact = await ledger.get(CUSTOMER)
        assert contact is not None
        assert contact.total_message_count == 0

    @pytest.mark.asyncio
    async def test_body_capped(self, store):
        result = await store.store(_new(body="y" * 5000))
        assert len(result.message.body) == 4096

    @pytest.mark.asyncio
    @pytest.mark.parametrize("key", ["", "  ", "ab"])
    async def test_short_key_rejected(self, store, key):
        with pytest.raises(MessageValidationError):
            await store.store(_new(message_key=key))

    @pytest.mark.asyncio
    async def test_invalid_wa_id_rejected(self, store, message_repo):
        with pytest.raises(InvalidWaIdError):
            await store.store(_new(wa_id="0123"))
        assert await message_repo.get("wamid.1") is None
