"""Tests for WebhookIngestor.process_payload() - the end-to-end pipeline."""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from helpers import (
    BUSINESS_NUMBER,
    CUSTOMER,
    OTHER_CUSTOMER,
    contact_entry,
    make_payload,
    status_entry,
    text_message,
)
from wainbox.config import IngestSettings
from wainbox.domain.ingest import build_ingestor
from wainbox.domain.status import PLACEHOLDER_BODY, ReconcileOutcome, ReconcileResult
from wainbox.infra.repositories.base import StorageTransientError
from wainbox.whatsapp.meta_adapter import MalformedPayloadError


class TestScenarios:
    @pytest.mark.asyncio
    async def test_business_sender_outgoing_text(self, message_repo, contact_repo):
        settings = IngestSettings(business_numbers=("14155550100",), storage_backend="memory")
        ingestor = build_ingestor(settings, messages=message_repo, contacts=contact_repo)
        payload = make_payload(
            messages=[text_message("wamid.S1", from_number="14155550100", to_number="919876543210", body="Hi")],
            display_phone_number=None,
        )

        result = await ingestor.process_payload(payload)

        assert result.messages_stored == 1
        message = await message_repo.get("wamid.S1")
        assert message.direction == "outgoing"
        assert message.wa_id == "919876543210"
        assert message.direction_confidence == 100
        assert message.status == "sent"
        contact = await contact_repo.get("919876543210")
        assert contact.unread_count == 0
        assert contact.total_message_count == 1

    @pytest.mark.asyncio
    async def test_failed_status_for_unknown_message_dropped(self, ingestor, message_repo):
        payload = make_payload(statuses=[status_entry("m1", "failed", error={"message": "rejected"})])

        result = await ingestor.process_payload(payload)

        assert result.statuses_dropped == 1
        assert result.errors == []
        assert await message_repo.get("m1") is None


class TestProperties:
    @pytest.mark.asyncio
    async def test_idempotent_redelivery(self, ingestor, message_repo, contact_repo):
        payload = make_payload(messages=[text_message("wamid.DUP")])

        first = await ingestor.process_payload(payload)
        second = await ingestor.process_payload(payload)

        assert first.messages_stored == 1
        assert second.messages_stored == 0
        assert second.duplicate_messages == 1
        assert len(await message_repo.list_for_conversation(CUSTOMER)) == 1
        assert (await contact_repo.get(CUSTOMER)).total_message_count == 1

    @pytest.mark.asyncio
    async def test_unresolved_direction_rejected(self, ingestor, message_repo):
        payload = make_payload(
            messages=[text_message("wamid.NODIR", from_number=None, to_number=None)],
        )

        result = await ingestor.process_payload(payload)

        assert result.messages_stored == 0
        assert len(result.errors) == 1
        assert result.errors[0].stage == "message"
        assert result.errors[0].external_id == "wamid.NODIR"
        assert "conversation partner" in result.errors[0].message
        assert await message_repo.get("wamid.NODIR") is None

    @pytest.mark.asyncio
    async def test_status_before_message_creates_placeholder(self, ingestor, message_repo):
        payload = make_payload(
            statuses=[status_entry("wamid.EARLY", "delivered", recipient_id="14155550100")]
        )

        result = await ingestor.process_payload(payload)

        assert result.placeholders_created == 1
        stored = await message_repo.list_for_conversation("14155550100")
        assert len(stored) == 1
        assert stored[0].message_key == "wamid.EARLY"
        assert stored[0].status == "delivered"
        assert stored[0].direction == "outgoing"
        assert stored[0].body == PLACEHOLDER_BODY

    @pytest.mark.asyncio
    async def test_read_resets_unread(self, ingestor, contact_repo):
        await ingestor.process_payload(make_payload(messages=[
            text_message("wamid.IN1", to_number=BUSINESS_NUMBER),
            text_message("wamid.IN2", to_number=BUSINESS_NUMBER),
            text_message("wamid.OUT1", from_number=BUSINESS_NUMBER, to_number=CUSTOMER),
        ]))
        assert (await contact_repo.get(CUSTOMER)).unread_count == 2

        await ingestor.process_payload(make_payload(statuses=[status_entry("wamid.OUT1", "read")]))

        assert (await contact_repo.get(CUSTOMER)).unread_count == 0

    @pytest.mark.asyncio
    async def test_partial_failure_isolation(self, ingestor, message_repo):
        messages = [text_message(f"wamid.B{i}", body=f"m{i}") for i in range(1, 6)]
        messages[2] = text_message("wamid.B3", from_number=None, to_number=None)

        result = await ingestor.process_payload(make_payload(messages=messages))

        assert result.processed_items == 4
        assert result.failed_items == 1
        for key in ("wamid.B1", "wamid.B2", "wamid.B4", "wamid.B5"):
            assert await message_repo.get(key) is not None
        assert await message_repo.get("wamid.B3") is None

    @pytest.mark.asyncio
    async def test_contact_aggregates(self, ingestor, contact_repo):
        payload = make_payload(messages=[
            text_message("wamid.A1", body="one", timestamp="1704067200"),
            text_message("wamid.A2", body="two", timestamp="1704067201"),
            text_message("wamid.A3", body="three", timestamp="1704067202"),
        ])

        await ingestor.process_payload(payload)

        contact = await contact_repo.get(CUSTOMER)
        assert contact.total_message_count == 3
        assert contact.unread_count == 3

    @pytest.mark.asyncio
    async def test_contact_aggregates_sequential_preview(self, ingestor, contact_repo):
        for i, body in enumerate(["one", "two", "three"]):
            await ingestor.process_payload(make_payload(messages=[text_message(f"wamid.P{i}", body=body)]))

        contact = await contact_repo.get(CUSTOMER)
        assert contact.total_message_count == 3
        assert contact.unread_count == 3
        assert contact.last_message_preview == "three"


class TestOrdering:
    @pytest.mark.asyncio
    async def test_contacts_before_messages(self, ingestor, contact_repo):
        payload = make_payload(
            contacts=[contact_entry(CUSTOMER, "Ravi Kumar")],
            messages=[text_message("wamid.C1")],
        )

        result = await ingestor.process_payload(payload)

        assert result.contacts_touched == 1
        contact = await contact_repo.get(CUSTOMER)
        assert contact.display_name == "Ravi Kumar"
        assert contact.total_message_count == 1

    @pytest.mark.asyncio
    async def test_messages_before_statuses_in_same_change(self, ingestor, message_repo):
        payload = make_payload(
            messages=[text_message("wamid.O1", from_number=BUSINESS_NUMBER, to_number=CUSTOMER)],
            statuses=[status_entry("wamid.O1", "delivered")],
        )

        result = await ingestor.process_payload(payload)

        assert result.statuses_applied == 1
        assert result.placeholders_created == 0
        message = await message_repo.get("wamid.O1")
        assert message.status == "delivered"
        assert message.is_placeholder is False

    @pytest.mark.asyncio
    async def test_statuses_applied_in_array_order(self, ingestor, message_repo):
        payload = make_payload(
            messages=[text_message("wamid.O2", from_number=BUSINESS_NUMBER, to_number=CUSTOMER)],
            statuses=[
                status_entry("wamid.O2", "delivered", timestamp="1704067300"),
                status_entry("wamid.O2", "read", timestamp="1704067400"),
            ],
        )

        await ingestor.process_payload(payload)

        message = await message_repo.get("wamid.O2")
        assert [h.to_status for h in message.status_history] == ["sent", "delivered", "read"]
        assert message.status == "read"

    @pytest.mark.asyncio
    async def test_batches_respect_batch_size(self, message_repo, contact_repo):
        settings = IngestSettings(business_numbers=(BUSINESS_NUMBER,), batch_size=2, storage_backend="memory")
        ingestor = build_ingestor(settings, messages=message_repo, contacts=contact_repo)
        payload = make_payload(messages=[text_message(f"wamid.G{i}") for i in range(5)])

        with patch("wainbox.domain.ingest.asyncio.gather", wraps=asyncio.gather) as gather:
            result = await ingestor.process_payload(payload)

        assert result.messages_stored == 5
        assert [len(call.args) for call in gather.call_args_list] == [2, 2, 1]


class TestItemErrors:
    @pytest.mark.asyncio
    async def test_invalid_contact_recorded(self, ingestor):
        result = await ingestor.process_payload(make_payload(contacts=[contact_entry("123")], messages=[]))
        assert result.contacts_touched == 0
        assert result.errors[0].stage == "contact"

    @pytest.mark.asyncio
    async def test_invalid_status_recorded(self, ingestor):
        result = await ingestor.process_payload(
            make_payload(statuses=[{"id": "m1", "status": "deleted"}, {"status": "read"}])
        )
        assert [e.stage for e in result.errors] == ["status", "status"]
        assert result.errors[0].external_id == "m1"

    @pytest.mark.asyncio
    async def test_short_message_key_recorded(self, ingestor):
        result = await ingestor.process_payload(make_payload(messages=[text_message("x")]))
        assert result.errors[0].stage == "message"
        assert "message key" in result.errors[0].message

    @pytest.mark.asyncio
    async def test_malformed_payload_raises(self, ingestor, message_repo):
        with pytest.raises(MalformedPayloadError):
            await ingestor.process_payload({"metaData": {"entry": "broken"}})

    @pytest.mark.asyncio
    async def test_to_dict_summary(self, ingestor):
        result = await ingestor.process_payload(
            make_payload(messages=[text_message("wamid.D1"), text_message("wamid.D2", from_number=None)])
        )
        summary = result.to_dict()
        assert summary["payload_id"] == "conv1-msg1-api"
        assert summary["processed_items"] == 1
        assert summary["failed_items"] == 1
        assert summary["errors"][0]["stage"] == "message"


class TestConversationHints:
    @pytest.mark.asyncio
    async def test_hint_resolves_missing_endpoints(self, message_repo, contact_repo):
        settings = IngestSettings(
            business_numbers=(BUSINESS_NUMBER,),
            conversation_hints={"conv1": OTHER_CUSTOMER},
            storage_backend="memory",
        )
        ingestor = build_ingestor(settings, messages=message_repo, contacts=contact_repo)
        payload = make_payload(messages=[text_message("wamid.H1", from_number=None, to_number=None)])

        await ingestor.process_payload(payload)

        message = await message_repo.get("wamid.H1")
        assert message.wa_id == OTHER_CUSTOMER
        assert message.direction_confidence == 40


class TestRetry:
    @pytest.mark.asyncio
    async def test_status_retried_with_linear_delay(self, ingestor, settings):
        event_result = AsyncMock(side_effect=[
            StorageTransientError("connection lost"),
            StorageTransientError("connection lost"),
            ReconcileResult(ReconcileOutcome.APPLIED),
        ])

        with patch.object(ingestor.reconciler, "apply_status", event_result), \
             patch("wainbox.domain.ingest.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await ingestor.process_payload(make_payload(statuses=[status_entry("wamid.R1", "read")]))

        assert event_result.await_count == 3
        assert [call.args[0] for call in sleep.await_args_list] == [
            1 * settings.status_retry_interval,
            2 * settings.status_retry_interval,
        ]
        assert result.statuses_applied == 1
        assert result.errors == []

    @pytest.mark.asyncio
    async def test_status_budget_exhausted_is_item_error(self, ingestor):
        failing = AsyncMock(side_effect=StorageTransientError("db down"))

        with patch.object(ingestor.reconciler, "apply_status", failing), \
             patch("wainbox.domain.ingest.asyncio.sleep", new_callable=AsyncMock):
            result = await ingestor.process_payload(make_payload(statuses=[
                status_entry("wamid.R1", "read"),
                status_entry("wamid.R2", "read"),
            ]))

        assert failing.await_count == 6
        assert [e.external_id for e in result.errors] == ["wamid.R1", "wamid.R2"]
        assert all(e.stage == "status" for e in result.errors)

    @pytest.mark.asyncio
    async def test_message_write_retried_once(self, ingestor, message_repo):
        original = message_repo.insert_if_absent
        calls = []

        async def flaky(message):
            calls.append(message.message_key)
            if len(calls) == 1:
                raise StorageTransientError("timeout")
            return await original(message)

        with patch.object(message_repo, "insert_if_absent", flaky):
            result = await ingestor.process_payload(make_payload(messages=[text_message("wamid.F1")]))

        assert calls == ["wamid.F1", "wamid.F1"]
        assert result.messages_stored == 1

    @pytest.mark.asyncio
    async def test_message_write_failing_twice_is_item_error(self, ingestor, message_repo):
        failing = AsyncMock(side_effect=StorageTransientError("timeout"))

        with patch.object(message_repo, "insert_if_absent", failing):
            result = await ingestor.process_payload(make_payload(messages=[
                text_message("wamid.F2"),
                text_message("wamid.F3"),
            ]))

        assert failing.await_count == 4
        assert result.messages_stored == 0
        assert [e.stage for e in result.errors] == ["message", "message"]

    @pytest.mark.asyncio
    async def test_counter_update_retried_without_losing_message(self, ingestor, contact_repo):
        original = contact_repo.record_message
        calls = []

        async def flaky(wa_id, **kwargs):
            calls.append(wa_id)
            if len(calls) == 1:
                raise StorageTransientError("connection reset")
            return await original(wa_id, **kwargs)

        with patch.object(contact_repo, "record_message", flaky):
            result = await ingestor.process_payload(make_payload(messages=[text_message("wamid.AGG1")]))

        assert result.messages_stored == 1
        assert result.duplicate_messages == 0
        contact = await contact_repo.get(CUSTOMER)
        assert contact.total_message_count == 1
        assert contact.unread_count == 1

    @pytest.mark.asyncio
    async def test_insert_committed_before_error_counts_once(self, ingestor, message_repo, contact_repo):
        original = message_repo.insert_if_absent
        calls = []

        async def commit_then_fail(message):
            calls.append(message.message_key)
            outcome = await original(message)
            if len(calls) == 1:
                raise StorageTransientError("connection lost after commit")
            return outcome

        with patch.object(message_repo, "insert_if_absent", commit_then_fail):
            result = await ingestor.process_payload(make_payload(messages=[text_message("wamid.AGG2")]))

        assert result.messages_stored == 1
        assert (await contact_repo.get(CUSTOMER)).total_message_count == 1

    @pytest.mark.asyncio
    async def test_retried_read_receipt_logged_once(self, ingestor, contact_repo, message_repo):
        await ingestor.process_payload(make_payload(messages=[
            text_message("wamid.RR1", from_number=BUSINESS_NUMBER, to_number=CUSTOMER),
        ]))
        original = contact_repo.reset_unread
        calls = []

        async def flaky(wa_id, now):
            calls.append(wa_id)
            if len(calls) == 1:
                raise StorageTransientError("connection reset")
            return await original(wa_id, now)

        with patch.object(contact_repo, "reset_unread", flaky), \
             patch("wainbox.domain.ingest.asyncio.sleep", new_callable=AsyncMock):
            result = await ingestor.process_payload(make_payload(statuses=[status_entry("wamid.RR1", "read")]))

        assert result.statuses_applied == 1
        assert len(calls) == 2
        message = await message_repo.get("wamid.RR1")
        assert [h.to_status for h in message.status_history] == ["sent", "read"]
