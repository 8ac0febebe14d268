"""Tests for WebhookIngestor.process_directory() and payload file ordering."""

import asyncio
import json
from pathlib import Path

import pytest

from helpers import BUSINESS_NUMBER, CUSTOMER, make_payload, status_entry, text_message
from wainbox.domain.ingest import order_payload_files


def _write(directory: Path, name: str, payload) -> Path:
    path = directory / name
    path.write_text(json.dumps(payload) if not isinstance(payload, str) else payload, encoding="utf-8")
    return path


class TestOrderPayloadFiles:
    def test_status_files_last(self):
        paths = [Path("b_status.json"), Path("c.json"), Path("a_status.json"), Path("a.json")]
        ordered = [p.name for p in order_payload_files(paths)]
        assert ordered == ["a.json", "c.json", "a_status.json", "b_status.json"]


class TestProcessDirectory:
    @pytest.mark.asyncio
    async def test_status_file_applies_after_message_file(self, tmp_path, ingestor, message_repo):
        # Name order alone would run the status file first
        _write(tmp_path, "0_status.json", make_payload(statuses=[status_entry("wamid.OUT", "delivered")]))
        _write(
            tmp_path,
            "1_messages.json",
            make_payload(messages=[text_message("wamid.OUT", from_number=BUSINESS_NUMBER, to_number=CUSTOMER)]),
        )

        summary = await ingestor.process_directory(tmp_path)

        assert summary.files_processed == 2
        assert summary.files_failed == 0
        message = await message_repo.get("wamid.OUT")
        assert message.is_placeholder is False
        assert message.status == "delivered"
        assert summary.messages_stored == 1
        assert summary.statuses_applied == 1

    @pytest.mark.asyncio
    async def test_bad_files_counted_and_run_continues(self, tmp_path, ingestor, message_repo):
        _write(tmp_path, "a.json", "{not json")
        _write(tmp_path, "b.json", {"metaData": {"entry": 42}})
        _write(tmp_path, "c.json", make_payload(messages=[text_message("wamid.OK")]))
        _write(tmp_path, "notes.txt", "ignored")

        summary = await ingestor.process_directory(tmp_path)

        assert summary.files_failed == 2
        assert summary.files_processed == 1
        assert set(summary.file_errors) == {"a.json", "b.json"}
        assert await message_repo.get("wamid.OK") is not None

    @pytest.mark.asyncio
    async def test_item_errors_summed(self, tmp_path, ingestor):
        _write(
            tmp_path,
            "a.json",
            make_payload(messages=[text_message("wamid.X1", from_number=None)]),
        )

        summary = await ingestor.process_directory(tmp_path)

        assert summary.files_processed == 1
        assert summary.item_errors == 1

    @pytest.mark.asyncio
    async def test_stop_event_cancels_between_files(self, tmp_path, ingestor, message_repo):
        _write(tmp_path, "a.json", make_payload(messages=[text_message("wamid.S1")]))
        _write(tmp_path, "b.json", make_payload(messages=[text_message("wamid.S2")]))
        stop = asyncio.Event()
        stop.set()

        summary = await ingestor.process_directory(tmp_path, stop)

        assert summary.cancelled is True
        assert summary.files_processed == 0
        assert await message_repo.get("wamid.S1") is None

    @pytest.mark.asyncio
    async def test_not_a_directory(self, tmp_path, ingestor):
        with pytest.raises(NotADirectoryError):
            await ingestor.process_directory(tmp_path / "missing")
