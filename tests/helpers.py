"""Shared test helper functions for wainbox tests.

This module contains helper functions that can be imported by both conftest.py
and individual test files. These are NOT fixtures - they are regular functions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

BUSINESS_NUMBER = "918329446654"
CUSTOMER = "919937320320"
OTHER_CUSTOMER = "929967673820"

# 2024-01-01T00:00:00Z
TS = "1704067200"


def make_payload(
    *,
    messages: list[dict] | None = None,
    statuses: list[dict] | None = None,
    contacts: list[dict] | None = None,
    display_phone_number: str | None = BUSINESS_NUMBER,
    payload_id: str = "conv1-msg1-api",
) -> dict[str, Any]:
    """Build a stored-webhook envelope with a single ``messages`` change."""
    value: dict[str, Any] = {"messaging_product": "whatsapp"}
    if display_phone_number is not None:
        value["metadata"] = {
            "display_phone_number": display_phone_number,
            "phone_number_id": "629305560276479",
        }
    if contacts is not None:
        value["contacts"] = contacts
    if messages is not None:
        value["messages"] = messages
    if statuses is not None:
        value["statuses"] = statuses

    return {
        "payload_type": "whatsapp_webhook",
        "_id": payload_id,
        "metaData": {
            "entry": [
                {
                    "id": "30164062719905277",
                    "changes": [{"field": "messages", "value": value}],
                }
            ],
            "object": "whatsapp_business_account",
        },
    }


def text_message(
    message_id: str,
    *,
    from_number: str | None = CUSTOMER,
    to_number: str | None = None,
    body: str = "Hi",
    timestamp: str | None = TS,
) -> dict[str, Any]:
    msg: dict[str, Any] = {"id": message_id, "type": "text", "text": {"body": body}}
    if from_number is not None:
        msg["from"] = from_number
    if to_number is not None:
        msg["to"] = to_number
    if timestamp is not None:
        msg["timestamp"] = timestamp
    return msg


def contact_entry(wa_id: str = CUSTOMER, name: str | None = "Ravi Kumar") -> dict[str, Any]:
    entry: dict[str, Any] = {"wa_id": wa_id}
    if name is not None:
        entry["profile"] = {"name": name}
    return entry


def status_entry(
    message_id: str,
    status: str,
    *,
    recipient_id: str | None = CUSTOMER,
    timestamp: str = "1704067260",
    meta_msg_id: str | None = None,
    error: dict | None = None,
) -> dict[str, Any]:
    entry: dict[str, Any] = {"id": message_id, "status": status, "timestamp": timestamp}
    if recipient_id is not None:
        entry["recipient_id"] = recipient_id
    if meta_msg_id is not None:
        entry["meta_msg_id"] = meta_msg_id
    if error is not None:
        entry["error"] = error
    return entry


def dt(seconds: int) -> datetime:
    """UTC datetime from epoch seconds."""
    return datetime.fromtimestamp(seconds, timezone.utc)
