"""Conversation (inbox) endpoints: inbox, history, local send, search and stats, contacts.

No authentication. Logs carry hashed waIds only.
"""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from pydantic import BaseModel, Field

from wainbox.domain.messages import MessageValidationError
from wainbox.whatsapp.outbound import send_text_locally
from wainbox.whatsapp.phone import InvalidWaIdError
from wainbox.whatsapp.text import MAX_MESSAGE_LENGTH

from ..dependencies import Services, get_services

router = APIRouter(tags=["conversations"])

KindFilter = Literal["text", "image", "document", "audio", "video", "sticker", "location", "contact", "unknown"]
StatusFilter = Literal["sending", "sent", "delivered", "read", "failed"]


class SendMessageRequest(BaseModel):
    """Request body for POST /conversations/{wa_id}/messages."""

    text: str = Field(..., min_length=1, max_length=MAX_MESSAGE_LENGTH)


class AddContactRequest(BaseModel):
    """Request body for POST /contacts."""

    wa_id: str
    display_name: str | None = Field(None, max_length=100)
    profile_picture: str | None = None


class BlockContactRequest(BaseModel):
    """Request body for POST /contacts/{wa_id}/block."""

    reason: str | None = Field(None, max_length=200)


@router.get("/conversations")
async def list_conversations(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    services: Services = Depends(get_services),
) -> dict:
    """List active conversations, most recent message first."""
    summaries = await services.conversations.list_conversations(limit=limit, offset=offset)
    return {"conversations": [summary.to_dict() for summary in summaries]}


@router.get("/conversations/{wa_id}/messages")
async def get_messages(
    wa_id: str = Path(..., description="Conversation partner waId"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    kind: KindFilter | None = Query(None),
    status: StatusFilter | None = Query(None),
    services: Services = Depends(get_services),
) -> dict:
    """Messages of one conversation, oldest first."""
    try:
        messages = await services.conversations.get_messages(
            wa_id, limit=limit, offset=offset, kind=kind, status=status
        )
        unread = await services.conversations.count_unread(wa_id)
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    contact = await services.ledger.get(wa_id)
    return {
        "wa_id": wa_id,
        "contact": contact.to_dict() if contact else None,
        "unread_count": unread,
        "count": len(messages),
        "messages": [message.to_dict() for message in messages],
    }


@router.post("/conversations/{wa_id}/messages", status_code=201)
async def send_message(
    body: SendMessageRequest,
    wa_id: str = Path(..., description="Conversation partner waId"),
    services: Services = Depends(get_services),
) -> dict:
    """Store an outgoing text message as sent (local simulation, nothing is transmitted)."""
    try:
        result = await send_text_locally(
            services.store,
            services.ledger,
            wa_id=wa_id,
            text=body.text,
            business_number=services.settings.primary_business_number,
        )
    except (InvalidWaIdError, MessageValidationError) as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return {"message": result.message.to_dict()}


@router.post("/conversations/{wa_id}/read")
async def mark_read(
    wa_id: str = Path(..., description="Conversation partner waId"),
    services: Services = Depends(get_services),
) -> dict:
    """Reset the unread count and mark incoming messages read."""
    try:
        result = await services.conversations.mark_conversation_read(wa_id)
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if result.contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return {
        "wa_id": result.wa_id,
        "messages_marked": result.messages_marked,
        "unread_count": result.contact.unread_count,
    }


@router.post("/contacts", status_code=201)
async def add_contact(
    body: AddContactRequest,
    services: Services = Depends(get_services),
) -> dict:
    """Create a contact (or refresh its profile)."""
    try:
        contact = await services.conversations.add_contact(
            body.wa_id, body.display_name, body.profile_picture
        )
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return {"contact": contact.to_dict()}


@router.post("/contacts/{wa_id}/block")
async def block_contact(
    body: BlockContactRequest | None = None,
    wa_id: str = Path(..., description="Contact waId"),
    services: Services = Depends(get_services),
) -> dict:
    """Hide a contact from the inbox. Its messages are kept."""
    try:
        contact = await services.conversations.block_contact(wa_id, body.reason if body else None)
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"contact": contact.to_dict()}


@router.post("/contacts/{wa_id}/unblock")
async def unblock_contact(
    wa_id: str = Path(..., description="Contact waId"),
    services: Services = Depends(get_services),
) -> dict:
    try:
        contact = await services.conversations.unblock_contact(wa_id)
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    if contact is None:
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"contact": contact.to_dict()}


@router.get("/search/messages")
async def search_messages(
    q: str = Query(..., min_length=1, max_length=200),
    wa_id: str | None = Query(None),
    limit: int = Query(20, ge=1, le=200),
    services: Services = Depends(get_services),
) -> dict:
    """Messages whose text contains ``q`` (case-insensitive), newest first."""
    try:
        messages = await services.conversations.search_messages(q, wa_id=wa_id, limit=limit)
    except InvalidWaIdError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return {
        "query": q,
        "count": len(messages),
        "messages": [message.to_dict() for message in messages],
    }


@router.get("/search/contacts")
async def search_contacts(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(20, ge=1, le=200),
    services: Services = Depends(get_services),
) -> dict:
    """Active, unblocked contacts whose name or waId contains ``q``."""
    contacts = await services.conversations.search_contacts(q, limit=limit)
    return {
        "query": q,
        "count": len(contacts),
        "contacts": [contact.to_dict() for contact in contacts],
    }


@router.get("/stats")
async def get_stats(services: Services = Depends(get_services)) -> dict:
    stats = await services.conversations.get_stats()
    return stats.to_dict()
