"""WhatsApp webhook intake.

The payload is processed inline and the BatchResult summary returned.
Item-level failures are reported in the summary with a 200; only a
malformed payload is rejected.

Logs contain NO phone numbers or message text.
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response

from wainbox.observability.correlation import get_correlation_id
from wainbox.observability.logging import get_logger
from wainbox.observability.redaction import safe_log_context
from wainbox.whatsapp.meta_adapter import MalformedPayloadError

from ..dependencies import Services, get_services

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

logger = get_logger(__name__)


@router.post("/whatsapp")
async def whatsapp_webhook(
    request: Request,
    services: Services = Depends(get_services),
) -> Response:
    """Receive one WhatsApp Business webhook payload.

    Returns:
        200 with the processing summary.
        400 if the body is not JSON or the payload shape is invalid.
    """
    correlation_id = get_correlation_id()

    try:
        payload: Any = await request.json()
    except ValueError:
        logger.warning(
            "invalid json body",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id)},
        )
        return Response(status_code=400, content="invalid json")

    try:
        result = await services.ingestor.process_payload(payload)
    except MalformedPayloadError as e:
        logger.warning(
            "invalid whatsapp payload shape",
            extra={"extra_fields": safe_log_context(correlationId=correlation_id, error=str(e))},
        )
        return Response(status_code=400, content="invalid payload shape")

    return JSONResponse(status_code=200, content=result.to_dict())
