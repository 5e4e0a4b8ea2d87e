import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from ucp_debugger.dependencies import get_ingestor
from ucp_debugger.schemas.responses import AckResponse, WebhookHealth
from ucp_debugger.services.webhook import IngestResult, WebhookIngestor, nack

logger = logging.getLogger(__name__)

router = APIRouter()


def _ack_response(result: IngestResult) -> JSONResponse:
    body = AckResponse(
        message={"ack": {"status": result.status}},
        error=result.error,
    )
    return JSONResponse(
        status_code=200 if result.ack else 500,
        content=body.model_dump(exclude_none=True),
    )


@router.post("/{path:path}", response_model=AckResponse)
async def receive_webhook(
    path: str,
    request: Request,
    ingestor: WebhookIngestor = Depends(get_ingestor),
):
    """
    Accept one inbound UCP callback.

    - Any content type: JSON bodies are decoded, everything else is kept as text
    - Correlated by transaction_id (nested `context` object or top level)
    - Always answers ACK (200) unless ingestion hits an internal fault (NACK, 500)
    """
    try:
        body = await request.body()
    except Exception as e:
        logger.exception("Could not read webhook body for /%s", path)
        return _ack_response(nack(e))

    result = ingestor.ingest(path, body, dict(request.headers))
    return _ack_response(result)


@router.get("/{path:path}", response_model=WebhookHealth)
def webhook_health(path: str):
    return WebhookHealth(
        status="ok",
        path=path,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
