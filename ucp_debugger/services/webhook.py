"""
Webhook ingestion.

Turns one inbound delivery into a store append plus a live broadcast:

1. Decode the body by content type (JSON → tree, anything else → raw text;
   JSON that fails to parse also falls back to raw text)
2. Extract correlation context by trying each shape matcher in order:
     nested  {"context": {"transaction_id", "message_id", "action"}}
     flat    {"transaction_id", "message_id", "action"}
3. Append via TransactionStore.add_webhook (uncorrelated deliveries go to a
   reserved bucket transaction)
4. Publish the decorated delivery to every observer
5. ACK, or NACK with a diagnostic when something unexpected blows up
"""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from ucp_debugger.models import Action
from ucp_debugger.services.broadcast import EventChannel
from ucp_debugger.services.correlation import TransactionStore

logger = logging.getLogger(__name__)


ACK = "ACK"
NACK = "NACK"

CONTEXT_FIELDS = ("transaction_id", "message_id", "action")


class WebhookContext:
    def __init__(
        self,
        source: str,
        transaction_id: Optional[str] = None,
        message_id: Optional[str] = None,
        action: Optional[str] = None,
    ):
        self.source = source
        self.transaction_id = transaction_id
        self.message_id = message_id
        self.action = action

    @property
    def correlated(self) -> bool:
        return bool(self.transaction_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "transaction_id": self.transaction_id,
            "message_id": self.message_id,
            "action": self.action,
        }


class IngestResult:
    def __init__(
        self,
        status: str,
        local_id: Optional[str] = None,
        transaction_id: Optional[str] = None,
        error: Optional[Dict[str, Any]] = None,
    ):
        self.status = status
        self.local_id = local_id
        self.transaction_id = transaction_id
        self.error = error

    @property
    def ack(self) -> bool:
        return self.status == ACK


def nack(exc: Exception) -> IngestResult:
    return IngestResult(
        status=NACK,
        error={
            "type": "INTERNAL-ERROR",
            "code": 500,
            "message": str(exc) or exc.__class__.__name__,
        },
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------
def is_json_content(content_type: Optional[str]) -> bool:
    if not content_type:
        return False
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def decode_body(body: bytes, content_type: Optional[str]) -> Any:
    """
    JSON when declared and parseable, otherwise the body as text.

    Text is kept verbatim for UTF-8 bodies. Bytes that are not valid UTF-8 are
    replaced with U+FFFD (so the payload stays JSON-serializable for
    observers) and a warning is logged.
    """
    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError as e:
        logger.warning("Webhook body is not valid UTF-8 (%s); invalid bytes replaced", e.reason)
        text = body.decode("utf-8", errors="replace")
    if not is_json_content(content_type):
        return text
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Declared JSON body failed to parse; keeping raw text")
        return text


# ---------------------------------------------------------------------------
# Context extraction
# ---------------------------------------------------------------------------
def _as_id(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list, bool)):
        return None
    value = str(value).strip()
    return value or None


def _read_fields(source: str, obj: Dict[str, Any]) -> WebhookContext:
    action = obj.get("action")
    return WebhookContext(
        source=source,
        transaction_id=_as_id(obj.get("transaction_id")),
        message_id=_as_id(obj.get("message_id")),
        action=action if isinstance(action, str) else None,
    )


def _match_nested_context(payload: Dict[str, Any]) -> Optional[WebhookContext]:
    context = payload.get("context")
    if not isinstance(context, dict):
        return None
    return _read_fields("context", context)


def _match_top_level(payload: Dict[str, Any]) -> Optional[WebhookContext]:
    if not any(field in payload for field in CONTEXT_FIELDS):
        return None
    return _read_fields("top_level", payload)


CONTEXT_MATCHERS: Tuple[Callable[[Dict[str, Any]], Optional[WebhookContext]], ...] = (
    _match_nested_context,
    _match_top_level,
)


def extract_context(payload: Any) -> Optional[WebhookContext]:
    """
    Try each shape matcher in order.

    Returns the first context carrying a transaction_id; failing that the
    first partial match (so message_id/action still show up); None when the
    payload is not an object or no shape matched at all.
    """
    if not isinstance(payload, dict):
        return None
    partial = None
    for matcher in CONTEXT_MATCHERS:
        context = matcher(payload)
        if context is None:
            continue
        if context.correlated:
            return context
        if partial is None:
            partial = context
    return partial


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------
class WebhookIngestor:
    """
    Turns raw webhook deliveries into stored messages plus a broadcast.

    Deliveries without a transaction_id are filed under the
    `uncorrelated_transaction_id` bucket. Only the delivery that creates the
    bucket is flagged orphan, so later context-less deliveries do not appear
    in the orphan report: inspect the bucket transaction to see all of them.
    """

    def __init__(
        self,
        store: TransactionStore,
        channel: EventChannel,
        uncorrelated_transaction_id: str = "uncorrelated",
    ):
        self.store = store
        self.channel = channel
        self.uncorrelated_transaction_id = uncorrelated_transaction_id

    def ingest(
        self,
        path: str,
        body: bytes,
        headers: Optional[Dict[str, str]] = None,
    ) -> IngestResult:
        headers = dict(headers or {})
        try:
            content_type = next(
                (v for k, v in headers.items() if k.lower() == "content-type"), None
            )
            payload = decode_body(body, content_type)
            context = extract_context(payload)

            logger.info(
                "Webhook received path=%s transaction_id=%s message_id=%s",
                path,
                context.transaction_id if context else None,
                context.message_id if context else None,
            )

            if context is not None and context.correlated:
                transaction_id = context.transaction_id
            else:
                transaction_id = self.uncorrelated_transaction_id
                logger.warning("Webhook on /%s carries no transaction_id; filed under %s",
                               path, transaction_id)

            local_id = self.store.add_webhook(
                transaction_id,
                context.message_id if context else None,
                Action.parse(context.action if context else None),
                payload,
            )

            self.channel.publish({
                "type": "webhook",
                "path": path,
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "headers": headers,
                "payload": payload,
                "context": context.to_dict() if context else None,
                "transactionId": transaction_id,
                "localId": local_id,
            })
        except Exception as e:
            logger.exception("Webhook ingestion failed for /%s", path)
            return nack(e)

        return IngestResult(status=ACK, local_id=local_id, transaction_id=transaction_id)
