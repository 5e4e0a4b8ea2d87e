from pydantic import BaseModel
from typing import Any, Optional, List

from ucp_debugger.models import CorrelatedMessage, ProtocolMessage, Transaction, TransactionStatus


class AckStatus(BaseModel):
    status: str


class AckBody(BaseModel):
    ack: AckStatus


class AckError(BaseModel):
    type: str
    code: int
    message: str


class AckResponse(BaseModel):
    message: AckBody
    error: Optional[AckError] = None


class WebhookHealth(BaseModel):
    status: str
    path: str
    timestamp: str


class TransactionList(BaseModel):
    total: int
    transactions: List[Transaction]


class MessageList(BaseModel):
    transaction_id: str
    action: Optional[str] = None
    messages: List[CorrelatedMessage]


class OrphanReport(BaseModel):
    orphans_found: int
    orphans: List[CorrelatedMessage]


class StatusUpdate(BaseModel):
    status: TransactionStatus


class ServiceStatus(BaseModel):
    transactions: int
    orphans: int
    observers: int


class UCPCallResponse(BaseModel):
    transaction_id: str
    request_id: str
    response_id: Optional[str] = None
    status_code: Optional[int] = None
    ok: bool
    data: Any = None
    errors: List[ProtocolMessage] = []
