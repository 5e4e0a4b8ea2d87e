"""
In-memory data model for correlated protocol traffic.

A Transaction is the timeline of one protocol exchange (e.g. a checkout flow);
each CorrelatedMessage is one observed request, response or webhook.
Attributes are snake_case; observers receive camelCase via model aliases.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


# Messages share the transaction vocabulary.
MessageStatus = TransactionStatus


class MessageType(str, Enum):
    REQUEST = "request"
    RESPONSE = "response"
    WEBHOOK = "webhook"


class Action(str, Enum):
    DISCOVER = "discover"
    CREATE_CHECKOUT = "create_checkout"
    GET_CHECKOUT = "get_checkout"
    UPDATE_CHECKOUT = "update_checkout"
    COMPLETE_CHECKOUT = "complete_checkout"
    CANCEL_CHECKOUT = "cancel_checkout"
    CREATE_CART = "create_cart"
    ADD_TO_CART = "add_to_cart"
    GET_CART = "get_cart"
    GET_PRODUCTS = "get_products"
    GET_PRODUCT = "get_product"
    GET_CATEGORIES = "get_categories"
    GET_CATEGORY_PRODUCTS = "get_category_products"
    SEARCH_PRODUCTS = "search_products"
    GET_ORDER = "get_order"
    WEBHOOK = "webhook"

    @classmethod
    def parse(cls, value: Any) -> "Action":
        """Map a free-form action name onto the enumeration, defaulting to WEBHOOK."""
        try:
            return cls(value)
        except ValueError:
            return cls.WEBHOOK


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class ProtocolMessage(_CamelModel):
    """Protocol-level error/warning/info entry carried by a response."""

    type: str = "error"
    code: str
    path: Optional[str] = None
    content: str = ""
    severity: Optional[str] = None


class HTTPDetails(_CamelModel):
    method: Optional[str] = None
    url: Optional[str] = None
    status: Optional[int] = None
    status_text: Optional[str] = None
    headers: Optional[Dict[str, str]] = None


class CorrelatedMessage(_CamelModel):
    id: str
    transaction_id: str
    message_id: Optional[str] = None
    type: MessageType
    action: Action
    payload: Any = None
    parent_id: Optional[str] = None
    is_orphan: Optional[bool] = None
    timestamp: datetime
    duration: Optional[float] = None  # ms, parent requests only
    status: MessageStatus = MessageStatus.PENDING
    errors: Optional[List[ProtocolMessage]] = None
    http: Optional[HTTPDetails] = None


class Transaction(_CamelModel):
    id: str
    status: TransactionStatus = TransactionStatus.PENDING
    messages: List[CorrelatedMessage] = Field(default_factory=list)
    server_url: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "serverUrl": self.server_url,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "messageCount": len(self.messages),
        }
