"""
Matching and orphan-detection rules.

Pure decision logic used by the correlation store:
- responses complete their parent request by LOCAL id, never by protocol message_id
- webhooks attach to a transaction solely by the protocol transaction_id
- a webhook that had to create its transaction is an orphan
"""
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from ucp_debugger.models import (
    Action,
    CorrelatedMessage,
    MessageStatus,
    MessageType,
    ProtocolMessage,
    TransactionStatus,
)


def find_parent(
    messages: Iterable[CorrelatedMessage],
    parent_local_id: Optional[str],
) -> Optional[CorrelatedMessage]:
    """Only a request can be a parent; webhooks and responses never match."""
    if not parent_local_id:
        return None
    for message in messages:
        if message.id == parent_local_id and message.type == MessageType.REQUEST:
            return message
    return None


def completion_status(errors: Optional[List[ProtocolMessage]]) -> MessageStatus:
    return MessageStatus.FAILED if errors else MessageStatus.COMPLETED


def next_transaction_status(
    current: TransactionStatus,
    action: Action,
    errors: Optional[List[ProtocolMessage]],
) -> TransactionStatus:
    """
    Transaction-level status transition after a response.

    complete_checkout without errors → completed
    cancel_checkout                  → failed
    anything else                    → unchanged
    """
    if action == Action.COMPLETE_CHECKOUT and not errors:
        return TransactionStatus.COMPLETED
    if action == Action.CANCEL_CHECKOUT:
        return TransactionStatus.FAILED
    return current


def is_orphan_webhook(transaction_exists: bool) -> bool:
    return not transaction_exists


def elapsed_ms(start: datetime, end: datetime) -> float:
    return (end - start) / timedelta(milliseconds=1)
