"""
Transaction correlation store.

The single source of truth for transactions and their messages. All mutation
goes through the named operations below; each one runs under one lock,
commits to the in-memory model and then publishes the change on the event
channel before the lock is released, so observers never see a half-applied
mutation and receive changes in commit order.

Correlation rules (see services/matching.py):
- add_request   creates the transaction on demand
- add_response  never creates a transaction; unknown ids are dropped with a warning
- add_webhook   creates the transaction on demand and flags the message as orphan
"""
import copy
import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ucp_debugger.models import (
    Action,
    CorrelatedMessage,
    HTTPDetails,
    MessageStatus,
    MessageType,
    ProtocolMessage,
    Transaction,
    TransactionStatus,
)
from ucp_debugger.services.broadcast import EventChannel
from ucp_debugger.services.matching import (
    completion_status,
    elapsed_ms,
    find_parent,
    is_orphan_webhook,
    next_transaction_status,
)

logger = logging.getLogger(__name__)


ID_PREFIXES = {
    MessageType.REQUEST: "req",
    MessageType.RESPONSE: "res",
    MessageType.WEBHOOK: "wh",
}


def generate_local_id(message_type: MessageType) -> str:
    return f"{ID_PREFIXES[message_type]}_{uuid.uuid4().hex}"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionStore:
    def __init__(
        self,
        channel: Optional[EventChannel] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._transactions: Dict[str, Transaction] = {}
        self._channel = channel
        self._clock = clock
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_transaction(self, transaction_id: str, server_url: Optional[str] = None) -> None:
        with self._lock:
            if transaction_id in self._transactions:
                return
            self._create(transaction_id, server_url)

    def add_request(
        self,
        transaction_id: str,
        message_id: Optional[str],
        action: Action,
        payload: Any,
        http: Optional[HTTPDetails] = None,
        server_url: Optional[str] = None,
    ) -> str:
        local_id = generate_local_id(MessageType.REQUEST)
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                txn = self._create(transaction_id, server_url)

            message = CorrelatedMessage(
                id=local_id,
                transaction_id=transaction_id,
                message_id=message_id,
                type=MessageType.REQUEST,
                action=Action(action),
                payload=copy.deepcopy(payload),
                timestamp=self._clock(),
                status=MessageStatus.PENDING,
                http=http,
            )
            self._append(txn, message)
        return local_id

    def add_response(
        self,
        transaction_id: str,
        message_id: Optional[str],
        action: Action,
        payload: Any,
        parent_local_id: str,
        errors: Optional[List[ProtocolMessage]] = None,
        http: Optional[HTTPDetails] = None,
    ) -> Optional[str]:
        """
        Record a response and complete its parent request.

        Returns the new local id, or None when the transaction is unknown
        (the response is dropped and a warning logged; no transaction is
        fabricated for responses).
        """
        action = Action(action)
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                logger.warning(
                    "Transaction %s not found for response to %s (%s); dropping",
                    transaction_id, parent_local_id, action.value,
                )
                return None

            now = self._clock()
            status = completion_status(errors)

            parent = find_parent(txn.messages, parent_local_id)
            if parent is not None:
                parent.status = status
                parent.duration = elapsed_ms(parent.timestamp, now)
                self._publish("message.updated", txn, parent)
            else:
                logger.warning(
                    "Parent request %s not found in transaction %s",
                    parent_local_id, transaction_id,
                )

            local_id = generate_local_id(MessageType.RESPONSE)
            message = CorrelatedMessage(
                id=local_id,
                transaction_id=transaction_id,
                message_id=message_id,
                type=MessageType.RESPONSE,
                action=action,
                payload=copy.deepcopy(payload),
                parent_id=parent_local_id,
                timestamp=now,
                status=status,
                errors=list(errors) if errors is not None else None,
                http=http,
            )
            self._append(txn, message)

            new_status = next_transaction_status(txn.status, action, errors)
            if new_status != txn.status:
                txn.status = new_status
                self._publish("transaction.updated", txn)
        return local_id

    def add_webhook(
        self,
        transaction_id: str,
        message_id: Optional[str],
        action: Action,
        payload: Any,
    ) -> str:
        local_id = generate_local_id(MessageType.WEBHOOK)
        with self._lock:
            txn = self._transactions.get(transaction_id)
            orphan = is_orphan_webhook(txn is not None)
            if txn is None:
                txn = self._create(transaction_id)

            message = CorrelatedMessage(
                id=local_id,
                transaction_id=transaction_id,
                message_id=message_id,
                type=MessageType.WEBHOOK,
                action=Action(action),
                payload=copy.deepcopy(payload),
                timestamp=self._clock(),
                status=MessageStatus.COMPLETED,
                is_orphan=True if orphan else None,
            )
            if orphan:
                logger.info("Orphan webhook %s created transaction %s", local_id, transaction_id)
            self._append(txn, message)
        return local_id

    def update_status(self, transaction_id: str, status: TransactionStatus) -> bool:
        """Operator override of transaction status. Returns False for unknown ids."""
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return False
            txn.status = TransactionStatus(status)
            txn.updated_at = self._clock()
            self._publish("transaction.updated", txn)
        return True

    def clear(self) -> None:
        with self._lock:
            self._transactions = {}
            if self._channel is not None:
                self._channel.publish({"type": "store.cleared"})

    # ------------------------------------------------------------------
    # Reads: deep copies only
    # ------------------------------------------------------------------
    def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            return txn.model_copy(deep=True) if txn is not None else None

    def list_transactions(self) -> List[Transaction]:
        """All transactions, newest first."""
        with self._lock:
            txns = [t.model_copy(deep=True) for t in self._transactions.values()]
        txns.sort(key=lambda t: t.created_at, reverse=True)
        return txns

    def get_messages(
        self,
        transaction_id: str,
        action: Optional[Action] = None,
    ) -> Optional[List[CorrelatedMessage]]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return None
            return [
                m.model_copy(deep=True)
                for m in txn.messages
                if action is None or m.action == action
            ]

    def get_message(self, transaction_id: str, local_id: str) -> Optional[CorrelatedMessage]:
        with self._lock:
            txn = self._transactions.get(transaction_id)
            if txn is None:
                return None
            message = find_parent(txn.messages, local_id)
            return message.model_copy(deep=True) if message is not None else None

    def get_orphans(self) -> List[CorrelatedMessage]:
        with self._lock:
            return [
                m.model_copy(deep=True)
                for txn in self._transactions.values()
                for m in txn.messages
                if m.is_orphan
            ]

    def orphan_count(self) -> int:
        with self._lock:
            return sum(
                1
                for txn in self._transactions.values()
                for m in txn.messages
                if m.is_orphan
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._transactions)

    def __contains__(self, transaction_id: str) -> bool:
        with self._lock:
            return transaction_id in self._transactions

    # ------------------------------------------------------------------
    # Internals (caller holds the lock)
    # ------------------------------------------------------------------
    def _create(self, transaction_id: str, server_url: Optional[str] = None) -> Transaction:
        now = self._clock()
        txn = Transaction(
            id=transaction_id,
            status=TransactionStatus.PENDING,
            server_url=server_url,
            created_at=now,
            updated_at=now,
        )
        self._transactions[transaction_id] = txn
        self._publish("transaction.created", txn)
        return txn

    def _append(self, txn: Transaction, message: CorrelatedMessage) -> None:
        txn.messages.append(message)
        txn.updated_at = message.timestamp
        self._publish("message.added", txn, message)

    def _publish(
        self,
        event_type: str,
        txn: Transaction,
        message: Optional[CorrelatedMessage] = None,
    ) -> None:
        if self._channel is None:
            return
        event: Dict[str, Any] = {"type": event_type, "transactionId": txn.id}
        if message is not None:
            event["message"] = message.model_dump(mode="json", by_alias=True)
        event["transaction"] = txn.summary()
        self._channel.publish(event)
