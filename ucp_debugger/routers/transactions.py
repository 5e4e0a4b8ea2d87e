from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ucp_debugger.dependencies import get_store
from ucp_debugger.models import Action, Transaction
from ucp_debugger.schemas.responses import (
    MessageList,
    OrphanReport,
    StatusUpdate,
    TransactionList,
)
from ucp_debugger.services.correlation import TransactionStore

router = APIRouter()


@router.get("", response_model=TransactionList)
def list_transactions(store: TransactionStore = Depends(get_store)):
    """All known transactions, newest first."""
    transactions = store.list_transactions()
    return TransactionList(total=len(transactions), transactions=transactions)


@router.get("/orphans", response_model=OrphanReport)
def list_orphans(store: TransactionStore = Depends(get_store)):
    """
    Webhook messages that arrived for a transaction no request had claimed.
    """
    orphans = store.get_orphans()
    return OrphanReport(orphans_found=len(orphans), orphans=orphans)


@router.get("/{transaction_id}", response_model=Transaction)
def get_transaction(transaction_id: str, store: TransactionStore = Depends(get_store)):
    txn = store.get_transaction(transaction_id)
    if txn is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return txn


@router.get("/{transaction_id}/messages", response_model=MessageList)
def get_messages(
    transaction_id: str,
    action: Optional[Action] = None,
    store: TransactionStore = Depends(get_store),
):
    """Timeline of one transaction, optionally filtered to a single lifecycle action."""
    messages = store.get_messages(transaction_id, action)
    if messages is None:
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return MessageList(
        transaction_id=transaction_id,
        action=action.value if action else None,
        messages=messages,
    )


@router.patch("/{transaction_id}/status", response_model=Transaction)
def update_status(
    transaction_id: str,
    update: StatusUpdate,
    store: TransactionStore = Depends(get_store),
):
    if not store.update_status(transaction_id, update.status):
        raise HTTPException(status_code=404, detail=f"Transaction {transaction_id} not found")
    return store.get_transaction(transaction_id)


@router.delete("", status_code=204)
def clear_transactions(store: TransactionStore = Depends(get_store)):
    store.clear()
