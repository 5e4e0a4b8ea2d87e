"""
Sends a burst of sample UCP webhooks to a running debugger.

Mix:
- nested-context deliveries (UCP/Beckn style {"context": {...}, "message": {...}})
- flat deliveries (transaction_id / message_id / action at top level)
- repeated deliveries for the same transaction (only the first is an orphan)
- a plain-text delivery and a JSON delivery with no transaction_id
  (both filed under the uncorrelated bucket)

Usage:
    python scripts/send_test_webhooks.py [debugger_url]
"""
import random
import sys
import uuid

import httpx

random.seed(42)

DEFAULT_URL = "http://localhost:8000"

ACTIONS = ["get_order", "get_checkout", "update_checkout", "complete_checkout"]
ORDER_STATES = ["created", "paid", "shipped", "delivered", "canceled"]


def txn_id():
    return f"txn_{uuid.uuid4().hex[:8]}"


def nested_delivery(transaction_id, action, status):
    return {
        "context": {
            "transaction_id": transaction_id,
            "message_id": str(uuid.uuid4()),
            "action": action,
        },
        "message": {"order": {"id": f"ord_{uuid.uuid4().hex[:6]}", "status": status}},
    }


def flat_delivery(transaction_id, action, status):
    return {
        "transaction_id": transaction_id,
        "message_id": str(uuid.uuid4()),
        "action": action,
        "status": status,
    }


def generate_deliveries():
    deliveries = []

    # --- 1. Regular deliveries, 1-3 per transaction ---
    for i in range(10):
        transaction_id = txn_id()
        shape = random.choice([nested_delivery, flat_delivery])
        for j in range(random.choice([1, 2, 3])):
            deliveries.append((
                "orders",
                "application/json",
                shape(transaction_id, random.choice(ACTIONS), random.choice(ORDER_STATES)),
            ))

    # --- 2. Edge cases ---
    deliveries.append(("orders", "text/plain", "order ord_123 shipped"))
    deliveries.append(("orders", "application/json", {"event": "ping"}))
    deliveries.append(("orders", "application/json", "{not valid json"))

    return deliveries


def main():
    base_url = sys.argv[1] if len(sys.argv) > 1 else DEFAULT_URL
    deliveries = generate_deliveries()
    print(f"Sending {len(deliveries)} webhooks to {base_url}...")

    acks = 0
    with httpx.Client(base_url=base_url, timeout=10) as client:
        for path, content_type, body in deliveries:
            content = body if isinstance(body, str) else None
            resp = client.post(
                f"/api/webhook/{path}",
                content=content,
                json=None if content is not None else body,
                headers={"Content-Type": content_type},
            )
            status = resp.json()["message"]["ack"]["status"]
            if status == "ACK":
                acks += 1
            else:
                print(f"  NACK: {resp.json().get('error')}")

        summary = client.get("/api/status").json()

    print(f"\nACK: {acks}/{len(deliveries)}")
    print(f"Transactions: {summary['transactions']}")
    print(f"Orphans: {summary['orphans']}")
    print(f"Observers: {summary['observers']}")


if __name__ == "__main__":
    main()
