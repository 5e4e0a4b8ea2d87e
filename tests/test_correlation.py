"""
Unit tests for ucp_debugger/services/correlation.py.

Covers: request/response matching by local id, latency, status transitions,
orphan webhooks, correlation misses, read-only views, and the events the
store publishes for every committed mutation.
"""
import logging

import pytest

from ucp_debugger.models import (
    Action,
    MessageStatus,
    MessageType,
    ProtocolMessage,
    TransactionStatus,
)
from ucp_debugger.services.broadcast import Observer
from ucp_debugger.services.correlation import TransactionStore
from tests.conftest import parse_frame, run

ERROR = ProtocolMessage(type="error", code="out_of_stock", content="Item unavailable")


# ---------------------------------------------------------------------------
# add_transaction / add_request
# ---------------------------------------------------------------------------
class TestTransactionsAndRequests:
    def test_add_transaction_creates_pending_empty_transaction(self, store, clock):
        store.add_transaction("txn_1", server_url="http://shop.local")
        txn = store.get_transaction("txn_1")
        assert txn.status == TransactionStatus.PENDING
        assert txn.messages == []
        assert txn.server_url == "http://shop.local"
        assert txn.created_at == clock.now

    def test_add_transaction_is_noop_when_it_exists(self, store, clock):
        store.add_transaction("txn_1", server_url="http://a.local")
        store.add_request("txn_1", "m1", Action.CREATE_CHECKOUT, {})
        clock.advance(50)
        store.add_transaction("txn_1", server_url="http://b.local")

        txn = store.get_transaction("txn_1")
        assert txn.server_url == "http://a.local"
        assert len(txn.messages) == 1

    def test_add_request_creates_transaction_on_demand(self, store):
        local_id = store.add_request("txn_new", "m1", Action.DISCOVER, {"q": 1})
        txn = store.get_transaction("txn_new")
        assert txn is not None
        assert txn.messages[0].id == local_id
        assert txn.messages[0].type == MessageType.REQUEST
        assert txn.messages[0].status == MessageStatus.PENDING
        assert txn.messages[0].duration is None

    def test_local_ids_are_unique_and_kind_prefixed(self, store):
        ids = {store.add_request("txn_1", "m", Action.GET_CART, {}) for _ in range(50)}
        assert len(ids) == 50
        assert all(i.startswith("req_") for i in ids)
        assert store.add_webhook("txn_1", "w", Action.WEBHOOK, {}).startswith("wh_")

    def test_messages_keep_arrival_order(self, store):
        first = store.add_request("txn_1", "m1", Action.CREATE_CHECKOUT, {})
        hook = store.add_webhook("txn_1", "w1", Action.GET_ORDER, {})
        second = store.add_request("txn_1", "m2", Action.GET_CHECKOUT, {})
        ids = [m.id for m in store.get_transaction("txn_1").messages]
        assert ids == [first, hook, second]

    def test_unanswered_request_stays_pending(self, store, clock):
        store.add_request("txn_1", "m1", Action.GET_CHECKOUT, {})
        clock.advance(10 * 60 * 1000)
        message = store.get_transaction("txn_1").messages[0]
        assert message.status == MessageStatus.PENDING
        assert message.duration is None


# ---------------------------------------------------------------------------
# add_response
# ---------------------------------------------------------------------------
class TestResponses:
    def test_scenario_request_then_response_after_120ms(self, store, clock):
        store.add_transaction("txn_1")
        req_id = store.add_request("txn_1", "m1", "create_checkout", {"line_items": []})
        clock.advance(120)
        res_id = store.add_response("txn_1", "m1", "create_checkout", {"ok": True}, req_id)

        request = store.get_message("txn_1", req_id)
        assert request.status == MessageStatus.COMPLETED
        assert request.duration == pytest.approx(120)

        response = store.get_message("txn_1", res_id)
        assert response.type == MessageType.RESPONSE
        assert response.parent_id == req_id
        assert response.status == MessageStatus.COMPLETED
        assert response.duration is None

    def test_errors_fail_both_parent_and_response(self, store, clock):
        req_id = store.add_request("txn_1", "m1", Action.UPDATE_CHECKOUT, {})
        clock.advance(40)
        res_id = store.add_response("txn_1", "m1", Action.UPDATE_CHECKOUT, {}, req_id, errors=[ERROR])

        assert store.get_message("txn_1", req_id).status == MessageStatus.FAILED
        response = store.get_message("txn_1", res_id)
        assert response.status == MessageStatus.FAILED
        assert response.errors[0].code == "out_of_stock"

    def test_empty_error_list_counts_as_success(self, store):
        req_id = store.add_request("txn_1", "m1", Action.COMPLETE_CHECKOUT, {})
        store.add_response("txn_1", "m1", Action.COMPLETE_CHECKOUT, {}, req_id, errors=[])
        assert store.get_message("txn_1", req_id).status == MessageStatus.COMPLETED
        assert store.get_transaction("txn_1").status == TransactionStatus.COMPLETED

    def test_only_the_named_request_completes(self, store, clock):
        first = store.add_request("txn_1", "m1", Action.GET_CHECKOUT, {})
        second = store.add_request("txn_1", "m1", Action.GET_CHECKOUT, {})
        clock.advance(30)
        store.add_response("txn_1", "m1", Action.GET_CHECKOUT, {}, second)

        assert store.get_message("txn_1", first).status == MessageStatus.PENDING
        assert store.get_message("txn_1", second).status == MessageStatus.COMPLETED

    def test_scenario_unknown_transaction_is_dropped_with_warning(self, store, channel, caplog):
        with caplog.at_level(logging.WARNING, logger="ucp_debugger.services.correlation"):
            result = store.add_response("txn_missing", "m9", "get_checkout", {}, "req_x")

        assert result is None
        assert "txn_missing" not in store
        assert len(store) == 0
        assert any("txn_missing" in r.getMessage() for r in caplog.records)

    def test_unknown_parent_still_appends_response(self, store, caplog):
        store.add_transaction("txn_1")
        with caplog.at_level(logging.WARNING, logger="ucp_debugger.services.correlation"):
            res_id = store.add_response("txn_1", "m1", Action.GET_CART, {}, "req_ghost")
        assert store.get_message("txn_1", res_id).parent_id == "req_ghost"
        assert any("req_ghost" in r.getMessage() for r in caplog.records)

    def test_webhook_is_never_a_parent(self, store, clock, caplog):
        wh_id = store.add_webhook("txn_p", "w1", Action.GET_ORDER, {"status": "shipped"})
        clock.advance(50)
        with caplog.at_level(logging.WARNING, logger="ucp_debugger.services.correlation"):
            store.add_response("txn_p", "m1", Action.GET_ORDER, {}, wh_id)

        webhook = store.get_message("txn_p", wh_id)
        assert webhook.duration is None
        assert webhook.status == MessageStatus.COMPLETED
        assert any(wh_id in r.getMessage() for r in caplog.records)

    def test_response_is_never_a_parent(self, store, clock):
        req_id = store.add_request("txn_1", "m1", Action.GET_CART, {})
        clock.advance(20)
        first = store.add_response("txn_1", "m1", Action.GET_CART, {}, req_id)
        clock.advance(30)
        store.add_response("txn_1", "m2", Action.GET_CART, {}, first, errors=[ERROR])

        response = store.get_message("txn_1", first)
        assert response.duration is None
        assert response.status == MessageStatus.COMPLETED
        assert store.get_message("txn_1", req_id).duration == 20


# ---------------------------------------------------------------------------
# Transaction status transitions
# ---------------------------------------------------------------------------
class TestTransactionStatus:
    def _respond(self, store, action, errors=None):
        req_id = store.add_request("txn_1", "m1", action, {})
        store.add_response("txn_1", "m1", action, {}, req_id, errors=errors)
        return store.get_transaction("txn_1").status

    def test_complete_checkout_completes_transaction(self, store):
        assert self._respond(store, Action.COMPLETE_CHECKOUT) == TransactionStatus.COMPLETED

    def test_complete_checkout_with_errors_leaves_pending(self, store):
        assert self._respond(store, Action.COMPLETE_CHECKOUT, [ERROR]) == TransactionStatus.PENDING

    def test_cancel_checkout_fails_transaction(self, store):
        assert self._respond(store, Action.CANCEL_CHECKOUT) == TransactionStatus.FAILED

    def test_other_failed_actions_leave_status_unchanged(self, store):
        assert self._respond(store, Action.UPDATE_CHECKOUT, [ERROR]) == TransactionStatus.PENDING

    def test_update_status_override(self, store, clock):
        store.add_transaction("txn_1")
        clock.advance(5)
        assert store.update_status("txn_1", TransactionStatus.FAILED) is True
        txn = store.get_transaction("txn_1")
        assert txn.status == TransactionStatus.FAILED
        assert txn.updated_at == clock.now

    def test_update_status_unknown_transaction(self, store):
        assert store.update_status("nope", TransactionStatus.FAILED) is False
        assert len(store) == 0


# ---------------------------------------------------------------------------
# Webhooks & orphans
# ---------------------------------------------------------------------------
class TestWebhooks:
    def test_scenario_orphan_webhook_creates_transaction(self, store):
        store.add_webhook("txn_2", "w1", "get_order", {"status": "shipped"})
        txn = store.get_transaction("txn_2")
        assert len(txn.messages) == 1
        message = txn.messages[0]
        assert message.is_orphan is True
        assert message.status == MessageStatus.COMPLETED
        assert message.type == MessageType.WEBHOOK

    def test_second_webhook_for_same_transaction_is_not_orphan(self, store):
        store.add_webhook("txn_2", "w1", Action.GET_ORDER, {})
        second = store.add_webhook("txn_2", "w2", Action.GET_ORDER, {})
        assert len(store) == 1
        assert not store.get_message("txn_2", second).is_orphan

    def test_webhook_for_known_transaction_is_not_orphan(self, store):
        store.add_request("txn_1", "m1", Action.CREATE_CHECKOUT, {})
        wh_id = store.add_webhook("txn_1", "w1", Action.WEBHOOK, {})
        assert store.get_message("txn_1", wh_id).is_orphan is None
        assert store.get_orphans() == []

    def test_get_orphans_spans_all_transactions(self, store):
        expected = {
            store.add_webhook(f"txn_{i}", f"w{i}", Action.WEBHOOK, {}) for i in range(5)
        }
        store.add_webhook("txn_0", "again", Action.WEBHOOK, {})
        store.add_request("txn_9", "m", Action.DISCOVER, {})
        store.add_webhook("txn_9", "w9", Action.WEBHOOK, {})

        orphans = store.get_orphans()
        assert {m.id for m in orphans} == expected
        assert store.orphan_count() == 5


# ---------------------------------------------------------------------------
# Read-only views, listing, clear
# ---------------------------------------------------------------------------
class TestReads:
    def test_returned_transaction_is_a_copy(self, store):
        req_id = store.add_request("txn_1", "m1", Action.DISCOVER, {"a": 1})
        view = store.get_transaction("txn_1")
        view.messages[0].status = MessageStatus.FAILED
        view.messages.clear()

        assert store.get_message("txn_1", req_id).status == MessageStatus.PENDING

    def test_payload_is_stored_as_received(self, store):
        payload = {"items": [1, 2]}
        req_id = store.add_request("txn_1", "m1", Action.ADD_TO_CART, payload)
        payload["items"].append(3)
        assert store.get_message("txn_1", req_id).payload == {"items": [1, 2]}

    def test_raw_text_payload_kept_verbatim(self, store):
        wh_id = store.add_webhook("txn_1", None, Action.WEBHOOK, "plain text body")
        assert store.get_message("txn_1", wh_id).payload == "plain text body"

    def test_list_transactions_newest_first(self, store, clock):
        for txn_id in ("txn_a", "txn_b", "txn_c"):
            store.add_transaction(txn_id)
            clock.advance(10)
        assert [t.id for t in store.list_transactions()] == ["txn_c", "txn_b", "txn_a"]

    def test_get_messages_filters_by_action(self, store):
        store.add_request("txn_1", "m1", Action.CREATE_CHECKOUT, {})
        store.add_request("txn_1", "m2", Action.GET_CHECKOUT, {})
        store.add_webhook("txn_1", "w1", Action.GET_ORDER, {})

        assert len(store.get_messages("txn_1")) == 3
        filtered = store.get_messages("txn_1", Action.GET_CHECKOUT)
        assert [m.message_id for m in filtered] == ["m2"]
        assert store.get_messages("nope") is None

    def test_clear_drops_everything(self, store):
        store.add_request("txn_1", "m1", Action.DISCOVER, {})
        store.add_webhook("txn_2", "w1", Action.WEBHOOK, {})
        store.clear()
        assert len(store) == 0
        assert store.get_transaction("txn_1") is None
        assert store.get_orphans() == []

    def test_store_works_without_a_channel(self, clock):
        store = TransactionStore(clock=clock)
        req_id = store.add_request("txn_1", "m1", Action.DISCOVER, {})
        assert store.add_response("txn_1", "m1", Action.DISCOVER, {}, req_id) is not None


# ---------------------------------------------------------------------------
# Published events
# ---------------------------------------------------------------------------
class TestPublishedEvents:
    def test_every_mutation_is_published_in_commit_order(self, store, channel, clock):
        async def scenario():
            observer = channel.attach(Observer())
            req_id = store.add_request("txn_1", "m1", Action.COMPLETE_CHECKOUT, {})
            clock.advance(75)
            store.add_response("txn_1", "m1", Action.COMPLETE_CHECKOUT, {"id": "chk"}, req_id)
            return req_id, [parse_frame(f) for f in observer.drain()]

        req_id, events = run(scenario())
        assert [e["type"] for e in events] == [
            "transaction.created",
            "message.added",
            "message.updated",
            "message.added",
            "transaction.updated",
        ]
        updated = events[2]["message"]
        assert updated["id"] == req_id
        assert updated["status"] == "completed"
        assert updated["duration"] == pytest.approx(75)
        assert events[3]["message"]["parentId"] == req_id
        assert events[4]["transaction"]["status"] == "completed"

    def test_dropped_response_publishes_nothing(self, store, channel):
        async def scenario():
            observer = channel.attach(Observer())
            store.add_response("txn_missing", "m9", Action.GET_CHECKOUT, {}, "req_x")
            return observer.drain()

        assert run(scenario()) == []

    def test_orphan_event_carries_flag(self, store, channel):
        async def scenario():
            observer = channel.attach(Observer())
            store.add_webhook("txn_2", "w1", Action.GET_ORDER, {"status": "shipped"})
            return [parse_frame(f) for f in observer.drain()]

        events = run(scenario())
        added = [e for e in events if e["type"] == "message.added"][0]
        assert added["message"]["isOrphan"] is True
        assert added["transactionId"] == "txn_2"

    def test_clear_is_published(self, store, channel):
        async def scenario():
            observer = channel.attach(Observer())
            store.clear()
            return [parse_frame(f) for f in observer.drain()]

        assert run(scenario()) == [{"type": "store.cleared"}]
