"""Tests for EventBus."""

import logging
import threading

from core.event_bus import EventBus
from core.events import InvoiceCreated, InvoicePaid, PaymentRecorded


# =============================================================================
# SUBSCRIBE AND PUBLISH
# =============================================================================


class TestSubscribeAndPublish:

    def test_single_handler_receives_the_exact_event_object(self, draft_invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)

        event = InvoiceCreated.create(invoice=draft_invoice)
        bus.publish(event)

        assert len(received) == 1
        assert received[0] is event

    def test_subscribe_by_class(self, draft_invoice):
        bus = EventBus()
        received = []
        bus.subscribe(InvoicePaid, received.append)

        bus.publish(InvoicePaid.create(invoice=draft_invoice))

        assert len(received) == 1

    def test_handler_can_read_payload_fields(self, draft_invoice):
        bus = EventBus()
        numbers = []
        bus.subscribe("InvoiceCreated", lambda e: numbers.append(e.invoice.invoice_number))

        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

        assert numbers == [draft_invoice.invoice_number]

    def test_multiple_handlers_called_in_subscription_order(self, draft_invoice):
        bus = EventBus()
        order = []
        bus.subscribe("InvoiceCreated", lambda e: order.append("A"))
        bus.subscribe("InvoiceCreated", lambda e: order.append("B"))
        bus.subscribe("InvoiceCreated", lambda e: order.append("C"))

        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

        assert order == ["A", "B", "C"]

    def test_type_isolation_only_matching_subscribers_called(self, draft_invoice):
        bus = EventBus()
        created_calls = []
        paid_calls = []
        bus.subscribe("InvoiceCreated", created_calls.append)
        bus.subscribe("InvoicePaid", paid_calls.append)

        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

        assert len(created_calls) == 1
        assert paid_calls == []

    def test_no_subscribers_does_not_raise(self, draft_invoice):
        bus = EventBus()
        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

    def test_two_publishes_deliver_two_distinct_events(self, draft_invoice):
        bus = EventBus()
        received = []
        bus.subscribe("InvoiceCreated", received.append)

        event_1 = InvoiceCreated.create(invoice=draft_invoice)
        event_2 = InvoiceCreated.create(invoice=draft_invoice)
        bus.publish(event_1)
        bus.publish(event_2)

        assert len(received) == 2
        assert received[0] is event_1
        assert received[1] is event_2
        assert received[0].event_id != received[1].event_id

    def test_concurrent_publishers(self, draft_invoice):
        bus = EventBus()
        received = []
        lock = threading.Lock()

        def handler(event):
            with lock:
                received.append(event.event_id)

        bus.subscribe("InvoiceCreated", handler)

        threads = [
            threading.Thread(target=lambda: bus.publish(InvoiceCreated.create(invoice=draft_invoice)))
            for _ in range(10)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(set(received)) == 10


# =============================================================================
# HANDLER ERROR ISOLATION
# =============================================================================


class TestHandlerErrorIsolation:

    def test_handler_exception_does_not_propagate(self, draft_invoice):
        bus = EventBus()
        bus.subscribe("InvoiceCreated", lambda e: (_ for _ in ()).throw(RuntimeError("boom")))

        # Must not raise
        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

    def test_handler_exception_is_logged_with_event_type_and_event_id(self, draft_invoice, caplog):
        bus = EventBus()

        def failing_handler(event):
            raise ValueError("notification failed")

        bus.subscribe("InvoiceCreated", failing_handler)

        with caplog.at_level(logging.ERROR, logger="core.event_bus"):
            event = InvoiceCreated.create(invoice=draft_invoice)
            bus.publish(event)

        assert "notification failed" in caplog.text
        assert "InvoiceCreated" in caplog.text
        assert "failing_handler" in caplog.text
        assert event.event_id in caplog.text

    def test_second_handler_runs_after_first_handler_raises(self, draft_invoice):
        bus = EventBus()
        numbers = []

        def failing_handler(event):
            raise RuntimeError("fail")

        bus.subscribe("InvoiceCreated", failing_handler)
        bus.subscribe("InvoiceCreated", lambda e: numbers.append(e.invoice.invoice_number))

        bus.publish(InvoiceCreated.create(invoice=draft_invoice))

        assert numbers == [draft_invoice.invoice_number]

    def test_all_handlers_run_even_if_multiple_fail(self, draft_invoice):
        bus = EventBus()
        results = []

        bus.subscribe("PaymentRecorded", lambda e: (_ for _ in ()).throw(RuntimeError("fail 1")))
        bus.subscribe("PaymentRecorded", lambda e: results.append("survived_1"))
        bus.subscribe("PaymentRecorded", lambda e: (_ for _ in ()).throw(RuntimeError("fail 2")))
        bus.subscribe("PaymentRecorded", lambda e: results.append("survived_2"))

        bus.publish(PaymentRecorded.create(invoice=draft_invoice, payment=None))

        assert results == ["survived_1", "survived_2"]
