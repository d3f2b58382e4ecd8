from __future__ import annotations

from collections.abc import Generator

import pytest

from salesfunnel import audit, events
from salesfunnel.core.events import FunnelEventBus, InternalEvent


@pytest.fixture(autouse=True)
def clear_buffers() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()


def test_published_events_keep_only_the_newest_envelopes() -> None:
    for index in range(events.RECENT_EVENTS_MAXLEN + 25):
        events.emit("crm.customer.claimed", "rep-a", {"sequence": index})

    assert len(events.published_events) == events.RECENT_EVENTS_MAXLEN
    assert events.published_events[0]["payload"]["sequence"] == 25
    assert events.published_events[-1]["payload"]["sequence"] == events.RECENT_EVENTS_MAXLEN + 24


def test_audit_trail_evicts_oldest_entries() -> None:
    for index in range(audit.AUDIT_TRAIL_MAXLEN + 10):
        audit.record("rep-a", "crm.customer", f"customer-{index}", "update", None, {"sequence": index})

    assert len(audit.audit_entries) == audit.AUDIT_TRAIL_MAXLEN
    assert audit.entries_for("crm.customer", "customer-0") == []
    assert audit.entries_for("crm.customer", "customer-10")[0]["after"] == {"sequence": 10}


def test_failing_subscriber_does_not_stop_delivery(caplog: pytest.LogCaptureFixture) -> None:
    bus = FunnelEventBus()
    received: list[InternalEvent] = []

    def broken(event: InternalEvent) -> None:
        raise RuntimeError("subscriber down")

    bus.subscribe("revenue.quote.approved", broken)
    bus.subscribe("revenue.quote.approved", received.append)
    bus.subscribe("revenue.quote.approved", received.append)

    with caplog.at_level("ERROR", logger="salesfunnel.events"):
        delivered = bus.publish("revenue.quote.approved", {"quote_id": "q-1"})

    assert delivered == 1
    assert [event.payload for event in received] == [{"quote_id": "q-1"}]
    failures = [record for record in caplog.records if record.getMessage() == "events.handler_failed"]
    assert failures
    assert failures[0].event_name == "revenue.quote.approved"
