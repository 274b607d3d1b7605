"""
Tests: domain event outbox and in-process subscribers.
"""

import pytest
from sqlalchemy.exc import SQLAlchemyError

from cadence.models import db as _db
from cadence.models.event import DomainEvent
from cadence.services import domain_events


@pytest.fixture()
def registry():
    """Subscribers registered during a test are removed afterwards."""
    added = []

    def _register(event_type, fn):
        domain_events.subscribe(event_type)(fn)
        added.append((event_type, fn))
        return fn

    yield _register
    for event_type, fn in added:
        domain_events.unsubscribe(event_type, fn)


def _publish(org_id, event_type="meeting.started", **payload):
    return domain_events.publish(
        event_type, organization_id=org_id, entity_type="meeting", entity_id=7,
        actor_id=3, payload=payload,
    )


def test_publish_persists_outbox_row(default_org):
    stored = _publish(default_org.id, started_at="2026-04-06T09:00:00+00:00")
    assert stored is not None
    rows = domain_events.list_events(default_org.id)
    assert len(rows) == 1
    row = rows[0]
    assert row.event_type == "meeting.started"
    assert row.entity_id == 7
    assert row.payload == {"started_at": "2026-04-06T09:00:00+00:00"}
    assert row.to_dict()["actor_id"] == 3


def test_subscribers_receive_matching_events(default_org, registry):
    seen, everything = [], []
    registry("meeting.started", seen.append)
    registry("*", everything.append)

    _publish(default_org.id, "meeting.started")
    _publish(default_org.id, "meeting.cancelled")

    assert [e.event_type for e in seen] == ["meeting.started"]
    assert [e.event_type for e in everything] == ["meeting.started", "meeting.cancelled"]


def test_failing_subscriber_does_not_propagate(default_org, registry):
    calls = []

    def _broken(event):
        raise RuntimeError("chat webhook down")

    registry("meeting.started", _broken)
    registry("meeting.started", calls.append)

    assert _publish(default_org.id) is not None
    assert len(calls) == 1


def test_persistence_failure_still_notifies(default_org, registry, monkeypatch):
    calls = []
    registry("meeting.started", calls.append)

    def _fail_commit():
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr(_db.session, "commit", _fail_commit)
    assert _publish(default_org.id) is None
    monkeypatch.undo()

    assert len(calls) == 1
    assert DomainEvent.query.count() == 0


def test_list_events_filters(default_org):
    _publish(default_org.id, "meeting.started")
    _publish(default_org.id, "meeting.completed")
    domain_events.publish("issue.escalated", organization_id=default_org.id,
                          entity_type="issue", entity_id=42)

    assert len(domain_events.list_events(default_org.id, entity_type="meeting")) == 2
    assert [e.entity_id for e in domain_events.list_events(
        default_org.id, event_type="issue.escalated")] == [42]
    assert domain_events.list_events(default_org.id + 1) == []


def test_unsubscribe_unknown_is_noop():
    domain_events.unsubscribe("meeting.started", lambda e: None)
