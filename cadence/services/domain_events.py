"""
Cadence Engine
Domain Events — fire-and-forget facts emitted after a state change commits.

Each ``publish`` call:
    1. appends a DomainEvent outbox row (own commit; the business write has
       already committed), then
    2. calls in-process subscribers registered with ``@subscribe``.

Persistence and subscriber failures are logged and never propagate: the
state change the event describes has already happened, and delivery or
retry is the receiving collaborator's concern.

Usage:
    @subscribe("issue.escalated")
    def notify_leadership(event):
        ...
"""

from __future__ import annotations

import logging
from collections import defaultdict
from typing import Callable

from sqlalchemy.exc import SQLAlchemyError

from cadence.models import db
from cadence.models.event import DomainEvent

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Subscriber Registry
# ═══════════════════════════════════════════════════════════════════════════

_subscribers: dict[str, list[Callable]] = defaultdict(list)


def subscribe(event_type: str):
    """Decorator to register a subscriber for *event_type* ("*" for all)."""
    def decorator(fn: Callable) -> Callable:
        _subscribers[event_type].append(fn)
        return fn
    return decorator


def unsubscribe(event_type: str, fn: Callable) -> None:
    if fn in _subscribers.get(event_type, []):
        _subscribers[event_type].remove(fn)


def get_subscribers(event_type: str) -> list[Callable]:
    return list(_subscribers.get(event_type, [])) + list(_subscribers.get("*", []))


# ═══════════════════════════════════════════════════════════════════════════
#  Publishing
# ═══════════════════════════════════════════════════════════════════════════


def publish(
    event_type: str,
    *,
    organization_id: int,
    entity_type: str,
    entity_id: int,
    actor_id: int | None = None,
    payload: dict | None = None,
) -> DomainEvent | None:
    """Persist and dispatch one domain event.

    Returns the stored DomainEvent, or None when persistence failed (the
    subscribers still receive a transient instance).
    """
    event = DomainEvent(
        organization_id=organization_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        actor_id=actor_id,
        payload=payload or {},
    )
    stored = event
    try:
        db.session.add(event)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        stored = None
        logger.exception(
            "Failed to persist domain event %s for %s:%s",
            event_type, entity_type, entity_id,
            extra={"event_type": event_type, "organization_id": organization_id},
        )

    for handler in get_subscribers(event_type):
        try:
            handler(event)
        except Exception:
            logger.exception(
                "Subscriber %s failed for %s",
                getattr(handler, "__name__", handler), event_type,
                extra={"event_type": event_type, "organization_id": organization_id},
            )

    logger.debug(
        "Published %s for %s:%s", event_type, entity_type, entity_id,
        extra={"event_type": event_type, "organization_id": organization_id},
    )
    return stored


def list_events(organization_id: int, *, event_type: str | None = None,
                entity_type: str | None = None, entity_id: int | None = None) -> list[DomainEvent]:
    """Outbox rows for an organization, oldest first."""
    q = DomainEvent.query.filter_by(organization_id=organization_id)
    if event_type:
        q = q.filter_by(event_type=event_type)
    if entity_type:
        q = q.filter_by(entity_type=entity_type)
    if entity_id is not None:
        q = q.filter_by(entity_id=entity_id)
    return q.order_by(DomainEvent.id).all()
