"""
Cadence Engine
Domain event outbox model.

Models:
    - DomainEvent: append-only record of a fact the engine emitted
                   (issue.escalated, meeting.started, ...)

Outbound collaborators (chat, calendar, CRM sync) read this table or
subscribe in-process via ``cadence.services.domain_events.subscribe``.
"""

from datetime import datetime, timezone

from cadence.models import db


# ── Constants ────────────────────────────────────────────────────────────────

EVENT_TYPES = {
    "issue.escalated",
    "meeting.created",
    "meeting.started",
    "meeting.section_changed",
    "meeting.completed",
    "meeting.cancelled",
    "meeting.agenda_generated",
}


class DomainEvent(db.Model):
    """Immutable outbox row — one per emitted fact."""

    __tablename__ = "domain_events"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, nullable=False, index=True)
    event_type = db.Column(db.String(60), nullable=False, index=True)
    entity_type = db.Column(db.String(50), nullable=False)
    entity_id = db.Column(db.Integer, nullable=False)
    actor_id = db.Column(db.Integer, nullable=True)
    payload = db.Column(db.JSON, nullable=True)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "actor_id": self.actor_id,
            "payload": self.payload,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<DomainEvent {self.id} {self.event_type} {self.entity_type}:{self.entity_id}>"
