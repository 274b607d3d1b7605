"""
Cadence Engine
L10 meeting domain models.

Models:
    - Meeting:        one occurrence of a recurring structured meeting
    - AgendaSection:  ordered agenda section with planned duration and timing

Architecture:
    Organization ──1:N──▶ Meeting ──1:N──▶ AgendaSection (ordered by sort_order)

Lifecycle states:
    Meeting:  scheduled → in_progress → completed
              scheduled → cancelled  |  in_progress → cancelled
"""

from datetime import datetime, timezone

from cadence.models import db
from cadence.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

MEETING_STATUSES = {"scheduled", "in_progress", "completed", "cancelled"}

TERMINAL_MEETING_STATUSES = frozenset({"completed", "cancelled"})

MEETING_TYPES = {"l10", "quarterly", "annual", "ad_hoc"}

# (name, planned_duration_minutes) in agenda order
STANDARD_AGENDA_TEMPLATE = [
    ("segue", 5),
    ("scorecard_review", 5),
    ("objective_review", 5),
    ("headlines", 5),
    ("todo_review", 5),
    ("issue_solving", 60),
    ("conclude", 5),
]


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

MEETING_TRANSITIONS = {
    "scheduled":   ["in_progress", "cancelled"],
    "in_progress": ["completed", "cancelled"],
    "completed":   [],
    "cancelled":   [],
}


def validate_meeting_transition(old_status, new_status):
    """Return True if Meeting status transition is valid."""
    return new_status in MEETING_TRANSITIONS.get(old_status, [])


class Meeting(OrganizationModel):
    """
    Structured meeting occurrence.

    ``scorecard_snapshot``, ``objectives_snapshot`` and ``queued_issue_ids``
    are frozen by the agenda snapshot builder before the meeting starts.
    Every lifecycle write is conditional on (status, version).
    """

    __tablename__ = "meetings"

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False, default="Weekly L10")
    meeting_type = db.Column(db.String(20), nullable=False, default="l10")
    status = db.Column(db.String(20), nullable=False, default="scheduled")
    org_unit_id = db.Column(
        db.Integer, db.ForeignKey("org_units.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    scheduled_at = db.Column(db.DateTime(timezone=True), nullable=False)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    ended_at = db.Column(db.DateTime(timezone=True), nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=True)

    current_section_index = db.Column(db.Integer, nullable=True)
    current_section_started_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Snapshot
    scorecard_snapshot = db.Column(db.JSON, nullable=True)
    objectives_snapshot = db.Column(db.JSON, nullable=True)
    queued_issue_ids = db.Column(db.JSON, nullable=False, default=list)
    snapshot_generated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    summary = db.Column(db.JSON, nullable=True)

    version = db.Column(db.Integer, nullable=False, default=1,
                        comment="Optimistic concurrency counter")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('scheduled','in_progress','completed','cancelled')",
            name="ck_meeting_status",
        ),
        db.CheckConstraint(
            "meeting_type IN ('l10','quarterly','annual','ad_hoc')",
            name="ck_meeting_type",
        ),
        db.Index("ix_meetings_org_status_scheduled", "organization_id", "status", "scheduled_at"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    sections = db.relationship(
        "AgendaSection", backref="meeting",
        cascade="all, delete-orphan", order_by="AgendaSection.sort_order",
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_MEETING_STATUSES

    def to_dict(self, include_sections=False):
        result = {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "meeting_type": self.meeting_type,
            "status": self.status,
            "org_unit_id": self.org_unit_id,
            "scheduled_at": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "duration_minutes": self.duration_minutes,
            "current_section_index": self.current_section_index,
            "current_section_started_at": (
                self.current_section_started_at.isoformat()
                if self.current_section_started_at else None
            ),
            "scorecard_snapshot": self.scorecard_snapshot,
            "objectives_snapshot": self.objectives_snapshot,
            "queued_issue_ids": list(self.queued_issue_ids or []),
            "snapshot_generated_at": (
                self.snapshot_generated_at.isoformat() if self.snapshot_generated_at else None
            ),
            "summary": self.summary,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_sections:
            result["sections"] = [s.to_dict() for s in self.sections]
        return result

    def __repr__(self):
        return f"<Meeting {self.id}: {self.title} [{self.status}]>"


class AgendaSection(db.Model):
    """One agenda section of a meeting."""

    __tablename__ = "agenda_sections"

    id = db.Column(db.Integer, primary_key=True)
    meeting_id = db.Column(
        db.Integer, db.ForeignKey("meetings.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    name = db.Column(db.String(100), nullable=False)
    planned_duration_minutes = db.Column(db.Integer, nullable=False, default=5)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    elapsed_seconds = db.Column(db.Integer, nullable=False, default=0,
                                comment="summed over every visit to the section")

    __table_args__ = (
        db.UniqueConstraint("meeting_id", "sort_order", name="uq_agenda_section_order"),
        db.CheckConstraint(
            "planned_duration_minutes >= 0",
            name="ck_agenda_section_duration",
        ),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "meeting_id": self.meeting_id,
            "name": self.name,
            "planned_duration_minutes": self.planned_duration_minutes,
            "sort_order": self.sort_order,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "elapsed_seconds": self.elapsed_seconds,
        }

    def __repr__(self):
        return f"<AgendaSection {self.meeting_id}#{self.sort_order} {self.name}>"
