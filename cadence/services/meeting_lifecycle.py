"""
Cadence Engine
Meeting Lifecycle Manager — drives an L10 meeting through its agenda.

States:
    scheduled → in_progress → completed
    scheduled → cancelled  |  in_progress → cancelled
    completed / cancelled are terminal; terminal meetings are never written.

Every state write is a conditional update on (status, version) through the
record store; a mismatch raises ConcurrentModificationError and the engine
never retries on its own.

Sections:
    The standard template (segue → … → conclude) is inserted at most once,
    only when the meeting has no sections. Sections may be replaced while
    the meeting is still scheduled (``update_agenda_sections``).

Queue management:
    queue_issue (scheduled only), dequeue_issue / reorder_queue (any
    non-terminal status).
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select

from cadence.core.exceptions import (
    InvalidMeetingStateError,
    InvalidTransitionError,
    NoNextSectionError,
    NoPreviousSectionError,
    NotFoundError,
    ValidationError,
)
from cadence.models import db
from cadence.models.meeting import (
    MEETING_TYPES,
    STANDARD_AGENDA_TEMPLATE,
    TERMINAL_MEETING_STATUSES,
    AgendaSection,
    Meeting,
    validate_meeting_transition,
)
from cadence.models.objective import QUEUEABLE_ISSUE_STATUSES, ObjectiveNode
from cadence.services import domain_events
from cadence.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from cadence.services.meeting_summary import build_summary
from cadence.services.record_store import store
from cadence.utils.helpers import as_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)


# ── Internal helpers ─────────────────────────────────────────────────────────


def _log_extra(meeting: Meeting, **extra) -> dict:
    return {"organization_id": meeting.organization_id, "meeting_id": meeting.id, **extra}


def _write(meeting: Meeting, values: dict) -> None:
    """Conditional write guarded on the meeting's current status and version."""
    store.compare_and_swap(
        Meeting, meeting.id,
        expected={"status": meeting.status, "version": meeting.version},
        values=values,
    )


def _require_status(meeting: Meeting, *allowed: str) -> None:
    if meeting.status not in allowed:
        raise InvalidMeetingStateError(meeting.id, meeting.status, set(allowed))


def _require_not_terminal(meeting: Meeting) -> None:
    if meeting.status in TERMINAL_MEETING_STATUSES:
        raise InvalidMeetingStateError(meeting.id, meeting.status, {"scheduled", "in_progress"})


def _emit(event_type: str, meeting: Meeting, actor_id=None, **payload) -> None:
    domain_events.publish(
        event_type,
        organization_id=meeting.organization_id,
        entity_type="meeting",
        entity_id=meeting.id,
        actor_id=actor_id,
        payload=payload,
    )


def _minutes_between(start: datetime, end: datetime) -> int:
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    return int(math.floor(seconds / 60 + 0.5))


# ── Reads ────────────────────────────────────────────────────────────────────


def get_meeting(organization_id: int, meeting_id: int) -> Meeting:
    return get_scoped(Meeting, meeting_id, organization_id=organization_id)


def list_meetings(organization_id: int, status: str | None = None) -> list[Meeting]:
    """Meetings ordered by scheduled time."""
    stmt = select(Meeting).where(Meeting.organization_id == organization_id)
    if status:
        stmt = stmt.where(Meeting.status == status)
    return list(db.session.execute(stmt.order_by(Meeting.scheduled_at, Meeting.id)).scalars())


# ── Agenda sections ──────────────────────────────────────────────────────────


def ensure_standard_agenda(meeting: Meeting) -> bool:
    """Insert the standard template when the meeting has no sections.

    Returns True when sections were inserted. Callers own the commit.
    """
    if meeting.sections:
        return False
    for order, (name, minutes) in enumerate(STANDARD_AGENDA_TEMPLATE):
        meeting.sections.append(AgendaSection(
            name=name, planned_duration_minutes=minutes, sort_order=order,
        ))
    db.session.flush()
    logger.debug("Standard agenda inserted", extra=_log_extra(meeting))
    return True


def _validated_sections(sections: list[dict]) -> list[tuple[str, int]]:
    if not sections:
        raise ValidationError("At least one agenda section is required",
                              details={"sections": "empty"})
    cleaned = []
    for i, raw in enumerate(sections):
        name = (raw.get("name") or "").strip()
        minutes = raw.get("planned_duration_minutes")
        if not name:
            raise ValidationError(f"Section {i} needs a name", details={f"sections[{i}].name": "required"})
        if not isinstance(minutes, int) or isinstance(minutes, bool) or minutes < 0:
            raise ValidationError(
                f"Section {name!r} needs a non-negative integer duration",
                details={f"sections[{i}].planned_duration_minutes": "non-negative integer"},
            )
        cleaned.append((name, minutes))
    return cleaned


def update_agenda_sections(organization_id: int, meeting_id: int, sections: list[dict]) -> Meeting:
    """Replace the agenda (names, durations, order) of a scheduled meeting.

    Raises:
        InvalidMeetingStateError: the meeting is no longer scheduled.
        ValidationError: empty list, missing name, or bad duration.
    """
    meeting = get_meeting(organization_id, meeting_id)
    _require_status(meeting, "scheduled")
    cleaned = _validated_sections(sections)

    with store.transaction():
        for existing in list(meeting.sections):
            meeting.sections.remove(existing)
        # Old rows must be gone before new rows reuse their sort_order
        db.session.flush()
        for order, (name, minutes) in enumerate(cleaned):
            meeting.sections.append(AgendaSection(
                name=name, planned_duration_minutes=minutes, sort_order=order,
            ))
        _write(meeting, {})

    logger.info("Agenda updated: %d sections", len(cleaned), extra=_log_extra(meeting))
    return meeting


# ── Lifecycle ────────────────────────────────────────────────────────────────


def create_meeting(organization_id: int, data: dict) -> Meeting:
    """Create a scheduled meeting.

    Args:
        data: ``scheduled_at`` required (datetime or ISO string); ``title``,
              ``meeting_type``, ``org_unit_id``, ``sections`` optional.
    """
    try:
        scheduled_at = parse_datetime(data.get("scheduled_at"))
    except ValueError as exc:
        raise ValidationError("scheduled_at is not ISO 8601",
                              details={"scheduled_at": str(exc)}) from exc
    if scheduled_at is None:
        raise ValidationError("scheduled_at is required", details={"scheduled_at": "required"})

    meeting_type = data.get("meeting_type", "l10")
    if meeting_type not in MEETING_TYPES:
        raise ValidationError(f"Invalid meeting type {meeting_type!r}",
                              details={"meeting_type": sorted(MEETING_TYPES)})

    meeting = Meeting(
        organization_id=organization_id,
        title=(data.get("title") or "Weekly L10").strip(),
        meeting_type=meeting_type,
        status="scheduled",
        org_unit_id=data.get("org_unit_id"),
        scheduled_at=scheduled_at,
        queued_issue_ids=[],
    )
    with store.transaction():
        store.add(meeting)
        if data.get("sections"):
            for order, (name, minutes) in enumerate(_validated_sections(data["sections"])):
                meeting.sections.append(AgendaSection(
                    name=name, planned_duration_minutes=minutes, sort_order=order,
                ))

    logger.info("Meeting created", extra=_log_extra(meeting))
    _emit("meeting.created", meeting, scheduled_at=scheduled_at.isoformat())
    return meeting


def start_meeting(organization_id: int, meeting_id: int, now: datetime | None = None) -> Meeting:
    """scheduled → in_progress; opens section 0.

    Raises:
        InvalidTransitionError: the meeting is not scheduled.
        ConcurrentModificationError: the meeting changed since it was read.
    """
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    if not validate_meeting_transition(meeting.status, "in_progress"):
        raise InvalidTransitionError(meeting.status, "in_progress")

    with store.transaction():
        ensure_standard_agenda(meeting)
        first = meeting.sections[0]
        first.started_at = now
        first.completed_at = None
        _write(meeting, {
            "status": "in_progress",
            "started_at": now,
            "current_section_index": 0,
            "current_section_started_at": now,
        })

    logger.info("Meeting started", extra=_log_extra(meeting))
    _emit("meeting.started", meeting, started_at=now.isoformat())
    return meeting


def _close_current_section(meeting: Meeting, now: datetime) -> None:
    """Add the open stint to the current section's elapsed total."""
    section = meeting.sections[meeting.current_section_index or 0]
    if section.completed_at is not None:
        return
    stint = (as_utc(now) - as_utc(meeting.current_section_started_at)).total_seconds()
    section.elapsed_seconds = (section.elapsed_seconds or 0) + max(0, int(stint))
    section.completed_at = now


def _move_section(meeting: Meeting, new_index: int, now: datetime) -> None:
    _close_current_section(meeting, now)
    target = meeting.sections[new_index]
    # started_at keeps the first visit; re-entry only reopens the section
    if target.started_at is None:
        target.started_at = now
    target.completed_at = None
    _write(meeting, {
        "current_section_index": new_index,
        "current_section_started_at": now,
    })


def advance_section(organization_id: int, meeting_id: int, now: datetime | None = None) -> Meeting:
    """Close the current section and open the next one.

    Raises:
        InvalidMeetingStateError: the meeting is not in progress.
        NoNextSectionError: already on the last section; end the meeting instead.
    """
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    _require_status(meeting, "in_progress")
    index = meeting.current_section_index or 0
    if index >= len(meeting.sections) - 1:
        raise NoNextSectionError(meeting.id, index)

    with store.transaction():
        _move_section(meeting, index + 1, now)

    section = meeting.sections[meeting.current_section_index]
    logger.debug("Advanced to section %d", meeting.current_section_index,
                 extra=_log_extra(meeting, section=section.name))
    _emit("meeting.section_changed", meeting,
          from_index=index, to_index=index + 1, section=section.name)
    return meeting


def retreat_section(organization_id: int, meeting_id: int, now: datetime | None = None) -> Meeting:
    """Mirror of advance_section.

    Raises:
        InvalidMeetingStateError: the meeting is not in progress.
        NoPreviousSectionError: already on section 0.
    """
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    _require_status(meeting, "in_progress")
    index = meeting.current_section_index or 0
    if index <= 0:
        raise NoPreviousSectionError(meeting.id)

    with store.transaction():
        _move_section(meeting, index - 1, now)

    section = meeting.sections[meeting.current_section_index]
    logger.debug("Retreated to section %d", meeting.current_section_index,
                 extra=_log_extra(meeting, section=section.name))
    _emit("meeting.section_changed", meeting,
          from_index=index, to_index=index - 1, section=section.name)
    return meeting


def end_meeting(organization_id: int, meeting_id: int, now: datetime | None = None) -> Meeting:
    """in_progress → completed from any section.

    The summary is computed before the transition; a summary failure is
    logged and the meeting still completes with an empty summary.

    Raises:
        InvalidTransitionError: the meeting is not in progress.
    """
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    if meeting.status != "in_progress":
        raise InvalidTransitionError(meeting.status, "completed")

    duration = _minutes_between(meeting.started_at, now)

    with store.transaction():
        _close_current_section(meeting, now)

        try:
            summary = build_summary(meeting, ended_at=now, duration_minutes=duration)
        except Exception:
            logger.exception("Meeting summary failed", extra=_log_extra(meeting))
            summary = None

        _write(meeting, {
            "status": "completed",
            "ended_at": now,
            "duration_minutes": duration,
            "summary": summary,
        })

    logger.info("Meeting completed after %d minutes", duration, extra=_log_extra(meeting))
    _emit("meeting.completed", meeting, duration_minutes=duration)
    return meeting


def cancel_meeting(organization_id: int, meeting_id: int, now: datetime | None = None) -> Meeting:
    """scheduled / in_progress → cancelled.

    Raises:
        InvalidTransitionError: the meeting is already terminal.
    """
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    if not validate_meeting_transition(meeting.status, "cancelled"):
        raise InvalidTransitionError(meeting.status, "cancelled")

    previous = meeting.status
    with store.transaction():
        if previous == "in_progress":
            _close_current_section(meeting, now)
        _write(meeting, {"status": "cancelled", "ended_at": now})

    logger.info("Meeting cancelled from %s", previous, extra=_log_extra(meeting))
    _emit("meeting.cancelled", meeting, previous_status=previous)
    return meeting


# ── Section timer ────────────────────────────────────────────────────────────


@dataclass
class SectionTimer:
    section_index: int
    section_name: str
    planned_seconds: int
    elapsed_seconds: int

    @property
    def remaining_seconds(self) -> int:
        return self.planned_seconds - self.elapsed_seconds

    @property
    def is_overtime(self) -> bool:
        return self.elapsed_seconds > self.planned_seconds

    def to_dict(self) -> dict:
        return {
            "section_index": self.section_index,
            "section_name": self.section_name,
            "planned_seconds": self.planned_seconds,
            "elapsed_seconds": self.elapsed_seconds,
            "remaining_seconds": self.remaining_seconds,
            "is_overtime": self.is_overtime,
        }


def get_section_timer(organization_id: int, meeting_id: int,
                      now: datetime | None = None) -> SectionTimer:
    """Elapsed vs planned time for the current section (read-only)."""
    now = now or utcnow()
    meeting = get_meeting(organization_id, meeting_id)
    _require_status(meeting, "in_progress")
    index = meeting.current_section_index or 0
    section = meeting.sections[index]
    stint = (as_utc(now) - as_utc(meeting.current_section_started_at)).total_seconds()
    return SectionTimer(
        section_index=index,
        section_name=section.name,
        planned_seconds=section.planned_duration_minutes * 60,
        elapsed_seconds=(section.elapsed_seconds or 0) + max(0, int(stint)),
    )


# ── Issue queue ──────────────────────────────────────────────────────────────


def _queueable_issue(organization_id: int, issue_id: int) -> ObjectiveNode:
    issue = get_scoped_or_none(ObjectiveNode, issue_id, organization_id=organization_id)
    if issue is None or issue.kind != "issue":
        raise NotFoundError(resource="Issue", resource_id=issue_id, organization_id=organization_id)
    if issue.status not in QUEUEABLE_ISSUE_STATUSES:
        raise ValidationError(
            f"Issue {issue_id} is {issue.status}; only open or prioritized issues can be queued",
            details={"status": issue.status},
        )
    return issue


def queue_issue(organization_id: int, meeting_id: int, issue_id: int) -> Meeting:
    """Append an issue to a scheduled meeting's queue."""
    meeting = get_meeting(organization_id, meeting_id)
    _require_status(meeting, "scheduled")
    _queueable_issue(organization_id, issue_id)
    queue = list(meeting.queued_issue_ids or [])
    if issue_id in queue:
        raise ValidationError(f"Issue {issue_id} is already queued",
                              details={"issue_id": "already queued"})

    with store.transaction():
        _write(meeting, {"queued_issue_ids": queue + [issue_id]})
    logger.debug("Issue queued", extra=_log_extra(meeting, issue_id=issue_id))
    return meeting


def dequeue_issue(organization_id: int, meeting_id: int, issue_id: int) -> Meeting:
    meeting = get_meeting(organization_id, meeting_id)
    _require_not_terminal(meeting)
    queue = list(meeting.queued_issue_ids or [])
    if issue_id not in queue:
        raise ValidationError(f"Issue {issue_id} is not queued",
                              details={"issue_id": "not queued"})

    with store.transaction():
        _write(meeting, {"queued_issue_ids": [i for i in queue if i != issue_id]})
    logger.debug("Issue dequeued", extra=_log_extra(meeting, issue_id=issue_id))
    return meeting


def reorder_queue(organization_id: int, meeting_id: int, issue_ids: list[int]) -> Meeting:
    """Replace the queue order; *issue_ids* must be a permutation of the queue."""
    meeting = get_meeting(organization_id, meeting_id)
    _require_not_terminal(meeting)
    queue = list(meeting.queued_issue_ids or [])
    if len(set(issue_ids)) != len(issue_ids) or sorted(issue_ids) != sorted(queue):
        raise ValidationError(
            "Reorder must list exactly the queued issues",
            details={"queued_issue_ids": queue, "received": list(issue_ids)},
        )

    with store.transaction():
        _write(meeting, {"queued_issue_ids": list(issue_ids)})
    logger.debug("Queue reordered", extra=_log_extra(meeting))
    return meeting
