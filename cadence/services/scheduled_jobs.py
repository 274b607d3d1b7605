"""
Cadence Engine
Scheduled Jobs.

Jobs:
    - upcoming_agenda_generation: snapshots agendas for scheduled meetings
      starting inside the lookahead window that have no snapshot yet
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from cadence.core.exceptions import CadenceError
from cadence.models import db
from cadence.models.meeting import Meeting
from cadence.services.scheduler_service import register_job
from cadence.utils.helpers import utcnow

logger = logging.getLogger(__name__)


def find_meetings_needing_agenda(now: datetime, min_hours: int, max_hours: int) -> list[Meeting]:
    """Scheduled, un-snapshotted meetings with scheduled_at in [now+min, now+max)."""
    stmt = (
        select(Meeting)
        .where(
            Meeting.status == "scheduled",
            Meeting.snapshot_generated_at.is_(None),
            Meeting.scheduled_at >= now + timedelta(hours=min_hours),
            Meeting.scheduled_at < now + timedelta(hours=max_hours),
        )
        .order_by(Meeting.scheduled_at, Meeting.id)
    )
    return list(db.session.execute(stmt).scalars())


# ═══════════════════════════════════════════════════════════════════════════
#  Job: Upcoming agenda generation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("upcoming_agenda_generation")
def generate_upcoming_agendas(app, now: datetime | None = None) -> dict[str, Any]:
    """Build agenda snapshots for meetings starting within the lookahead window."""
    from cadence.services.agenda_snapshot import build_snapshot

    now = now or utcnow()
    min_hours = app.config.get("AGENDA_LOOKAHEAD_MIN_HOURS", 2)
    max_hours = app.config.get("AGENDA_LOOKAHEAD_MAX_HOURS", 3)

    results = {"checked": 0, "generated": 0, "failed": 0, "degraded": 0, "errors": []}

    for meeting in find_meetings_needing_agenda(now, min_hours, max_hours):
        results["checked"] += 1
        organization_id, meeting_id = meeting.organization_id, meeting.id
        try:
            outcome = build_snapshot(organization_id, meeting_id, now=now)
        except (CadenceError, SQLAlchemyError) as exc:
            db.session.rollback()
            results["failed"] += 1
            results["errors"].append({"meeting_id": meeting_id, "error": str(exc)})
            logger.error(
                "Agenda generation failed: %s", exc,
                extra={"organization_id": organization_id, "meeting_id": meeting_id},
            )
            continue
        results["generated"] += 1
        if outcome.degraded:
            results["degraded"] += 1

    logger.info(
        "Upcoming agenda generation: checked=%d generated=%d failed=%d",
        results["checked"], results["generated"], results["failed"],
        extra={"job_name": "upcoming_agenda_generation"},
    )
    return results
