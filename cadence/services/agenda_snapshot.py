"""
Cadence Engine
Agenda Snapshot Builder — freezes live organizational state onto a
scheduled meeting.

Steps:
    1. scorecard:  active metrics (display order) with their latest values
    2. objectives: on_track / at_risk / off_track objectives at every level,
                   with children_count / children_on_track from the rollup
    3. issues:     open / prioritized issues ranked by the issue ranker
    4. write scorecard_snapshot, objectives_snapshot and queued_issue_ids
       (rank order), stamp snapshot_generated_at; insert the standard
       agenda only when the meeting has no sections

Each source is read inside its own error boundary: a failing source is
logged at warning level, contributes an empty list, and is reported in
``SnapshotResult.degraded``. Reads run one after another; they share the
request's session, which is not safe to use from several threads.

Re-runnable any number of times while the meeting is scheduled.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from flask import current_app
from sqlalchemy import func, select

from cadence.core.exceptions import InvalidMeetingStateError
from cadence.models import db
from cadence.models.meeting import Meeting
from cadence.models.metric import Metric, MetricValue
from cadence.models.objective import ObjectiveNode, QUEUEABLE_ISSUE_STATUSES
from cadence.services import domain_events
from cadence.services.helpers.scoped_queries import get_scoped
from cadence.services.issue_ranking import AGE_BONUS_CAP_DAYS, DEFAULT_PRIORITY, rank_issues
from cadence.services.meeting_lifecycle import ensure_standard_agenda
from cadence.services.record_store import store
from cadence.services.rollup import cascade_view
from cadence.utils.helpers import utcnow

logger = logging.getLogger(__name__)

REVIEW_OBJECTIVE_STATUSES = ("on_track", "at_risk", "off_track")


# ═══════════════════════════════════════════════════════════════════════════
#  Sources
# ═══════════════════════════════════════════════════════════════════════════


class SnapshotSources:
    """Store-backed snapshot sources.

    Subclass or duck-type this to plug in an external metric value source;
    every method may raise and the builder will degrade that field only.
    """

    def active_metrics(self, organization_id: int) -> list[Metric]:
        stmt = (
            select(Metric)
            .where(Metric.organization_id == organization_id, Metric.is_active.is_(True))
            .order_by(Metric.display_order, Metric.id)
        )
        return list(db.session.execute(stmt).scalars())

    def latest_metric_values(self, metric_ids: list[int]) -> dict[int, MetricValue]:
        """Most recent value per metric id; metrics without values are absent."""
        if not metric_ids:
            return {}
        latest = (
            select(MetricValue.metric_id, func.max(MetricValue.recorded_at).label("recorded_at"))
            .where(MetricValue.metric_id.in_(metric_ids))
            .group_by(MetricValue.metric_id)
            .subquery()
        )
        stmt = (
            select(MetricValue)
            .join(latest, (MetricValue.metric_id == latest.c.metric_id)
                  & (MetricValue.recorded_at == latest.c.recorded_at))
            .order_by(MetricValue.id)
        )
        return {mv.metric_id: mv for mv in db.session.execute(stmt).scalars()}

    def objectives(self, organization_id: int) -> list[ObjectiveNode]:
        stmt = (
            select(ObjectiveNode)
            .where(ObjectiveNode.organization_id == organization_id,
                   ObjectiveNode.kind == "objective")
            .order_by(ObjectiveNode.id)
        )
        return list(db.session.execute(stmt).scalars())

    def open_issues(self, organization_id: int) -> list[ObjectiveNode]:
        stmt = (
            select(ObjectiveNode)
            .where(ObjectiveNode.organization_id == organization_id,
                   ObjectiveNode.kind == "issue",
                   ObjectiveNode.status.in_(QUEUEABLE_ISSUE_STATUSES))
            .order_by(ObjectiveNode.id)
        )
        return list(db.session.execute(stmt).scalars())


@dataclass
class SnapshotResult:
    meeting: Meeting
    degraded: list[str] = field(default_factory=list)
    sections_inserted: bool = False

    def to_dict(self) -> dict:
        return {
            "meeting": self.meeting.to_dict(include_sections=True),
            "degraded": list(self.degraded),
            "sections_inserted": self.sections_inserted,
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Builders per field
# ═══════════════════════════════════════════════════════════════════════════


def _scorecard(sources, organization_id: int, degraded: list[str]) -> list[dict]:
    metrics = sources.active_metrics(organization_id)
    try:
        with db.session.begin_nested():
            values = sources.latest_metric_values([m.id for m in metrics])
    except Exception:
        logger.warning("Metric value source failed; values left empty", exc_info=True,
                       extra={"organization_id": organization_id, "source": "metric_values"})
        degraded.append("metric_values")
        values = {}

    rows = []
    for metric in metrics:
        latest = values.get(metric.id)
        current = latest.value if latest is not None else None
        rows.append({
            "metric_id": metric.id,
            "name": metric.name,
            "goal": metric.goal,
            "unit": metric.unit,
            "owner_id": metric.owner_id,
            "current_value": current,
            "recorded_at": (
                latest.recorded_at.isoformat()
                if latest is not None and latest.recorded_at else None
            ),
            "is_on_track": metric.is_on_track(current),
        })
    return rows


def _objectives(sources, organization_id: int) -> list[dict]:
    everything = sources.objectives(organization_id)
    listed = [o for o in everything if o.status in REVIEW_OBJECTIVE_STATUSES]
    counts = {row["node_id"]: row for row in cascade_view(listed, everything)}
    return [
        {
            "id": o.id,
            "title": o.title,
            "level": o.level,
            "status": o.status,
            "owner_id": o.owner_id,
            "org_unit_id": o.org_unit_id,
            "parent_id": o.parent_id,
            "children_count": counts[o.id]["children_count"],
            "children_on_track": counts[o.id]["children_on_track"],
        }
        for o in listed
    ]


def _ranked_issue_ids(sources, organization_id: int, now: datetime) -> list[int]:
    ranked = rank_issues(
        sources.open_issues(organization_id),
        now,
        default_priority=current_app.config.get("DEFAULT_ISSUE_PRIORITY", DEFAULT_PRIORITY),
        age_cap_days=current_app.config.get("ISSUE_AGE_BONUS_CAP_DAYS", AGE_BONUS_CAP_DAYS),
    )
    return [i.id for i in ranked]


def _capture(name: str, fn, organization_id: int, degraded: list[str]):
    """Run one source read inside a savepoint.

    A failed statement only rolls back its own savepoint, so the remaining
    sources and the final meeting write still run in a live transaction.
    """
    try:
        with db.session.begin_nested():
            return fn()
    except Exception:
        logger.warning("Snapshot source %s failed; field left empty", name, exc_info=True,
                       extra={"organization_id": organization_id, "source": name})
        degraded.append(name)
        return []


# ═══════════════════════════════════════════════════════════════════════════
#  Entry point
# ═══════════════════════════════════════════════════════════════════════════


def build_snapshot(
    organization_id: int,
    meeting_id: int,
    now: datetime | None = None,
    sources: SnapshotSources | None = None,
) -> SnapshotResult:
    """Capture scorecard, objectives and ranked issues onto a scheduled meeting.

    Raises:
        NotFoundError: meeting missing or in another organization.
        InvalidMeetingStateError: the meeting is not scheduled.
        ConcurrentModificationError: the meeting changed while building.
    """
    now = now or utcnow()
    sources = sources or SnapshotSources()
    meeting = get_scoped(Meeting, meeting_id, organization_id=organization_id)
    if meeting.status != "scheduled":
        raise InvalidMeetingStateError(meeting.id, meeting.status, "scheduled")

    degraded: list[str] = []
    scorecard = _capture("scorecard", lambda: _scorecard(sources, organization_id, degraded),
                         organization_id, degraded)
    objectives = _capture("objectives", lambda: _objectives(sources, organization_id),
                          organization_id, degraded)
    issue_ids = _capture("issues", lambda: _ranked_issue_ids(sources, organization_id, now),
                         organization_id, degraded)

    with store.transaction():
        inserted = ensure_standard_agenda(meeting)
        store.compare_and_swap(
            Meeting, meeting.id,
            expected={"status": "scheduled", "version": meeting.version},
            values={
                "scorecard_snapshot": scorecard,
                "objectives_snapshot": objectives,
                "queued_issue_ids": issue_ids,
                "snapshot_generated_at": now,
            },
        )

    logger.info(
        "Agenda snapshot built: %d metrics, %d objectives, %d issues%s",
        len(scorecard), len(objectives), len(issue_ids),
        f" (degraded: {', '.join(degraded)})" if degraded else "",
        extra={"organization_id": organization_id, "meeting_id": meeting.id},
    )
    domain_events.publish(
        "meeting.agenda_generated",
        organization_id=organization_id,
        entity_type="meeting",
        entity_id=meeting.id,
        payload={
            "metrics": len(scorecard),
            "objectives": len(objectives),
            "issues": len(issue_ids),
            "degraded": degraded,
            "sections_inserted": inserted,
        },
    )
    return SnapshotResult(meeting=meeting, degraded=degraded, sections_inserted=inserted)
