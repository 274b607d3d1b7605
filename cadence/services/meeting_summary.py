"""
Cadence Engine
Meeting summary — computed once when a meeting ends.

The summary is derived from the meeting's own record (sections and frozen
snapshots) so it needs no external reads:

    - per-section planned vs elapsed time
    - items touched (sections visited, scorecard metrics, objectives, queued issues)
    - scorecard on/off track counts and objective status counts
    - a markdown rendering for notes / outbound sync
"""

from __future__ import annotations

import logging
from datetime import datetime

from cadence.utils.helpers import as_utc

logger = logging.getLogger(__name__)


def _elapsed_seconds(section, opened_at: datetime | None, now: datetime) -> int | None:
    if section.started_at is None:
        return None
    elapsed = section.elapsed_seconds or 0
    if section.completed_at is None and opened_at is not None:
        elapsed += max(0, int((as_utc(now) - as_utc(opened_at)).total_seconds()))
    return elapsed


def build_summary(meeting, *, ended_at: datetime, duration_minutes: int) -> dict:
    """Summary dict for a meeting that is being ended at *ended_at*.

    Elapsed time is summed over every visit to a section, so retreating
    to a section and leaving it again adds to its total.
    """
    sections = []
    total_elapsed = 0
    visited = 0
    for section in meeting.sections:
        elapsed = _elapsed_seconds(section, meeting.current_section_started_at, ended_at)
        if elapsed is not None:
            visited += 1
            total_elapsed += elapsed
        sections.append({
            "name": section.name,
            "planned_minutes": section.planned_duration_minutes,
            "elapsed_seconds": elapsed,
        })

    scorecard = meeting.scorecard_snapshot or []
    objectives = meeting.objectives_snapshot or []
    queued = list(meeting.queued_issue_ids or [])

    metrics_on_track = sum(1 for m in scorecard if m.get("is_on_track") is True)
    metrics_off_track = sum(1 for m in scorecard if m.get("is_on_track") is False)

    objective_status_counts: dict[str, int] = {}
    for obj in objectives:
        status = obj.get("status", "unknown")
        objective_status_counts[status] = objective_status_counts.get(status, 0) + 1

    summary = {
        "duration_minutes": duration_minutes,
        "total_elapsed_seconds": total_elapsed,
        "sections_visited": visited,
        "sections": sections,
        "metrics_reviewed": len(scorecard),
        "metrics_on_track": metrics_on_track,
        "metrics_off_track": metrics_off_track,
        "objectives_reviewed": len(objectives),
        "objective_status_counts": objective_status_counts,
        "issues_queued": len(queued),
        "items_touched": visited + len(scorecard) + len(objectives) + len(queued),
    }
    summary["markdown"] = render_markdown(meeting, summary)
    return summary


def render_markdown(meeting, summary: dict) -> str:
    scheduled = as_utc(meeting.scheduled_at)
    lines = [
        f"# {meeting.title} Summary",
        "",
        f"**Date:** {scheduled.strftime('%A, %B %d, %Y') if scheduled else 'unscheduled'}",
        "",
        f"**Duration:** {summary['duration_minutes']} minutes",
        "",
        "## Agenda",
        "",
    ]
    for s in summary["sections"]:
        if s["elapsed_seconds"] is None:
            lines.append(f"- {s['name']}: skipped ({s['planned_minutes']} min planned)")
        else:
            lines.append(
                f"- {s['name']}: {s['elapsed_seconds'] // 60} min "
                f"({s['planned_minutes']} min planned)"
            )
    lines.append("")

    if summary["metrics_reviewed"]:
        lines += [
            "## Scorecard",
            "",
            f"- {summary['metrics_on_track']} on track, "
            f"{summary['metrics_off_track']} off track "
            f"of {summary['metrics_reviewed']} metrics",
            "",
        ]
    if summary["objectives_reviewed"]:
        lines += ["## Objectives", ""]
        for status, count in sorted(summary["objective_status_counts"].items()):
            lines.append(f"- {status.replace('_', ' ')}: {count}")
        lines.append("")
    if summary["issues_queued"]:
        lines += ["## Issues", "", f"- {summary['issues_queued']} issues queued", ""]

    return "\n".join(lines)
