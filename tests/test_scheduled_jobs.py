"""
Tests: scheduler service and the upcoming agenda generation job.

Covers:
    1. SchedulerService registry, job records, toggling
    2. lookahead window selection
    3. job outcome counters, per-meeting failure isolation
    4. run_job bookkeeping and the ``flask generate-agendas`` command
"""

from datetime import datetime, timedelta, timezone

import pytest

from cadence.core.exceptions import ConcurrentModificationError
from cadence.models import db as _db
from cadence.models.meeting import Meeting
from cadence.models.scheduling import ScheduledJob
from cadence.services import scheduled_jobs
from cadence.services.scheduler_service import SchedulerService, get_registered_jobs

NOW = datetime(2026, 4, 6, 6, 0, tzinfo=timezone.utc)


def _meeting(org_id, hours_ahead, status="scheduled", snapshot=None):
    m = Meeting(
        organization_id=org_id, status=status, queued_issue_ids=[],
        scheduled_at=NOW + timedelta(hours=hours_ahead), snapshot_generated_at=snapshot,
    )
    _db.session.add(m)
    _db.session.commit()
    return m


# ═══════════════════════════════════════════════════════════════════════════
#  1. SchedulerService
# ═══════════════════════════════════════════════════════════════════════════


class TestSchedulerService:
    def test_agenda_job_is_registered(self):
        assert "upcoming_agenda_generation" in get_registered_jobs()

    def test_ensure_jobs_registered_is_idempotent(self, app):
        SchedulerService.init_app(app)
        created = SchedulerService.ensure_jobs_registered()
        assert len(created) == len(get_registered_jobs())

        # Fresh query: the returned objects are detached after context exit
        record = ScheduledJob.query.filter_by(job_name="upcoming_agenda_generation").first()
        assert record.schedule_config["minutes"] == 15
        assert SchedulerService.ensure_jobs_registered() == []

    def test_toggle_job(self, app):
        SchedulerService.init_app(app)
        SchedulerService.ensure_jobs_registered()
        paused = SchedulerService.toggle_job("upcoming_agenda_generation", False)
        assert paused["is_enabled"] is False
        assert paused["status"] == "paused"
        assert SchedulerService.toggle_job("no_such_job", True) is None

    def test_list_jobs(self, app):
        SchedulerService.init_app(app)
        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert jobs["upcoming_agenda_generation"]["db_record"] is None

    def test_unknown_job(self, app):
        SchedulerService.init_app(app)
        result = SchedulerService.run_job("no_such_job")
        assert result["status"] == "error"


# ═══════════════════════════════════════════════════════════════════════════
#  2. Window selection
# ═══════════════════════════════════════════════════════════════════════════


class TestWindow:
    def test_window_is_half_open(self, default_org):
        inside = _meeting(default_org.id, 2)
        late_inside = _meeting(default_org.id, 2.9)
        _meeting(default_org.id, 3)          # upper bound excluded
        _meeting(default_org.id, 1.5)        # too early
        found = scheduled_jobs.find_meetings_needing_agenda(NOW, 2, 3)
        assert [m.id for m in found] == [inside.id, late_inside.id]

    def test_skips_snapshotted_and_non_scheduled(self, default_org):
        _meeting(default_org.id, 2.5, snapshot=NOW - timedelta(minutes=10))
        _meeting(default_org.id, 2.5, status="cancelled")
        assert scheduled_jobs.find_meetings_needing_agenda(NOW, 2, 3) == []


# ═══════════════════════════════════════════════════════════════════════════
#  3. Job outcome
# ═══════════════════════════════════════════════════════════════════════════


class TestGenerateUpcomingAgendas:
    def test_generates_snapshots(self, app, default_org):
        first = _meeting(default_org.id, 2.25)
        second = _meeting(default_org.id, 2.75)
        _meeting(default_org.id, 6)

        result = scheduled_jobs.generate_upcoming_agendas(app, now=NOW)
        assert result == {"checked": 2, "generated": 2, "failed": 0, "degraded": 0, "errors": []}

        _db.session.expire_all()
        for m in (first, second):
            reloaded = _db.session.get(Meeting, m.id)
            assert reloaded.snapshot_generated_at is not None
            assert len(reloaded.sections) == 7

        rerun = scheduled_jobs.generate_upcoming_agendas(app, now=NOW)
        assert rerun["checked"] == 0

    def test_one_failure_does_not_stop_the_batch(self, app, default_org, monkeypatch):
        bad = _meeting(default_org.id, 2.1)
        good = _meeting(default_org.id, 2.2)

        from cadence.services import agenda_snapshot
        real_build = agenda_snapshot.build_snapshot

        def _flaky(organization_id, meeting_id, now=None, sources=None):
            if meeting_id == bad.id:
                raise ConcurrentModificationError("Meeting", meeting_id, {"version": 1})
            return real_build(organization_id, meeting_id, now=now, sources=sources)

        monkeypatch.setattr(agenda_snapshot, "build_snapshot", _flaky)
        result = scheduled_jobs.generate_upcoming_agendas(app, now=NOW)

        assert result["checked"] == 2
        assert result["generated"] == 1
        assert result["failed"] == 1
        assert result["errors"][0]["meeting_id"] == bad.id
        _db.session.expire_all()
        assert _db.session.get(Meeting, good.id).snapshot_generated_at is not None
        assert _db.session.get(Meeting, bad.id).snapshot_generated_at is None

    def test_degraded_snapshots_are_counted(self, app, default_org, monkeypatch):
        _meeting(default_org.id, 2.5)

        from cadence.services import agenda_snapshot

        def _broken(self, organization_id):
            raise RuntimeError("issue tracker offline")

        monkeypatch.setattr(agenda_snapshot.SnapshotSources, "open_issues", _broken)
        result = scheduled_jobs.generate_upcoming_agendas(app, now=NOW)
        assert result["generated"] == 1
        assert result["degraded"] == 1

    def test_window_follows_config(self, app, default_org):
        meeting = _meeting(default_org.id, 5)
        original = (app.config["AGENDA_LOOKAHEAD_MIN_HOURS"], app.config["AGENDA_LOOKAHEAD_MAX_HOURS"])
        app.config["AGENDA_LOOKAHEAD_MIN_HOURS"], app.config["AGENDA_LOOKAHEAD_MAX_HOURS"] = 4, 6
        try:
            result = scheduled_jobs.generate_upcoming_agendas(app, now=NOW)
        finally:
            app.config["AGENDA_LOOKAHEAD_MIN_HOURS"], app.config["AGENDA_LOOKAHEAD_MAX_HOURS"] = original
        assert result["generated"] == 1
        _db.session.expire_all()
        assert _db.session.get(Meeting, meeting.id).snapshot_generated_at is not None


# ═══════════════════════════════════════════════════════════════════════════
#  4. run_job bookkeeping and CLI
# ═══════════════════════════════════════════════════════════════════════════


class TestRunJob:
    def test_run_job_records_outcome(self, app):
        SchedulerService.init_app(app)
        SchedulerService.ensure_jobs_registered()

        result = SchedulerService.run_job("upcoming_agenda_generation")
        assert result["status"] == "success"
        assert result["result"]["checked"] == 0

        _db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="upcoming_agenda_generation").first()
        assert record.run_count == 1
        assert record.last_run_status == "success"

    def test_disabled_job_is_skipped(self, app):
        SchedulerService.init_app(app)
        SchedulerService.ensure_jobs_registered()
        SchedulerService.toggle_job("upcoming_agenda_generation", False)

        result = SchedulerService.run_job("upcoming_agenda_generation")
        assert result["status"] == "skipped"

    def test_failing_job_is_recorded(self, app, monkeypatch):
        from cadence.services import scheduler_service

        def _explode(app):
            raise RuntimeError("boom")

        SchedulerService.init_app(app)
        SchedulerService.ensure_jobs_registered()
        monkeypatch.setitem(scheduler_service._job_registry, "upcoming_agenda_generation", _explode)

        result = SchedulerService.run_job("upcoming_agenda_generation")
        assert result["status"] == "failed"
        assert result["error"] == "boom"

        _db.session.expire_all()
        record = ScheduledJob.query.filter_by(job_name="upcoming_agenda_generation").first()
        assert record.error_count == 1
        assert record.last_error == "boom"

    def test_cli_command(self, app):
        SchedulerService.init_app(app)
        runner = app.test_cli_runner()
        outcome = runner.invoke(args=["generate-agendas"])
        assert outcome.exit_code == 0
