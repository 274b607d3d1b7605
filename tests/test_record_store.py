"""
Tests: record store primitives and organization-scoped lookups.
"""

from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from cadence.core.exceptions import ConcurrentModificationError, NotFoundError
from cadence.models import db as _db
from cadence.models.meeting import AgendaSection, Meeting
from cadence.models.organization import Organization, OrgUnit
from cadence.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from cadence.services.record_store import RecordStore, store

T0 = datetime(2026, 4, 6, 9, 0, tzinfo=timezone.utc)


def _meeting(org_id):
    m = Meeting(organization_id=org_id, scheduled_at=T0, queued_issue_ids=[])
    _db.session.add(m)
    _db.session.commit()
    return m


# ── compare_and_swap ─────────────────────────────────────────────────────────


def test_cas_updates_and_bumps_version(default_org):
    meeting = _meeting(default_org.id)
    new_version = store.compare_and_swap(
        Meeting, meeting.id,
        expected={"status": "scheduled", "version": 1},
        values={"title": "Renamed"},
    )
    store.commit()
    assert new_version == 2
    assert meeting.title == "Renamed"
    assert meeting.version == 2


def test_cas_rejects_wrong_pre_state(default_org):
    meeting = _meeting(default_org.id)
    with pytest.raises(ConcurrentModificationError) as exc_info:
        store.compare_and_swap(
            Meeting, meeting.id,
            expected={"status": "in_progress", "version": 1},
            values={"title": "Nope"},
        )
    assert exc_info.value.resource == "Meeting"
    assert exc_info.value.expected["status"] == "in_progress"
    _db.session.rollback()
    assert _db.session.get(Meeting, meeting.id).title == "Weekly L10"


def test_cas_none_means_is_null(default_org):
    meeting = _meeting(default_org.id)
    store.compare_and_swap(Meeting, meeting.id, expected={"started_at": None}, values={})
    with pytest.raises(ConcurrentModificationError):
        store.compare_and_swap(Meeting, meeting.id, expected={"version": 1}, values={})


# ── transaction ──────────────────────────────────────────────────────────────


def test_transaction_commits(default_org):
    with store.transaction():
        store.add(OrgUnit(organization_id=default_org.id, name="Ops", level="pillar"))
    _db.session.rollback()
    assert OrgUnit.query.filter_by(name="Ops").count() == 1


def test_transaction_rolls_back_on_error(default_org):
    with pytest.raises(RuntimeError):
        with store.transaction():
            store.add(OrgUnit(organization_id=default_org.id, name="Ghost", level="pillar"))
            raise RuntimeError("abort")
    assert OrgUnit.query.filter_by(name="Ghost").count() == 0


def test_get_respects_organization(default_org):
    other = Organization(name="Other", slug="other")
    _db.session.add(other)
    _db.session.commit()
    meeting = _meeting(default_org.id)
    assert store.get(Meeting, meeting.id, organization_id=default_org.id) is meeting
    assert store.get(Meeting, meeting.id, organization_id=other.id) is None


def test_explicit_session(default_org):
    custom = RecordStore(session=_db.session)
    unit = custom.add(OrgUnit(organization_id=default_org.id, name="Bound", level="company"))
    assert unit.id is not None
    custom.delete(unit)
    assert _db.session.execute(select(OrgUnit).where(OrgUnit.name == "Bound")).first() is None


# ── Scoped queries ───────────────────────────────────────────────────────────


class TestScopedQueries:
    def test_found_in_scope(self, default_org):
        meeting = _meeting(default_org.id)
        assert get_scoped(Meeting, meeting.id, organization_id=default_org.id) is meeting

    def test_foreign_record_reads_as_missing(self, default_org):
        other = Organization(name="Other", slug="other")
        _db.session.add(other)
        _db.session.commit()
        meeting = _meeting(default_org.id)
        with pytest.raises(NotFoundError) as exc_info:
            get_scoped(Meeting, meeting.id, organization_id=other.id)
        assert exc_info.value.resource == "Meeting"
        assert get_scoped_or_none(Meeting, meeting.id, organization_id=other.id) is None

    def test_scope_is_mandatory(self):
        with pytest.raises(ValueError):
            get_scoped(Meeting, 1)

    def test_scope_column_must_exist(self):
        with pytest.raises(ValueError):
            get_scoped(AgendaSection, 1, organization_id=1)

    def test_meeting_scope(self, default_org):
        meeting = _meeting(default_org.id)
        section = AgendaSection(meeting_id=meeting.id, name="segue",
                                planned_duration_minutes=5, sort_order=0)
        _db.session.add(section)
        _db.session.commit()
        assert get_scoped(AgendaSection, section.id, meeting_id=meeting.id) is section
        with pytest.raises(NotFoundError):
            get_scoped(AgendaSection, section.id, meeting_id=meeting.id + 1)

    def test_none_pk_short_circuits(self):
        assert get_scoped_or_none(OrgUnit, None, organization_id=1) is None
