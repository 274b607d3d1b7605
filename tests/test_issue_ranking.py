"""
Tests: issue prioritization ranker.

Covers:
    - priority × 10 + capped age scoring, default priority for unset values
    - whole-day flooring of issue age and the 14-day age cap
    - ordering scenarios (priority beats age, three-issue agenda case)
    - tie breaking by created_at then id; determinism across input orders
    - identity of returned objects (no score attached)
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from cadence.services import issue_ranking as svc

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _issue(issue_id: int, priority, age: timedelta):
    return SimpleNamespace(id=issue_id, priority=priority, created_at=NOW - age)


# ── Scoring ──────────────────────────────────────────────────────────────────


def test_score_uses_priority_and_age():
    assert svc.score_issue(_issue(1, 9, timedelta(days=1)), NOW) == 91


def test_unset_priority_defaults_to_five():
    assert svc.score_issue(_issue(1, None, timedelta(days=0)), NOW) == 50


def test_age_is_floored_to_whole_days():
    assert svc.score_issue(_issue(1, 3, timedelta(hours=23, minutes=59)), NOW) == 30
    assert svc.score_issue(_issue(1, 3, timedelta(days=2, hours=23)), NOW) == 32


def test_age_bonus_capped_at_fourteen_days():
    assert svc.score_issue(_issue(1, 5, timedelta(days=14)), NOW) == 64
    assert svc.score_issue(_issue(1, 5, timedelta(days=90)), NOW) == 64


def test_naive_created_at_treated_as_utc():
    naive = SimpleNamespace(id=1, priority=1, created_at=datetime(2026, 2, 25, 12, 0))
    assert svc.score_issue(naive, NOW) == 15


def test_custom_default_priority_and_cap():
    issue = _issue(1, None, timedelta(days=30))
    assert svc.score_issue(issue, NOW, default_priority=3, age_cap_days=7) == 37


# ── Ordering ─────────────────────────────────────────────────────────────────


def test_high_priority_new_issue_outranks_low_priority_old_issue():
    urgent = _issue(1, 10, timedelta(0))
    stale = _issue(2, 2, timedelta(days=14))
    assert svc.rank_issues([stale, urgent], NOW) == [urgent, stale]


def test_three_issue_agenda_scenario():
    a = _issue(1, 9, timedelta(days=1))
    b = _issue(2, 5, timedelta(days=10))
    c = _issue(3, 5, timedelta(days=1))
    assert [svc.score_issue(i, NOW) for i in (a, b, c)] == [91, 60, 51]
    assert svc.rank_issues([c, b, a], NOW) == [a, b, c]


def test_ties_broken_by_earlier_created_at():
    # Both score 64: priority 5 with the age bonus capped
    older = _issue(10, 5, timedelta(days=40))
    newer = _issue(5, 5, timedelta(days=20))
    assert svc.rank_issues([newer, older], NOW) == [older, newer]


def test_full_ties_broken_by_id():
    created = NOW - timedelta(days=3)
    first = SimpleNamespace(id=4, priority=7, created_at=created)
    second = SimpleNamespace(id=9, priority=7, created_at=created)
    assert svc.rank_issues([second, first], NOW) == [first, second]


def test_ranking_is_deterministic_for_every_input_order():
    issues = [
        _issue(1, 5, timedelta(days=3)),
        _issue(2, 5, timedelta(days=3)),
        _issue(3, None, timedelta(days=3)),
        _issue(4, 8, timedelta(0)),
        _issue(5, 2, timedelta(days=60)),
    ]
    expected = svc.rank_issues(issues, NOW)
    for perm in itertools.permutations(issues):
        assert svc.rank_issues(list(perm), NOW) == expected


def test_returns_same_objects_without_score():
    issue = _issue(1, 4, timedelta(days=2))
    ranked = svc.rank_issues([issue], NOW)
    assert ranked[0] is issue
    assert not hasattr(issue, "score")


def test_empty_input():
    assert svc.rank_issues([], NOW) == []
