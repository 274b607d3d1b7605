"""
Tests: rollup aggregator.

Covers:
    - NodeArena child index and breadth-first descendant walk
    - parent cycles in corrupt data terminate the walk
    - compute_rollup per-child subtree stats and the partition invariant
    - distinct owners / units among individual-level descendants only
    - team coverage and overall on-track percentages, incl. rounding
    - empty descendant set: zero counts, coverage 0, on-track 100
    - issues in the input are ignored
    - cascade_view children counts
    - store-backed rollup_for_node / cascade_for_level with org scoping
    - organization-wide rollup_summary across company objectives

Pure tests use plain namespaces; store tests build data via ORM helpers.
"""

from __future__ import annotations

from types import SimpleNamespace

import pytest

import cadence.services.rollup as svc
from cadence.core.exceptions import InvalidLevelError, NotFoundError
from cadence.models import db as _db
from cadence.models.objective import OBJECTIVE_STATUSES, ObjectiveNode
from cadence.models.organization import Organization, Person


def _n(node_id, parent_id, level, status, owner_id=None, unit_id=None, kind="objective"):
    return SimpleNamespace(
        id=node_id, parent_id=parent_id, level=level, status=status,
        owner_id=owner_id, org_unit_id=unit_id, kind=kind,
    )


def _sample_tree():
    """Company 1 → pillars 2, 3 → individual objectives below."""
    return [
        _n(2, 1, "pillar", "on_track"),
        _n(3, 1, "pillar", "at_risk"),
        _n(4, 2, "individual", "on_track", owner_id=100, unit_id=10),
        _n(5, 2, "individual", "complete", owner_id=101, unit_id=10),
        _n(6, 2, "individual", "off_track", owner_id=100, unit_id=11),
        _n(7, 3, "individual", "not_started", owner_id=102, unit_id=12),
    ]


# ── NodeArena ────────────────────────────────────────────────────────────────


def test_arena_indexes_children_by_parent():
    arena = svc.NodeArena(_sample_tree())
    assert arena.child_ids(1) == [2, 3]
    assert arena.child_ids(2) == [4, 5, 6]
    assert arena.child_ids(7) == []
    assert 4 in arena and 1 not in arena
    assert len(arena) == 6


def test_arena_descendants_breadth_first():
    arena = svc.NodeArena(_sample_tree())
    assert arena.descendant_ids(1) == [2, 3, 4, 5, 6, 7]
    assert [n.id for n in arena.subtree(3)] == [3, 7]


def test_arena_walk_terminates_on_parent_cycle():
    nodes = [_n(1, 3, "pillar", "on_track"), _n(2, 1, "individual", "on_track", owner_id=1),
             _n(3, 2, "individual", "on_track", owner_id=2)]
    arena = svc.NodeArena(nodes)
    assert sorted(arena.descendant_ids(1)) == [2, 3]


# ── compute_rollup ───────────────────────────────────────────────────────────


def test_rollup_child_subtree_stats():
    result = svc.compute_rollup(1, _sample_tree(), eligible_personnel_count=4)
    by_child = {c.child_id: c for c in result.children}

    pillar_a = by_child[2]
    assert pillar_a.count == 4
    assert pillar_a.status_counts["on_track"] == 2
    assert pillar_a.status_counts["complete"] == 1
    assert pillar_a.status_counts["off_track"] == 1
    assert pillar_a.on_track_or_complete == 3
    assert pillar_a.owner_ids == {100, 101}
    assert pillar_a.unit_ids == {10, 11}

    pillar_b = by_child[3]
    assert pillar_b.count == 2
    assert pillar_b.status_counts["at_risk"] == 1
    assert pillar_b.status_counts["not_started"] == 1
    assert pillar_b.owner_ids == {102}


def test_partition_invariant_holds_per_subtree_and_aggregate():
    result = svc.compute_rollup(1, _sample_tree(), eligible_personnel_count=4)
    for child in result.children:
        assert sum(child.status_counts[s] for s in OBJECTIVE_STATUSES) == child.count
    assert sum(result.status_counts[s] for s in OBJECTIVE_STATUSES) == result.total
    assert sum(c.count for c in result.children) == result.total


def test_rollup_aggregate_percentages():
    result = svc.compute_rollup(1, _sample_tree(), eligible_personnel_count=4)
    assert result.total == 6
    assert result.by_level == {"individual": 4, "pillar": 2, "company": 0}
    # owners 100, 101, 102 of 4 eligible → 75
    assert result.team_coverage_percentage == 75
    # on_track 2 (4 and pillar 2) + complete 1 → 3 / 6
    assert result.overall_on_track_percentage == 50


def test_coverage_rounds_half_up():
    nodes = [_n(2, 1, "individual", "on_track", owner_id=1)]
    assert svc.compute_rollup(1, nodes, 8).team_coverage_percentage == 13  # 12.5
    assert svc.compute_rollup(1, nodes, 3).team_coverage_percentage == 33


def test_owners_above_individual_level_do_not_count():
    nodes = [_n(2, 1, "pillar", "on_track", owner_id=55, unit_id=9)]
    result = svc.compute_rollup(1, nodes, 10)
    assert result.owner_ids == set()
    assert result.unit_ids == set()
    assert result.team_coverage_percentage == 0


def test_empty_descendant_set_boundary():
    result = svc.compute_rollup(1, [], eligible_personnel_count=12)
    assert result.total == 0
    assert result.children == []
    assert all(v == 0 for v in result.status_counts.values())
    assert result.team_coverage_percentage == 0
    assert result.overall_on_track_percentage == 100


def test_zero_eligible_personnel_yields_zero_coverage():
    result = svc.compute_rollup(1, _sample_tree(), eligible_personnel_count=0)
    assert result.team_coverage_percentage == 0


def test_issues_are_skipped():
    nodes = _sample_tree() + [_n(8, 2, "individual", "open", owner_id=103, kind="issue")]
    result = svc.compute_rollup(1, nodes, 4)
    assert result.total == 6
    assert 103 not in result.owner_ids


def test_rollup_does_not_mutate_input():
    nodes = _sample_tree()
    before = [vars(n).copy() for n in nodes]
    svc.compute_rollup(1, nodes, 4)
    assert [vars(n) for n in nodes] == before


def test_to_dict_shape():
    data = svc.compute_rollup(1, _sample_tree(), 4).to_dict()
    assert data["unique_owners"] == 3
    assert data["on_track"] == 2
    assert data["children"][0]["owner_ids"] == [100, 101]


# ── cascade_view ─────────────────────────────────────────────────────────────


def test_cascade_view_counts_children():
    nodes = _sample_tree()
    pillars = [n for n in nodes if n.level == "pillar"]
    rows = {r["node_id"]: r for r in svc.cascade_view(pillars, nodes)}
    assert rows[2]["children_count"] == 3
    assert rows[2]["children_on_track"] == 2
    assert rows[3]["children_count"] == 1
    assert rows[3]["children_on_track"] == 0


# ── Store-backed ─────────────────────────────────────────────────────────────


def _make_person(org_id, name, access_level="elt", status="active"):
    p = Person(organization_id=org_id, full_name=name, access_level=access_level, status=status)
    _db.session.add(p)
    _db.session.flush()
    return p


def _make_node(org_id, level, status, parent=None, owner=None, kind="objective"):
    node = ObjectiveNode(
        organization_id=org_id, kind=kind, level=level, status=status,
        title=f"{level} {status}", parent_id=parent.id if parent else None,
        owner_id=owner.id if owner else None,
    )
    _db.session.add(node)
    _db.session.flush()
    return node


def test_rollup_for_node_reads_store(default_org):
    org_id = default_org.id
    alice = _make_person(org_id, "Alice")
    bob = _make_person(org_id, "Bob", access_level="slt")
    _make_person(org_id, "Carol", access_level="admin")
    _make_person(org_id, "Dan", access_level="consumer")
    _make_person(org_id, "Eve", status="inactive")

    company = _make_node(org_id, "company", "on_track")
    pillar = _make_node(org_id, "pillar", "at_risk", parent=company)
    _make_node(org_id, "individual", "on_track", parent=pillar, owner=alice)
    _make_node(org_id, "individual", "complete", parent=pillar, owner=bob)
    _make_node(org_id, "individual", "open", parent=pillar, owner=bob, kind="issue")
    _db.session.commit()

    result = svc.rollup_for_node(org_id, company.id)
    assert result.total == 3
    assert result.eligible_personnel_count == 3
    assert result.team_coverage_percentage == 67
    assert result.overall_on_track_percentage == 67


def test_rollup_for_leaf_node(default_org):
    leaf = _make_node(default_org.id, "company", "not_started")
    _db.session.commit()
    result = svc.rollup_for_node(default_org.id, leaf.id)
    assert result.total == 0
    assert result.overall_on_track_percentage == 100


def test_rollup_for_node_in_other_org_is_not_found(default_org):
    other = Organization(name="Other", slug="other")
    _db.session.add(other)
    _db.session.flush()
    node = _make_node(other.id, "company", "on_track")
    _db.session.commit()
    with pytest.raises(NotFoundError):
        svc.rollup_for_node(default_org.id, node.id)


def test_cascade_for_level(default_org):
    org_id = default_org.id
    owner = _make_person(org_id, "Owner")
    company = _make_node(org_id, "company", "on_track")
    pillar = _make_node(org_id, "pillar", "on_track", parent=company)
    _make_node(org_id, "individual", "off_track", parent=pillar, owner=owner)
    _make_node(org_id, "individual", "complete", parent=pillar, owner=owner)
    _db.session.commit()

    rows = svc.cascade_for_level(org_id, "pillar")
    assert rows == [{
        "node_id": pillar.id, "level": "pillar", "status": "on_track",
        "children_count": 2, "children_on_track": 1,
    }]


def test_cascade_for_unknown_level():
    with pytest.raises(InvalidLevelError):
        svc.cascade_for_level(1, "division")


def test_eligible_personnel_count_scoped(default_org):
    other = Organization(name="Other", slug="other-org")
    _db.session.add(other)
    _db.session.flush()
    _make_person(default_org.id, "In")
    _make_person(other.id, "Out")
    _db.session.commit()
    assert svc.count_eligible_personnel(default_org.id) == 1


def test_rollup_summary_covers_every_company(default_org):
    org_id = default_org.id
    alice = _make_person(org_id, "Alice")
    bob = _make_person(org_id, "Bob", access_level="slt")
    _make_person(org_id, "Carol", access_level="admin")

    growth = _make_node(org_id, "company", "on_track")
    sales = _make_node(org_id, "pillar", "at_risk", parent=growth)
    _make_node(org_id, "individual", "on_track", parent=sales, owner=alice)
    _make_node(org_id, "individual", "complete", parent=sales, owner=bob)
    _make_node(org_id, "individual", "open", parent=sales, owner=bob, kind="issue")
    margin = _make_node(org_id, "company", "off_track")
    _make_node(org_id, "pillar", "not_started", parent=margin)

    other = Organization(name="Other", slug="other")
    _db.session.add(other)
    _db.session.flush()
    _make_node(other.id, "company", "complete")
    _db.session.commit()

    summary = svc.rollup_summary(org_id)
    assert summary.total == 6
    assert summary.by_level == {"individual": 2, "pillar": 2, "company": 2}
    assert sum(summary.status_counts.values()) == summary.total
    assert summary.status_counts["on_track"] == 2
    assert summary.status_counts["off_track"] == 1
    assert summary.on_track_or_complete == 3
    assert summary.overall_on_track_percentage == 50
    assert summary.team_size == 3
    assert summary.members_with_objectives == 2
    assert summary.team_coverage_percentage == 67

    assert [c.node_id for c in summary.companies] == [growth.id, margin.id]
    assert [c.total for c in summary.companies] == [3, 1]
    payload = summary.to_dict()
    assert payload["at_risk"] == 1
    assert len(payload["companies"]) == 2


def test_rollup_summary_for_empty_organization(default_org):
    summary = svc.rollup_summary(default_org.id)
    assert summary.total == 0
    assert summary.companies == []
    assert summary.team_coverage_percentage == 0
    assert summary.overall_on_track_percentage == 100
