"""
Cadence Engine
Rollup Aggregator — subtree statistics for the objective cascade.

Statistics are always derived on read from the live node set and never
written back onto nodes.

Pure layer (no I/O, no app context needed):
    - NodeArena:       id-indexed node map with a parent → children index
    - compute_rollup:  per-child-subtree and aggregate statistics
    - cascade_view:    children_count / children_on_track per listed node

Store-backed layer:
    - rollup_for_node:    loads a node's descendants + eligible personnel count
    - cascade_for_level:  cascade_view for every objective at one level
    - rollup_summary:     organization-wide totals across every company objective

Partition invariant (per subtree and aggregate):
    not_started + on_track + at_risk + off_track + complete == count
"""

from __future__ import annotations

import logging
import math
from collections import deque
from dataclasses import dataclass, field
from typing import Iterable

from sqlalchemy import func, select

from cadence.core.exceptions import InvalidLevelError, ValidationError
from cadence.models import db
from cadence.models.objective import (
    LEVEL_ORDER,
    NODE_LEVELS,
    OBJECTIVE_STATUSES,
    ON_TRACK_STATUSES,
    ObjectiveNode,
)
from cadence.models.organization import COVERAGE_ACCESS_LEVELS, Person
from cadence.services.helpers.scoped_queries import get_scoped

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _is_objective(node) -> bool:
    return getattr(node, "kind", None) != "issue"


# ═══════════════════════════════════════════════════════════════════════════
#  Node Arena
# ═══════════════════════════════════════════════════════════════════════════


class NodeArena:
    """Id-indexed view of a node set.

    Parent links are plain ids, so walks are id-set operations and a
    corrupt parent cycle is cut by the visited set instead of looping.
    """

    def __init__(self, nodes: Iterable):
        self._nodes = {}
        self._children: dict[int, list[int]] = {}
        for node in nodes:
            self._nodes[node.id] = node
        for node_id in sorted(self._nodes):
            parent_id = self._nodes[node_id].parent_id
            if parent_id is not None:
                self._children.setdefault(parent_id, []).append(node_id)

    def __contains__(self, node_id) -> bool:
        return node_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def get(self, node_id):
        return self._nodes.get(node_id)

    def child_ids(self, node_id) -> list[int]:
        return list(self._children.get(node_id, []))

    def children_of(self, node_id) -> list:
        return [self._nodes[cid] for cid in self._children.get(node_id, [])]

    def descendant_ids(self, node_id) -> list[int]:
        """Breadth-first ids below *node_id* (excluding it)."""
        seen = {node_id}
        order = []
        queue = deque(self._children.get(node_id, []))
        while queue:
            current = queue.popleft()
            if current in seen:
                logger.warning("Parent cycle detected at node %s", current,
                               extra={"node_id": current})
                continue
            seen.add(current)
            order.append(current)
            queue.extend(self._children.get(current, []))
        return order

    def descendants_of(self, node_id) -> list:
        return [self._nodes[i] for i in self.descendant_ids(node_id)]

    def subtree(self, node_id) -> list:
        """The node (when present) plus all of its descendants."""
        head = [self._nodes[node_id]] if node_id in self._nodes else []
        return head + self.descendants_of(node_id)


# ═══════════════════════════════════════════════════════════════════════════
#  Result types
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class SubtreeStats:
    """Statistics for one direct child and everything below it."""
    child_id: int
    count: int = 0
    status_counts: dict = field(default_factory=lambda: {s: 0 for s in OBJECTIVE_STATUSES})
    on_track_or_complete: int = 0
    owner_ids: set = field(default_factory=set)
    unit_ids: set = field(default_factory=set)

    def to_dict(self) -> dict:
        return {
            "child_id": self.child_id,
            "count": self.count,
            **self.status_counts,
            "on_track_or_complete": self.on_track_or_complete,
            "owner_ids": sorted(self.owner_ids),
            "unit_ids": sorted(self.unit_ids),
        }


@dataclass
class RollupResult:
    """Aggregate statistics over a node's whole descendant set."""
    node_id: int
    total: int
    by_level: dict
    status_counts: dict
    on_track_or_complete: int
    owner_ids: set
    unit_ids: set
    eligible_personnel_count: int
    team_coverage_percentage: int
    overall_on_track_percentage: int
    children: list[SubtreeStats] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "node_id": self.node_id,
            "total": self.total,
            "by_level": dict(self.by_level),
            **self.status_counts,
            "on_track_or_complete": self.on_track_or_complete,
            "unique_owners": len(self.owner_ids),
            "owner_ids": sorted(self.owner_ids),
            "unit_ids": sorted(self.unit_ids),
            "eligible_personnel_count": self.eligible_personnel_count,
            "team_coverage_percentage": self.team_coverage_percentage,
            "overall_on_track_percentage": self.overall_on_track_percentage,
            "children": [c.to_dict() for c in self.children],
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Pure computation
# ═══════════════════════════════════════════════════════════════════════════


def _accumulate(stats, node) -> None:
    stats.count += 1
    stats.status_counts[node.status] += 1
    if node.status in ON_TRACK_STATUSES:
        stats.on_track_or_complete += 1
    if node.level == "individual":
        if node.owner_id is not None:
            stats.owner_ids.add(node.owner_id)
        if node.org_unit_id is not None:
            stats.unit_ids.add(node.org_unit_id)


def compute_rollup(node_id, descendants: Iterable, eligible_personnel_count: int) -> RollupResult:
    """Compute subtree statistics for *node_id*.

    Args:
        node_id: The node whose children are aggregated.
        descendants: Every node below *node_id* (extra unrelated nodes are
            ignored; issues are skipped).
        eligible_personnel_count: Denominator for team coverage.

    Returns:
        RollupResult. An empty descendant set yields zero counts, coverage
        0 and overall on-track 100.
    """
    objectives = [n for n in descendants if _is_objective(n) and n.id != node_id]
    for node in objectives:
        if node.status not in OBJECTIVE_STATUSES:
            raise ValidationError(
                f"Node {node.id} has non-objective status {node.status!r}",
                details={"status": node.status},
            )
    arena = NodeArena(objectives)

    children = []
    for child_id in arena.child_ids(node_id):
        stats = SubtreeStats(child_id=child_id)
        for member in arena.subtree(child_id):
            _accumulate(stats, member)
        children.append(stats)

    # Aggregate over everything reachable below node_id
    aggregate = SubtreeStats(child_id=node_id)
    by_level = {level: 0 for level in LEVEL_ORDER}
    for member in arena.descendants_of(node_id):
        _accumulate(aggregate, member)
        by_level[member.level] += 1

    if eligible_personnel_count > 0:
        coverage = _round_half_up(100 * len(aggregate.owner_ids) / eligible_personnel_count)
    else:
        coverage = 0

    if aggregate.count:
        on_track_pct = _round_half_up(100 * aggregate.on_track_or_complete / aggregate.count)
    else:
        on_track_pct = 100

    return RollupResult(
        node_id=node_id,
        total=aggregate.count,
        by_level=by_level,
        status_counts=dict(aggregate.status_counts),
        on_track_or_complete=aggregate.on_track_or_complete,
        owner_ids=set(aggregate.owner_ids),
        unit_ids=set(aggregate.unit_ids),
        eligible_personnel_count=eligible_personnel_count,
        team_coverage_percentage=coverage,
        overall_on_track_percentage=on_track_pct,
        children=children,
    )


def cascade_view(nodes: Iterable, candidates: Iterable) -> list[dict]:
    """Per-node ``children_count`` / ``children_on_track`` for a listing.

    *candidates* is any node set containing the listed nodes' children.
    """
    arena = NodeArena(n for n in candidates if _is_objective(n))
    rows = []
    for node in nodes:
        kids = arena.children_of(node.id)
        rows.append({
            "node_id": node.id,
            "level": node.level,
            "status": node.status,
            "children_count": len(kids),
            "children_on_track": sum(1 for k in kids if k.status in ON_TRACK_STATUSES),
        })
    return rows


# ═══════════════════════════════════════════════════════════════════════════
#  Store-backed entry points
# ═══════════════════════════════════════════════════════════════════════════


def count_eligible_personnel(organization_id: int) -> int:
    """Active personnel with admin / elt / slt access."""
    stmt = select(func.count(Person.id)).where(
        Person.organization_id == organization_id,
        Person.status == "active",
        Person.access_level.in_(COVERAGE_ACCESS_LEVELS),
    )
    return db.session.execute(stmt).scalar_one()


def _load_objectives(organization_id: int) -> list[ObjectiveNode]:
    stmt = select(ObjectiveNode).where(
        ObjectiveNode.organization_id == organization_id,
        ObjectiveNode.kind == "objective",
    )
    return list(db.session.execute(stmt).scalars())


def rollup_for_node(organization_id: int, node_id: int) -> RollupResult:
    """Load *node_id*'s descendants from the store and aggregate them.

    Raises:
        NotFoundError: node missing or in another organization.
    """
    get_scoped(ObjectiveNode, node_id, organization_id=organization_id)
    arena = NodeArena(_load_objectives(organization_id))
    result = compute_rollup(
        node_id,
        arena.descendants_of(node_id),
        count_eligible_personnel(organization_id),
    )
    logger.debug(
        "Rollup computed: total=%d coverage=%d%%",
        result.total, result.team_coverage_percentage,
        extra={"organization_id": organization_id, "node_id": node_id},
    )
    return result


def cascade_for_level(organization_id: int, level: str) -> list[dict]:
    """Cascade rows for every objective at *level*, ordered by id."""
    if level not in NODE_LEVELS:
        raise InvalidLevelError(f"Unknown level {level!r}", details={"level": level})
    objectives = _load_objectives(organization_id)
    listed = sorted((n for n in objectives if n.level == level), key=lambda n: n.id)
    return cascade_view(listed, objectives)


@dataclass
class OrganizationSummary:
    """Organization-wide totals plus one rollup per company objective."""
    organization_id: int
    total: int
    by_level: dict
    status_counts: dict
    on_track_or_complete: int
    team_size: int
    members_with_objectives: int
    team_coverage_percentage: int
    overall_on_track_percentage: int
    companies: list[RollupResult] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "organization_id": self.organization_id,
            "total": self.total,
            "by_level": dict(self.by_level),
            **self.status_counts,
            "on_track_or_complete": self.on_track_or_complete,
            "team_size": self.team_size,
            "members_with_objectives": self.members_with_objectives,
            "team_coverage_percentage": self.team_coverage_percentage,
            "overall_on_track_percentage": self.overall_on_track_percentage,
            "companies": [c.to_dict() for c in self.companies],
        }


def rollup_summary(organization_id: int) -> OrganizationSummary:
    """Totals across every objective of the organization.

    Unlike rollup_for_node the company objectives themselves are counted.
    Each top-level company objective also gets its own RollupResult.
    """
    objectives = _load_objectives(organization_id)
    eligible = count_eligible_personnel(organization_id)
    arena = NodeArena(objectives)

    aggregate = SubtreeStats(child_id=None)
    by_level = {level: 0 for level in LEVEL_ORDER}
    for node in sorted(objectives, key=lambda n: n.id):
        _accumulate(aggregate, node)
        by_level[node.level] += 1

    roots = sorted(
        (n for n in objectives if n.level == "company" and n.parent_id is None),
        key=lambda n: n.id,
    )
    companies = [compute_rollup(r.id, arena.descendants_of(r.id), eligible) for r in roots]

    members = len(aggregate.owner_ids)
    summary = OrganizationSummary(
        organization_id=organization_id,
        total=aggregate.count,
        by_level=by_level,
        status_counts=dict(aggregate.status_counts),
        on_track_or_complete=aggregate.on_track_or_complete,
        team_size=eligible,
        members_with_objectives=members,
        team_coverage_percentage=_round_half_up(100 * members / eligible) if eligible else 0,
        overall_on_track_percentage=(
            _round_half_up(100 * aggregate.on_track_or_complete / aggregate.count)
            if aggregate.count else 100
        ),
        companies=companies,
    )
    logger.debug(
        "Organization summary: total=%d companies=%d", summary.total, len(companies),
        extra={"organization_id": organization_id},
    )
    return summary
