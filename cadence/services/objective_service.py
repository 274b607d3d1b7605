"""
Cadence Engine
Objective / issue edit path.

The normal create / edit / delete path for ObjectiveNode. It enforces the
cascade invariants every other component relies on:

    - parent_id points at a node exactly one level higher (same kind,
      same organization)
    - individual-level nodes have an owner
    - status belongs to the node kind's status set
    - ``escalated`` and the escalation link fields are never written here;
      only ``cadence.services.escalation`` does that, atomically
    - a node with children or an escalation link is never deleted

Edits are conditional writes on ``version`` through the record store.
"""

from __future__ import annotations

import logging

from sqlalchemy import select

from cadence.core.exceptions import InvalidLevelError, ValidationError
from cadence.models import db
from cadence.models.objective import (
    ESCALATION_FIELDS,
    NODE_KINDS,
    NODE_LEVELS,
    ObjectiveNode,
    statuses_for_kind,
    validate_parent_level,
)
from cadence.models.organization import OrgUnit, Person
from cadence.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from cadence.services.record_store import store

logger = logging.getLogger(__name__)

_EDITABLE_FIELDS = ("title", "description", "status", "priority",
                    "owner_id", "org_unit_id", "parent_id")


# ── Validation ───────────────────────────────────────────────────────────────


def _validate_parent(organization_id: int, kind: str, level: str, parent_id) -> None:
    if parent_id is None:
        return
    parent = get_scoped_or_none(ObjectiveNode, parent_id, organization_id=organization_id)
    if parent is None:
        raise ValidationError(
            f"Parent node {parent_id} not found",
            details={"parent_id": "not found"},
        )
    if parent.kind != kind:
        raise ValidationError(
            f"A {kind} cannot be placed under a {parent.kind}",
            details={"parent_id": "kind mismatch"},
        )
    if not validate_parent_level(level, parent.level):
        raise InvalidLevelError(
            f"A {level}-level node cannot have a {parent.level}-level parent",
            details={"parent_id": f"expected parent level above {level}"},
        )


def _validate_refs(organization_id: int, owner_id, org_unit_id) -> None:
    if owner_id is not None and get_scoped_or_none(
        Person, owner_id, organization_id=organization_id
    ) is None:
        raise ValidationError(f"Owner {owner_id} not found", details={"owner_id": "not found"})
    if org_unit_id is not None and get_scoped_or_none(
        OrgUnit, org_unit_id, organization_id=organization_id
    ) is None:
        raise ValidationError(
            f"Org unit {org_unit_id} not found", details={"org_unit_id": "not found"},
        )


def _validate_status(kind: str, status: str) -> None:
    if status == "escalated":
        raise ValidationError(
            "Status 'escalated' is set by escalation only",
            details={"status": "use escalate()"},
        )
    if status not in statuses_for_kind(kind):
        raise ValidationError(
            f"Invalid {kind} status {status!r}",
            details={"status": f"one of {statuses_for_kind(kind)}"},
        )


# ── CRUD ─────────────────────────────────────────────────────────────────────


def get_node(organization_id: int, node_id: int) -> ObjectiveNode:
    return get_scoped(ObjectiveNode, node_id, organization_id=organization_id)


def list_nodes(
    organization_id: int,
    *,
    kind: str | None = None,
    level: str | None = None,
    status: str | None = None,
) -> list[ObjectiveNode]:
    """Nodes of an organization with optional filters, ordered by id."""
    stmt = select(ObjectiveNode).where(ObjectiveNode.organization_id == organization_id)
    if kind:
        stmt = stmt.where(ObjectiveNode.kind == kind)
    if level:
        stmt = stmt.where(ObjectiveNode.level == level)
    if status:
        stmt = stmt.where(ObjectiveNode.status == status)
    return list(db.session.execute(stmt.order_by(ObjectiveNode.id)).scalars())


def create_node(organization_id: int, data: dict) -> ObjectiveNode:
    """Create an objective or issue.

    Args:
        organization_id: Owning organization.
        data: ``kind``, ``level``, ``title`` required; ``status``,
              ``parent_id``, ``owner_id``, ``org_unit_id``, ``priority``,
              ``description`` optional.

    Raises:
        ValidationError / InvalidLevelError: a cascade invariant is violated.
    """
    forbidden = ESCALATION_FIELDS & set(data)
    if forbidden:
        raise ValidationError(
            "Escalation fields cannot be set on create",
            details={f: "read-only" for f in sorted(forbidden)},
        )

    kind = data.get("kind", "objective")
    level = data.get("level")
    title = (data.get("title") or "").strip()
    if kind not in NODE_KINDS:
        raise ValidationError(f"Invalid kind {kind!r}", details={"kind": "objective or issue"})
    if level not in NODE_LEVELS:
        raise InvalidLevelError(f"Invalid level {level!r}", details={"level": "unknown level"})
    if not title:
        raise ValidationError("Title is required", details={"title": "required"})

    status = data.get("status") or ("not_started" if kind == "objective" else "open")
    _validate_status(kind, status)

    owner_id = data.get("owner_id")
    if level == "individual" and owner_id is None:
        raise ValidationError(
            "Individual-level nodes require an owner", details={"owner_id": "required"},
        )
    _validate_refs(organization_id, owner_id, data.get("org_unit_id"))
    _validate_parent(organization_id, kind, level, data.get("parent_id"))

    node = ObjectiveNode(
        organization_id=organization_id,
        kind=kind,
        level=level,
        status=status,
        title=title,
        description=data.get("description", ""),
        parent_id=data.get("parent_id"),
        owner_id=owner_id,
        org_unit_id=data.get("org_unit_id"),
        priority=data.get("priority") if kind == "issue" else None,
    )
    store.add(node)
    store.commit()
    logger.info(
        "ObjectiveNode created id=%s kind=%s level=%s", node.id, kind, level,
        extra={"organization_id": organization_id, "node_id": node.id},
    )
    return node


def update_node(organization_id: int, node_id: int, data: dict) -> ObjectiveNode:
    """Edit whitelisted fields with a conditional write on ``version``.

    Raises:
        NotFoundError: node missing or in another organization.
        ValidationError: escalation fields touched, or an invariant broken.
        ConcurrentModificationError: the node changed since it was read.
    """
    node = get_scoped(ObjectiveNode, node_id, organization_id=organization_id)

    forbidden = ESCALATION_FIELDS & set(data)
    if forbidden:
        raise ValidationError(
            "Escalation fields are managed by escalation only",
            details={f: "read-only" for f in sorted(forbidden)},
        )

    values = {k: data[k] for k in _EDITABLE_FIELDS if k in data}
    if "title" in values:
        values["title"] = (values["title"] or "").strip()
        if not values["title"]:
            raise ValidationError("Title is required", details={"title": "required"})
    if "status" in values:
        if node.status == "escalated" and values["status"] != "escalated":
            raise ValidationError(
                f"Issue {node.id} is escalated; its status is sealed",
                details={"status": "sealed"},
            )
        if values["status"] != node.status:
            _validate_status(node.kind, values["status"])
    if "priority" in values and node.kind != "issue":
        raise ValidationError("Only issues carry a priority", details={"priority": "issue only"})

    owner_id = values.get("owner_id", node.owner_id)
    if node.level == "individual" and owner_id is None:
        raise ValidationError(
            "Individual-level nodes require an owner", details={"owner_id": "required"},
        )
    _validate_refs(organization_id, values.get("owner_id"), values.get("org_unit_id"))
    if "parent_id" in values:
        if values["parent_id"] == node.id:
            raise ValidationError("A node cannot be its own parent", details={"parent_id": "self"})
        _validate_parent(organization_id, node.kind, node.level, values["parent_id"])

    if not values:
        return node

    store.compare_and_swap(
        ObjectiveNode, node.id,
        expected={"version": data.get("version", node.version)},
        values=values,
    )
    store.commit()
    logger.info(
        "ObjectiveNode updated id=%s fields=%s", node.id, sorted(values),
        extra={"organization_id": organization_id, "node_id": node.id},
    )
    return node


def delete_node(organization_id: int, node_id: int) -> None:
    """Delete a leaf node with no escalation links.

    Raises:
        ValidationError: the node has children or an escalation link.
    """
    node = get_scoped(ObjectiveNode, node_id, organization_id=organization_id)

    has_children = db.session.execute(
        select(ObjectiveNode.id).where(ObjectiveNode.parent_id == node.id).limit(1)
    ).first() is not None
    if has_children:
        raise ValidationError(
            f"Node {node.id} has children and cannot be deleted",
            details={"children": "present"},
        )
    linked_from = db.session.execute(
        select(ObjectiveNode.id).where(ObjectiveNode.escalated_to_id == node.id).limit(1)
    ).first() is not None
    if node.escalated_to_id is not None or node.escalated_from_id is not None or linked_from:
        raise ValidationError(
            f"Node {node.id} is part of an escalation chain and cannot be deleted",
            details={"escalation": "linked"},
        )

    store.delete(node)
    store.commit()
    logger.info(
        "ObjectiveNode deleted id=%s", node_id,
        extra={"organization_id": organization_id, "node_id": node_id},
    )
