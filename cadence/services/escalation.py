"""
Cadence Engine
Escalation Coordinator — promotes an issue one organizational level up.

escalate():
    Creates a linked successor issue at the next level (in the parent unit)
    and seals the source (status → escalated, escalated_to_id → successor)
    inside ONE store transaction. The source update is a conditional write
    on its pre-state (status, version, escalated_to_id IS NULL):

        guard mismatch       → ConcurrentModificationError
        any storage failure  → EscalationFailedError

    Either way the transaction rolls back and no successor survives.

get_escalation_chain():
    Walks escalated_from_id backward and escalated_to_id forward and returns
    the chain oldest → newest, each entry tagged from / current / to. The
    walk is capped; a revisit or overlong chain raises ChainTooLongError and
    an asymmetric or dangling link raises EscalationIntegrityError. The read
    path never repairs data.

Level promotion: individual → pillar → company.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from cadence.core.exceptions import (
    AlreadyEscalatedError,
    ChainTooLongError,
    ConcurrentModificationError,
    EscalationFailedError,
    EscalationIntegrityError,
    NoParentLevelError,
    NoParentUnitError,
    NotFoundError,
)
from cadence.models.objective import ObjectiveNode, parent_level_of
from cadence.models.organization import OrgUnit
from cadence.services import domain_events
from cadence.services.helpers.scoped_queries import get_scoped, get_scoped_or_none
from cadence.services.record_store import store
from cadence.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_MAX_CHAIN_LENGTH = 16


@dataclass
class EscalationResult:
    source: ObjectiveNode
    successor: ObjectiveNode

    def to_dict(self) -> dict:
        return {
            "source": self.source.to_dict(),
            "successor": self.successor.to_dict(),
        }


@dataclass
class ChainEntry:
    node: ObjectiveNode
    direction: str  # from | current | to

    def to_dict(self) -> dict:
        n = self.node
        return {
            "id": n.id,
            "title": n.title,
            "level": n.level,
            "status": n.status,
            "org_unit_id": n.org_unit_id,
            "priority": n.priority,
            "created_at": n.created_at.isoformat() if n.created_at else None,
            "escalated_at": n.escalated_at.isoformat() if n.escalated_at else None,
            "escalated_by_id": n.escalated_by_id,
            "direction": self.direction,
        }


def _get_issue(organization_id: int, issue_id: int) -> ObjectiveNode:
    node = get_scoped(ObjectiveNode, issue_id, organization_id=organization_id)
    if node.kind != "issue":
        raise NotFoundError(resource="Issue", resource_id=issue_id, organization_id=organization_id)
    return node


# ═══════════════════════════════════════════════════════════════════════════
#  Escalate
# ═══════════════════════════════════════════════════════════════════════════


def escalate(
    organization_id: int,
    issue_id: int,
    acting_user_id: int | None,
    *,
    now: datetime | None = None,
) -> EscalationResult:
    """Escalate *issue_id* to the next organizational level.

    Raises:
        NotFoundError: issue missing, not an issue, or in another organization.
        AlreadyEscalatedError: the issue already has a successor.
        NoParentLevelError: the issue is at company level.
        NoParentUnitError: the issue's unit is a root unit.
        ConcurrentModificationError: the issue changed since it was read.
        EscalationFailedError: storage failure; nothing was persisted.
    """
    now = now or utcnow()
    source = _get_issue(organization_id, issue_id)

    if source.escalated_to_id is not None:
        raise AlreadyEscalatedError(source.id, source.escalated_to_id)

    target_level = parent_level_of(source.level)
    if target_level is None:
        raise NoParentLevelError(source.id, source.level)

    unit = get_scoped_or_none(OrgUnit, source.org_unit_id, organization_id=organization_id)
    if unit is None or unit.parent_unit_id is None:
        raise NoParentUnitError(source.id, source.org_unit_id)

    pre_state = {
        "status": source.status,
        "version": source.version,
        "escalated_to_id": None,
    }

    try:
        with store.transaction():
            successor = ObjectiveNode(
                organization_id=organization_id,
                kind="issue",
                level=target_level,
                status="open",
                title=source.title,
                description=source.description,
                priority=source.priority,
                owner_id=source.owner_id,
                org_unit_id=unit.parent_unit_id,
                escalated_from_id=source.id,
                original_issue_id=source.original_issue_id or source.id,
                original_unit_id=source.original_unit_id or source.org_unit_id,
                escalated_at=now,
                escalated_by_id=acting_user_id,
            )
            store.add(successor)
            store.compare_and_swap(
                ObjectiveNode, source.id,
                expected=pre_state,
                values={"status": "escalated", "escalated_to_id": successor.id},
            )
    except ConcurrentModificationError:
        logger.warning(
            "Escalation lost a race; rolled back",
            extra={"organization_id": organization_id, "issue_id": issue_id},
        )
        raise
    except SQLAlchemyError as exc:
        logger.error(
            "Escalation storage failure; rolled back: %s", exc,
            extra={"organization_id": organization_id, "issue_id": issue_id},
        )
        raise EscalationFailedError(issue_id, str(exc)) from exc

    logger.info(
        "Issue escalated %s → %s", source.level, successor.level,
        extra={
            "organization_id": organization_id,
            "issue_id": source.id,
            "successor_id": successor.id,
        },
    )
    domain_events.publish(
        "issue.escalated",
        organization_id=organization_id,
        entity_type="issue",
        entity_id=source.id,
        actor_id=acting_user_id,
        payload={
            "successor_id": successor.id,
            "from_level": source.level,
            "to_level": successor.level,
            "from_unit_id": source.org_unit_id,
            "to_unit_id": successor.org_unit_id,
            "original_issue_id": successor.original_issue_id,
        },
    )
    return EscalationResult(source=source, successor=successor)


# ═══════════════════════════════════════════════════════════════════════════
#  Chain reconstruction
# ═══════════════════════════════════════════════════════════════════════════


def _max_chain_length() -> int:
    return int(current_app.config.get("MAX_ESCALATION_CHAIN_LENGTH", DEFAULT_MAX_CHAIN_LENGTH))


def get_escalation_chain(
    organization_id: int,
    issue_id: int,
    *,
    max_length: int | None = None,
) -> list[ChainEntry]:
    """Return the escalation chain containing *issue_id*, oldest first.

    Raises:
        NotFoundError: the queried issue does not exist in the organization.
        ChainTooLongError: the chain exceeds *max_length* or revisits a node.
        EscalationIntegrityError: a link is asymmetric or dangling.
    """
    limit = max_length if max_length is not None else _max_chain_length()
    start = _get_issue(organization_id, issue_id)
    visited = {start.id}

    def _step(current, link_id, back_attr):
        nxt = get_scoped_or_none(ObjectiveNode, link_id, organization_id=organization_id)
        if nxt is None:
            raise EscalationIntegrityError(current.id, link_id, "linked issue does not exist")
        if nxt.id in visited:
            raise ChainTooLongError(issue_id, limit, revisited_id=nxt.id)
        if getattr(nxt, back_attr) != current.id:
            raise EscalationIntegrityError(
                current.id, nxt.id,
                f"{back_attr} of {nxt.id} is {getattr(nxt, back_attr)}, expected {current.id}",
            )
        visited.add(nxt.id)
        if len(visited) > limit:
            raise ChainTooLongError(issue_id, limit)
        return nxt

    backward = []
    current = start
    while current.escalated_from_id is not None:
        current = _step(current, current.escalated_from_id, "escalated_to_id")
        backward.append(current)

    forward = []
    current = start
    while current.escalated_to_id is not None:
        current = _step(current, current.escalated_to_id, "escalated_from_id")
        forward.append(current)

    chain = (
        [ChainEntry(n, "from") for n in reversed(backward)]
        + [ChainEntry(start, "current")]
        + [ChainEntry(n, "to") for n in forward]
    )
    logger.debug(
        "Escalation chain length=%d", len(chain),
        extra={"organization_id": organization_id, "issue_id": issue_id},
    )
    return chain
