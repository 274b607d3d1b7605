"""
Cadence Engine
Objective cascade domain models.

Models:
    - ObjectiveNode: one record type for quarterly objectives ("rocks") and
                     issues, positioned in the individual → pillar → company
                     hierarchy

Architecture:
    ObjectiveNode ──N:1──▶ ObjectiveNode   (parent_id, exactly one level up)
    ObjectiveNode ──1:1──▶ ObjectiveNode   (escalated_to_id ⇄ escalated_from_id)
    ObjectiveNode ──N:1──▶ OrgUnit, Person

Lifecycle states:
    objective:  not_started → on_track ⇄ at_risk ⇄ off_track → complete
    issue:      open → prioritized → resolved  |  open/prioritized → escalated

Rollup statistics are never stored here; they are derived on read by
``cadence.services.rollup``.
"""

from datetime import datetime, timezone

from cadence.models import db
from cadence.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

NODE_KINDS = {"objective", "issue"}

LEVEL_ORDER = ["individual", "pillar", "company"]
NODE_LEVELS = set(LEVEL_ORDER)

PARENT_LEVEL = {
    "individual": "pillar",
    "pillar":     "company",
    "company":    None,
}

OBJECTIVE_STATUSES = ["not_started", "on_track", "at_risk", "off_track", "complete"]
ISSUE_STATUSES = ["open", "prioritized", "escalated", "resolved"]

# Objective statuses counted as healthy in rollups
ON_TRACK_STATUSES = frozenset({"on_track", "complete"})

# Issue statuses eligible for the meeting issue queue
QUEUEABLE_ISSUE_STATUSES = frozenset({"open", "prioritized"})

# Fields only the escalation coordinator may write
ESCALATION_FIELDS = frozenset({
    "escalated_from_id", "escalated_to_id", "original_issue_id",
    "original_unit_id", "escalated_at", "escalated_by_id",
})


# ── Level Guards ─────────────────────────────────────────────────────────────


def parent_level_of(level):
    """Return the level one step above *level*, or None at the top."""
    return PARENT_LEVEL.get(level)


def validate_parent_level(child_level, parent_level):
    """Return True if a node at *child_level* may hang under *parent_level*."""
    return parent_level is not None and PARENT_LEVEL.get(child_level) == parent_level


def statuses_for_kind(kind):
    return OBJECTIVE_STATUSES if kind == "objective" else ISSUE_STATUSES


class ObjectiveNode(OrganizationModel):
    """
    Objective or issue at one organizational level.

    ``parent_id`` links to a node exactly one level higher (forest: many
    company roots may coexist). ``version`` is bumped by every conditional
    write in ``RecordStore.compare_and_swap``.
    """

    __tablename__ = "objective_nodes"

    id = db.Column(db.Integer, primary_key=True)
    kind = db.Column(db.String(20), nullable=False, default="objective",
                     comment="objective | issue")
    level = db.Column(db.String(20), nullable=False,
                      comment="individual | pillar | company")
    parent_id = db.Column(
        db.Integer, db.ForeignKey("objective_nodes.id", ondelete="RESTRICT"),
        nullable=True, index=True,
    )
    status = db.Column(db.String(20), nullable=False)
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    owner_id = db.Column(
        db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    org_unit_id = db.Column(
        db.Integer, db.ForeignKey("org_units.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    # Issue-only
    priority = db.Column(db.Integer, nullable=True,
                         comment="Higher = more urgent; NULL ranks as 5")
    escalated_from_id = db.Column(
        db.Integer, db.ForeignKey("objective_nodes.id", ondelete="RESTRICT"),
        nullable=True, index=True,
    )
    escalated_to_id = db.Column(
        db.Integer, db.ForeignKey("objective_nodes.id", ondelete="RESTRICT"),
        nullable=True, index=True,
    )
    original_issue_id = db.Column(db.Integer, nullable=True,
                                  comment="First issue of the escalation chain")
    original_unit_id = db.Column(
        db.Integer, db.ForeignKey("org_units.id", ondelete="SET NULL"),
        nullable=True,
    )
    escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)
    escalated_by_id = db.Column(
        db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"),
        nullable=True,
    )

    version = db.Column(db.Integer, nullable=False, default=1,
                        comment="Optimistic concurrency counter")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    # ── Constraints ──────────────────────────────────────────────────────
    __table_args__ = (
        db.CheckConstraint("kind IN ('objective','issue')", name="ck_node_kind"),
        db.CheckConstraint(
            "level IN ('individual','pillar','company')",
            name="ck_node_level",
        ),
        db.CheckConstraint(
            "(kind = 'objective' AND status IN "
            "('not_started','on_track','at_risk','off_track','complete')) OR "
            "(kind = 'issue' AND status IN "
            "('open','prioritized','escalated','resolved'))",
            name="ck_node_status",
        ),
        db.Index("ix_objective_nodes_org_kind_status", "organization_id", "kind", "status"),
    )

    # ── Relationships ────────────────────────────────────────────────────
    parent = db.relationship(
        "ObjectiveNode", remote_side=[id], foreign_keys=[parent_id],
        backref=db.backref("children", lazy="dynamic"),
    )
    owner = db.relationship("Person", foreign_keys=[owner_id])
    org_unit = db.relationship("OrgUnit", foreign_keys=[org_unit_id])

    @property
    def is_issue(self) -> bool:
        return self.kind == "issue"

    def to_dict(self):
        result = {
            "id": self.id,
            "organization_id": self.organization_id,
            "kind": self.kind,
            "level": self.level,
            "parent_id": self.parent_id,
            "status": self.status,
            "title": self.title,
            "description": self.description,
            "owner_id": self.owner_id,
            "org_unit_id": self.org_unit_id,
            "version": self.version,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if self.is_issue:
            result.update({
                "priority": self.priority,
                "escalated_from_id": self.escalated_from_id,
                "escalated_to_id": self.escalated_to_id,
                "original_issue_id": self.original_issue_id,
                "original_unit_id": self.original_unit_id,
                "escalated_at": self.escalated_at.isoformat() if self.escalated_at else None,
                "escalated_by_id": self.escalated_by_id,
            })
        return result

    def __repr__(self):
        return f"<ObjectiveNode {self.id} {self.kind}/{self.level} [{self.status}]>"
