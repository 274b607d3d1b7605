"""
Cadence Engine
Organization domain models.

Models:
    - Organization: top-level scope; every engine record belongs to one
    - OrgUnit:      team / pillar / company unit forming the unit hierarchy
    - Person:       personnel record used for ownership and coverage

Architecture:
    Organization ──1:N──▶ OrgUnit ──N:1──▶ OrgUnit (parent_unit_id)
    Organization ──1:N──▶ Person
"""

from datetime import datetime, timezone

from cadence.models import db
from cadence.models.base import OrganizationModel


# ── Constants ────────────────────────────────────────────────────────────────

UNIT_LEVELS = {"individual", "pillar", "company"}

PERSON_STATUSES = {"active", "inactive", "invited"}

ACCESS_LEVELS = {"admin", "elt", "slt", "consumer"}

# Personnel counted in the team coverage denominator
COVERAGE_ACCESS_LEVELS = frozenset({"admin", "elt", "slt"})


class Organization(db.Model):
    """Scope boundary for all engine records."""

    __tablename__ = "organizations"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Organization {self.id}: {self.slug}>"


class OrgUnit(OrganizationModel):
    """
    Organizational unit (team, pillar or the company itself).

    Escalation moves an issue from its unit to ``parent_unit_id``; a unit
    without a parent is a root and cannot receive escalations from below
    on its own behalf.
    """

    __tablename__ = "org_units"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    level = db.Column(db.String(20), nullable=False, default="individual",
                      comment="individual | pillar | company")
    parent_unit_id = db.Column(
        db.Integer, db.ForeignKey("org_units.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "level IN ('individual','pillar','company')",
            name="ck_org_unit_level",
        ),
    )

    parent_unit = db.relationship("OrgUnit", remote_side=[id], backref="child_units")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "level": self.level,
            "parent_unit_id": self.parent_unit_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<OrgUnit {self.id}: {self.name} [{self.level}]>"


class Person(OrganizationModel):
    """Personnel record; owners of nodes and metrics reference it."""

    __tablename__ = "people"

    id = db.Column(db.Integer, primary_key=True)
    full_name = db.Column(db.String(200), nullable=False)
    email = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    access_level = db.Column(db.String(20), nullable=False, default="consumer")
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active','inactive','invited')",
            name="ck_person_status",
        ),
        db.CheckConstraint(
            "access_level IN ('admin','elt','slt','consumer')",
            name="ck_person_access_level",
        ),
    )

    @property
    def counts_toward_coverage(self) -> bool:
        return self.status == "active" and self.access_level in COVERAGE_ACCESS_LEVELS

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "full_name": self.full_name,
            "email": self.email,
            "status": self.status,
            "access_level": self.access_level,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Person {self.id}: {self.full_name}>"
