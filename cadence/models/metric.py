"""
Cadence Engine
Scorecard metric models.

Models:
    - Metric:      weekly scorecard measurable with a goal and an owner
    - MetricValue: one recorded value for a metric

The agenda snapshot reads active metrics ordered by ``display_order`` and
pairs each with its most recent value (absence is a valid outcome).
"""

from datetime import datetime, timezone

from cadence.models import db
from cadence.models.base import OrganizationModel


class Metric(OrganizationModel):
    """Scorecard metric."""

    __tablename__ = "metrics"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    goal = db.Column(db.Float, nullable=True)
    unit = db.Column(db.String(30), default="")
    goal_direction = db.Column(db.String(10), default="above",
                               comment="above | below: side of goal that is on track")
    owner_id = db.Column(
        db.Integer, db.ForeignKey("people.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    display_order = db.Column(db.Integer, default=0, nullable=False)
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "goal_direction IN ('above','below')",
            name="ck_metric_goal_direction",
        ),
    )

    values = db.relationship(
        "MetricValue", backref="metric", lazy="dynamic",
        cascade="all, delete-orphan", order_by="MetricValue.recorded_at.desc()",
    )
    owner = db.relationship("Person", foreign_keys=[owner_id])

    def is_on_track(self, value):
        """Return True/False against the goal, or None when undecidable."""
        if value is None or self.goal is None:
            return None
        if self.goal_direction == "below":
            return value <= self.goal
        return value >= self.goal

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "goal": self.goal,
            "unit": self.unit,
            "goal_direction": self.goal_direction,
            "owner_id": self.owner_id,
            "is_active": self.is_active,
            "display_order": self.display_order,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Metric {self.id}: {self.name}>"


class MetricValue(db.Model):
    """One recorded value of a metric."""

    __tablename__ = "metric_values"

    id = db.Column(db.Integer, primary_key=True)
    metric_id = db.Column(
        db.Integer, db.ForeignKey("metrics.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    value = db.Column(db.Float, nullable=False)
    recorded_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "metric_id": self.metric_id,
            "value": self.value,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }

    def __repr__(self):
        return f"<MetricValue metric={self.metric_id} value={self.value}>"
