"""
Cadence Engine
Record Store — thin storage boundary over the Flask-SQLAlchemy session.

Services never issue blind UPDATEs for state transitions. They go through
``compare_and_swap``, which conditions the write on the record's expected
pre-state and bumps ``version``; a zero-rowcount result means somebody else
got there first.

``transaction()`` is the one multi-write atomic unit (escalation uses it):
commit on success, rollback on any exception.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from sqlalchemy import select, update

from cadence.core.exceptions import ConcurrentModificationError
from cadence.models import db

logger = logging.getLogger(__name__)


class RecordStore:
    """Storage primitives used by the engine services."""

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session if self._session is not None else db.session

    # ── Reads ────────────────────────────────────────────────────────────

    def get(self, model, pk: int, *, organization_id: int):
        """Return the record or None; records of other organizations read as None."""
        stmt = select(model).where(model.id == pk, model.organization_id == organization_id)
        return self.session.execute(stmt).scalar_one_or_none()

    # ── Writes ───────────────────────────────────────────────────────────

    def add(self, obj):
        """Stage *obj* and flush so it receives its primary key."""
        self.session.add(obj)
        self.session.flush()
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.flush()

    def compare_and_swap(self, model, pk: int, expected: dict, values: dict) -> int:
        """Conditionally update one row and return its new version.

        The UPDATE matches only when every ``expected`` column still holds
        the given value (``None`` means IS NULL). ``version`` is incremented
        in the same statement.

        Raises:
            ConcurrentModificationError: no row matched the pre-state.
        """
        conditions = [model.id == pk]
        for column, value in expected.items():
            attr = getattr(model, column)
            conditions.append(attr.is_(None) if value is None else attr == value)

        stmt = (
            update(model)
            .where(*conditions)
            .values(**values, version=model.version + 1)
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        if result.rowcount != 1:
            logger.info(
                "Conditional write on %s id=%s matched no row (expected=%s)",
                model.__name__, pk, expected,
            )
            raise ConcurrentModificationError(model.__name__, pk, expected)

        # Reload the identity-map copy so callers see the committed state
        obj = self.session.get(model, pk)
        if obj is not None:
            self.session.refresh(obj)
            return obj.version
        return expected.get("version", 0) + 1

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    @contextmanager
    def transaction(self):
        """Atomic unit: commit on success, rollback on any exception."""
        try:
            yield self
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


# Shared instance bound to the Flask-SQLAlchemy scoped session
store = RecordStore()
