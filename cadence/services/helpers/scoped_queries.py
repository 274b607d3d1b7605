"""
Organization-scoped query helpers.

Every get-by-id in the engine goes through these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
ignore the organization boundary.

Usage:
    # Scope by organization_id (OrganizationModel subclasses)
    meeting = get_scoped(Meeting, meeting_id, organization_id=organization_id)

    # Scope by meeting_id (agenda sections)
    section = get_scoped(AgendaSection, section_id, meeting_id=meeting.id)

    # When None is an acceptable outcome (optional FK lookups)
    unit = get_scoped_or_none(OrgUnit, unit_id, organization_id=organization_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If the model does not have that column, a ValueError is raised at
    call time so the bug surfaces immediately during development/testing.
"""

import logging

from sqlalchemy import select

from cadence.core.exceptions import NotFoundError
from cadence.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    organization_id: int | None = None,
    meeting_id: int | None = None,
):
    """Fetch a single entity by PK with mandatory scope filter.

    A record in another organization is indistinguishable from a missing
    record: both raise NotFoundError.

    Args:
        model: SQLAlchemy model class. Must have an `id` PK column and at
               least one matching scope column.
        pk: Primary key value to look up.
        organization_id: Scope by organization_id column.
        meeting_id: Scope by meeting_id column.

    Returns:
        The model instance if found within the given scope.

    Raises:
        ValueError: If no scope parameter is provided, OR if a provided
                    scope kwarg references a column that does not exist on
                    the model (which would result in an unscoped lookup).
        NotFoundError: If the entity does not exist OR belongs to a different
                       scope.
    """
    provided_scopes: dict[str, int] = {
        "organization_id": organization_id,
        "meeting_id": meeting_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(organization_id or meeting_id). Unscoped lookups are forbidden."
        )

    missing_fields = sorted(f for f in provided_scopes if not hasattr(model, f))
    if missing_fields:
        raise ValueError(
            f"{model.__name__} id={pk}: scope field(s) {missing_fields} "
            f"do not exist as columns on {model.__name__}. "
            "Refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in provided_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            provided_scopes,
        )
        raise NotFoundError(
            resource=model.__name__, resource_id=pk, organization_id=organization_id,
        )

    return result


def get_scoped_or_none(
    model,
    pk: int | None,
    *,
    organization_id: int | None = None,
    meeting_id: int | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    A ``None`` pk short-circuits to None, which keeps optional FK lookups
    (parent unit, owner) to a single call.
    """
    if pk is None:
        return None
    try:
        return get_scoped(model, pk, organization_id=organization_id, meeting_id=meeting_id)
    except NotFoundError:
        return None
