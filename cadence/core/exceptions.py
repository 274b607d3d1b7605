"""
Engine-wide exception hierarchy.

Every service raises one of these types; callers catch them by class or
branch on the machine-readable ``code`` (see ``cadence.utils.errors.E``).

Taxonomy:
  - ValidationError and subclasses: business-rule violations. Never retried.
  - ConcurrentModificationError: a conditional write found a different
    pre-state. Surfaced; the caller decides whether to reload and retry.
  - EscalationFailedError: storage failure inside the escalation
    transaction. The transaction was rolled back.
  - IntegrityViolationError and subclasses: corrupt stored data detected on
    a read path. Fatal for that single operation; never repaired.

Usage:
    from cadence.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Meeting", resource_id=42, organization_id=1)
    raise ValidationError("Title is required", details={"title": "required"})
"""

from cadence.utils.errors import E


class CadenceError(Exception):
    """Base class for every engine error."""

    code = E.VALIDATION_INVALID


class NotFoundError(CadenceError):
    """Raised when a requested record does not exist within the given organization.

    Used for BOTH genuinely missing records AND records owned by another
    organization, so callers cannot probe for foreign ids.

    Args:
        resource: Human-readable model/entity name (e.g. "Meeting", "ObjectiveNode").
        resource_id: The PK that was looked up.
        organization_id: Optional — the scope that was enforced. For debug logging only.
    """

    code = E.NOT_FOUND

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(CadenceError):
    """Raised when input is well-formed but violates a business rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown. Keys are field names;
                 values are error descriptions.
    """

    code = E.VALIDATION_INVALID

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


# ── Validation subclasses ────────────────────────────────────────────────


class InvalidLevelError(ValidationError):
    """Parent link skips a level, or a level value is unknown."""

    code = E.INVALID_LEVEL


class InvalidTransitionError(ValidationError):
    """Meeting status change not allowed from the current status."""

    code = E.INVALID_TRANSITION

    def __init__(self, old_status: str, new_status: str) -> None:
        self.old_status = old_status
        self.new_status = new_status
        super().__init__(
            f"Invalid transition: {old_status} → {new_status}",
            details={"status": old_status, "requested": new_status},
        )


class InvalidMeetingStateError(ValidationError):
    """Operation requires a meeting status other than the current one."""

    code = E.INVALID_MEETING_STATE

    def __init__(self, meeting_id: int, status: str, expected) -> None:
        self.meeting_id = meeting_id
        self.status = status
        self.expected = sorted(expected) if not isinstance(expected, str) else [expected]
        super().__init__(
            f"Meeting {meeting_id} is {status}; expected {' or '.join(self.expected)}",
            details={"status": status, "expected": self.expected},
        )


class NoNextSectionError(ValidationError):
    code = E.NO_NEXT_SECTION

    def __init__(self, meeting_id: int, index: int) -> None:
        self.meeting_id = meeting_id
        self.index = index
        super().__init__(
            f"Meeting {meeting_id} is on its last section ({index}); end the meeting instead",
            details={"current_section_index": index},
        )


class NoPreviousSectionError(ValidationError):
    code = E.NO_PREVIOUS_SECTION

    def __init__(self, meeting_id: int) -> None:
        self.meeting_id = meeting_id
        super().__init__(
            f"Meeting {meeting_id} is on its first section",
            details={"current_section_index": 0},
        )


class NoParentLevelError(ValidationError):
    """Company-level issues cannot be escalated further."""

    code = E.NO_PARENT_LEVEL

    def __init__(self, issue_id: int, level: str) -> None:
        self.issue_id = issue_id
        self.level = level
        super().__init__(
            f"Issue {issue_id} is at {level} level and has no parent level",
            details={"level": level},
        )


class NoParentUnitError(ValidationError):
    """The issue's organizational unit is a root unit."""

    code = E.NO_PARENT_UNIT

    def __init__(self, issue_id: int, org_unit_id: int | None) -> None:
        self.issue_id = issue_id
        self.org_unit_id = org_unit_id
        super().__init__(
            f"Issue {issue_id}: unit {org_unit_id} has no parent unit to escalate to",
            details={"org_unit_id": org_unit_id},
        )


class AlreadyEscalatedError(ValidationError):
    code = E.ALREADY_ESCALATED

    def __init__(self, issue_id: int, escalated_to_id: int) -> None:
        self.issue_id = issue_id
        self.escalated_to_id = escalated_to_id
        super().__init__(
            f"Issue {issue_id} was already escalated to {escalated_to_id}",
            details={"escalated_to_id": escalated_to_id},
        )


# ── Concurrency / storage ────────────────────────────────────────────────


class ConcurrentModificationError(CadenceError):
    """A conditional write matched no row: the record changed underneath.

    Args:
        resource: Model name.
        resource_id: PK of the record.
        expected: The pre-state the write was conditioned on.
    """

    code = E.CONCURRENT_MODIFICATION

    def __init__(self, resource: str, resource_id: int, expected: dict | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.expected = expected or {}
        super().__init__(
            f"{resource} id={resource_id} was modified concurrently "
            f"(expected {self.expected})"
        )


class EscalationFailedError(CadenceError):
    """Storage failure during escalation; nothing was persisted."""

    code = E.ESCALATION_FAILED

    def __init__(self, issue_id: int, reason: str) -> None:
        self.issue_id = issue_id
        self.reason = reason
        super().__init__(f"Escalation of issue {issue_id} failed: {reason}")


# ── Integrity ────────────────────────────────────────────────────────────


class IntegrityViolationError(CadenceError):
    """Stored data violates an engine invariant."""

    code = E.ASYMMETRIC_ESCALATION


class ChainTooLongError(IntegrityViolationError):
    """Escalation chain walk exceeded its cap or revisited a node."""

    code = E.CHAIN_TOO_LONG

    def __init__(self, issue_id: int, limit: int, revisited_id: int | None = None) -> None:
        self.issue_id = issue_id
        self.limit = limit
        self.revisited_id = revisited_id
        if revisited_id is not None:
            msg = f"Escalation chain of issue {issue_id} revisits node {revisited_id}"
        else:
            msg = f"Escalation chain of issue {issue_id} exceeds {limit} entries"
        super().__init__(msg)


class EscalationIntegrityError(IntegrityViolationError):
    """Escalation links are asymmetric or point at a missing record."""

    code = E.ASYMMETRIC_ESCALATION

    def __init__(self, from_id: int, to_id: int, reason: str) -> None:
        self.from_id = from_id
        self.to_id = to_id
        self.reason = reason
        super().__init__(f"Escalation link {from_id} → {to_id} is broken: {reason}")
