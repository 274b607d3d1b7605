"""Machine-readable error codes.

Every exception in ``cadence.core.exceptions`` carries one of these codes
so callers (HTTP layers, job runners, CLIs) can branch without string
matching on messages.

Usage
-----
    from cadence.utils.errors import E, default_status

    if exc.code == E.CONCURRENT_MODIFICATION:
        ...  # reload and let the user retry
"""

from __future__ import annotations


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants.

    Convention:
     • ERR_  prefix for standard application errors
     • INTEGRITY_ prefix for detected data corruption
    """

    # Validation
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    INVALID_LEVEL = "ERR_INVALID_LEVEL"
    INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    INVALID_MEETING_STATE = "ERR_INVALID_MEETING_STATE"
    NO_NEXT_SECTION = "ERR_NO_NEXT_SECTION"
    NO_PREVIOUS_SECTION = "ERR_NO_PREVIOUS_SECTION"
    NO_PARENT_LEVEL = "ERR_NO_PARENT_LEVEL"
    NO_PARENT_UNIT = "ERR_NO_PARENT_UNIT"
    ALREADY_ESCALATED = "ERR_ALREADY_ESCALATED"

    # Not-found
    NOT_FOUND = "ERR_NOT_FOUND"

    # Concurrency
    CONCURRENT_MODIFICATION = "ERR_CONCURRENT_MODIFICATION"

    # Storage
    ESCALATION_FAILED = "ERR_ESCALATION_FAILED"

    # Integrity
    CHAIN_TOO_LONG = "INTEGRITY_CHAIN_TOO_LONG"
    ASYMMETRIC_ESCALATION = "INTEGRITY_ASYMMETRIC_ESCALATION"


# ── Default HTTP status mapping (for callers that expose the engine over HTTP) ──
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_INVALID: 422,
    E.INVALID_LEVEL: 422,
    E.INVALID_TRANSITION: 409,
    E.INVALID_MEETING_STATE: 409,
    E.NO_NEXT_SECTION: 409,
    E.NO_PREVIOUS_SECTION: 409,
    E.NO_PARENT_LEVEL: 422,
    E.NO_PARENT_UNIT: 422,
    E.ALREADY_ESCALATED: 409,
    E.NOT_FOUND: 404,
    E.CONCURRENT_MODIFICATION: 409,
    E.ESCALATION_FAILED: 500,
    E.CHAIN_TOO_LONG: 500,
    E.ASYMMETRIC_ESCALATION: 500,
}


def default_status(code: str) -> int:
    """Return the conventional HTTP status for an error code (400 if unknown)."""
    return _DEFAULT_STATUS.get(code, 400)
