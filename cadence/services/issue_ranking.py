"""
Cadence Engine
Issue Prioritization Ranker — orders candidate issues for a meeting's
issue-solving queue.

    score = priority × 10 + min(age_days, 14)

``priority`` falls back to 5 when unset; ``age_days`` is the floor of whole
days between ``created_at`` and ``now``. Ties go to the earlier
``created_at``, then the lower id, so the same input and ``now`` always
produce the same order.

The 14-day cap is observable ranking behavior and is kept as is.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Iterable

from cadence.utils.helpers import as_utc

logger = logging.getLogger(__name__)

DEFAULT_PRIORITY = 5
PRIORITY_WEIGHT = 10
AGE_BONUS_CAP_DAYS = 14

_ONE_DAY = timedelta(days=1)


def age_in_days(created_at: datetime, now: datetime) -> int:
    """Whole days elapsed (floor division, so negative when created in the future)."""
    return (as_utc(now) - as_utc(created_at)) // _ONE_DAY


def score_issue(
    issue,
    now: datetime,
    *,
    default_priority: int = DEFAULT_PRIORITY,
    age_cap_days: int = AGE_BONUS_CAP_DAYS,
) -> int:
    """Sort key for one issue. Exposed for diagnostics only."""
    priority = issue.priority if issue.priority is not None else default_priority
    return priority * PRIORITY_WEIGHT + min(age_in_days(issue.created_at, now), age_cap_days)


def rank_issues(
    issues: Iterable,
    now: datetime,
    *,
    default_priority: int = DEFAULT_PRIORITY,
    age_cap_days: int = AGE_BONUS_CAP_DAYS,
) -> list:
    """Return the same issue objects ordered most urgent first.

    The score is a transient sort key and is not attached to the issues.
    """
    keyed = [
        (
            -score_issue(i, now, default_priority=default_priority, age_cap_days=age_cap_days),
            as_utc(i.created_at),
            i.id,
            i,
        )
        for i in issues
    ]
    keyed.sort(key=lambda row: row[:3])
    if logger.isEnabledFor(logging.DEBUG) and keyed:
        logger.debug("Ranked %d issues; top=%s score=%d", len(keyed), keyed[0][2], -keyed[0][0])
    return [row[3] for row in keyed]
