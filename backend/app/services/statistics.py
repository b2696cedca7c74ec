from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

from backend.app.models import (
    DuplicateWarningRecord,
    Severity,
    StatisticsSummary,
    UserDecision,
)


def proceed_rate(proceed_count: int, cancelled_count: int) -> float:
    decided = proceed_count + cancelled_count
    return proceed_count / decided if decided else 0.0


def get_statistics(
    warnings: Iterable[DuplicateWarningRecord],
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
) -> StatisticsSummary:
    total = 0
    pending = 0
    proceeded = 0
    cancelled = 0
    breakdown = {level: 0 for level in Severity}
    for warning in warnings:
        if date_from and warning.created_at_utc < date_from:
            continue
        if date_to and warning.created_at_utc > date_to:
            continue
        total += 1
        breakdown[warning.severity] += 1
        if not warning.decision_made:
            pending += 1
        elif warning.user_decision == UserDecision.PROCEEDED:
            proceeded += 1
        elif warning.user_decision == UserDecision.CANCELLED:
            cancelled += 1

    return StatisticsSummary(
        date_from=date_from,
        date_to=date_to,
        total_warnings=total,
        pending_count=pending,
        proceed_count=proceeded,
        cancelled_count=cancelled,
        proceed_rate=proceed_rate(proceeded, cancelled),
        severity_breakdown=breakdown,
    )
