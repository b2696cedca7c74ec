from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

from backend.app.models import MatchType, PotentialMatch, Severity

REASON_REQUIRED_LEVELS = {Severity.HIGH, Severity.CRITICAL}


@dataclass(frozen=True)
class Classification:
    has_warning: bool
    severity: Severity
    matches: list[PotentialMatch]
    escalated: bool = False


def max_severity(severities: Iterable[Severity]) -> Severity:
    return max(severities, key=lambda level: level.rank, default=Severity.LOW)


def order_matches(matches: Iterable[PotentialMatch]) -> list[PotentialMatch]:
    return sorted(
        matches,
        key=lambda match: (match.confidence, match.severity.rank),
        reverse=True,
    )


def classify(
    matches: Sequence[PotentialMatch],
    *,
    escalation_threshold: int = 2,
) -> Classification:
    if not matches:
        return Classification(has_warning=False, severity=Severity.LOW, matches=[])

    severity = max_severity(match.severity for match in matches)
    medium_records = {
        match.existing_record_id for match in matches if match.severity == Severity.MEDIUM
    }
    escalated = False
    if len(medium_records) >= escalation_threshold and severity.rank < Severity.HIGH.rank:
        severity = Severity.HIGH
        escalated = True

    return Classification(
        has_warning=True,
        severity=severity,
        matches=order_matches(matches),
        escalated=escalated,
    )


def reason_required(severity: Severity, matches: Iterable[PotentialMatch]) -> bool:
    if severity in REASON_REQUIRED_LEVELS:
        return True
    return any(match.severity in REASON_REQUIRED_LEVELS for match in matches)


def primary_match_type(matches: Sequence[PotentialMatch]) -> MatchType:
    if not matches:
        return MatchType.COMPANY_NAME
    strongest = max(matches, key=lambda match: (match.severity.rank, match.confidence))
    return strongest.match_type
