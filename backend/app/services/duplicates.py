from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Iterable, Optional

from backend.app.models import (
    ActingUser,
    CandidateRecord,
    DuplicateAuditLogEntry,
    DuplicateWarningRecord,
    ExistingRecordView,
    MatchDetailView,
    MatchView,
    OwnerView,
    PotentialMatch,
    Severity,
    StatisticsSummary,
    UserDecision,
    WarningDetail,
    utc_now,
)
from backend.app.repository import (
    RecordRepository,
    RepositoryUnavailableError,
    collect_candidates,
)
from backend.app.services.matching import score_candidates
from backend.app.services.normalize import (
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_phone,
)
from backend.app.services.severity import classify, primary_match_type, reason_required
from backend.app.services.statistics import get_statistics
from backend.app.settings import Settings
from backend.app.store import AlreadyDecidedError, WarningStore

if TYPE_CHECKING:
    from backend.app.observability import MetricsRegistry

logger = logging.getLogger("duplicate_guard.duplicates")

UNKNOWN_RECORD_LABEL = "Unknown record"


class CandidateValidationError(Exception):
    pass


class ReasonRequiredError(Exception):
    pass


@dataclass(frozen=True)
class CheckResult:
    has_warning: bool
    severity: Severity
    matches: list[PotentialMatch] = field(default_factory=list)
    warning_id: Optional[str] = None
    message: Optional[str] = None


def has_identity(candidate: CandidateRecord) -> bool:
    return any(
        (
            normalize_name(candidate.name),
            normalize_email(candidate.email),
            normalize_phone(candidate.phone),
            normalize_company(candidate.company),
        )
    )


def time_ago(moment: datetime, now: Optional[datetime] = None) -> str:
    seconds = int(((now or utc_now()) - moment).total_seconds())
    if seconds < 60:
        return "just now"
    if seconds < 3600:
        return f"{seconds // 60} minutes ago"
    if seconds < 86400:
        return f"{seconds // 3600} hours ago"
    if seconds < 2592000:
        return f"{seconds // 86400} days ago"
    if seconds < 31536000:
        return f"{seconds // 2592000} months ago"
    return f"{seconds // 31536000} years ago"


def warning_message(matches: list[PotentialMatch]) -> Optional[str]:
    if not matches:
        return None
    serious = [
        match for match in matches if match.severity in {Severity.HIGH, Severity.CRITICAL}
    ]
    if serious:
        strongest = serious[0]
        snapshot = strongest.existing_snapshot
        when = time_ago(snapshot.last_contact_date) if snapshot.last_contact_date else (
            "some time ago"
        )
        owner = snapshot.owner.name if snapshot.owner else "another user"
        kind = strongest.match_type.value.lower().replace("_", " ")
        return f"Potential duplicate detected: similar {kind} was contacted {when} by {owner}"
    return f"{len(matches)} potential duplicate(s) found. Please review before proceeding."


class DuplicateDetectionService:
    def __init__(
        self,
        *,
        repository: RecordRepository,
        warnings: WarningStore,
        settings: Settings,
        metrics: Optional["MetricsRegistry"] = None,
    ) -> None:
        self.repository = repository
        self.warnings = warnings
        self.settings = settings
        self.metrics = metrics

    def check(self, candidate: CandidateRecord, acting_user: ActingUser) -> CheckResult:
        if not has_identity(candidate):
            raise CandidateValidationError(
                "candidate needs at least one of name, email, phone or company"
            )
        self._count("checks")

        exclude_owner = acting_user.id if self.settings.duplicate_exclude_own_records else None
        try:
            records = collect_candidates(
                self.repository,
                candidate,
                search_limit=self.settings.duplicate_search_limit,
                domain_limit=self.settings.duplicate_domain_limit,
                public_email_domains=self.settings.duplicate_public_email_domains,
                exclude_owner_id=exclude_owner,
            )
        except RepositoryUnavailableError:
            self._count("checks_failed")
            logger.warning(
                "duplicate_check_repository_failure user=%s action=%s",
                acting_user.id,
                candidate.trigger_action.value,
            )
            raise

        matches = score_candidates(
            candidate,
            records,
            fuzzy_company_threshold=self.settings.duplicate_fuzzy_company_threshold,
            public_email_domains=self.settings.duplicate_public_email_domains,
        )
        classification = classify(
            matches, escalation_threshold=self.settings.duplicate_escalation_threshold
        )
        logger.info(
            "duplicate_check_complete user=%s action=%s candidates=%s matches=%s severity=%s",
            acting_user.id,
            candidate.trigger_action.value,
            len(records),
            len(classification.matches),
            classification.severity.value if classification.has_warning else "none",
        )
        if not classification.has_warning:
            return CheckResult(has_warning=False, severity=Severity.LOW)

        warning = self.warnings.create_warning(
            severity=classification.severity,
            warning_type=primary_match_type(classification.matches),
            triggered_by=acting_user,
            trigger_action=candidate.trigger_action,
            trigger_data=candidate.model_dump(mode="json", exclude_none=True),
            matches=classification.matches,
        )
        self._count("warnings_created")
        logger.info(
            "duplicate_warning_created warning_id=%s severity=%s escalated=%s",
            warning.id,
            warning.severity.value,
            classification.escalated,
        )
        return CheckResult(
            has_warning=True,
            severity=warning.severity,
            matches=warning.matches,
            warning_id=warning.id,
            message=warning_message(warning.matches),
        )

    def decide(
        self,
        warning_id: str,
        decision: UserDecision,
        reason: Optional[str],
        acting_user: ActingUser,
    ) -> DuplicateWarningRecord:
        warning = self.warnings.get_warning(warning_id)
        if warning.decision_made:
            self._count("decision_conflicts")
            raise AlreadyDecidedError(f"duplicate warning already decided: {warning_id}")
        cleaned = reason.strip() if reason else ""
        if not cleaned and reason_required(warning.severity, warning.matches):
            raise ReasonRequiredError(
                f"a reason is required to decide a {warning.severity.value} duplicate warning"
            )
        try:
            decided, _ = self.warnings.record_decision(
                warning_id,
                decision=decision,
                reason=cleaned or None,
                acting_user=acting_user,
            )
        except AlreadyDecidedError:
            self._count("decision_conflicts")
            logger.info(
                "duplicate_decision_conflict warning_id=%s user=%s", warning_id, acting_user.id
            )
            raise
        self._count("decisions_recorded")
        logger.info(
            "duplicate_decision_recorded warning_id=%s decision=%s user=%s",
            warning_id,
            decision.value,
            acting_user.id,
        )
        return decided

    def get_warning(self, warning_id: str) -> DuplicateWarningRecord:
        return self.warnings.get_warning(warning_id)

    def list_recent_warnings(
        self, limit: int = 50, include_resolved: bool = False
    ) -> list[DuplicateWarningRecord]:
        safe_limit = max(1, min(limit, self.settings.recent_warnings_max_limit))
        return self.warnings.list_warnings(include_resolved=include_resolved, limit=safe_limit)

    def statistics(
        self, date_from: Optional[datetime] = None, date_to: Optional[datetime] = None
    ) -> StatisticsSummary:
        return get_statistics(self.warnings.list_warnings(), date_from, date_to)

    def audit_log(
        self, *, warning_id: Optional[str] = None, limit: int = 100
    ) -> list[DuplicateAuditLogEntry]:
        return self.warnings.list_audit_entries(warning_id=warning_id, limit=limit)

    def company_conflicts(
        self, companies: Iterable[str], days: int = 14
    ) -> tuple[dict[str, bool], datetime]:
        since = utc_now() - timedelta(days=max(1, min(days, 365)))
        seen: set[str] = set()
        for warning in self.warnings.list_warnings(created_from=since):
            for match in warning.matches:
                company = normalize_company(match.existing_snapshot.company)
                if company:
                    seen.add(company)
        conflicts = {
            company: normalize_company(company) in seen for company in companies if company
        }
        return conflicts, since

    def render_match(
        self, match: PotentialMatch, *, include_owner_details: bool = True
    ) -> MatchView:
        details = MatchDetailView(
            type="exact" if match.match_details.get("exact") else "similar",
            field=match.match_type.value.lower(),
        )
        record = self.repository.get(match.existing_record_id)
        if record is None:
            existing = ExistingRecordView(
                id=match.existing_record_id,
                kind=match.existing_record_kind,
                label=UNKNOWN_RECORD_LABEL,
                missing=True,
            )
        else:
            owner = None
            if record.owner:
                owner = (
                    OwnerView(id=record.owner.id, name=record.owner.name, role=record.owner.role)
                    if include_owner_details
                    else OwnerView(name=record.owner.name)
                )
            existing = ExistingRecordView(
                id=record.id,
                kind=record.kind,
                label=record.name or record.company or record.id,
                company=record.company,
                owner=owner,
                last_contact_date=record.last_contact_date,
                status=record.status,
                is_active=record.is_active,
            )
        return MatchView(
            id=match.id,
            match_type=match.match_type,
            confidence=match.confidence,
            severity=match.severity,
            match_details=details,
            existing_record=existing,
        )

    def warning_detail(
        self, warning: DuplicateWarningRecord, *, include_owner_details: bool = True
    ) -> WarningDetail:
        return WarningDetail(
            id=warning.id,
            created_at_utc=warning.created_at_utc,
            status="decided" if warning.decision_made else "pending",
            severity=warning.severity,
            warning_type=warning.warning_type,
            trigger_action=warning.trigger_action,
            triggered_by=warning.triggered_by,
            decision_made=warning.decision_made,
            user_decision=warning.user_decision,
            decision_at_utc=warning.decision_at_utc,
            reason=warning.reason,
            matches=[
                self.render_match(match, include_owner_details=include_owner_details)
                for match in warning.matches
            ],
        )

    def _count(self, event: str) -> None:
        if self.metrics:
            self.metrics.increment(event)
