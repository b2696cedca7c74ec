from __future__ import annotations

from datetime import datetime
from threading import RLock
from typing import TYPE_CHECKING, Any, Optional
from uuid import uuid4

from backend.app.models import (
    ActingUser,
    DuplicateAuditLogEntry,
    DuplicateWarningRecord,
    MatchType,
    PotentialMatch,
    Severity,
    TriggerAction,
    UserDecision,
    utc_now,
)

if TYPE_CHECKING:
    from backend.app.persistence import SqlitePersistence


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:10]}"


class StoreConflictError(Exception):
    pass


class StoreNotFoundError(Exception):
    pass


class WarningNotFoundError(StoreNotFoundError):
    pass


class AlreadyDecidedError(StoreConflictError):
    pass


AUDIT_ACTIONS = {
    UserDecision.PROCEEDED: "proceeded_anyway",
    UserDecision.CANCELLED: "cancelled",
}


def entity_type_for(action: TriggerAction) -> str:
    if action.value.startswith("LEAD"):
        return "lead"
    if action.value.startswith("PIPELINE"):
        return "pipeline"
    if action == TriggerAction.COMPANY_ADD:
        return "company"
    return "contact"


class WarningStore:
    def __init__(self, persistence: Optional["SqlitePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.warnings: dict[str, DuplicateWarningRecord] = {}
        self.audit_entries: list[DuplicateAuditLogEntry] = []

        if self.persistence:
            for warning in self.persistence.list_warnings():
                self.warnings[warning.id] = warning
            self.audit_entries = self.persistence.list_audit_entries()

    def create_warning(
        self,
        *,
        severity: Severity,
        warning_type: MatchType,
        triggered_by: ActingUser,
        trigger_action: TriggerAction,
        trigger_data: dict[str, Any],
        matches: list[PotentialMatch],
    ) -> DuplicateWarningRecord:
        if not matches:
            raise ValueError("a duplicate warning needs at least one match")
        with self._lock:
            warning = DuplicateWarningRecord(
                id=new_id("dw"),
                created_at_utc=utc_now(),
                severity=severity,
                warning_type=warning_type,
                triggered_by=triggered_by,
                trigger_action=trigger_action,
                trigger_data=trigger_data,
                matches=list(matches),
            )
            if self.persistence:
                self.persistence.insert_warning(warning)
            self.warnings[warning.id] = warning
            return warning

    def get_warning(self, warning_id: str) -> DuplicateWarningRecord:
        warning = self.warnings.get(warning_id)
        if not warning:
            raise WarningNotFoundError(f"duplicate warning not found: {warning_id}")
        return warning

    def record_decision(
        self,
        warning_id: str,
        *,
        decision: UserDecision,
        reason: Optional[str],
        acting_user: ActingUser,
    ) -> tuple[DuplicateWarningRecord, DuplicateAuditLogEntry]:
        with self._lock:
            warning = self.get_warning(warning_id)
            if warning.decision_made:
                raise AlreadyDecidedError(f"duplicate warning already decided: {warning_id}")
            now = utc_now()
            decided = warning.model_copy(
                update={
                    "decision_made": True,
                    "user_decision": decision,
                    "decision_at_utc": now,
                    "reason": reason,
                }
            )
            audit = DuplicateAuditLogEntry(
                id=new_id("daud"),
                warning_id=warning.id,
                user_id=acting_user.id,
                user_name=acting_user.name,
                user_role=acting_user.role,
                action=AUDIT_ACTIONS[decision],
                decision=decision,
                reason=reason,
                severity=warning.severity,
                trigger_action=warning.trigger_action,
                match_count=len(warning.matches),
                entity_type=entity_type_for(warning.trigger_action),
                created_at_utc=now,
            )
            if self.persistence and not self.persistence.finalize_warning(decided, audit):
                raise AlreadyDecidedError(f"duplicate warning already decided: {warning_id}")
            self.warnings[warning.id] = decided
            self.audit_entries.append(audit)
            return decided, audit

    def list_warnings(
        self,
        *,
        include_resolved: bool = True,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[DuplicateWarningRecord]:
        with self._lock:
            items = list(self.warnings.values())
        if not include_resolved:
            items = [item for item in items if not item.decision_made]
        if created_from:
            items = [item for item in items if item.created_at_utc >= created_from]
        if created_to:
            items = [item for item in items if item.created_at_utc <= created_to]
        items.sort(key=lambda item: item.created_at_utc, reverse=True)
        if limit is not None:
            items = items[: max(limit, 0)]
        return items

    def list_audit_entries(
        self, *, warning_id: Optional[str] = None, limit: int = 100
    ) -> list[DuplicateAuditLogEntry]:
        with self._lock:
            entries = list(self.audit_entries)
        if warning_id:
            entries = [entry for entry in entries if entry.warning_id == warning_id]
        entries.sort(key=lambda entry: entry.created_at_utc, reverse=True)
        return entries[: max(limit, 0)]
