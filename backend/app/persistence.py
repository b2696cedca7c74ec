from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from threading import Lock
from typing import Optional

from sqlalchemy import (
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from backend.app.models import (
    ActingUser,
    DuplicateAuditLogEntry,
    DuplicateWarningRecord,
    MatchType,
    PotentialMatch,
    Severity,
    TriggerAction,
    UserDecision,
)


def _normalize_database_url(database_url: str) -> str:
    value = database_url.strip()
    if value.startswith("sqlite:///"):
        sqlite_path = value[len("sqlite:///") :].split("?", 1)[0]
        if sqlite_path and sqlite_path != ":memory:":
            path = Path(sqlite_path)
            if path.parent:
                path.parent.mkdir(parents=True, exist_ok=True)
        return value
    if "://" in value:
        return value
    path = Path(value)
    if path.parent:
        path.parent.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{str(path).replace(chr(92), '/')}"


class SqlitePersistence:
    """
    Backward-compatible name. Uses SQLAlchemy and supports both SQLite and PostgreSQL URLs.
    """

    def __init__(self, database_url: str) -> None:
        self.database_url = _normalize_database_url(database_url)
        self._lock = Lock()
        self.engine: Engine = create_engine(
            self.database_url,
            future=True,
            pool_pre_ping=True,
        )
        self.metadata = MetaData()
        self.state_snapshots = Table(
            "state_snapshots",
            self.metadata,
            Column("id", String(50), primary_key=True),
            Column("payload_json", Text, nullable=False),
            Column("updated_at_utc", DateTime, nullable=False),
        )
        self.duplicate_warnings = Table(
            "duplicate_warnings",
            self.metadata,
            Column("id", String(120), primary_key=True),
            Column("created_at_utc", DateTime, nullable=False, index=True),
            Column("severity", String(20), nullable=False),
            Column("warning_type", String(40), nullable=False),
            Column("triggered_by_id", String(120), nullable=False),
            Column("triggered_by_name", String(120), nullable=False),
            Column("triggered_by_role", String(60), nullable=False),
            Column("trigger_action", String(40), nullable=False),
            Column("trigger_data_json", Text, nullable=False),
            Column("matches_json", Text, nullable=False),
            Column("decision_made", Integer, nullable=False, default=0),
            Column("user_decision", String(20), nullable=True),
            Column("decision_at_utc", DateTime, nullable=True),
            Column("reason", Text, nullable=True),
        )
        self.duplicate_audit_log = Table(
            "duplicate_audit_log",
            self.metadata,
            Column("id", String(120), primary_key=True),
            Column("warning_id", String(120), nullable=False, unique=True),
            Column("user_id", String(120), nullable=False),
            Column("user_name", String(120), nullable=False),
            Column("user_role", String(60), nullable=False),
            Column("action", String(40), nullable=False),
            Column("decision", String(20), nullable=False),
            Column("reason", Text, nullable=True),
            Column("severity", String(20), nullable=False),
            Column("trigger_action", String(40), nullable=False),
            Column("match_count", Integer, nullable=False),
            Column("entity_type", String(40), nullable=False),
            Column("created_at_utc", DateTime, nullable=False),
        )
        self._ensure_schema()

    def _ensure_schema(self) -> None:
        self.metadata.create_all(self.engine)

    def ping(self) -> bool:
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
            return True
        except SQLAlchemyError:
            return False

    def save_snapshot(self, payload: dict, snapshot_id: str = "default") -> None:
        with self._lock:
            serialized = json.dumps(payload)
            now = datetime.utcnow()
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(self.state_snapshots.c.id).where(
                        self.state_snapshots.c.id == snapshot_id
                    )
                ).first()
                if existing:
                    conn.execute(
                        self.state_snapshots.update()
                        .where(self.state_snapshots.c.id == snapshot_id)
                        .values(payload_json=serialized, updated_at_utc=now)
                    )
                else:
                    conn.execute(
                        self.state_snapshots.insert().values(
                            id=snapshot_id,
                            payload_json=serialized,
                            updated_at_utc=now,
                        )
                    )

    def load_snapshot(self, snapshot_id: str = "default") -> Optional[dict]:
        with self._lock:
            with self.engine.connect() as conn:
                row = conn.execute(
                    select(self.state_snapshots.c.payload_json).where(
                        self.state_snapshots.c.id == snapshot_id
                    )
                ).first()
            if not row:
                return None
            return json.loads(row[0])

    def insert_warning(self, record: DuplicateWarningRecord) -> None:
        with self._lock:
            with self.engine.begin() as conn:
                conn.execute(
                    self.duplicate_warnings.insert().values(
                        id=record.id,
                        created_at_utc=record.created_at_utc,
                        severity=record.severity.value,
                        warning_type=record.warning_type.value,
                        triggered_by_id=record.triggered_by.id,
                        triggered_by_name=record.triggered_by.name,
                        triggered_by_role=record.triggered_by.role,
                        trigger_action=record.trigger_action.value,
                        trigger_data_json=json.dumps(record.trigger_data),
                        matches_json=json.dumps(
                            [match.model_dump(mode="json") for match in record.matches]
                        ),
                        decision_made=0,
                        user_decision=None,
                        decision_at_utc=None,
                        reason=None,
                    )
                )

    def finalize_warning(
        self, record: DuplicateWarningRecord, audit: DuplicateAuditLogEntry
    ) -> bool:
        """Mark a pending warning decided and append its audit row in one transaction.

        Returns False when no pending row was updated, i.e. another writer decided first.
        """
        with self._lock:
            with self.engine.begin() as conn:
                result = conn.execute(
                    self.duplicate_warnings.update()
                    .where(self.duplicate_warnings.c.id == record.id)
                    .where(self.duplicate_warnings.c.decision_made == 0)
                    .values(
                        decision_made=1,
                        user_decision=record.user_decision.value,
                        decision_at_utc=record.decision_at_utc,
                        reason=record.reason,
                    )
                )
                if result.rowcount != 1:
                    return False
                conn.execute(
                    self.duplicate_audit_log.insert().values(
                        id=audit.id,
                        warning_id=audit.warning_id,
                        user_id=audit.user_id,
                        user_name=audit.user_name,
                        user_role=audit.user_role,
                        action=audit.action,
                        decision=audit.decision.value,
                        reason=audit.reason,
                        severity=audit.severity.value,
                        trigger_action=audit.trigger_action.value,
                        match_count=audit.match_count,
                        entity_type=audit.entity_type,
                        created_at_utc=audit.created_at_utc,
                    )
                )
                return True

    def list_warnings(self) -> list[DuplicateWarningRecord]:
        table = self.duplicate_warnings
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(select(table).order_by(table.c.created_at_utc)).all()
        output: list[DuplicateWarningRecord] = []
        for row in rows:
            output.append(
                DuplicateWarningRecord(
                    id=row.id,
                    created_at_utc=row.created_at_utc or datetime.utcnow(),
                    severity=Severity(row.severity),
                    warning_type=MatchType(row.warning_type),
                    triggered_by=ActingUser(
                        id=row.triggered_by_id,
                        name=row.triggered_by_name,
                        role=row.triggered_by_role,
                    ),
                    trigger_action=TriggerAction(row.trigger_action),
                    trigger_data=json.loads(row.trigger_data_json),
                    matches=[
                        PotentialMatch.model_validate(match)
                        for match in json.loads(row.matches_json)
                    ],
                    decision_made=bool(row.decision_made),
                    user_decision=UserDecision(row.user_decision) if row.user_decision else None,
                    decision_at_utc=row.decision_at_utc,
                    reason=row.reason,
                )
            )
        return output

    def list_audit_entries(self) -> list[DuplicateAuditLogEntry]:
        table = self.duplicate_audit_log
        with self._lock:
            with self.engine.connect() as conn:
                rows = conn.execute(select(table).order_by(table.c.created_at_utc)).all()
        return [
            DuplicateAuditLogEntry(
                id=row.id,
                warning_id=row.warning_id,
                user_id=row.user_id,
                user_name=row.user_name,
                user_role=row.user_role,
                action=row.action,
                decision=UserDecision(row.decision),
                reason=row.reason,
                severity=Severity(row.severity),
                trigger_action=TriggerAction(row.trigger_action),
                match_count=row.match_count,
                entity_type=row.entity_type,
                created_at_utc=row.created_at_utc or datetime.utcnow(),
            )
            for row in rows
        ]
