from __future__ import annotations

import logging
from threading import RLock
from typing import TYPE_CHECKING, Iterable, Optional, Protocol
from uuid import uuid4

from pydantic import TypeAdapter

from backend.app.models import (
    CandidateRecord,
    CompanyRecord,
    ContactRecord,
    ExistingRecord,
    LeadRecord,
    PipelineItemRecord,
    RecordCreateRequest,
    RecordKind,
    utc_now,
)
from backend.app.services.normalize import (
    email_domain,
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_url,
    phone_match_key,
    phones_match,
)

if TYPE_CHECKING:
    from backend.app.persistence import SqlitePersistence

logger = logging.getLogger("duplicate_guard.repository")

RECORDS_SNAPSHOT_ID = "records"

_RECORD_CLASSES = {
    RecordKind.lead: (LeadRecord, "lead"),
    RecordKind.pipeline_item: (PipelineItemRecord, "pipe"),
    RecordKind.company: (CompanyRecord, "co"),
    RecordKind.contact: (ContactRecord, "ct"),
}

_existing_record_adapter: TypeAdapter = TypeAdapter(ExistingRecord)


class RepositoryUnavailableError(Exception):
    """The record store could not be read; the caller may retry."""


class RecordNotFoundError(Exception):
    pass


class RecordRepository(Protocol):
    def get(self, record_id: str) -> Optional[ExistingRecord]:
        ...

    def find_by_email(self, email: str) -> list[ExistingRecord]:
        ...

    def find_by_phone(self, phone: str) -> list[ExistingRecord]:
        ...

    def find_by_linkedin(self, url: str) -> list[ExistingRecord]:
        ...

    def search_by_email_domain(self, domain: str, limit: int) -> list[ExistingRecord]:
        ...

    def search_by_company_contains(self, text: str, limit: int) -> list[ExistingRecord]:
        ...

    def search_by_name_contains(self, text: str, limit: int) -> list[ExistingRecord]:
        ...


def _most_recent(records: Iterable[ExistingRecord], limit: int) -> list[ExistingRecord]:
    ordered = sorted(records, key=lambda record: record.recency, reverse=True)
    return ordered[: max(limit, 0)]


def _contains_either_way(needle: str, haystack: Optional[str]) -> bool:
    if not haystack:
        return False
    return needle in haystack or haystack in needle


class InMemoryRecordRepository:
    """Indexed view over leads, pipeline items, companies and contacts."""

    def __init__(self, persistence: Optional["SqlitePersistence"] = None) -> None:
        self._lock = RLock()
        self.persistence = persistence
        self.records: dict[str, ExistingRecord] = {}
        self._email_index: dict[str, set[str]] = {}
        self._phone_index: dict[str, set[str]] = {}
        self._linkedin_index: dict[str, set[str]] = {}

        if self.persistence:
            snapshot = self.persistence.load_snapshot(RECORDS_SNAPSHOT_ID)
            if snapshot:
                for payload in snapshot.get("records", []):
                    self._index(_existing_record_adapter.validate_python(payload))

    def add_record(self, request: RecordCreateRequest) -> ExistingRecord:
        record_class, prefix = _RECORD_CLASSES[request.kind]
        fields = request.model_dump(exclude={"kind"})
        if request.kind == RecordKind.company:
            fields.pop("title", None)
        record = record_class(
            id=f"{prefix}_{uuid4().hex[:10]}",
            created_at_utc=utc_now(),
            **fields,
        )
        return self.put(record)

    def put(self, record: ExistingRecord) -> ExistingRecord:
        with self._lock:
            if record.id in self.records:
                self._unindex(self.records[record.id])
            self._index(record)
            self._persist_state()
            return record

    def delete(self, record_id: str) -> ExistingRecord:
        with self._lock:
            record = self.records.get(record_id)
            if not record:
                raise RecordNotFoundError(f"record not found: {record_id}")
            self._unindex(record)
            self._persist_state()
            return record

    def get(self, record_id: str) -> Optional[ExistingRecord]:
        return self.records.get(record_id)

    def all_records(self) -> list[ExistingRecord]:
        with self._lock:
            return list(self.records.values())

    def find_by_email(self, email: str) -> list[ExistingRecord]:
        return self._lookup(self._email_index, normalize_email(email))

    def find_by_phone(self, phone: str) -> list[ExistingRecord]:
        bucket = self._lookup(self._phone_index, phone_match_key(phone))
        return [record for record in bucket if phones_match(phone, record.phone)]

    def find_by_linkedin(self, url: str) -> list[ExistingRecord]:
        return self._lookup(self._linkedin_index, normalize_url(url))

    def search_by_email_domain(self, domain: str, limit: int) -> list[ExistingRecord]:
        wanted = domain.strip().lower()
        if not wanted:
            return []
        with self._lock:
            hits = [
                record
                for record in self.records.values()
                if email_domain(record.email) == wanted
            ]
        return _most_recent(hits, limit)

    def search_by_company_contains(self, text: str, limit: int) -> list[ExistingRecord]:
        needle = normalize_company(text)
        if not needle:
            return []
        with self._lock:
            hits = [
                record
                for record in self.records.values()
                if _contains_either_way(needle, normalize_company(record.company))
            ]
        return _most_recent(hits, limit)

    def search_by_name_contains(self, text: str, limit: int) -> list[ExistingRecord]:
        needle = normalize_name(text)
        if not needle:
            return []
        with self._lock:
            hits = [
                record
                for record in self.records.values()
                if _contains_either_way(needle, normalize_name(record.name))
            ]
        return _most_recent(hits, limit)

    def _lookup(self, index: dict[str, set[str]], key: Optional[str]) -> list[ExistingRecord]:
        if not key:
            return []
        with self._lock:
            ids = index.get(key, set())
            return [self.records[record_id] for record_id in sorted(ids)]

    def _index(self, record: ExistingRecord) -> None:
        self.records[record.id] = record
        for index, key in self._index_keys(record):
            index.setdefault(key, set()).add(record.id)

    def _unindex(self, record: ExistingRecord) -> None:
        self.records.pop(record.id, None)
        for index, key in self._index_keys(record):
            ids = index.get(key)
            if ids:
                ids.discard(record.id)
                if not ids:
                    index.pop(key, None)

    def _index_keys(self, record: ExistingRecord) -> list[tuple[dict[str, set[str]], str]]:
        keys = [
            (self._email_index, normalize_email(record.email)),
            (self._phone_index, phone_match_key(record.phone)),
            (self._linkedin_index, normalize_url(record.linkedin_url)),
        ]
        return [(index, key) for index, key in keys if key]

    def _persist_state(self) -> None:
        if not self.persistence:
            return
        with self._lock:
            self.persistence.save_snapshot(
                {"records": [record.model_dump(mode="json") for record in self.records.values()]},
                snapshot_id=RECORDS_SNAPSHOT_ID,
            )


def collect_candidates(
    repository: RecordRepository,
    candidate: CandidateRecord,
    *,
    search_limit: int = 50,
    domain_limit: int = 5,
    public_email_domains: Iterable[str] = (),
    exclude_owner_id: Optional[str] = None,
) -> list[ExistingRecord]:
    """Union of every cheap lookup the candidate's fields allow, de-duplicated by id."""
    lookups: list[list[ExistingRecord]] = []
    email = normalize_email(candidate.email)
    if email:
        lookups.append(repository.find_by_email(email))
        domain = email_domain(email)
        if domain and domain not in set(public_email_domains) and domain_limit > 0:
            lookups.append(repository.search_by_email_domain(domain, domain_limit))
    if phone_match_key(candidate.phone):
        lookups.append(repository.find_by_phone(candidate.phone))
    linkedin = normalize_url(candidate.linkedin_url)
    if linkedin:
        lookups.append(repository.find_by_linkedin(linkedin))
    company = normalize_company(candidate.company)
    if company:
        lookups.append(repository.search_by_company_contains(company, search_limit))
    name = normalize_name(candidate.name)
    if name:
        lookups.append(repository.search_by_name_contains(name, search_limit))

    seen: dict[str, ExistingRecord] = {}
    for records in lookups:
        for record in records:
            if exclude_owner_id and record.owner and record.owner.id == exclude_owner_id:
                continue
            seen.setdefault(record.id, record)
    logger.debug(
        "candidate_lookup lookups=%s candidates=%s", len(lookups), len(seen)
    )
    return list(seen.values())
