from __future__ import annotations

from difflib import SequenceMatcher
from typing import Literal, Optional

from backend.app.models import ExistingRecord, SearchResultItem
from backend.app.repository import InMemoryRecordRepository
from backend.app.services.normalize import (
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_phone,
)

SearchType = Literal["company", "contact", "email", "phone", "all"]

MIN_QUERY_LENGTH = 2
MAX_QUERY_LENGTH = 100
MIN_TOKEN_LENGTH = 2

SUBSTRING_RELEVANCE = 1.0
SIMILARITY_WEIGHT = 0.9
TOKEN_RELEVANCE = 0.6


class SearchQueryError(Exception):
    pass


def _similarity(left: str, right: str) -> float:
    return SequenceMatcher(None, left, right).ratio()


def _searched_fields(record: ExistingRecord, record_type: SearchType) -> list[str]:
    fields: list[Optional[str]] = []
    if record_type in ("company", "all"):
        fields.append(normalize_company(record.company))
    if record_type in ("contact", "all"):
        fields.append(normalize_name(record.name))
    if record_type in ("email", "all"):
        fields.append(normalize_email(record.email))
    if record_type == "phone":
        phone = normalize_phone(record.phone)
        fields.append(phone.lstrip("+") if phone else None)
    return [value for value in fields if value]


def relevance(query: str, record: ExistingRecord, record_type: SearchType = "all") -> float:
    fields = _searched_fields(record, record_type)
    if not fields:
        return 0.0
    if any(query in value for value in fields):
        return SUBSTRING_RELEVANCE

    score = 0.0
    if record_type != "phone":
        for value in fields:
            score = max(score, SIMILARITY_WEIGHT * _similarity(query, value))
    tokens = [token for token in query.split() if len(token) >= MIN_TOKEN_LENGTH]
    if tokens and any(token in value for token in tokens for value in fields):
        score = max(score, TOKEN_RELEVANCE)
    return score


def _normalized_query(query: str, record_type: SearchType) -> str:
    cleaned = " ".join(query.strip().lower().split())
    if len(cleaned) < MIN_QUERY_LENGTH or len(cleaned) > MAX_QUERY_LENGTH:
        raise SearchQueryError(
            f"search query must be {MIN_QUERY_LENGTH}-{MAX_QUERY_LENGTH} characters"
        )
    if record_type == "phone":
        digits = "".join(char for char in cleaned if char.isdigit())
        if len(digits) < MIN_QUERY_LENGTH:
            raise SearchQueryError("phone search needs at least two digits")
        return digits
    return cleaned


def search_records(
    repository: InMemoryRecordRepository,
    query: str,
    *,
    record_type: SearchType = "all",
    limit: int = 20,
    include_inactive: bool = False,
    min_relevance: float = 0.5,
) -> list[SearchResultItem]:
    needle = _normalized_query(query, record_type)
    scored: list[tuple[float, ExistingRecord]] = []
    for record in repository.all_records():
        if not include_inactive and not record.is_active:
            continue
        score = relevance(needle, record, record_type)
        if score >= min_relevance:
            scored.append((score, record))

    scored.sort(key=lambda item: (item[0], item[1].recency), reverse=True)
    return [
        SearchResultItem(
            id=record.id,
            kind=record.kind,
            name=record.name,
            company=record.company,
            email=record.email,
            phone=record.phone,
            status=record.status,
            is_active=record.is_active,
            owner=record.owner,
            last_contact_date=record.last_contact_date,
            relevance_score=round(score, 3),
        )
        for score, record in scored[: max(limit, 0)]
    ]
