from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Optional

from backend.app.models import (
    CandidateRecord,
    ExistingRecord,
    MatchType,
    PotentialMatch,
    RecordSnapshot,
    Severity,
)
from backend.app.services.normalize import (
    company_tokens,
    email_domain,
    normalize_company,
    normalize_email,
    normalize_name,
    normalize_url,
    phones_match,
    token_jaccard,
)


@dataclass(frozen=True)
class MatchRule:
    key: str
    match_type: MatchType
    field: str
    exact: bool
    confidence: float
    severity: Severity


EMAIL_EXACT = MatchRule(
    "email_exact", MatchType.CONTACT_EMAIL, "email", True, 0.97, Severity.CRITICAL
)
PHONE_EXACT = MatchRule(
    "phone_exact", MatchType.CONTACT_PHONE, "phone", True, 0.90, Severity.HIGH
)
LINKEDIN_EXACT = MatchRule(
    "linkedin_exact", MatchType.LINKEDIN_PROFILE, "linkedin_url", True, 0.90, Severity.HIGH
)
EMAIL_DOMAIN = MatchRule(
    "email_domain", MatchType.COMPANY_DOMAIN, "email_domain", True, 0.80, Severity.HIGH
)
COMPANY_EXACT = MatchRule(
    "company_exact", MatchType.COMPANY_NAME, "company", True, 0.75, Severity.MEDIUM
)
COMPANY_FUZZY = MatchRule(
    "company_fuzzy", MatchType.COMPANY_NAME, "company", False, 0.55, Severity.MEDIUM
)
NAME_CORROBORATED = MatchRule(
    "name_with_company", MatchType.CONTACT_NAME, "name", True, 0.65, Severity.MEDIUM
)
NAME_ONLY = MatchRule("name_only", MatchType.CONTACT_NAME, "name", True, 0.35, Severity.LOW)

RULES = (
    EMAIL_EXACT,
    PHONE_EXACT,
    LINKEDIN_EXACT,
    EMAIL_DOMAIN,
    COMPANY_EXACT,
    COMPANY_FUZZY,
    NAME_CORROBORATED,
    NAME_ONLY,
)


def snapshot_of(record: ExistingRecord) -> RecordSnapshot:
    return RecordSnapshot(
        name=record.name,
        company=record.company,
        owner=record.owner,
        status=record.status,
        is_active=record.is_active,
        last_contact_date=record.last_contact_date,
    )


def _build_match(
    rule: MatchRule,
    record: ExistingRecord,
    *,
    candidate_value: Optional[str],
    existing_value: Optional[str],
    **extra: Any,
) -> PotentialMatch:
    details = {
        "rule": rule.key,
        "field": rule.field,
        "exact": rule.exact,
        "candidate_value": candidate_value,
        "existing_value": existing_value,
    }
    details.update(extra)
    return PotentialMatch(
        id=f"{record.kind.value}-{rule.key}-{record.id}",
        match_type=rule.match_type,
        confidence=rule.confidence,
        severity=rule.severity,
        match_details=details,
        existing_record_id=record.id,
        existing_record_kind=record.kind,
        existing_snapshot=snapshot_of(record),
    )


def company_match(
    candidate_company: Optional[str],
    existing_company: Optional[str],
    *,
    fuzzy_threshold: float = 0.7,
) -> tuple[Optional[MatchRule], float]:
    left = normalize_company(candidate_company)
    right = normalize_company(existing_company)
    if not left or not right:
        return None, 0.0
    if left == right:
        return COMPANY_EXACT, 1.0
    similarity = token_jaccard(set(company_tokens(left)), set(company_tokens(right)))
    if similarity >= fuzzy_threshold:
        return COMPANY_FUZZY, similarity
    return None, similarity


def score_pair(
    candidate: CandidateRecord,
    record: ExistingRecord,
    *,
    fuzzy_company_threshold: float = 0.7,
    public_email_domains: Iterable[str] = (),
) -> list[PotentialMatch]:
    """Every rule that fires between the candidate and one existing record."""
    matches: list[PotentialMatch] = []

    candidate_email = normalize_email(candidate.email)
    existing_email = normalize_email(record.email)
    if candidate_email and candidate_email == existing_email:
        matches.append(
            _build_match(
                EMAIL_EXACT,
                record,
                candidate_value=candidate.email,
                existing_value=record.email,
            )
        )

    if phones_match(candidate.phone, record.phone):
        matches.append(
            _build_match(
                PHONE_EXACT,
                record,
                candidate_value=candidate.phone,
                existing_value=record.phone,
            )
        )

    candidate_url = normalize_url(candidate.linkedin_url)
    if candidate_url and candidate_url == normalize_url(record.linkedin_url):
        matches.append(
            _build_match(
                LINKEDIN_EXACT,
                record,
                candidate_value=candidate.linkedin_url,
                existing_value=record.linkedin_url,
            )
        )

    company_rule, company_similarity = company_match(
        candidate.company,
        record.company,
        fuzzy_threshold=fuzzy_company_threshold,
    )

    domain = email_domain(candidate_email)
    if (
        domain
        and existing_email
        and candidate_email != existing_email
        and domain == email_domain(existing_email)
        and domain not in set(public_email_domains)
        and company_rule is not COMPANY_EXACT
    ):
        matches.append(
            _build_match(
                EMAIL_DOMAIN,
                record,
                candidate_value=candidate.email,
                existing_value=record.email,
                domain=domain,
            )
        )

    if company_rule:
        matches.append(
            _build_match(
                company_rule,
                record,
                candidate_value=candidate.company,
                existing_value=record.company,
                similarity=round(company_similarity, 3),
            )
        )

    candidate_name = normalize_name(candidate.name)
    if candidate_name and candidate_name == normalize_name(record.name):
        name_rule = NAME_CORROBORATED if company_rule else NAME_ONLY
        matches.append(
            _build_match(
                name_rule,
                record,
                candidate_value=candidate.name,
                existing_value=record.name,
                company_corroborated=company_rule is not None,
            )
        )

    return matches


def score_candidates(
    candidate: CandidateRecord,
    records: Iterable[ExistingRecord],
    *,
    fuzzy_company_threshold: float = 0.7,
    public_email_domains: Iterable[str] = (),
) -> list[PotentialMatch]:
    public_domains = set(public_email_domains)
    matches: list[PotentialMatch] = []
    for record in records:
        matches.extend(
            score_pair(
                candidate,
                record,
                fuzzy_company_threshold=fuzzy_company_threshold,
                public_email_domains=public_domains,
            )
        )
    return matches
