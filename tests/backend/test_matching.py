from __future__ import annotations

from backend.app.models import CandidateRecord, LeadRecord, MatchType, RecordOwner, Severity
from backend.app.services.matching import company_match, score_candidates, score_pair

PUBLIC_DOMAINS = ("gmail.com", "yahoo.com")


def _lead(record_id: str = "lead_1", **fields) -> LeadRecord:
    fields.setdefault("owner", RecordOwner(id="bdr-9", name="Alice"))
    return LeadRecord(id=record_id, status="New", **fields)


def test_exact_email_is_single_critical_match() -> None:
    candidate = CandidateRecord(name="Jane Doe", email="jane@acme.com")
    existing = _lead(name="J. Doe", email="JANE@acme.com ")

    matches = score_pair(candidate, existing, public_email_domains=PUBLIC_DOMAINS)

    assert len(matches) == 1
    match = matches[0]
    assert match.match_type == MatchType.CONTACT_EMAIL
    assert match.confidence == 0.97
    assert match.severity == Severity.CRITICAL
    assert match.match_details["rule"] == "email_exact"
    assert match.existing_record_id == "lead_1"
    assert match.existing_snapshot.owner.name == "Alice"


def test_name_corroborated_by_company() -> None:
    candidate = CandidateRecord(name="Jane Doe", company="Acme Ltd")
    existing = _lead(name="Jane Doe", company="Acme")

    matches = {match.match_type: match for match in score_pair(candidate, existing)}

    assert matches[MatchType.CONTACT_NAME].confidence == 0.65
    assert matches[MatchType.CONTACT_NAME].severity == Severity.MEDIUM
    assert matches[MatchType.CONTACT_NAME].match_details["company_corroborated"] is True
    assert matches[MatchType.COMPANY_NAME].severity == Severity.MEDIUM


def test_name_only_is_low() -> None:
    candidate = CandidateRecord(name="Jane Doe", company="Globex")
    existing = _lead(name="jane  doe", company="Initech")

    matches = score_pair(candidate, existing)

    assert [match.match_type for match in matches] == [MatchType.CONTACT_NAME]
    assert matches[0].confidence == 0.35
    assert matches[0].severity == Severity.LOW


def test_phone_match_across_formats() -> None:
    candidate = CandidateRecord(phone="+44 20 1234 5678")
    existing = _lead(phone="02012345678")

    matches = score_pair(candidate, existing)

    assert len(matches) == 1
    assert matches[0].match_type == MatchType.CONTACT_PHONE
    assert matches[0].confidence == 0.90
    assert matches[0].severity == Severity.HIGH


def test_linkedin_profile_match() -> None:
    candidate = CandidateRecord(linkedin_url="https://linkedin.com/in/jane-doe/")
    existing = _lead(linkedin_url="http://www.linkedin.com/in/jane-doe?trk=x")

    matches = score_pair(candidate, existing)

    assert [match.match_type for match in matches] == [MatchType.LINKEDIN_PROFILE]
    assert matches[0].severity == Severity.HIGH


def test_shared_corporate_domain_flags_company_domain() -> None:
    candidate = CandidateRecord(email="bob@globex.io", company="Globex Europe")
    existing = _lead(email="alice@globex.io", company="Umbrella")

    matches = score_pair(candidate, existing, public_email_domains=PUBLIC_DOMAINS)

    assert [match.match_type for match in matches] == [MatchType.COMPANY_DOMAIN]
    assert matches[0].confidence == 0.80
    assert matches[0].match_details["domain"] == "globex.io"


def test_public_mail_domain_is_not_a_company_signal() -> None:
    candidate = CandidateRecord(email="bob@gmail.com")
    existing = _lead(email="alice@gmail.com")

    assert score_pair(candidate, existing, public_email_domains=PUBLIC_DOMAINS) == []


def test_domain_match_skipped_when_company_already_equal() -> None:
    candidate = CandidateRecord(email="bob@globex.io", company="Globex")
    existing = _lead(email="alice@globex.io", company="Globex Inc")

    types = [match.match_type for match in score_pair(candidate, existing)]

    assert types == [MatchType.COMPANY_NAME]


def test_fuzzy_company_threshold() -> None:
    rule, similarity = company_match("Acme Widgets Europe", "Acme Widgets Europe Holdings")
    assert rule is not None
    assert rule.key == "company_fuzzy"
    assert similarity == 0.75

    rule, _ = company_match("Acme Widgets", "Acme Rockets", fuzzy_threshold=0.7)
    assert rule is None


def test_no_shared_fields_means_no_matches() -> None:
    candidate = CandidateRecord(name="Jane Doe", email="jane@acme.com")
    records = [_lead(name="John Smith", email="john@initech.com", company="Initech")]

    assert score_candidates(candidate, records) == []
