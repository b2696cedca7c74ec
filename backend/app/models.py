from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utc_now() -> datetime:
    return datetime.utcnow()


def naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Timestamps are compared as naive UTC throughout."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class RecordKind(str, Enum):
    lead = "lead"
    pipeline_item = "pipeline_item"
    company = "company"
    contact = "contact"


class TriggerAction(str, Enum):
    LEAD_CREATE = "LEAD_CREATE"
    LEAD_UPDATE = "LEAD_UPDATE"
    PIPELINE_CREATE = "PIPELINE_CREATE"
    PIPELINE_UPDATE = "PIPELINE_UPDATE"
    CONTACT_ADD = "CONTACT_ADD"
    COMPANY_ADD = "COMPANY_ADD"


class MatchType(str, Enum):
    COMPANY_NAME = "COMPANY_NAME"
    COMPANY_DOMAIN = "COMPANY_DOMAIN"
    CONTACT_EMAIL = "CONTACT_EMAIL"
    CONTACT_PHONE = "CONTACT_PHONE"
    CONTACT_NAME = "CONTACT_NAME"
    LINKEDIN_PROFILE = "LINKEDIN_PROFILE"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]


SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class UserDecision(str, Enum):
    PROCEEDED = "PROCEEDED"
    CANCELLED = "CANCELLED"


LEAD_CLOSED_STATUSES = {"closed"}
PIPELINE_CLOSED_STATUSES = {"closed - won", "closed - lost", "dead"}
REGISTRY_INACTIVE_STATUSES = {"inactive", "archived"}


class ActingUser(BaseModel):
    id: str
    name: str
    role: str


class RecordOwner(BaseModel):
    id: str
    name: str
    role: Optional[str] = None


class CandidateRecord(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    company: Optional[str] = None
    linkedin_url: Optional[str] = None
    title: Optional[str] = None
    record_kind: Literal[RecordKind.lead, RecordKind.pipeline_item] = RecordKind.lead
    trigger_action: TriggerAction = TriggerAction.LEAD_CREATE


class _ExistingRecordBase(BaseModel):
    id: str
    name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    linkedin_url: Optional[str] = None
    owner: Optional[RecordOwner] = None
    last_contact_date: Optional[datetime] = None
    status: str = ""
    created_at_utc: datetime = Field(default_factory=utc_now)

    naive_timestamps = field_validator("last_contact_date", "created_at_utc")(naive_utc)

    @property
    def is_active(self) -> bool:
        return self.status.strip().lower() not in REGISTRY_INACTIVE_STATUSES

    @property
    def recency(self) -> datetime:
        return self.last_contact_date or self.created_at_utc


class LeadRecord(_ExistingRecordBase):
    kind: Literal[RecordKind.lead] = RecordKind.lead
    title: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status.strip().lower() not in LEAD_CLOSED_STATUSES


class PipelineItemRecord(_ExistingRecordBase):
    kind: Literal[RecordKind.pipeline_item] = RecordKind.pipeline_item
    title: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.status.strip().lower() not in PIPELINE_CLOSED_STATUSES


class CompanyRecord(_ExistingRecordBase):
    kind: Literal[RecordKind.company] = RecordKind.company


class ContactRecord(_ExistingRecordBase):
    kind: Literal[RecordKind.contact] = RecordKind.contact
    title: Optional[str] = None


ExistingRecord = Annotated[
    Union[LeadRecord, PipelineItemRecord, CompanyRecord, ContactRecord],
    Field(discriminator="kind"),
]


class OwnerView(BaseModel):
    id: Optional[str] = None
    name: str
    role: Optional[str] = None


class RecordSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    company: Optional[str] = None
    owner: Optional[RecordOwner] = None
    status: str = ""
    is_active: bool = True
    last_contact_date: Optional[datetime] = None


class PotentialMatch(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    match_type: MatchType
    confidence: float = Field(ge=0, le=1)
    severity: Severity
    match_details: dict[str, Any] = Field(default_factory=dict)
    existing_record_id: str
    existing_record_kind: RecordKind
    existing_snapshot: RecordSnapshot


class DuplicateWarningRecord(BaseModel):
    id: str
    created_at_utc: datetime
    severity: Severity
    warning_type: MatchType
    triggered_by: ActingUser
    trigger_action: TriggerAction
    trigger_data: dict[str, Any] = Field(default_factory=dict)
    matches: list[PotentialMatch]
    decision_made: bool = False
    user_decision: Optional[UserDecision] = None
    decision_at_utc: Optional[datetime] = None
    reason: Optional[str] = None


class DuplicateAuditLogEntry(BaseModel):
    id: str
    warning_id: str
    user_id: str
    user_name: str
    user_role: str
    action: str
    decision: UserDecision
    reason: Optional[str]
    severity: Severity
    trigger_action: TriggerAction
    match_count: int
    entity_type: str
    created_at_utc: datetime


class RecordCreateRequest(BaseModel):
    kind: RecordKind = RecordKind.lead
    name: Optional[str] = Field(default=None, max_length=120)
    company: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=40)
    linkedin_url: Optional[str] = Field(default=None, max_length=500)
    title: Optional[str] = Field(default=None, max_length=120)
    owner: Optional[RecordOwner] = None
    last_contact_date: Optional[datetime] = None
    status: str = Field(default="New", max_length=60)

    naive_last_contact = field_validator("last_contact_date")(naive_utc)


class DuplicateCheckRequest(BaseModel):
    name: Optional[str] = Field(default=None, max_length=120)
    email: Optional[str] = Field(default=None, max_length=254)
    phone: Optional[str] = Field(default=None, max_length=40)
    company: Optional[str] = Field(default=None, max_length=200)
    linkedin_url: Optional[str] = Field(default=None, max_length=500)
    title: Optional[str] = Field(default=None, max_length=120)
    record_kind: Literal[RecordKind.lead, RecordKind.pipeline_item] = RecordKind.lead
    action: TriggerAction = TriggerAction.LEAD_CREATE

    def to_candidate(self) -> CandidateRecord:
        return CandidateRecord(
            name=self.name,
            email=self.email,
            phone=self.phone,
            company=self.company,
            linkedin_url=self.linkedin_url,
            title=self.title,
            record_kind=self.record_kind,
            trigger_action=self.action,
        )


class MatchDetailView(BaseModel):
    type: Literal["exact", "similar"]
    field: str


class ExistingRecordView(BaseModel):
    id: str
    kind: RecordKind
    label: str
    company: Optional[str] = None
    owner: Optional[OwnerView] = None
    last_contact_date: Optional[datetime] = None
    status: Optional[str] = None
    is_active: Optional[bool] = None
    missing: bool = False


class MatchView(BaseModel):
    id: str
    match_type: MatchType
    confidence: float
    severity: Severity
    match_details: MatchDetailView
    existing_record: ExistingRecordView


class DuplicateCheckResponse(BaseModel):
    has_warning: bool
    severity: Severity
    warning_id: Optional[str] = None
    message: Optional[str] = None
    matches: list[MatchView] = Field(default_factory=list)


class DecisionRequest(BaseModel):
    warning_id: str = Field(min_length=4, max_length=120)
    decision: UserDecision
    reason: Optional[str] = Field(default=None, max_length=500)


class DecisionResponse(BaseModel):
    success: bool
    warning_id: str
    decision: UserDecision
    decision_at_utc: datetime


class WarningDetail(BaseModel):
    id: str
    created_at_utc: datetime
    status: Literal["pending", "decided"]
    severity: Severity
    warning_type: MatchType
    trigger_action: TriggerAction
    triggered_by: ActingUser
    decision_made: bool
    user_decision: Optional[UserDecision]
    decision_at_utc: Optional[datetime]
    reason: Optional[str]
    matches: list[MatchView]


class StatisticsSummary(BaseModel):
    date_from: Optional[datetime]
    date_to: Optional[datetime]
    total_warnings: int
    pending_count: int
    proceed_count: int
    cancelled_count: int
    proceed_rate: float
    severity_breakdown: dict[Severity, int]


class SearchResultItem(BaseModel):
    id: str
    kind: RecordKind
    name: Optional[str]
    company: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    status: str
    is_active: bool
    owner: Optional[RecordOwner]
    last_contact_date: Optional[datetime]
    relevance_score: float


class CompanyConflictsResponse(BaseModel):
    conflicts: dict[str, bool]
    since: datetime
