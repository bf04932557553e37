"""Pydantic models for the risk domain."""

from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class Operation(StrEnum):
    PAYMENT = "payment"
    REFUND = "refund"


class ActorKind(StrEnum):
    CUSTOMER = "customer"
    SESSION = "session"
    IP = "ip"


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FlagType(StrEnum):
    VELOCITY = "velocity"
    AMOUNT = "amount"
    PATTERN = "pattern"
    CHARGEBACK_RISK = "chargeback_risk"
    ACCOUNT_AGE = "account_age"
    PAYMENT_METHOD = "payment_method"
    BLOCKLIST = "blocklist"
    INTERNAL = "internal"


class Recommendation(StrEnum):
    APPROVE = "approve"
    REVIEW = "review"
    DENY = "deny"


class DecisionOutcome(StrEnum):
    APPROVE = "approve"
    DENY = "deny"
    PENDING = "pending"


class ApprovalStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    DENIED = "denied"


class AuditEvent(StrEnum):
    PAYMENT_REQUESTED = "payment_requested"
    PAYMENT_UNAUTHORIZED = "payment_unauthorized"
    REFUND_REQUESTED = "refund_requested"
    REFUND_UNAUTHORIZED = "refund_unauthorized"
    FRAUD_DETECTED = "fraud_detected"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_GRANTED = "approval_granted"
    APPROVAL_DENIED = "approval_denied"
    FRAUD_CHECK_OVERRIDDEN = "fraud_check_overridden"
    CHARGEBACK_RISK_DETECTED = "chargeback_risk_detected"


REQUEST_EVENTS = {
    Operation.PAYMENT: AuditEvent.PAYMENT_REQUESTED,
    Operation.REFUND: AuditEvent.REFUND_REQUESTED,
}

UNAUTHORIZED_EVENTS = {
    Operation.PAYMENT: AuditEvent.PAYMENT_UNAUTHORIZED,
    Operation.REFUND: AuditEvent.REFUND_UNAUTHORIZED,
}


# ---------------------------------------------------------------------------
# Inbound requests
# ---------------------------------------------------------------------------


class _CallerFields(BaseModel):
    tenant_id: str = Field(min_length=1, max_length=128)
    actor_id: str = Field(min_length=1, max_length=128)
    actor_role: str = "customer"
    customer_id: str | None = None
    session_id: str | None = None
    ip_address: str = "unknown"
    user_agent: str = ""
    instrument_risk: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class PaymentRequest(_CallerFields):
    """Payment initiation. ``amount`` is minor units (GBP 0.50 to 999,999.99)."""

    amount: int = Field(ge=50, le=99_999_999)
    currency: Literal["gbp", "eur", "usd"] = "gbp"
    subject_id: str | None = Field(default=None, max_length=255)
    reason: str | None = Field(default=None, max_length=1000)


RefundReason = Literal[
    "duplicate",
    "fraudulent",
    "requested_by_customer",
    "quality_issue",
    "damaged_item",
    "chargeback",
]


class RefundRequest(_CallerFields):
    """Refund initiation. A missing ``amount`` means a full refund."""

    subject_id: str = Field(pattern=r"^pi_[A-Za-z0-9_]+$")
    amount: int | None = Field(default=None, ge=1)
    currency: Literal["gbp", "eur", "usd"] = "gbp"
    reason: RefundReason = "requested_by_customer"
    description: str | None = Field(default=None, max_length=1000)


class RiskRequest(BaseModel):
    """Operation-neutral view of a payment or refund handed to the detectors."""

    model_config = ConfigDict(frozen=True)

    operation: Operation
    tenant_id: str
    actor_id: str
    actor_role: str
    customer_id: str | None = None
    session_id: str
    ip_address: str
    user_agent: str
    subject_id: str
    amount: int | None = None
    currency: str = "gbp"
    reason: str | None = None
    instrument_risk: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def velocity_key(self) -> tuple[ActorKind, str]:
        if self.customer_id:
            return ActorKind.CUSTOMER, self.customer_id
        return ActorKind.SESSION, self.session_id


class ApprovalDecisionRequest(BaseModel):
    approver_id: str = Field(min_length=1)
    approver_role: str = Field(min_length=1)
    note: str | None = Field(default=None, max_length=1000)
    override_fraud_check: bool = False


class ChargebackRiskUpdate(BaseModel):
    risk_score: float = Field(ge=0, le=100)
    factors: list[str] = Field(default_factory=list)


class ChargebackReport(BaseModel):
    tenant_id: str = Field(min_length=1)
    actor_id: str = Field(min_length=1)
    subject_id: str = Field(min_length=1)
    customer_id: str | None = None
    amount: int | None = Field(default=None, ge=1)


# ---------------------------------------------------------------------------
# Velocity
# ---------------------------------------------------------------------------


class VelocityBucket(BaseModel):
    count: int = Field(default=0, ge=0)
    amount: int = Field(default=0, ge=0)
    last_reset: datetime


class VelocityWindow(BaseModel):
    hour: VelocityBucket
    day: VelocityBucket
    week: VelocityBucket

    @classmethod
    def empty(cls, now: datetime) -> "VelocityWindow":
        return cls(
            hour=VelocityBucket(last_reset=now),
            day=VelocityBucket(last_reset=now),
            week=VelocityBucket(last_reset=now),
        )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


class RiskFlag(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: FlagType
    severity: Severity
    description: str
    score: int = Field(ge=0, le=100)
    evidence: dict = Field(default_factory=dict)
    detector: str = ""


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0, le=100)
    flags: list[RiskFlag] = []
    recommendation: Recommendation
    requires_approval: bool = False
    max_allowed_amount: int | None = None
    cooling_period_minutes: int | None = None
    requires_additional_auth: bool = False


class RiskHistory(BaseModel):
    """Pre-resolved inputs for the detectors; detectors never fetch anything."""

    now: datetime
    velocity: VelocityWindow
    origin_request_count: int = 0
    subject_request_count: int = 0
    origin_blocked: bool = False
    chargeback_cache_score: float | None = None
    chargeback_count: int = 0
    first_seen_at: datetime | None = None
    payment_count: int = 0
    refund_count: int = 0


# ---------------------------------------------------------------------------
# Approvals and audit
# ---------------------------------------------------------------------------


class PendingApproval(BaseModel):
    id: str
    tenant_id: str
    subject_id: str
    operation: Operation
    actor_id: str
    customer_id: str | None = None
    session_id: str
    ip_address: str
    user_agent: str
    amount: int | None = None
    currency: str = "gbp"
    reason: str | None = None
    requested_by: str
    requested_role: str
    requested_at: datetime
    status: ApprovalStatus = ApprovalStatus.PENDING
    fraud_assessment: RiskAssessment
    approved_by: str | None = None
    approved_at: datetime | None = None
    note: str | None = None


class ApprovalResult(BaseModel):
    approved: bool
    approval_id: str
    status: ApprovalStatus
    reason: str | None = None
    assessment: RiskAssessment | None = None


class AuditEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    event: AuditEvent
    tenant_id: str
    actor_id: str
    actor_role: str = ""
    customer_id: str | None = None
    subject_id: str = ""
    ip_address: str = "unknown"
    user_agent: str = "unknown"
    amount: int | None = None
    currency: str | None = None
    reason: str | None = None
    success: bool = False
    fraud_score: int = Field(default=0, ge=0, le=100)
    error_message: str | None = None
    metadata: dict = Field(default_factory=dict)
    requires_notification: bool = False


class AuditFilter(BaseModel):
    tenant_id: str | None = None
    actor_id: str | None = None
    customer_id: str | None = None
    subject_id: str | None = None
    ip_address: str | None = None
    event: AuditEvent | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    min_score: int | None = None
    limit: int | None = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.tenant_id and entry.tenant_id != self.tenant_id:
            return False
        if self.actor_id and entry.actor_id != self.actor_id:
            return False
        if self.customer_id and entry.customer_id != self.customer_id:
            return False
        if self.subject_id and entry.subject_id != self.subject_id:
            return False
        if self.ip_address and entry.ip_address != self.ip_address:
            return False
        if self.event and entry.event != self.event:
            return False
        if self.start_time and entry.timestamp < self.start_time:
            return False
        if self.end_time and entry.timestamp > self.end_time:
            return False
        if self.min_score is not None and entry.fraud_score < self.min_score:
            return False
        return True


class SecurityMetrics(BaseModel):
    window_hours: int
    total_requests: int = 0
    payment_requests: int = 0
    refund_requests: int = 0
    successful: int = 0
    failed: int = 0
    approvals_granted: int = 0
    approvals_denied: int = 0
    fraud_detections: int = 0
    average_score: float = 0.0
    high_risk_count: int = 0
    pending_approvals: int = 0
    blocked_origins: int = 0


class SecurityContext(BaseModel):
    tenant_id: str
    actor_id: str
    actor_role: str
    customer_id: str | None = None
    session_id: str
    ip_address: str
    user_agent: str
    subject_id: str
    assessment: RiskAssessment
    audit_entries: list[AuditEntry] = []


class Decision(BaseModel):
    decision: DecisionOutcome
    assessment: RiskAssessment
    audit_entry_ids: list[str] = []
    approval_id: str | None = None
    estimated_processing_hours: int = 0
    security: SecurityContext
