"""Risk engine configuration: per-operation threshold tables with sensible defaults.

Every detector reads its thresholds and flag scores from these tables, so the
payment and refund policies differ only in data. Amounts are minor units
(pence): 10_000 is GBP 100.00.
"""

import os
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ThresholdBand:
    """A value at or above ``threshold`` raises a flag of ``severity``/``score``."""

    threshold: float
    severity: str
    score: int


def match_band(value: float, bands: list[ThresholdBand]) -> ThresholdBand | None:
    """Return the highest band ``value`` reaches, or None."""
    for band in sorted(bands, key=lambda b: b.threshold, reverse=True):
        if value >= band.threshold:
            return band
    return None


@dataclass
class VelocityThresholds:
    hour: list[ThresholdBand] = field(default_factory=list)
    day: list[ThresholdBand] = field(default_factory=list)
    week: list[ThresholdBand] = field(default_factory=list)
    # Emit only the most severe window instead of one flag per window
    single_flag: bool = False


@dataclass
class AmountThresholds:
    bands: list[ThresholdBand] = field(default_factory=list)
    round_unit: int = 10_000
    round_min_amount: int = 50_000
    round_score: int = 5
    # Refund with an explicit amount; 0 disables
    partial_score: int = 0


@dataclass
class PatternThresholds:
    min_user_agent_length: int = 10
    short_user_agent_score: int = 10
    automation_pattern: str = r"bot|crawler|spider|scraper|automated"
    automation_score: int = 25
    blocklist_score: int = 100
    origin_window_hours: int = 24
    origin_bands: list[ThresholdBand] = field(
        default_factory=lambda: [
            ThresholdBand(10, "critical", 35),
            ThresholdBand(5, "high", 20),
        ]
    )
    subject_bands: list[ThresholdBand] = field(default_factory=list)


@dataclass
class ChargebackThresholds:
    cache_bands: list[ThresholdBand] = field(
        default_factory=lambda: [
            ThresholdBand(70, "critical", 40),
            ThresholdBand(40, "medium", 20),
        ]
    )
    history_bands: list[ThresholdBand] = field(
        default_factory=lambda: [
            ThresholdBand(3, "critical", 45),
            ThresholdBand(1, "high", 25),
        ]
    )
    history_window_days: int = 30


@dataclass
class AccountThresholds:
    new_account_hours: int = 24
    new_account_score: int = 15
    refund_ratio_max: float = 0.5
    refund_ratio_score: int = 30


@dataclass
class InstrumentThresholds:
    # instrument classification -> (severity, score)
    categories: dict[str, tuple[str, int]] = field(
        default_factory=lambda: {
            "prepaid": ("medium", 15),
            "virtual": ("medium", 15),
            "high_risk": ("high", 25),
        }
    )


@dataclass
class DecisionThresholds:
    deny: int = 70
    review: int = 40
    elevated: int = 20
    # Cap attached to review-band assessments; None leaves it unset
    review_amount_cap: int | None = None
    cooling_period_minutes: int = 60
    lowest_role: str = "customer"


@dataclass
class OperationPolicy:
    velocity: VelocityThresholds = field(default_factory=VelocityThresholds)
    amount: AmountThresholds = field(default_factory=AmountThresholds)
    patterns: PatternThresholds = field(default_factory=PatternThresholds)
    chargeback: ChargebackThresholds = field(default_factory=ChargebackThresholds)
    account: AccountThresholds = field(default_factory=AccountThresholds)
    instrument: InstrumentThresholds = field(default_factory=InstrumentThresholds)
    decision: DecisionThresholds = field(default_factory=DecisionThresholds)


def default_payment_policy() -> OperationPolicy:
    return OperationPolicy(
        velocity=VelocityThresholds(
            hour=[
                ThresholdBand(10, "critical", 40),
                ThresholdBand(5, "high", 20),
                ThresholdBand(3, "medium", 10),
            ],
            day=[
                ThresholdBand(50, "critical", 40),
                ThresholdBand(20, "high", 20),
                ThresholdBand(10, "medium", 10),
            ],
            single_flag=True,
        ),
        amount=AmountThresholds(
            bands=[
                ThresholdBand(10_000_000, "critical", 40),
                ThresholdBand(1_000_000, "high", 20),
                ThresholdBand(100_000, "medium", 10),
            ],
        ),
        patterns=PatternThresholds(short_user_agent_score=15, automation_score=30),
        decision=DecisionThresholds(deny=70, review=40, elevated=20),
    )


def default_refund_policy() -> OperationPolicy:
    return OperationPolicy(
        velocity=VelocityThresholds(
            hour=[ThresholdBand(5, "critical", 40), ThresholdBand(3, "high", 25)],
            day=[ThresholdBand(10, "high", 30), ThresholdBand(5, "medium", 15)],
            week=[ThresholdBand(20, "high", 25)],
        ),
        amount=AmountThresholds(
            bands=[ThresholdBand(100_000, "high", 30), ThresholdBand(50_000, "medium", 15)],
            partial_score=5,
        ),
        patterns=PatternThresholds(
            short_user_agent_score=10,
            automation_score=25,
            subject_bands=[ThresholdBand(5, "critical", 35), ThresholdBand(3, "high", 25)],
        ),
        decision=DecisionThresholds(deny=80, review=50, elevated=25, review_amount_cap=10_000),
    )


@dataclass
class RolePermissions:
    """Role sets gating initiation and approval."""

    payment_initiate: tuple[str, ...] = ("customer", "customer_support", "admin", "super_admin")
    refund_initiate: tuple[str, ...] = ("customer", "customer_support", "admin", "super_admin")
    partial_refund: tuple[str, ...] = ("customer_support", "admin", "super_admin")
    chargeback_refund: tuple[str, ...] = ("admin", "super_admin")
    override_fraud_check: tuple[str, ...] = ("admin", "super_admin")
    # (max amount inclusive, roles); None means any amount. Tiers are cumulative.
    approval_tiers: tuple[tuple[int | None, tuple[str, ...]], ...] = (
        (10_000, ("customer_support", "admin", "super_admin")),
        (100_000, ("admin", "super_admin")),
        (None, ("super_admin",)),
    )


@dataclass
class LedgerSettings:
    max_entries: int = 50_000
    # Time-based purge; None keeps entries until the FIFO cap evicts them.
    # A configured value never purges inside a chargeback history window.
    retention_days: int | None = None
    high_risk_score: int = 70
    notify_approval_amount: int = 100_000
    metrics_window_hours: int = 24


@dataclass
class RiskConfig:
    payment: OperationPolicy = field(default_factory=default_payment_policy)
    refund: OperationPolicy = field(default_factory=default_refund_policy)
    roles: RolePermissions = field(default_factory=RolePermissions)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    # Fixed audit scores for requests that never reach the scorer
    unauthorized_audit_score: int = 5
    internal_error_audit_score: int = 8
    notification_topic: str = "risk.audit.notifications"

    def policy_for(self, operation: str) -> OperationPolicy:
        return self.refund if operation == "refund" else self.payment

    @classmethod
    def from_env(cls) -> "RiskConfig":
        """Load config with env var overrides. Env vars use RISK_ prefix."""
        config = cls()

        # Decision overrides
        if v := os.getenv("RISK_PAYMENT_DENY_THRESHOLD"):
            config.payment.decision.deny = int(v)
        if v := os.getenv("RISK_PAYMENT_REVIEW_THRESHOLD"):
            config.payment.decision.review = int(v)
        if v := os.getenv("RISK_REFUND_DENY_THRESHOLD"):
            config.refund.decision.deny = int(v)
        if v := os.getenv("RISK_REFUND_REVIEW_THRESHOLD"):
            config.refund.decision.review = int(v)
        if v := os.getenv("RISK_COOLING_PERIOD_MINUTES"):
            config.payment.decision.cooling_period_minutes = int(v)
            config.refund.decision.cooling_period_minutes = int(v)

        # Ledger overrides
        if v := os.getenv("RISK_LEDGER_RETENTION_DAYS"):
            config.ledger.retention_days = int(v)

        return config


# Module-level default instance
default_config = RiskConfig()
