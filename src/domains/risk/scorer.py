"""Risk scoring: run detectors, aggregate flags, recommend."""

import structlog

from .config import RiskConfig, default_config
from .detectors import ALL_DETECTORS, RiskDetector
from .models import (
    FlagType,
    Operation,
    Recommendation,
    RiskAssessment,
    RiskFlag,
    RiskHistory,
    RiskRequest,
    Severity,
)

logger = structlog.get_logger()

MAX_SCORE = 100

_COOLING_SEVERITIES = (Severity.HIGH, Severity.CRITICAL)


def aggregate_score(flags: list[RiskFlag]) -> int:
    """Sum of flag scores clamped to [0, 100]."""
    return max(0, min(sum(f.score for f in flags), MAX_SCORE))


def fail_closed(reason: str, detector_id: str | None = None) -> RiskAssessment:
    """The most restrictive assessment, used when evaluation cannot complete."""
    return RiskAssessment(
        score=MAX_SCORE,
        flags=[
            RiskFlag(
                type=FlagType.INTERNAL,
                severity=Severity.CRITICAL,
                description=reason,
                score=MAX_SCORE,
                evidence={"detector_id": detector_id} if detector_id else {},
                detector=detector_id or "",
            )
        ],
        recommendation=Recommendation.DENY,
    )


class RiskScorer:
    """Aggregates detector flags into a bounded score and a recommendation.

    Scoring is additive on a 0-100 scale:
    1. Run every detector -> list[RiskFlag]
    2. Total = sum of flag scores, clamped to 100
    3. Compare against the operation's deny / review / elevated cut points
    4. Attach a cooling-off period when a high or critical velocity flag fired

    A detector that raises makes the whole assessment fail closed (deny, 100).
    """

    def __init__(
        self,
        config: RiskConfig | None = None,
        detectors: list[RiskDetector] | None = None,
    ) -> None:
        self._config = config or default_config
        self._detectors = list(detectors) if detectors is not None else list(ALL_DETECTORS)

    @property
    def detectors(self) -> list[RiskDetector]:
        return list(self._detectors)

    def evaluate(self, request: RiskRequest, history: RiskHistory) -> RiskAssessment:
        policy = self._config.policy_for(request.operation)
        flags: list[RiskFlag] = []

        for detector in self._detectors:
            try:
                flags.extend(detector.detect(request, history, policy))
            except Exception:
                logger.exception(
                    "detector_failed",
                    detector_id=detector.detector_id,
                    operation=request.operation.value,
                    subject_id=request.subject_id,
                )
                return fail_closed("Risk evaluation failed", detector.detector_id)

        assessment = self.score(flags, request.operation, request.actor_role, request.amount)

        logger.info(
            "risk_evaluated",
            operation=request.operation.value,
            tenant_id=request.tenant_id,
            subject_id=request.subject_id,
            score=assessment.score,
            recommendation=assessment.recommendation.value,
            flag_count=len(assessment.flags),
            flag_types=sorted({f.type.value for f in assessment.flags}),
        )
        return assessment

    def score(
        self,
        flags: list[RiskFlag],
        operation: Operation,
        requester_role: str,
        amount: int | None = None,
    ) -> RiskAssessment:
        """Turn flags into an assessment using the operation's cut points."""
        thresholds = self._config.policy_for(operation).decision
        contributing = [f for f in flags if f.score > 0]
        total = aggregate_score(contributing)

        requires_approval = False
        requires_additional_auth = False
        max_allowed_amount = None

        if total >= thresholds.deny:
            recommendation = Recommendation.DENY
        elif total >= thresholds.review:
            recommendation = Recommendation.REVIEW
            requires_approval = True
            if thresholds.review_amount_cap is not None:
                max_allowed_amount = (
                    min(amount, thresholds.review_amount_cap)
                    if amount is not None
                    else thresholds.review_amount_cap
                )
        elif total >= thresholds.elevated:
            if requester_role == thresholds.lowest_role:
                recommendation = Recommendation.REVIEW
                requires_approval = True
            else:
                recommendation = Recommendation.APPROVE
                requires_additional_auth = operation == Operation.PAYMENT
        else:
            recommendation = Recommendation.APPROVE

        cooling_period = None
        if any(
            f.type == FlagType.VELOCITY and f.severity in _COOLING_SEVERITIES for f in contributing
        ):
            cooling_period = thresholds.cooling_period_minutes

        return RiskAssessment(
            score=total,
            flags=contributing,
            recommendation=recommendation,
            requires_approval=requires_approval,
            max_allowed_amount=max_allowed_amount,
            cooling_period_minutes=cooling_period,
            requires_additional_auth=requires_additional_auth,
        )
