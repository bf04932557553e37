"""Decision engine: role authorization ahead of scoring, outcome after it."""

from .config import RiskConfig, default_config
from .errors import AuthorizationError
from .models import DecisionOutcome, Operation, Recommendation, RiskAssessment, RiskRequest

_OUTCOMES = {
    Recommendation.APPROVE: DecisionOutcome.APPROVE,
    Recommendation.REVIEW: DecisionOutcome.PENDING,
    Recommendation.DENY: DecisionOutcome.DENY,
}


class DecisionEngine:
    """Maps a request through Evaluating -> Approved | Denied | PendingReview."""

    def __init__(self, config: RiskConfig | None = None) -> None:
        self._config = config or default_config

    def authorize(self, request: RiskRequest) -> None:
        """Raise AuthorizationError if the role lacks the base capability."""
        roles = self._config.roles
        role = request.actor_role

        if request.operation == Operation.PAYMENT:
            if role not in roles.payment_initiate:
                raise AuthorizationError("Insufficient permissions to initiate payments")
            return

        if role not in roles.refund_initiate:
            raise AuthorizationError("Insufficient permissions to initiate refunds")
        if request.amount is not None and role not in roles.partial_refund:
            raise AuthorizationError("Insufficient permissions for partial refunds")
        if request.reason == "chargeback" and role not in roles.chargeback_refund:
            raise AuthorizationError("Insufficient permissions for chargeback refunds")
        if role == "customer" and request.customer_id and request.customer_id != request.actor_id:
            raise AuthorizationError("Cannot initiate refund for other customers")

    def resolve(self, assessment: RiskAssessment) -> DecisionOutcome:
        if assessment.recommendation == Recommendation.REVIEW and not assessment.requires_approval:
            return DecisionOutcome.APPROVE
        return _OUTCOMES[assessment.recommendation]

    @staticmethod
    def processing_hours(assessment: RiskAssessment) -> int:
        """Estimated hours until the operation can be processed."""
        if assessment.recommendation == Recommendation.DENY:
            return 0
        if assessment.requires_approval:
            return 24
        if assessment.score > 25:
            return 4
        return 1
