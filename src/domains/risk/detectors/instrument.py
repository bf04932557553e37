"""Payment instrument risk detection."""

from ..config import OperationPolicy
from ..models import FlagType, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector


class PaymentInstrumentDetector(RiskDetector):
    """Flags risky instrument classes (prepaid, virtual cards).

    The classification comes from the caller's processor or BIN lookup; without
    it the detector has nothing to say.
    """

    detector_id = "payment_instrument"
    flag_type = FlagType.PAYMENT_METHOD

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        if not request.instrument_risk:
            return []

        category = request.instrument_risk.lower()
        rating = policy.instrument.categories.get(category)
        if rating is None:
            return []

        severity, score = rating
        return [
            self._flag(
                severity,
                score,
                f"{category.replace('_', ' ').capitalize()} payment instrument",
                evidence={"instrument_risk": category},
            )
        ]
