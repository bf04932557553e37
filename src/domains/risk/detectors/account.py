"""Account age and history detection."""

from ..config import OperationPolicy
from ..models import FlagType, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector


class AccountHistoryDetector(RiskDetector):
    """Flags new accounts and an abnormal refund-to-payment ratio.

    Only evaluated when the request names a customer.
    """

    detector_id = "account_history"
    flag_type = FlagType.ACCOUNT_AGE

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        if not request.customer_id:
            return []

        thresholds = policy.account
        flags: list[RiskFlag] = []

        if history.first_seen_at is not None:
            age_hours = (history.now - history.first_seen_at).total_seconds() / 3600
            if age_hours < thresholds.new_account_hours:
                flags.append(
                    self._flag(
                        "medium",
                        thresholds.new_account_score,
                        f"New customer account requesting {request.operation.value}",
                        evidence={"account_age_hours": round(age_hours, 2)},
                    )
                )

        if history.refund_count > 0 and history.payment_count > 0:
            ratio = history.refund_count / history.payment_count
            if ratio > thresholds.refund_ratio_max:
                flags.append(
                    self._flag(
                        "high",
                        thresholds.refund_ratio_score,
                        "High refund-to-payment ratio",
                        evidence={
                            "refund_ratio": round(ratio, 4),
                            "refund_count": history.refund_count,
                            "payment_count": history.payment_count,
                        },
                        flag_type=FlagType.PATTERN,
                    )
                )

        return flags
