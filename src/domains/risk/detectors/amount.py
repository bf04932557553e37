"""Amount-based risk detection."""

from ..config import OperationPolicy, match_band
from ..models import FlagType, Operation, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector


def _format_minor(amount: int) -> str:
    return f"{amount / 100:,.2f}"


class AmountDetector(RiskDetector):
    """Flags high amounts, suspiciously round amounts and partial refunds."""

    detector_id = "amount"
    flag_type = FlagType.AMOUNT

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        amount = request.amount
        if amount is None:
            return []

        thresholds = policy.amount
        flags: list[RiskFlag] = []

        band = match_band(amount, thresholds.bands)
        if band is not None:
            flags.append(
                self._band_flag(
                    band,
                    f"High-value {request.operation.value}: {_format_minor(amount)} "
                    f"{request.currency.upper()}",
                    evidence={"amount": amount, "threshold": band.threshold},
                )
            )

        if (
            thresholds.round_score
            and amount >= thresholds.round_min_amount
            and amount % thresholds.round_unit == 0
        ):
            flags.append(
                self._flag(
                    "low",
                    thresholds.round_score,
                    f"Round amount {request.operation.value} request",
                    evidence={"amount": amount, "is_round": True},
                    flag_type=FlagType.PATTERN,
                )
            )

        if request.operation == Operation.REFUND and thresholds.partial_score:
            flags.append(
                self._flag(
                    "low",
                    thresholds.partial_score,
                    "Partial refund requested",
                    evidence={"amount": amount},
                )
            )

        return flags
