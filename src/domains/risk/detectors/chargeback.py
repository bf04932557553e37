"""Chargeback risk detection."""

from ..config import OperationPolicy, match_band
from ..models import FlagType, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector


class ChargebackRiskDetector(RiskDetector):
    """Flags subjects with a cached chargeback risk and actors with recent chargebacks."""

    detector_id = "chargeback_risk"
    flag_type = FlagType.CHARGEBACK_RISK

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        thresholds = policy.chargeback
        flags: list[RiskFlag] = []

        if history.chargeback_cache_score is not None:
            band = match_band(history.chargeback_cache_score, thresholds.cache_bands)
            if band is not None:
                label = "High" if band.severity == "critical" else "Moderate"
                flags.append(
                    self._band_flag(
                        band,
                        f"{label} chargeback risk payment",
                        evidence={"chargeback_risk_score": history.chargeback_cache_score},
                    )
                )

        band = match_band(history.chargeback_count, thresholds.history_bands)
        if band is not None:
            flags.append(
                self._band_flag(
                    band,
                    f"{history.chargeback_count} chargeback(s) in the last "
                    f"{thresholds.history_window_days} days",
                    evidence={"recent_chargebacks": history.chargeback_count},
                )
            )

        return flags
