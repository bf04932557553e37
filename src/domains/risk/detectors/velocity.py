"""Velocity-based risk detection."""

from ..config import OperationPolicy, match_band
from ..models import FlagType, RiskFlag, RiskHistory, RiskRequest
from .base import RiskDetector

_WINDOW_LABELS = {"hour": "in the last hour", "day": "today", "week": "this week"}


class VelocityDetector(RiskDetector):
    """Flags actors whose hourly, daily or weekly event count reaches a band.

    Counts cover earlier events only; the request being evaluated is not
    included, so a band of 3 first fires on the fourth request.
    """

    detector_id = "velocity"
    flag_type = FlagType.VELOCITY

    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        thresholds = policy.velocity
        window = history.velocity
        noun = f"{request.operation.value}s"

        flags: list[RiskFlag] = []
        for name, bands in (
            ("hour", thresholds.hour),
            ("day", thresholds.day),
            ("week", thresholds.week),
        ):
            count = getattr(window, name).count
            band = match_band(count, bands)
            if band is None:
                continue
            flags.append(
                self._band_flag(
                    band,
                    f"{count} {noun} requested {_WINDOW_LABELS[name]}",
                    evidence={
                        f"{name}_count": count,
                        f"{name}_amount": getattr(window, name).amount,
                        "threshold": band.threshold,
                    },
                )
            )

        if thresholds.single_flag and flags:
            return [max(flags, key=lambda f: f.score)]
        return flags
