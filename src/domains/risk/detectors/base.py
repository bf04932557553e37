"""Abstract base class for risk signal detectors."""

from abc import ABC, abstractmethod

from ..config import OperationPolicy, ThresholdBand
from ..models import FlagType, RiskFlag, RiskHistory, RiskRequest, Severity


class RiskDetector(ABC):
    """Base class for all detectors.

    Detectors are pure: they receive the request, the pre-resolved history and
    the operation's threshold tables, and return zero or more flags. They never
    perform I/O; missing inputs mean no flags.
    """

    detector_id: str
    flag_type: FlagType

    @abstractmethod
    def detect(
        self,
        request: RiskRequest,
        history: RiskHistory,
        policy: OperationPolicy,
    ) -> list[RiskFlag]:
        """Evaluate this detector and return its flags."""
        ...

    def _flag(
        self,
        severity: str,
        score: int,
        description: str,
        evidence: dict | None = None,
        flag_type: FlagType | None = None,
    ) -> RiskFlag:
        """Convenience: build a flag attributed to this detector."""
        return RiskFlag(
            type=flag_type or self.flag_type,
            severity=Severity(severity),
            description=description,
            score=score,
            evidence=evidence or {},
            detector=self.detector_id,
        )

    def _band_flag(
        self,
        band: ThresholdBand,
        description: str,
        evidence: dict | None = None,
        flag_type: FlagType | None = None,
    ) -> RiskFlag:
        return self._flag(band.severity, band.score, description, evidence, flag_type)
