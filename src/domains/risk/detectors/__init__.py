"""Risk signal detectors package.

Exports ALL_DETECTORS (list of all detector instances) and individual
detector classes for direct use.
"""

from .account import AccountHistoryDetector
from .amount import AmountDetector
from .base import RiskDetector
from .chargeback import ChargebackRiskDetector
from .instrument import PaymentInstrumentDetector
from .patterns import NetworkOriginDetector, UserAgentDetector
from .velocity import VelocityDetector

# All detector instances in evaluation order
ALL_DETECTORS: list[RiskDetector] = [
    VelocityDetector(),
    AmountDetector(),
    UserAgentDetector(),
    NetworkOriginDetector(),
    ChargebackRiskDetector(),
    AccountHistoryDetector(),
    PaymentInstrumentDetector(),
]

__all__ = [
    "ALL_DETECTORS",
    "RiskDetector",
    "AccountHistoryDetector",
    "AmountDetector",
    "ChargebackRiskDetector",
    "NetworkOriginDetector",
    "PaymentInstrumentDetector",
    "UserAgentDetector",
    "VelocityDetector",
]
