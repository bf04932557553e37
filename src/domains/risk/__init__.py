"""Payment and refund risk domain."""

from .approvals import ApprovalWorkflow
from .config import RiskConfig
from .decision import DecisionEngine
from .detectors import ALL_DETECTORS
from .errors import (
    AuthorizationError,
    ConflictError,
    InternalError,
    NotFoundError,
    RiskEngineError,
    ValidationError,
)
from .ledger import AuditLedger
from .models import (
    AuditEntry,
    AuditFilter,
    Decision,
    PaymentRequest,
    RefundRequest,
    RiskAssessment,
    RiskFlag,
)
from .orchestrator import RiskEngine, get_engine
from .scorer import RiskScorer
from .velocity import VelocityTracker

__all__ = [
    "ALL_DETECTORS",
    "ApprovalWorkflow",
    "AuditEntry",
    "AuditFilter",
    "AuditLedger",
    "AuthorizationError",
    "ConflictError",
    "Decision",
    "DecisionEngine",
    "InternalError",
    "NotFoundError",
    "PaymentRequest",
    "RefundRequest",
    "RiskAssessment",
    "RiskConfig",
    "RiskEngine",
    "RiskEngineError",
    "RiskFlag",
    "RiskScorer",
    "ValidationError",
    "VelocityTracker",
    "get_engine",
]
