"""Risk engine orchestration: authorize -> count -> resolve history -> score -> decide -> audit."""

from collections.abc import Callable
from datetime import datetime, timedelta

import pydantic
import structlog

from .approvals import ApprovalWorkflow
from .config import RiskConfig, default_config
from .decision import DecisionEngine
from .errors import AuthorizationError, ValidationError
from .ledger import AuditLedger, new_id
from .models import (
    REQUEST_EVENTS,
    UNAUTHORIZED_EVENTS,
    ApprovalResult,
    AuditEntry,
    AuditEvent,
    AuditFilter,
    ChargebackReport,
    ChargebackRiskUpdate,
    Decision,
    DecisionOutcome,
    Operation,
    PaymentRequest,
    PendingApproval,
    RefundRequest,
    RiskAssessment,
    RiskHistory,
    RiskRequest,
    SecurityContext,
    SecurityMetrics,
    VelocityWindow,
)
from .notifications import NotificationPublisher
from .scorer import RiskScorer, fail_closed
from .storage import (
    ApprovalStore,
    Blocklist,
    ChargebackRiskCache,
    ChargebackRiskData,
    LedgerStore,
    VelocityStore,
)
from .velocity import VelocityTracker, utcnow

logger = structlog.get_logger()


class RiskEngine:
    """Entry point for payment and refund risk decisions.

    Owns one velocity tracker, one audit ledger and one approval workflow.
    Detectors never perform I/O: everything they need is resolved into a
    ``RiskHistory`` before scoring.
    """

    def __init__(
        self,
        config: RiskConfig | None = None,
        velocity_store: VelocityStore | None = None,
        ledger_store: LedgerStore | None = None,
        approval_store: ApprovalStore | None = None,
        publisher: NotificationPublisher | None = None,
        scorer: RiskScorer | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or default_config
        self._clock = clock
        self.velocity = VelocityTracker(store=velocity_store, clock=clock)
        self.ledger = AuditLedger(
            store=ledger_store, config=self._config, publisher=publisher, clock=clock
        )
        self.scorer = scorer or RiskScorer(config=self._config)
        self.decisions = DecisionEngine(config=self._config)
        self.approvals = ApprovalWorkflow(
            ledger=self.ledger,
            config=self._config,
            store=approval_store,
            reassess=self._reassess,
            clock=clock,
        )
        self.chargeback_cache = ChargebackRiskCache()
        self.blocklist = Blocklist()

    # ------------------------------------------------------------------
    # Initiation
    # ------------------------------------------------------------------

    async def initiate_payment(self, payload: PaymentRequest | dict) -> Decision:
        request = _validate(PaymentRequest, payload)
        return await self._evaluate(
            RiskRequest(
                operation=Operation.PAYMENT,
                tenant_id=request.tenant_id,
                actor_id=request.actor_id,
                actor_role=request.actor_role,
                customer_id=request.customer_id,
                session_id=request.session_id or new_id("sess"),
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                subject_id=request.subject_id or new_id("pi"),
                amount=request.amount,
                currency=request.currency,
                reason=request.reason,
                instrument_risk=request.instrument_risk,
                metadata=request.metadata,
            )
        )

    async def initiate_refund(self, payload: RefundRequest | dict) -> Decision:
        request = _validate(RefundRequest, payload)
        metadata = dict(request.metadata)
        if request.description:
            metadata["description"] = request.description
        return await self._evaluate(
            RiskRequest(
                operation=Operation.REFUND,
                tenant_id=request.tenant_id,
                actor_id=request.actor_id,
                actor_role=request.actor_role,
                customer_id=request.customer_id,
                session_id=request.session_id or new_id("sess"),
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                subject_id=request.subject_id,
                amount=request.amount,
                currency=request.currency,
                reason=request.reason,
                instrument_risk=request.instrument_risk,
                metadata=metadata,
            )
        )

    async def _evaluate(self, request: RiskRequest) -> Decision:
        try:
            self.decisions.authorize(request)
        except AuthorizationError as exc:
            await self._record(
                UNAUTHORIZED_EVENTS[request.operation],
                request,
                success=False,
                fraud_score=self._config.unauthorized_audit_score,
                error_message=str(exc),
            )
            logger.warning(
                "risk_request_unauthorized",
                operation=request.operation.value,
                tenant_id=request.tenant_id,
                actor_role=request.actor_role,
            )
            raise

        try:
            return await self._decide(request)
        except Exception:
            logger.exception(
                "risk_evaluation_failed",
                operation=request.operation.value,
                tenant_id=request.tenant_id,
                subject_id=request.subject_id,
            )
            assessment = fail_closed("Internal error during risk evaluation")
            entry = await self._record(
                REQUEST_EVENTS[request.operation],
                request,
                success=False,
                fraud_score=self._config.internal_error_audit_score,
                error_message="Internal error during risk evaluation",
            )
            return self._build_decision(
                request, DecisionOutcome.DENY, assessment, [entry] if entry else []
            )

    async def _decide(self, request: RiskRequest) -> Decision:
        kind, actor = request.velocity_key
        prior, _ = await self.velocity.record_with_prior(
            request.operation, kind, actor, request.amount
        )
        history = await self._resolve_history(request, prior)

        assessment = self.scorer.evaluate(request, history)
        outcome = self.decisions.resolve(assessment)
        flag_types = sorted({f.type.value for f in assessment.flags})

        denied = outcome == DecisionOutcome.DENY
        entries: list[AuditEntry | None] = [
            await self._record(
                REQUEST_EVENTS[request.operation],
                request,
                success=not denied,
                fraud_score=assessment.score,
                error_message="Denied by risk assessment" if denied else None,
                extra={"recommendation": assessment.recommendation.value},
            )
        ]

        approval: PendingApproval | None = None
        if outcome == DecisionOutcome.DENY:
            entries.append(
                await self._record(
                    AuditEvent.FRAUD_DETECTED,
                    request,
                    success=False,
                    fraud_score=assessment.score,
                    error_message="High fraud risk detected",
                    extra={"flag_types": ",".join(flag_types)},
                )
            )
        elif outcome == DecisionOutcome.PENDING:
            approval = await self.approvals.create(request, assessment)
            entries.append(
                await self._record(
                    AuditEvent.APPROVAL_REQUESTED,
                    request,
                    success=True,
                    fraud_score=assessment.score,
                    extra={"approval_id": approval.id},
                )
            )

        logger.info(
            "risk_decision",
            operation=request.operation.value,
            tenant_id=request.tenant_id,
            subject_id=request.subject_id,
            decision=outcome.value,
            score=assessment.score,
            approval_id=approval.id if approval else None,
        )
        return self._build_decision(
            request,
            outcome,
            assessment,
            [e for e in entries if e is not None],
            approval_id=approval.id if approval else None,
        )

    def _build_decision(
        self,
        request: RiskRequest,
        outcome: DecisionOutcome,
        assessment: RiskAssessment,
        entries: list[AuditEntry],
        approval_id: str | None = None,
    ) -> Decision:
        return Decision(
            decision=outcome,
            assessment=assessment,
            audit_entry_ids=[e.id for e in entries],
            approval_id=approval_id,
            estimated_processing_hours=self.decisions.processing_hours(assessment),
            security=SecurityContext(
                tenant_id=request.tenant_id,
                actor_id=request.actor_id,
                actor_role=request.actor_role,
                customer_id=request.customer_id,
                session_id=request.session_id,
                ip_address=request.ip_address,
                user_agent=request.user_agent,
                subject_id=request.subject_id,
                assessment=assessment,
                audit_entries=entries,
            ),
        )

    async def _record(
        self,
        event: AuditEvent,
        request: RiskRequest,
        success: bool,
        fraud_score: int,
        error_message: str | None = None,
        extra: dict[str, str] | None = None,
    ) -> AuditEntry | None:
        metadata = {"operation": request.operation.value, "session_id": request.session_id}
        metadata.update(request.metadata)
        if extra:
            metadata.update(extra)
        return await self.ledger.record(
            event,
            tenant_id=request.tenant_id,
            actor_id=request.actor_id,
            actor_role=request.actor_role,
            customer_id=request.customer_id,
            subject_id=request.subject_id,
            ip_address=request.ip_address,
            user_agent=request.user_agent or "unknown",
            amount=request.amount,
            currency=request.currency,
            reason=request.reason,
            success=success,
            fraud_score=fraud_score,
            error_message=error_message,
            metadata=metadata,
        )

    async def _resolve_history(self, request: RiskRequest, window: VelocityWindow) -> RiskHistory:
        """Gather every ledger/cache fact the detectors consult for this request."""
        now = self._clock()
        policy = self._config.policy_for(request.operation)
        request_event = REQUEST_EVENTS[request.operation]

        origin_count = 0
        if request.ip_address and request.ip_address != "unknown":
            origin_count = await self.ledger.count(
                AuditFilter(
                    tenant_id=request.tenant_id,
                    ip_address=request.ip_address,
                    event=request_event,
                    start_time=now - timedelta(hours=policy.patterns.origin_window_hours),
                )
            )

        subject_count = 0
        if request.operation == Operation.REFUND:
            subject_count = await self.ledger.count(
                AuditFilter(
                    tenant_id=request.tenant_id,
                    subject_id=request.subject_id,
                    event=AuditEvent.REFUND_REQUESTED,
                    start_time=now - timedelta(hours=policy.patterns.origin_window_hours),
                )
            )

        chargeback_since = now - timedelta(days=policy.chargeback.history_window_days)
        if request.customer_id:
            chargeback_filter = AuditFilter(
                tenant_id=request.tenant_id,
                customer_id=request.customer_id,
                event=AuditEvent.CHARGEBACK_RISK_DETECTED,
                start_time=chargeback_since,
            )
        else:
            chargeback_filter = AuditFilter(
                tenant_id=request.tenant_id,
                actor_id=request.actor_id,
                event=AuditEvent.CHARGEBACK_RISK_DETECTED,
                start_time=chargeback_since,
            )
        chargeback_count = await self.ledger.count(chargeback_filter)

        first_seen_at = None
        payment_count = refund_count = 0
        if request.customer_id:
            customer = AuditFilter(tenant_id=request.tenant_id, customer_id=request.customer_id)
            first_seen_at = await self.ledger.first_seen(customer)
            payment_count = await self.ledger.count(
                customer.model_copy(update={"event": AuditEvent.PAYMENT_REQUESTED})
            )
            refund_count = await self.ledger.count(
                customer.model_copy(update={"event": AuditEvent.REFUND_REQUESTED})
            )

        cached = self.chargeback_cache.get(request.subject_id)

        return RiskHistory(
            now=now,
            velocity=window,
            origin_request_count=origin_count,
            subject_request_count=subject_count,
            origin_blocked=request.ip_address in self.blocklist,
            chargeback_cache_score=cached.risk_score if cached else None,
            chargeback_count=chargeback_count,
            first_seen_at=first_seen_at,
            payment_count=payment_count,
            refund_count=refund_count,
        )

    async def _reassess(self, approval: PendingApproval) -> RiskAssessment:
        """Re-score a held request against current state without counting a new event."""
        request = RiskRequest(
            operation=approval.operation,
            tenant_id=approval.tenant_id,
            actor_id=approval.actor_id,
            actor_role=approval.requested_role,
            customer_id=approval.customer_id,
            session_id=approval.session_id,
            ip_address=approval.ip_address,
            user_agent=approval.user_agent,
            subject_id=approval.subject_id,
            amount=approval.amount,
            currency=approval.currency,
            reason=approval.reason,
        )
        kind, actor = request.velocity_key
        window = await self.velocity.peek(request.operation, kind, actor)
        history = await self._resolve_history(request, window)
        return self.scorer.evaluate(request, history)

    # ------------------------------------------------------------------
    # Approvals
    # ------------------------------------------------------------------

    async def approve(
        self,
        approval_id: str,
        approver_id: str,
        approver_role: str,
        note: str | None = None,
        override_fraud_check: bool = False,
    ) -> ApprovalResult:
        return await self.approvals.approve(
            approval_id, approver_id, approver_role, note, override_fraud_check
        )

    async def deny(
        self, approval_id: str, approver_id: str, approver_role: str, note: str | None = None
    ) -> ApprovalResult:
        return await self.approvals.deny(approval_id, approver_id, approver_role, note)

    async def list_pending_approvals(self, tenant_id: str | None = None) -> list[PendingApproval]:
        return await self.approvals.list_pending(tenant_id)

    # ------------------------------------------------------------------
    # Audit and metrics
    # ------------------------------------------------------------------

    async def query_audit(self, audit_filter: AuditFilter | None = None) -> list[AuditEntry]:
        return await self.ledger.query(audit_filter)

    async def metrics(self, tenant_id: str | None = None) -> SecurityMetrics:
        pending = await self.approvals.list_pending(tenant_id)
        return await self.ledger.metrics(
            tenant_id=tenant_id,
            pending_approvals=len(pending),
            blocked_origins=len(self.blocklist),
        )

    # ------------------------------------------------------------------
    # External risk inputs
    # ------------------------------------------------------------------

    def upsert_chargeback_risk(
        self, subject_id: str, update: ChargebackRiskUpdate
    ) -> ChargebackRiskData:
        data = ChargebackRiskData(
            subject_id=subject_id,
            risk_score=update.risk_score,
            last_updated=self._clock(),
            factors=list(update.factors),
        )
        self.chargeback_cache.upsert(data)
        logger.info("chargeback_risk_updated", subject_id=subject_id, risk_score=update.risk_score)
        return data

    async def record_chargeback(self, report: ChargebackReport) -> AuditEntry | None:
        """Record a chargeback against an actor; it counts toward later assessments."""
        entry = await self.ledger.record(
            AuditEvent.CHARGEBACK_RISK_DETECTED,
            tenant_id=report.tenant_id,
            actor_id=report.actor_id,
            customer_id=report.customer_id,
            subject_id=report.subject_id,
            amount=report.amount,
            success=True,
            fraud_score=0,
        )
        logger.info(
            "chargeback_recorded",
            tenant_id=report.tenant_id,
            subject_id=report.subject_id,
            recorded=entry is not None,
        )
        return entry

    def block_origin(self, ip_address: str) -> None:
        self.blocklist.block(ip_address)
        logger.warning("origin_blocked", ip_address=ip_address)

    def unblock_origin(self, ip_address: str) -> None:
        self.blocklist.unblock(ip_address)
        logger.info("origin_unblocked", ip_address=ip_address)

    # ------------------------------------------------------------------
    # Housekeeping
    # ------------------------------------------------------------------

    async def run_housekeeping(self) -> dict[str, int]:
        """Sweep stale velocity windows and purge expired audit entries."""
        swept = await self.velocity.sweep()
        purged = await self.ledger.purge_expired()
        logger.info("risk_housekeeping_completed", velocity_swept=swept, audit_purged=purged)
        return {"velocity_swept": swept, "audit_purged": purged}


def _validate(model: type[PaymentRequest] | type[RefundRequest], payload):
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(payload)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            f"Invalid {model.__name__}", errors=exc.errors(include_url=False, include_context=False)
        ) from exc


_engine: RiskEngine | None = None


def get_engine() -> RiskEngine:
    """Get or create the global RiskEngine singleton."""
    global _engine
    if _engine is None:
        _engine = RiskEngine(config=RiskConfig.from_env())
    return _engine


def set_engine(engine: RiskEngine | None) -> None:
    """Replace the global engine (startup wiring and tests)."""
    global _engine
    _engine = engine
