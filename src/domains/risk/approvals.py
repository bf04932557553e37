"""Approval workflow: role-gated human sign-off for requests held for review.

States: pending -> approved | denied. A record leaves ``pending`` exactly once;
any later approve/deny attempt raises ConflictError and changes nothing.
"""

import asyncio
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime

import structlog

from .config import RiskConfig, default_config
from .errors import AuthorizationError, ConflictError, NotFoundError
from .ledger import AuditLedger, new_id
from .models import (
    ApprovalResult,
    ApprovalStatus,
    AuditEvent,
    PendingApproval,
    Recommendation,
    RiskAssessment,
    RiskRequest,
)
from .scorer import fail_closed
from .storage import ApprovalStore, InMemoryApprovalStore
from .velocity import utcnow

logger = structlog.get_logger()

Reassess = Callable[[PendingApproval], Awaitable[RiskAssessment]]


class ApprovalWorkflow:
    def __init__(
        self,
        ledger: AuditLedger,
        config: RiskConfig | None = None,
        store: ApprovalStore | None = None,
        reassess: Reassess | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._ledger = ledger
        self._config = config or default_config
        self._store = store or InMemoryApprovalStore()
        self._reassess = reassess
        self._clock = clock
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def set_reassess(self, reassess: Reassess) -> None:
        self._reassess = reassess

    def _lock_for(self, approval_id: str) -> asyncio.Lock:
        lock = self._locks.get(approval_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[approval_id] = lock
        return lock

    def can_approve(self, role: str, amount: int | None) -> bool:
        """Amount-tiered authorization. Tiers are cumulative.

        An unknown amount (full refund) is only approvable by the unlimited tier.
        """
        for max_amount, roles in self._config.roles.approval_tiers:
            if role not in roles:
                continue
            if max_amount is None or (amount is not None and amount <= max_amount):
                return True
        return False

    async def create(self, request: RiskRequest, assessment: RiskAssessment) -> PendingApproval:
        approval = PendingApproval(
            id=new_id("approval"),
            tenant_id=request.tenant_id,
            subject_id=request.subject_id,
            operation=request.operation,
            actor_id=request.actor_id,
            customer_id=request.customer_id,
            session_id=request.session_id,
            ip_address=request.ip_address,
            user_agent=request.user_agent,
            amount=request.amount,
            currency=request.currency,
            reason=request.reason,
            requested_by=request.actor_id,
            requested_role=request.actor_role,
            requested_at=self._clock(),
            fraud_assessment=assessment,
        )
        await self._store.put(approval)
        logger.info(
            "approval_created",
            approval_id=approval.id,
            tenant_id=approval.tenant_id,
            subject_id=approval.subject_id,
            score=assessment.score,
        )
        return approval

    async def get(self, approval_id: str) -> PendingApproval:
        approval = await self._store.get(approval_id)
        if approval is None:
            raise NotFoundError(f"Approval {approval_id} not found")
        return approval

    async def list_pending(self, tenant_id: str | None = None) -> list[PendingApproval]:
        return await self._store.list_approvals(status=ApprovalStatus.PENDING, tenant_id=tenant_id)

    async def _audit(
        self,
        event: AuditEvent,
        approval: PendingApproval | None,
        approval_id: str,
        approver_id: str,
        approver_role: str,
        success: bool,
        fraud_score: int,
        error_message: str | None = None,
        note: str | None = None,
    ) -> None:
        metadata = {"approval_id": approval_id}
        if note:
            metadata["approver_note"] = note
        await self._ledger.record(
            event,
            tenant_id=approval.tenant_id if approval else "",
            actor_id=approver_id,
            actor_role=approver_role,
            customer_id=approval.customer_id if approval else None,
            subject_id=approval.subject_id if approval else "",
            amount=approval.amount if approval else None,
            currency=approval.currency if approval else None,
            success=success,
            fraud_score=fraud_score,
            error_message=error_message,
            metadata=metadata,
        )

    async def _load_for_decision(
        self, approval_id: str, approver_id: str, approver_role: str
    ) -> PendingApproval:
        """Fetch a pending record the approver may act on, auditing every refusal."""
        approval = await self._store.get(approval_id)
        if approval is None:
            await self._audit(
                AuditEvent.APPROVAL_DENIED, None, approval_id, approver_id, approver_role,
                success=False, fraud_score=0, error_message="Approval not found",
            )
            raise NotFoundError(f"Approval {approval_id} not found")

        score = approval.fraud_assessment.score
        if approval.status != ApprovalStatus.PENDING:
            await self._audit(
                AuditEvent.APPROVAL_DENIED, approval, approval_id, approver_id, approver_role,
                success=False, fraud_score=score,
                error_message=f"Approval already {approval.status.value}",
            )
            raise ConflictError(f"Approval {approval_id} is already {approval.status.value}")

        if not self.can_approve(approver_role, approval.amount):
            await self._audit(
                AuditEvent.APPROVAL_DENIED, approval, approval_id, approver_id, approver_role,
                success=False, fraud_score=score,
                error_message="Insufficient permissions to approve this amount",
            )
            raise AuthorizationError("Insufficient permissions to approve this request")

        return approval

    async def approve(
        self,
        approval_id: str,
        approver_id: str,
        approver_role: str,
        note: str | None = None,
        override_fraud_check: bool = False,
    ) -> ApprovalResult:
        async with self._lock_for(approval_id):
            approval = await self._load_for_decision(approval_id, approver_id, approver_role)

            if override_fraud_check:
                if approver_role not in self._config.roles.override_fraud_check:
                    await self._audit(
                        AuditEvent.APPROVAL_DENIED, approval, approval_id, approver_id,
                        approver_role, success=False,
                        fraud_score=approval.fraud_assessment.score,
                        error_message="Insufficient permissions to override fraud check",
                    )
                    raise AuthorizationError("Insufficient permissions to override fraud check")
                await self._audit(
                    AuditEvent.FRAUD_CHECK_OVERRIDDEN, approval, approval_id, approver_id,
                    approver_role, success=True,
                    fraud_score=approval.fraud_assessment.score, note=note,
                )
                assessment = approval.fraud_assessment
            else:
                assessment = await self._current_assessment(approval)
                if assessment.recommendation == Recommendation.DENY:
                    reason = "Denied due to updated fraud assessment"
                    approval.status = ApprovalStatus.DENIED
                    approval.approved_by = approver_id
                    approval.approved_at = self._clock()
                    approval.note = note
                    await self._store.put(approval)
                    await self._audit(
                        AuditEvent.APPROVAL_DENIED, approval, approval_id, approver_id,
                        approver_role, success=False, fraud_score=assessment.score,
                        error_message=reason, note=note,
                    )
                    logger.warning(
                        "approval_blocked_by_rescore",
                        approval_id=approval_id,
                        original_score=approval.fraud_assessment.score,
                        current_score=assessment.score,
                    )
                    return ApprovalResult(
                        approved=False,
                        approval_id=approval_id,
                        status=approval.status,
                        reason=reason,
                        assessment=assessment,
                    )

            approval.status = ApprovalStatus.APPROVED
            approval.approved_by = approver_id
            approval.approved_at = self._clock()
            approval.note = note
            await self._store.put(approval)

            await self._audit(
                AuditEvent.APPROVAL_GRANTED, approval, approval_id, approver_id, approver_role,
                success=True, fraud_score=assessment.score, note=note,
            )
            logger.info(
                "approval_granted",
                approval_id=approval_id,
                approver_role=approver_role,
                overridden=override_fraud_check,
            )
            return ApprovalResult(
                approved=True,
                approval_id=approval_id,
                status=approval.status,
                assessment=assessment,
            )

    async def deny(
        self,
        approval_id: str,
        approver_id: str,
        approver_role: str,
        note: str | None = None,
    ) -> ApprovalResult:
        async with self._lock_for(approval_id):
            approval = await self._load_for_decision(approval_id, approver_id, approver_role)

            approval.status = ApprovalStatus.DENIED
            approval.approved_by = approver_id
            approval.approved_at = self._clock()
            approval.note = note
            await self._store.put(approval)

            await self._audit(
                AuditEvent.APPROVAL_DENIED, approval, approval_id, approver_id, approver_role,
                success=True, fraud_score=approval.fraud_assessment.score, note=note,
            )
            logger.info("approval_denied", approval_id=approval_id, approver_role=approver_role)
            return ApprovalResult(
                approved=False,
                approval_id=approval_id,
                status=approval.status,
                reason="Denied by approver",
                assessment=approval.fraud_assessment,
            )

    async def _current_assessment(self, approval: PendingApproval) -> RiskAssessment:
        if self._reassess is None:
            return approval.fraud_assessment
        try:
            return await self._reassess(approval)
        except Exception:
            logger.exception("approval_rescore_failed", approval_id=approval.id)
            return fail_closed("Re-assessment failed")
