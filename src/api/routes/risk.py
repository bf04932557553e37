"""Payment and refund risk endpoints: decisions, approvals, audit and risk inputs."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, Query

from src.domains.risk.models import (
    ApprovalDecisionRequest,
    AuditEvent,
    AuditFilter,
    ChargebackReport,
    ChargebackRiskUpdate,
    PaymentRequest,
    RefundRequest,
)
from src.domains.risk.orchestrator import RiskEngine, get_engine

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/risk", tags=["risk"])


@router.post("/payments")
async def initiate_payment(
    request: PaymentRequest,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    decision = await engine.initiate_payment(request)
    return decision.model_dump(mode="json")


@router.post("/refunds")
async def initiate_refund(
    request: RefundRequest,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    decision = await engine.initiate_refund(request)
    return decision.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Approvals
# ---------------------------------------------------------------------------


@router.get("/approvals")
async def list_pending_approvals(
    tenant_id: str | None = Query(None),
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    pending = await engine.list_pending_approvals(tenant_id)
    return {
        "items": [a.model_dump(mode="json") for a in pending],
        "total": len(pending),
    }


@router.get("/approvals/{approval_id}")
async def get_approval(
    approval_id: str,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    approval = await engine.approvals.get(approval_id)
    return approval.model_dump(mode="json")


@router.post("/approvals/{approval_id}/approve")
async def approve(
    approval_id: str,
    body: ApprovalDecisionRequest,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.approve(
        approval_id,
        approver_id=body.approver_id,
        approver_role=body.approver_role,
        note=body.note,
        override_fraud_check=body.override_fraud_check,
    )
    return result.model_dump(mode="json", exclude={"assessment"}) | {
        "score": result.assessment.score if result.assessment else None
    }


@router.post("/approvals/{approval_id}/deny")
async def deny(
    approval_id: str,
    body: ApprovalDecisionRequest,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    result = await engine.deny(
        approval_id,
        approver_id=body.approver_id,
        approver_role=body.approver_role,
        note=body.note,
    )
    return result.model_dump(mode="json", exclude={"assessment"})


# ---------------------------------------------------------------------------
# Audit and metrics
# ---------------------------------------------------------------------------


@router.get("/audit")
async def query_audit(
    tenant_id: str | None = Query(None),
    actor_id: str | None = Query(None),
    customer_id: str | None = Query(None),
    subject_id: str | None = Query(None),
    ip_address: str | None = Query(None),
    event: AuditEvent | None = Query(None),
    start_time: datetime | None = Query(None),
    end_time: datetime | None = Query(None),
    min_score: int | None = Query(None, ge=0, le=100),
    limit: int = Query(100, ge=1, le=1000),
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    entries = await engine.query_audit(
        AuditFilter(
            tenant_id=tenant_id,
            actor_id=actor_id,
            customer_id=customer_id,
            subject_id=subject_id,
            ip_address=ip_address,
            event=event,
            start_time=start_time,
            end_time=end_time,
            min_score=min_score,
            limit=limit,
        )
    )
    return {"items": [e.model_dump(mode="json") for e in entries], "total": len(entries)}


@router.get("/metrics")
async def security_metrics(
    tenant_id: str | None = Query(None),
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    metrics = await engine.metrics(tenant_id)
    return metrics.model_dump(mode="json")


# ---------------------------------------------------------------------------
# External risk inputs
# ---------------------------------------------------------------------------


@router.put("/chargeback-risk/{subject_id}")
async def upsert_chargeback_risk(
    subject_id: str,
    body: ChargebackRiskUpdate,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    data = engine.upsert_chargeback_risk(subject_id, body)
    return {
        "subject_id": data.subject_id,
        "risk_score": data.risk_score,
        "factors": data.factors,
        "last_updated": data.last_updated.isoformat(),
    }


@router.post("/chargebacks", status_code=201)
async def record_chargeback(
    body: ChargebackReport,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    entry = await engine.record_chargeback(body)
    return {"recorded": entry is not None, "audit_entry_id": entry.id if entry else None}


@router.post("/blocklist/{ip_address}")
async def block_origin(
    ip_address: str,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    engine.block_origin(ip_address)
    return {"ip_address": ip_address, "blocked": True}


@router.delete("/blocklist/{ip_address}")
async def unblock_origin(
    ip_address: str,
    engine: RiskEngine = Depends(get_engine),  # noqa: B008
) -> dict:
    engine.unblock_origin(ip_address)
    return {"ip_address": ip_address, "blocked": False}
