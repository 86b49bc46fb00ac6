"""Per-transaction compliance evaluation.

On each new transaction: reporting obligations, structuring detection and
risk scoring run against the tenant's effective config, the transaction is
persisted with its risk decision, a TTR pending report is raised when
required, and audit entries and notifications follow.

Scoring and detection failures propagate: a transaction cannot be accepted
without a risk decision. Notification failures never do.
"""

import uuid
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from pydantic import BaseModel, Field

from .config import ComplianceEngineConfig, TenantConfig, default_engine_config
from .errors import NotFoundError
from .models import (
    PendingReport,
    ReportType,
    RiskLevel,
    Transaction,
    TransactionDecision,
)
from .ports import AuditSink, ComplianceStore, SafeNotifier
from .requirements import generate_report_reference, report_deadline, resolve_requirements
from .risk_scoring import RiskContext, RiskFactor, score
from .structuring import detect_structuring

logger = structlog.get_logger()


class TransactionRequest(BaseModel):
    customer_id: str
    amount: float = Field(gt=0)
    currency: str | None = None
    # Amount in the tenant's reporting currency when the caller converted it
    amount_local: float | None = Field(default=None, gt=0)
    direction: str = Field(default="outgoing", pattern="^(incoming|outgoing)$")
    transaction_type: str | None = None
    description: str | None = None
    transaction_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class ComplianceMonitor:
    def __init__(
        self,
        store: ComplianceStore,
        notifier: SafeNotifier,
        audit: AuditSink,
        engine_config: ComplianceEngineConfig = default_engine_config,
        custom_factors: tuple[RiskFactor, ...] = (),
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._audit = audit
        self._engine = engine_config
        self._custom_factors = custom_factors

    async def evaluate_transaction(
        self,
        tenant_id: str,
        config: TenantConfig,
        request: TransactionRequest,
        now: datetime | None = None,
    ) -> TransactionDecision:
        now = now or datetime.now(UTC)
        customer = await self._store.get_customer(tenant_id, request.customer_id)
        if customer is None:
            raise NotFoundError("customer", request.customer_id)

        currency = request.currency or config.currency
        amount = request.amount_local if request.amount_local is not None else request.amount

        requirements = await resolve_requirements(
            self._store, tenant_id, customer.customer_id, amount, config
        )
        structuring = await detect_structuring(
            self._store, tenant_id, customer.customer_id, amount, config, now=now
        )
        recent = await self._store.list_transactions(
            tenant_id,
            customer.customer_id,
            since=now - timedelta(days=self._engine.recent_activity_window_days),
        )
        context = RiskContext(
            amount=amount,
            currency=currency,
            customer_age_days=max(0, (now - customer.created_at).days),
            recent_transaction_count=len(recent),
            structuring_detected=structuring.is_structuring,
            requires_edd=customer.requires_edd,
            is_pep=customer.is_pep,
            is_sanctioned=customer.is_sanctioned,
            verification_status=customer.verification_status,
            thresholds=config.thresholds,
            scoring=config.risk_scoring,
        )
        risk = score(context, self._custom_factors)

        flagged = (
            risk.risk_level == RiskLevel.HIGH
            or structuring.is_structuring
            or customer.requires_edd
        )
        transaction_id = request.transaction_id or str(uuid.uuid4())
        ttr_reference = (
            generate_report_reference(transaction_id, ReportType.TTR)
            if requirements.requires_ttr
            else None
        )
        transaction = Transaction(
            transaction_id=transaction_id,
            tenant_id=tenant_id,
            customer_id=customer.customer_id,
            amount=request.amount,
            currency=currency,
            amount_local=amount,
            direction=request.direction,
            transaction_type=request.transaction_type,
            description=request.description,
            requires_ttr=requirements.requires_ttr,
            ttr_reference=ttr_reference,
            risk_score=risk.risk_score,
            risk_level=risk.risk_level,
            risk_factors=[f.model_dump() for f in risk.factors],
            flagged_for_review=flagged,
            metadata=request.metadata,
            created_at=now,
        )

        ttr_deadline = None
        report = None
        if requirements.requires_ttr:
            ttr_deadline = report_deadline(ReportType.TTR, now, config)
            report = PendingReport(
                report_id=str(uuid.uuid4()),
                tenant_id=tenant_id,
                report_type=ReportType.TTR,
                entity_id=transaction_id,
                customer_id=customer.customer_id,
                reference=ttr_reference,
                deadline=ttr_deadline,
                amount=amount,
                currency=config.currency,
                created_at=now,
            )
        # A TTR-flagged transaction is never stored without its pending report
        await self._store.insert_transaction_with_report(transaction, report)

        logger.info(
            "transaction_evaluated",
            tenant_id=tenant_id,
            transaction_id=transaction_id,
            customer_id=customer.customer_id,
            risk_score=risk.risk_score,
            risk_level=str(risk.risk_level),
            requires_ttr=requirements.requires_ttr,
            structuring=structuring.is_structuring,
            flagged=flagged,
        )

        decision = TransactionDecision(
            transaction=transaction,
            requirements=requirements,
            structuring=structuring,
            risk=risk,
            ttr_reference=ttr_reference,
            ttr_deadline=ttr_deadline,
        )
        edd_only = self._flagged_for_edd_only(decision, customer.requires_edd)
        await self._record_audit(decision, edd_only)
        await self._dispatch(decision, edd_only)
        return decision

    @staticmethod
    def _flagged_for_edd_only(decision: TransactionDecision, requires_edd: bool) -> bool:
        return (
            requires_edd
            and not decision.structuring.is_structuring
            and decision.risk.risk_level != RiskLevel.HIGH
        )

    async def _record_audit(self, decision: TransactionDecision, edd_only: bool) -> None:
        tx = decision.transaction
        await self._audit.record(
            tx.tenant_id,
            "transaction_created",
            "transaction",
            tx.transaction_id,
            f"Created {tx.direction} transaction of {tx.amount} {tx.currency}",
            {
                "amount": tx.amount,
                "requires_ttr": tx.requires_ttr,
                "risk_level": str(tx.risk_level),
                "structuring_detected": decision.structuring.is_structuring,
            },
        )
        if edd_only:
            await self._audit.record(
                tx.tenant_id,
                "flagged_for_edd",
                "transaction",
                tx.transaction_id,
                "Transaction auto-flagged due to customer EDD investigation",
                {"customer_requires_edd": True, "transaction_amount": tx.amount},
            )

    async def _dispatch(self, decision: TransactionDecision, edd_only: bool) -> None:
        tx = decision.transaction
        tenant_id = tx.tenant_id

        if decision.structuring.is_structuring:
            await self._notifier.notify(
                tenant_id,
                "alert.structuring_detected",
                {
                    "customer_id": tx.customer_id,
                    "transaction_id": tx.transaction_id,
                    "transaction_count": decision.structuring.suspicious_transaction_count,
                    "total_amount": decision.structuring.total_amount,
                    "indicators": list(decision.structuring.indicators),
                },
            )
        if decision.risk.risk_level == RiskLevel.HIGH:
            await self._notifier.notify(
                tenant_id,
                "alert.high_risk",
                {
                    "entity_type": "transaction",
                    "transaction_id": tx.transaction_id,
                    "customer_id": tx.customer_id,
                    "risk_score": decision.risk.risk_score,
                    "factors": [f.model_dump() for f in decision.risk.factors],
                },
            )
        if edd_only:
            await self._notifier.notify(
                tenant_id,
                "alert.customer_edd_transaction",
                {"transaction_id": tx.transaction_id, "customer_id": tx.customer_id},
            )

        payload = tx.model_dump(mode="json")
        await self._notifier.notify(tenant_id, "transaction.created", payload)
        if tx.flagged_for_review:
            await self._notifier.notify(tenant_id, "transaction.flagged", payload)
        if tx.requires_ttr:
            await self._notifier.notify(
                tenant_id,
                "transaction.ttr_required",
                {
                    **payload,
                    "ttr_deadline": (
                        decision.ttr_deadline.isoformat() if decision.ttr_deadline else None
                    ),
                },
            )
