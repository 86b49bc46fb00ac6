"""Structuring detection over a customer's recent transaction history.

Structuring is splitting cash or transfers into amounts just below the
reporting threshold so that no single transaction triggers a threshold
report. Detection looks at the customer's transactions in the trailing
``window_days`` together with the candidate transaction being evaluated and
counts those that fall inside the jurisdiction's sub-threshold band:

    amount_range.min <= amount <= amount_range.max  and  amount < ttr_required

The customer is flagged when that count reaches ``min_transaction_count``.
Window, band and count are per-jurisdiction configuration.

Regulatory basis:
  31 USC § 5324: structuring transactions to evade reporting requirements
  AML/CTF Act 2006 (Cth) s142: conducting transactions so as to avoid
  reporting requirements
  Proceeds of Crime Act 2002 (UK) / MLR 2017 reg. 33

Detection is read-only against the store.
"""

import math
from datetime import UTC, datetime, timedelta

import structlog

from .config import TenantConfig
from .models import StructuringResult, Transaction
from .ports import ComplianceStore

logger = structlog.get_logger()

CANDIDATE_ID = "candidate"


def _threshold_proximity_score(amount: float, threshold: float) -> float:
    """Score how close an amount is to a reporting threshold (0.0–1.0).

    Amounts just below the threshold score much higher than amounts well
    under it.
    """
    if threshold <= 0 or amount >= threshold:
        return 0.0
    ratio = amount / threshold
    return ratio**3


def _temporal_regularity_score(timestamps: list[datetime]) -> float:
    """Score temporal regularity of transactions (0.0–1.0).

    Clock-like patterns (regular intervals) score higher, which is typical of
    deliberate or automated structuring.
    """
    if len(timestamps) < 3:
        return 0.0

    sorted_ts = sorted(timestamps)
    intervals = [
        (sorted_ts[i + 1] - sorted_ts[i]).total_seconds()
        for i in range(len(sorted_ts) - 1)
    ]

    mean_interval = sum(intervals) / len(intervals)
    if mean_interval == 0:
        return 1.0

    variance = sum((x - mean_interval) ** 2 for x in intervals) / len(intervals)
    cv = math.sqrt(variance) / mean_interval

    # CV=0 → 1.0, CV>=1.0 → 0.0
    return max(0.0, min(1.0, 1.0 - cv))


def in_structuring_band(amount: float, config: TenantConfig) -> bool:
    band = config.structuring.amount_range
    return band.min <= amount <= band.max and amount < config.thresholds.ttr_required


def evaluate_structuring(
    history: list[Transaction],
    candidate_amount: float,
    config: TenantConfig,
    now: datetime,
) -> StructuringResult:
    """Pure evaluation of a window of history plus the candidate amount."""
    window_days = config.structuring.window_days
    band = config.structuring.amount_range
    ttr_threshold = config.thresholds.ttr_required

    suspicious = [tx for tx in history if in_structuring_band(tx.reporting_amount, config)]
    amounts = [tx.reporting_amount for tx in suspicious]
    timestamps = [tx.created_at for tx in suspicious]
    transaction_ids = [tx.transaction_id for tx in suspicious]

    candidate_suspicious = in_structuring_band(candidate_amount, config)
    if candidate_suspicious:
        amounts.append(candidate_amount)
        timestamps.append(now)
        transaction_ids.append(CANDIDATE_ID)

    count = len(amounts)
    band_total = sum(amounts)
    window_total = sum(tx.reporting_amount for tx in history) + candidate_amount
    is_structuring = count >= config.structuring.min_transaction_count

    indicators: list[str] = []
    if is_structuring:
        indicators.append(
            f"{count} transactions of ${min(amounts):,.0f}–${max(amounts):,.0f} "
            f"within {window_days} days, total ${band_total:,.0f} "
            f"(band ${band.min:,.0f}–${band.max:,.0f})"
        )
        if candidate_suspicious:
            indicators.append(
                f"Current transaction of ${candidate_amount:,.0f} continues pattern "
                f"of threshold-adjacent amounts"
            )
    if count >= 2 and window_total >= ttr_threshold:
        indicators.append(
            f"Cumulative total ${window_total:,.0f} within {window_days} days exceeds "
            f"TTR threshold ${ttr_threshold:,.0f} with {count} sub-threshold transactions"
        )

    confidence = 0.0
    if is_structuring:
        proximity = sum(_threshold_proximity_score(a, ttr_threshold) for a in amounts) / count
        temporal = _temporal_regularity_score(timestamps)
        count_factor = min(1.0, count / 10.0)
        confidence = min(1.0, max(0.0, 0.5 * proximity + 0.2 * temporal + 0.3 * count_factor))

    return StructuringResult(
        is_structuring=is_structuring,
        suspicious_transaction_count=count,
        total_amount=band_total,
        indicators=tuple(indicators),
        transaction_ids=tuple(transaction_ids),
        confidence=round(confidence, 4),
    )


async def detect_structuring(
    store: ComplianceStore,
    tenant_id: str,
    customer_id: str,
    candidate_amount: float,
    config: TenantConfig,
    now: datetime | None = None,
) -> StructuringResult:
    """Evaluate the candidate transaction against the customer's recent history.

    Store failures propagate: the transaction flow cannot proceed without a
    structuring decision.
    """
    now = now or datetime.now(UTC)
    since = now - timedelta(days=config.structuring.window_days)
    history = await store.list_transactions(tenant_id, customer_id, since=since)

    result = evaluate_structuring(history, candidate_amount, config, now)

    if result.is_structuring:
        logger.info(
            "structuring_detected",
            tenant_id=tenant_id,
            customer_id=customer_id,
            transaction_count=result.suspicious_transaction_count,
            total_amount=result.total_amount,
            confidence=result.confidence,
        )
    return result
