"""Once-per-day alert delivery keyed by (tenant, alert type, calendar day).

The marker is read before sending and written after a successful send. A
failed marker write is logged and otherwise ignored, so a retried run on the
same day may deliver the alert again; at-least-once is accepted here.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog

from .models import AlertMarker
from .ports import ComplianceStore, SafeNotifier

logger = structlog.get_logger()


class DeliveryOutcome(StrEnum):
    SENT = "sent"
    DUPLICATE = "duplicate"
    FAILED = "failed"


async def deliver_once_per_day(
    store: ComplianceStore,
    notifier: SafeNotifier,
    tenant_id: str,
    alert_type: str,
    day: str,
    event_type: str,
    payload: dict[str, Any],
) -> DeliveryOutcome:
    if await store.get_alert_marker(tenant_id, alert_type, day) is not None:
        logger.info("alert_deduplicated", tenant_id=tenant_id, alert_type=alert_type, day=day)
        return DeliveryOutcome.DUPLICATE

    if not await notifier.notify(tenant_id, event_type, payload):
        return DeliveryOutcome.FAILED

    marker = AlertMarker(
        tenant_id=tenant_id,
        alert_type=alert_type,
        day=day,
        created_at=datetime.now(UTC),
    )
    try:
        await store.insert_alert_marker(marker)
    except Exception:
        logger.warning(
            "alert_marker_write_failed",
            tenant_id=tenant_id,
            alert_type=alert_type,
            day=day,
            exc_info=True,
        )
    return DeliveryOutcome.SENT
