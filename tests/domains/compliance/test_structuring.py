"""Scenario tests for sub-threshold structuring detection.

Each scenario seeds a customer's history into the in-memory store and
evaluates a candidate amount against the AU band ($7,000–$9,999, TTR at
$10,000, three transactions in seven days) unless stated otherwise.
"""

from datetime import timedelta

import pytest

from src.domains.compliance.regions import resolve_tenant_config
from src.domains.compliance.structuring import (
    CANDIDATE_ID,
    _temporal_regularity_score,
    _threshold_proximity_score,
    detect_structuring,
    evaluate_structuring,
    in_structuring_band,
)
from tests.conftest import NOW, TENANT_ID, make_tx


async def _seed(store, *amounts_and_ages):
    for i, (amount, age) in enumerate(amounts_and_ages):
        await store.insert_transaction(
            make_tx(transaction_id=f"tx-{i}", amount=amount, created_at=NOW - age)
        )


class TestCountRule:
    """Flagging depends on the number of in-band transactions, history plus candidate."""

    @pytest.mark.asyncio
    async def test_three_in_band_flags_at_min_count_three(self, store, au_config):
        await _seed(store, (8_200, timedelta(days=3)), (8_500, timedelta(days=1)))

        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_100, au_config, now=NOW)

        assert result.is_structuring is True
        assert result.suspicious_transaction_count == 3
        assert result.total_amount == 25_800
        assert CANDIDATE_ID in result.transaction_ids

    @pytest.mark.asyncio
    async def test_same_history_not_flagged_at_min_count_four(self, store):
        config = resolve_tenant_config("AU", {"structuring": {"minTransactionCount": 4}})
        await _seed(store, (8_200, timedelta(days=3)), (8_500, timedelta(days=1)))

        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_100, config, now=NOW)

        assert result.is_structuring is False
        assert result.suspicious_transaction_count == 3
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_history_alone_can_reach_the_count(self, store, au_config):
        await _seed(
            store,
            (8_200, timedelta(days=5)),
            (8_500, timedelta(days=3)),
            (9_100, timedelta(days=1)),
        )

        result = await detect_structuring(store, TENANT_ID, "cust-001", 500, au_config, now=NOW)

        assert result.is_structuring is True
        assert result.suspicious_transaction_count == 3
        assert CANDIDATE_ID not in result.transaction_ids

    @pytest.mark.asyncio
    async def test_no_history(self, store, au_config):
        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_500, au_config, now=NOW)
        assert result.is_structuring is False
        assert result.suspicious_transaction_count == 1
        assert result.indicators == ()


class TestWindowAndBand:
    @pytest.mark.asyncio
    async def test_transactions_outside_window_ignored(self, store, au_config):
        await _seed(store, (8_200, timedelta(days=10)), (8_500, timedelta(days=1)))

        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_100, au_config, now=NOW)

        assert result.is_structuring is False
        assert result.suspicious_transaction_count == 2

    @pytest.mark.asyncio
    async def test_amounts_outside_band_ignored(self, store, au_config):
        await _seed(store, (6_500, timedelta(days=2)), (12_000, timedelta(days=1)))

        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_100, au_config, now=NOW)

        assert result.suspicious_transaction_count == 1
        assert result.is_structuring is False

    @pytest.mark.asyncio
    async def test_other_customers_ignored(self, store, au_config):
        for i in range(3):
            await store.insert_transaction(
                make_tx(transaction_id=f"other-{i}", customer_id="cust-999", amount=9_000)
            )

        result = await detect_structuring(store, TENANT_ID, "cust-001", 9_100, au_config, now=NOW)

        assert result.suspicious_transaction_count == 1

    def test_band_excludes_the_reporting_threshold(self):
        """GB's band reaches $10,000 but an amount at the TTR threshold is reported, not structured."""
        gb = resolve_tenant_config("GB", {})
        assert in_structuring_band(9_999, gb)
        assert not in_structuring_band(10_000, gb)
        assert in_structuring_band(8_000, gb)
        assert not in_structuring_band(7_999, gb)

    def test_local_amount_used_when_present(self, au_config):
        history = [
            make_tx(transaction_id="a", amount=6_000, amount_local=9_000),
            make_tx(transaction_id="b", amount=6_000, amount_local=9_200),
        ]
        result = evaluate_structuring(history, 9_500, au_config, NOW)
        assert result.is_structuring is True


class TestIndicators:
    def test_flagged_result_describes_pattern(self, au_config):
        history = [
            make_tx(transaction_id="a", amount=8_200, created_at=NOW - timedelta(days=2)),
            make_tx(transaction_id="b", amount=8_500, created_at=NOW - timedelta(days=1)),
        ]
        result = evaluate_structuring(history, 9_100, au_config, NOW)

        assert len(result.indicators) == 3
        assert result.indicators[0].startswith("3 transactions of $8,200–$9,100 within 7 days")
        assert "continues pattern" in result.indicators[1]
        assert "exceeds TTR threshold" in result.indicators[2]

    def test_cumulative_total_is_informational_only(self, au_config):
        """Two in-band amounts summing past the threshold do not flag on their own."""
        history = [make_tx(transaction_id="a", amount=9_000)]
        result = evaluate_structuring(history, 9_000, au_config, NOW)

        assert result.is_structuring is False
        assert len(result.indicators) == 1
        assert "Cumulative total $18,000" in result.indicators[0]

    def test_confidence_bounded(self, au_config):
        history = [
            make_tx(transaction_id=str(i), amount=9_900, created_at=NOW - timedelta(hours=i + 1))
            for i in range(8)
        ]
        result = evaluate_structuring(history, 9_900, au_config, NOW)
        assert 0.0 < result.confidence <= 1.0


class TestReadOnly:
    @pytest.mark.asyncio
    async def test_detection_does_not_write(self, store, au_config):
        await _seed(store, (8_200, timedelta(days=3)), (8_500, timedelta(days=1)))

        await detect_structuring(store, TENANT_ID, "cust-001", 9_100, au_config, now=NOW)

        assert len(store.transactions[TENANT_ID]) == 2


class TestScoringHelpers:
    def test_proximity_increases_toward_threshold(self):
        assert _threshold_proximity_score(9_900, 10_000) > _threshold_proximity_score(7_000, 10_000)
        assert _threshold_proximity_score(10_000, 10_000) == 0.0
        assert _threshold_proximity_score(500, 0) == 0.0

    def test_regular_intervals_score_high(self):
        regular = [NOW + timedelta(hours=6 * i) for i in range(4)]
        irregular = [NOW, NOW + timedelta(minutes=5), NOW + timedelta(days=3), NOW + timedelta(days=3, minutes=1)]
        assert _temporal_regularity_score(regular) == 1.0
        assert _temporal_regularity_score(irregular) < 0.5
        assert _temporal_regularity_score(regular[:2]) == 0.0
