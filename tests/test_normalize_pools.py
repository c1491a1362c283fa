import unittest
import uuid
from datetime import datetime, timezone
import sys
import os

# Add project root to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_processing.normalize_pools import (
    NUMERIC_FIELDS,
    UNKNOWN,
    build_embedding_text,
    filter_pools_by_chain,
    normalize_pool,
)


class TestNormalizePool(unittest.TestCase):
    """Raw DeFiLlama pool objects map onto total PoolRecords."""

    def setUp(self):
        self.fetched_at = datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
        self.full_pool = {
            "pool": "9f1a-sonic-usdc",
            "chain": "Sonic",
            "project": "beets",
            "symbol": "USDC-S",
            "tvlUsd": 1250000.5,
            "apy": 7.5,
            "apyBase": 2.5,
            "apyReward": 5.0,
            "apyMean30d": 6.8,
            "apyPct1D": 0.1,
            "apyPct7D": -0.4,
            "apyPct30D": 1.2,
            "rewardTokens": ["0xabc", "0xdef"],
            "predictions": {"predictedClass": "Stable/Up", "predictedProbability": 71},
        }

    def test_empty_pool_gets_all_defaults(self):
        """Missing numeric fields become 0 and missing strings become Unknown."""
        record = normalize_pool({}, observed_at=self.fetched_at)

        for _, attr in NUMERIC_FIELDS:
            self.assertEqual(getattr(record, attr), 0.0, attr)
            self.assertIsNotNone(getattr(record, attr))
        self.assertEqual(record.chain, UNKNOWN)
        self.assertEqual(record.project, UNKNOWN)
        self.assertEqual(record.symbol, UNKNOWN)
        self.assertEqual(record.reward_tokens, [])
        self.assertEqual(record.predictions, {})
        self.assertIsNone(record.embedding)
        self.assertEqual(record.observed_at, self.fetched_at)

    def test_null_and_garbage_values_are_coerced(self):
        raw = {
            "chain": None,
            "project": "   ",
            "symbol": None,
            "tvlUsd": None,
            "apy": "not-a-number",
            "apyBase": float("nan"),
            "apyReward": float("inf"),
            "apyMean30d": "3.5",
            "apyPct1D": True,
            "rewardTokens": None,
            "predictions": "bullish",
        }
        record = normalize_pool(raw, observed_at=self.fetched_at)

        self.assertEqual(record.chain, UNKNOWN)
        self.assertEqual(record.project, UNKNOWN)
        self.assertEqual(record.tvl_usd, 0.0)
        self.assertEqual(record.apy, 0.0)
        self.assertEqual(record.apy_base, 0.0)
        self.assertEqual(record.apy_reward, 0.0)
        self.assertEqual(record.apy_mean_30d, 3.5)
        self.assertEqual(record.apy_pct_1d, 0.0)
        self.assertEqual(record.reward_tokens, [])
        self.assertEqual(record.predictions, {})

    def test_full_pool_keeps_values(self):
        record = normalize_pool(self.full_pool, observed_at=self.fetched_at)

        self.assertEqual(record.pool_id, "9f1a-sonic-usdc")
        self.assertEqual(record.chain, "Sonic")
        self.assertEqual(record.project, "beets")
        self.assertEqual(record.symbol, "USDC-S")
        self.assertEqual(record.tvl_usd, 1250000.5)
        self.assertEqual(record.apy_pct_7d, -0.4)
        self.assertEqual(record.reward_tokens, ["0xabc", "0xdef"])
        self.assertEqual(record.predictions["predictedClass"], "Stable/Up")

    def test_record_ids_are_unique_and_distinct_from_pool_id(self):
        first = normalize_pool(self.full_pool, observed_at=self.fetched_at)
        second = normalize_pool(self.full_pool, observed_at=self.fetched_at)

        self.assertIsInstance(first.id, uuid.UUID)
        self.assertNotEqual(first.id, second.id)
        self.assertEqual(first.pool_id, second.pool_id)

    def test_pool_id_falls_back_to_pool_id_field_then_record_id(self):
        self.assertEqual(normalize_pool({"poolId": "legacy-id"}).pool_id, "legacy-id")

        record = normalize_pool({"chain": "Sonic"})
        self.assertEqual(record.pool_id, str(record.id))

    def test_upstream_timestamp_is_used_when_parseable(self):
        record = normalize_pool({"timestamp": "2025-02-28T10:00:00Z"}, observed_at=self.fetched_at)
        self.assertEqual(record.observed_at, datetime(2025, 2, 28, 10, 0, tzinfo=timezone.utc))

        record = normalize_pool({"timestamp": "yesterday"}, observed_at=self.fetched_at)
        self.assertEqual(record.observed_at, self.fetched_at)

    def test_to_dict_reports_embedding_presence(self):
        record = normalize_pool(self.full_pool, observed_at=self.fetched_at)
        self.assertFalse(record.to_dict()["has_embedding"])
        self.assertTrue(record.with_embedding([0.1, 0.2]).to_dict()["has_embedding"])


class TestFilterAndEmbeddingText(unittest.TestCase):

    def test_filter_keeps_exact_chain_matches(self):
        pools = [
            {"pool": "a", "chain": "Sonic"},
            {"pool": "b", "chain": "Ethereum"},
            {"pool": "c", "chain": "sonic"},
            {"pool": "d"},
            {"pool": "e", "chain": "Sonic"},
        ]
        result = filter_pools_by_chain(pools, "Sonic")
        self.assertEqual([p["pool"] for p in result], ["a", "e"])

    def test_embedding_text_uses_fixed_field_order(self):
        record = normalize_pool({
            "chain": "Sonic", "project": "silo", "symbol": "wS",
            "tvlUsd": 10, "apy": 4, "apyBase": 1, "apyReward": 3, "apyMean30d": 2,
            "apyPct1D": -0.5, "apyPct7D": 1.5,
        })
        self.assertEqual(
            build_embedding_text(record),
            "Sonic silo wS TVL: 10.0 APY: 4.0 Base APY: 1.0 Reward APY: 3.0 30d Mean APY: 2.0 "
            "1d APY Change: -0.5 7d APY Change: 1.5 30d APY Change: 0.0",
        )


if __name__ == "__main__":
    unittest.main()
