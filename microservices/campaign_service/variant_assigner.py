"""
Variant Assigner (A/B)

Deterministic variant assignment and winner evaluation.

Assignment hashes "test_id:customer_id" into one of 10,000 buckets and
compares the bucket against the split ratio, so the same pair always lands
on the same variant. Winners are picked by conversion rate
(converted / delivered) behind a chi-square two-proportion test.
"""

import hashlib
import logging
from typing import Optional

from scipy import stats

from .models import ABTest, ABTestStatus, Variant, WinnerResult
from .protocols import (
    ABTestNotFoundError,
    CampaignRepositoryProtocol,
    InvalidTransitionError,
)

logger = logging.getLogger(__name__)


class VariantAssigner:
    """A/B variant assignment and winner declaration"""

    BUCKETS = 10000

    def __init__(
        self,
        repository: Optional[CampaignRepositoryProtocol] = None,
        min_sample_size: int = 100,
        significance_level: float = 0.05,
    ):
        self.repository = repository
        self.min_sample_size = min_sample_size
        self.significance_level = significance_level

    def assign(self, test_id: str, customer_id: str, split_ratio: float) -> Variant:
        """Stable variant for a (test, customer) pair"""
        hash_input = f"{test_id}:{customer_id}"
        hash_value = hashlib.md5(hash_input.encode()).hexdigest()
        bucket = int(hash_value, 16) % self.BUCKETS

        return Variant.A if bucket < split_ratio * self.BUCKETS else Variant.B

    def evaluate(self, test: ABTest) -> WinnerResult:
        """Compare variants without touching storage"""
        a, b = test.stats_a, test.stats_b
        result = WinnerResult(
            test_id=test.test_id,
            rate_a=a.conversion_rate,
            rate_b=b.conversion_rate,
        )

        if a.delivered < self.min_sample_size or b.delivered < self.min_sample_size:
            result.reason = "insufficient_sample"
            return result

        if result.rate_a == result.rate_b:
            result.reason = "tie"
            return result

        observed = [
            [a.converted, a.delivered - a.converted],
            [b.converted, b.delivered - b.converted],
        ]
        try:
            _, p_value, _, _ = stats.chi2_contingency(observed)
        except ValueError as e:
            # Degenerate table (an all-zero column)
            logger.debug(f"Chi-square not computable for {test.test_id}: {e}")
            result.reason = "not_computable"
            return result

        result.p_value = float(p_value)
        result.confidence = 1.0 - float(p_value)

        if p_value >= self.significance_level:
            result.reason = "not_significant"
            return result

        result.winner = Variant.A if result.rate_a > result.rate_b else Variant.B
        result.reason = "significant"
        return result

    async def declare_winner(self, test_id: str) -> WinnerResult:
        """Evaluate a completed test and persist the outcome"""
        if not self.repository:
            raise RuntimeError("VariantAssigner has no repository")

        test = await self.repository.get_ab_test(test_id)
        if not test:
            raise ABTestNotFoundError(f"A/B test not found: {test_id}")

        if test.status != ABTestStatus.COMPLETED:
            raise InvalidTransitionError(
                f"A/B test {test_id} must be completed before declaring a winner",
                current_status=test.status,
            )

        result = self.evaluate(test)
        test.winner = result.winner
        test.confidence = result.confidence
        test.p_value = result.p_value
        await self.repository.save_ab_test(test)

        if result.winner:
            logger.info(
                f"A/B test {test_id}: variant {result.winner.value} wins "
                f"(confidence={result.confidence:.3f})"
            )
        else:
            logger.info(f"A/B test {test_id} inconclusive: {result.reason}")
        return result


__all__ = ["VariantAssigner"]
