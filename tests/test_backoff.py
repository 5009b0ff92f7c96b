"""
Tests for retry delay computation.
"""

import random

import pytest

from ai_chat_guard.config.loader import BackoffConfig
from ai_chat_guard.core.backoff import compute_backoff_delay


class TestBackoff:

    def test_exponential_without_jitter(self):
        config = BackoffConfig(base_delay=0.5, max_delay=100, jitter=0)
        delays = [compute_backoff_delay(config, i) for i in range(4)]
        assert delays == [0.5, 1.0, 2.0, 4.0]

    def test_capped_at_max_delay(self):
        config = BackoffConfig(base_delay=1, max_delay=3, jitter=0)
        assert compute_backoff_delay(config, 10) == 3

    def test_jitter_stays_within_bounds(self):
        config = BackoffConfig(base_delay=1, max_delay=8, jitter=0.5)
        rng = random.Random(42)
        for _ in range(100):
            delay = compute_backoff_delay(config, 1, rng)
            assert 2.0 <= delay <= 3.0

    def test_jitter_is_reproducible_with_seeded_rng(self):
        config = BackoffConfig(base_delay=1, max_delay=8, jitter=0.25)
        first = compute_backoff_delay(config, 2, random.Random(7))
        second = compute_backoff_delay(config, 2, random.Random(7))
        assert first == second

    def test_negative_index_rejected(self):
        with pytest.raises(ValueError, match="retry_index must be >= 0"):
            compute_backoff_delay(BackoffConfig(), -1)
