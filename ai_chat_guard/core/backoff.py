"""
Retry delay computation.
"""

import random
from typing import Optional

from ai_chat_guard.config.loader import BackoffConfig


def compute_backoff_delay(
    config: BackoffConfig,
    retry_index: int,
    rng: Optional[random.Random] = None,
) -> float:
    """Delay before retry number retry_index (0-based) on the same endpoint.

    base_delay * 2**retry_index, capped at max_delay, plus up to
    jitter * delay of random spread so concurrent requests do not retry
    in lockstep.
    """
    if retry_index < 0:
        raise ValueError("retry_index must be >= 0")

    delay = min(config.max_delay, config.base_delay * (2 ** retry_index))
    if config.jitter and delay:
        rng = rng or random
        delay += rng.uniform(0, delay * config.jitter)
    return delay
