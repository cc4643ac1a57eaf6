"""
Usage-pattern scoring for Tier 3.

An item's usage score blends how often it has been handed out (log-scaled so
heavy hitters don't saturate) with how recently (exponential decay over
time_decay_days). The score nudges similarity upward, never downward.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from lorekit.types import Item, SearchResult, UsageBoostedResult

logger = logging.getLogger(__name__)

# Divisor applied to log(access_count + 1); 100 accesses -> ~0.46
FREQUENCY_DIVISOR = 10.0


def _parse_timestamp(value: str) -> datetime:
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def calculate_usage_score(
    access_count: int,
    last_accessed_at: Optional[str],
    time_decay_days: float = 30.0,
    now: Optional[datetime] = None,
) -> float:
    """
    Score an item's usage in [0, 1].

    min(log(count + 1) / 10 * exp(-days_since_last_access / time_decay_days), 1.0)

    Never-accessed items (count 0 or no timestamp) score exactly 0.
    An unparseable timestamp is treated as never accessed.
    """
    if access_count <= 0 or not last_accessed_at:
        return 0.0

    try:
        last_access = _parse_timestamp(last_accessed_at)
    except (ValueError, TypeError):
        logger.debug("Unparseable last_accessed_at: %r", last_accessed_at)
        return 0.0

    now = now or datetime.now(timezone.utc)
    days_since = max((now - last_access).total_seconds() / 86400, 0.0)
    decay = math.exp(-days_since / time_decay_days) if time_decay_days > 0 else 0.0
    frequency = math.log(access_count + 1) / FREQUENCY_DIVISOR

    return min(frequency * decay, 1.0)


def boost_result(
    result: SearchResult,
    current: Optional[Item],
    boost_factor: float = 0.2,
    time_decay_days: float = 30.0,
    min_access_count: int = 1,
    now: Optional[datetime] = None,
) -> UsageBoostedResult:
    """
    Re-score one search result with the usage data of `current`, the
    freshly fetched copy of its item (None if it vanished from the store).

    boosted = min(base + usage * boost_factor, 1.0), so base <= boosted <= 1.
    """
    base = result.similarity
    usage = 0.0
    if current is not None and current.access_count >= min_access_count:
        usage = calculate_usage_score(
            current.access_count, current.last_accessed_at, time_decay_days, now=now,
        )

    boosted = min(base + usage * boost_factor, 1.0) if usage > 0 else base
    return UsageBoostedResult(
        item=result.item,
        similarity=result.similarity,
        unranked=result.unranked,
        base_similarity=base,
        usage_score=usage,
        boosted_similarity=boosted,
    )
