"""
Job progress and ETA estimation.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from docscan.utils.clock import utcnow


@dataclass(frozen=True)
class ProgressEstimate:
    percentage: int
    eta_seconds: int | None


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves away from zero (12.5 -> 13)."""
    if value < 0:
        return -math.floor(-value + 0.5)
    return math.floor(value + 0.5)


def estimate_progress(
    started_at: datetime | None,
    current: int,
    total: int,
    now: datetime | None = None,
) -> ProgressEstimate:
    """
    Estimate percentage done and seconds remaining for a job.

    The ETA assumes the remaining pages take as long as the average page
    so far, and is recomputed after every page.

    Args:
        started_at: When the job started, None if it hasn't.
        current: Pages handled so far.
        total: Pages in scope.
        now: Reference time, defaults to the current UTC time.

    Returns:
        ProgressEstimate; ``eta_seconds`` is None when no page has been
        handled yet or the total is unknown.
    """
    if total <= 0:
        return ProgressEstimate(percentage=0, eta_seconds=None)

    percentage = min(max(round_half_up(current / total * 100), 0), 100)

    if current <= 0 or started_at is None:
        return ProgressEstimate(percentage=percentage, eta_seconds=None)

    elapsed = max(((now or utcnow()) - started_at).total_seconds(), 0.0)
    remaining = max(total - current, 0)
    eta = round_half_up(elapsed / current * remaining)

    return ProgressEstimate(percentage=percentage, eta_seconds=max(eta, 0))
