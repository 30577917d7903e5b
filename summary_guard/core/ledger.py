"""
Quota ledger.

Tracks and enforces per-actor, per-operation usage. Storage is always one
counter row per calendar day; the window only decides which rows gate
admission (today's row for daily quotas, month-to-date rows for monthly).

Admission is a single atomic increment-if-below-ceiling in the store, so
K concurrent requests against a ceiling of N admit exactly min(K, N).
"""

import logging
from dataclasses import dataclass
from typing import Dict, Sequence

from .clock import Clock, day_key, day_window, month_window, utc_now
from .plans import QuotaPolicy, QuotaWindow
from .actors import Actor
from summary_guard.storage.repository import UsageRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaDecision:
    """Outcome of a single check-and-consume."""
    allowed: bool
    used: int
    remaining: int
    limit: int
    period_key: str


class QuotaLedger:
    """Per-actor usage accounting over rolling calendar periods."""

    def __init__(self, repository: UsageRepository, clock: Clock = utc_now):
        self.repository = repository
        self.clock = clock

    def check_and_consume(
        self,
        actor_key: str,
        operation: str,
        ceiling: int,
        window: QuotaWindow = QuotaWindow.DAILY,
    ) -> QuotaDecision:
        """Consume one unit of quota if the ceiling allows it.

        Args:
            actor_key: Ledger key of the actor
            operation: Operation being metered
            ceiling: Maximum uses in the window; 0 always denies
            window: DAILY or MONTHLY

        Returns:
            QuotaDecision; the stored count is unchanged when not allowed

        Raises:
            StoreUnavailable: If the ledger cannot be read or written.
                Callers must treat this as a denial.
        """
        now = self.clock()
        today = day_key(now)
        period = month_window(now) if window is QuotaWindow.MONTHLY else day_window(now)
        period_key = today if window is QuotaWindow.DAILY else f"{period[0]}..{period[1]}"

        if ceiling <= 0:
            logger.info("Quota denied for %s/%s: ceiling is 0", actor_key, operation)
            return QuotaDecision(False, 0, 0, max(ceiling, 0), period_key)

        allowed, used = self.repository.increment_within_window(
            actor_key, operation, today, period, ceiling, now
        )
        if not allowed:
            logger.info(
                "Quota denied for %s/%s: %d of %d used in %s",
                actor_key, operation, used, ceiling, period_key
            )
        return QuotaDecision(
            allowed=allowed,
            used=used,
            remaining=max(0, ceiling - used) if allowed else 0,
            limit=ceiling,
            period_key=period_key,
        )

    def consume(self, actor: Actor, policy: QuotaPolicy, operation: str) -> QuotaDecision:
        """Check-and-consume using the policy's ceiling and window."""
        return self.check_and_consume(actor.key, operation, policy.ceiling_for(operation), policy.window)

    def usage_today(self, actor_key: str, operations: Sequence[str]) -> Dict[str, int]:
        """Today's count per operation. Read-only."""
        return self.repository.usage_for_day(actor_key, day_key(self.clock()), operations)
