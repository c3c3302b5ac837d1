"""Expiration sweep over subscriptions whose validity window has closed."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import List

from .lifecycle import SubscriptionLifecycleManager
from .models import StatusBucket, SubscriptionStatus, SweepSummary
from .repository import MembershipRepository

logger = logging.getLogger(__name__)


@dataclass
class ExpirationSweeper:
    """Moves active subscriptions that ended before ``now`` to the expired status.

    Each subscription is expired in its own transaction. A failure on one row
    is logged and counted; the sweep carries on with the rest and the row is
    picked up again on the next run.
    """

    repository: MembershipRepository
    lifecycle: SubscriptionLifecycleManager

    def sweep(self, now: date) -> SweepSummary:
        candidates = self.repository.list_subscriptions_ending_before(
            now, SubscriptionStatus.in_bucket(StatusBucket.ACTIVE)
        )
        expired_ids: List[int] = []
        failures = 0
        for subscription in candidates:
            try:
                with self.repository.transaction() as store:
                    updated = self.lifecycle.expire(subscription.id, tx=store)
            except Exception:
                failures += 1
                logger.exception(
                    "Failed to expire subscription %s", subscription.id,
                    extra={"subscription_id": subscription.id},
                )
                continue
            if updated is not None:
                expired_ids.append(updated.id)

        if candidates:
            logger.info(
                "Expiration sweep finished: %s expired, %s failed",
                len(expired_ids),
                failures,
                extra={"sweep_date": now.isoformat()},
            )
        return SweepSummary(expired=len(expired_ids), failures=failures, expired_ids=tuple(expired_ids))


__all__ = ["ExpirationSweeper"]
