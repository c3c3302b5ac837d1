"""Application wiring for the membership engine."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache

from ..memberships import (
    AccessGrantManager,
    ExpirationSweeper,
    LifecycleEvent,
    LifecycleEventLogger,
    ServiceSetReconciler,
    SubscriptionLifecycleManager,
    SweepSummary,
)
from ..memberships.repository import MembershipRepository, PostgresMembershipRepository


logger = logging.getLogger("memberships")


class LoggingLifecycleEventLogger(LifecycleEventLogger):
    """Forwards lifecycle audit events to the application logger."""

    def log(self, event: LifecycleEvent) -> None:
        logger.info(
            "Membership event %s subscription=%s client=%s metadata=%s",
            event.event_type.value,
            event.subscription_id,
            event.client_id,
            event.metadata,
        )


@dataclass(frozen=True)
class MembershipServices:
    """Bundle of engine components sharing one repository."""

    repository: MembershipRepository
    access: AccessGrantManager
    reconciler: ServiceSetReconciler
    lifecycle: SubscriptionLifecycleManager
    sweeper: ExpirationSweeper


def build_membership_services(repository: MembershipRepository) -> MembershipServices:
    access = AccessGrantManager(repository=repository)
    reconciler = ServiceSetReconciler(repository=repository)
    lifecycle = SubscriptionLifecycleManager(
        repository=repository,
        access=access,
        reconciler=reconciler,
        event_logger=LoggingLifecycleEventLogger(),
    )
    sweeper = ExpirationSweeper(repository=repository, lifecycle=lifecycle)
    return MembershipServices(
        repository=repository,
        access=access,
        reconciler=reconciler,
        lifecycle=lifecycle,
        sweeper=sweeper,
    )


@lru_cache(maxsize=1)
def get_membership_services() -> MembershipServices:
    return build_membership_services(PostgresMembershipRepository())


def expire_subscriptions(now: date) -> SweepSummary:
    """Run the expiration sweep against the configured store."""

    return get_membership_services().sweeper.sweep(now)


__all__ = [
    "LoggingLifecycleEventLogger",
    "MembershipServices",
    "build_membership_services",
    "expire_subscriptions",
    "get_membership_services",
]
