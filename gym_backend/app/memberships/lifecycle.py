"""Subscription lifecycle: purchase, renewal, window edits and termination."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import List, Optional, Protocol

from .access import AccessGrantManager
from .catalog import ServiceSetReconciler
from .errors import ConflictError, InvalidStateError, InvalidWindowError, NotFoundError
from .intervals import add_days, overlaps, validate_partial_update, validate_window
from .models import (
    LifecycleEvent,
    LifecycleEventType,
    NewSubscription,
    PriceTier,
    StatusBucket,
    Subscription,
    SubscriptionStatus,
)
from .repository import MembershipRepository, unit_of_work

logger = logging.getLogger(__name__)

# Gap between the end of a subscription and the default start of its renewal.
RENEWAL_GAP_DAYS = 1


class LifecycleEventLogger(Protocol):
    """Captures structured lifecycle audit events."""

    def log(self, event: LifecycleEvent) -> None:
        ...


@dataclass
class SubscriptionLifecycleManager:
    """Coordinates subscription rows with the access grants they provision."""

    repository: MembershipRepository
    access: AccessGrantManager
    reconciler: ServiceSetReconciler
    event_logger: Optional[LifecycleEventLogger] = None

    def get(self, subscription_id: int) -> Subscription:
        subscription = self.repository.get_subscription(subscription_id)
        if subscription is None:
            raise NotFoundError(f"Subscription {subscription_id} not found")
        return subscription

    def create(
        self,
        client_id: int,
        type_id: int,
        tier_id: int,
        valid_from: date,
        valid_until: date,
        amount_paid: Decimal,
        *,
        payment_date: Optional[date] = None,
        status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        payment_method_id: Optional[int] = None,
        renewed_from_id: Optional[int] = None,
        tx: Optional[MembershipRepository] = None,
    ) -> Subscription:
        """Insert a subscription and provision grants for every service of its type.

        Both writes share one transaction: a provisioning failure leaves no
        subscription behind.
        """

        if status.bucket == StatusBucket.CLOSED:
            raise InvalidStateError(f"Cannot create a subscription with status {status.value}")

        with unit_of_work(self.repository, tx) as store:
            if store.get_client(client_id) is None:
                raise NotFoundError(f"Client {client_id} not found")
            if store.get_subscription_type(type_id) is None:
                raise NotFoundError(f"Subscription type {type_id} not found")
            tier = self._require_tier(store, tier_id, type_id)
            if payment_method_id is not None and store.get_payment_method(payment_method_id) is None:
                raise NotFoundError(f"Payment method {payment_method_id} not found")
            validate_window(valid_from, valid_until)

            subscription = store.insert_subscription(
                NewSubscription(
                    client_id=client_id,
                    subscription_type_id=type_id,
                    price_tier_id=tier.id,
                    valid_from=valid_from,
                    valid_until=valid_until,
                    amount_paid=amount_paid,
                    payment_date=payment_date or valid_from,
                    status=status,
                    payment_method_id=payment_method_id,
                    renewed_from_id=renewed_from_id,
                )
            )
            services = self.reconciler.services_for(type_id, tx=store)
            self.access.bulk_grant(
                subscription,
                [service.id for service in services],
                valid_from,
                valid_until,
                tx=store,
            )

        if renewed_from_id is None:
            self._emit(LifecycleEventType.SUBSCRIPTION_CREATED, subscription)
        return subscription

    def renew(
        self,
        subscription_id: int,
        *,
        valid_from: Optional[date] = None,
        price_tier_id: Optional[int] = None,
        amount_paid: Optional[Decimal] = None,
        payment_date: Optional[date] = None,
        payment_method_id: Optional[int] = None,
    ) -> Subscription:
        """Chain a new subscription after ``subscription_id``; the old row is kept as is."""

        with self.repository.transaction() as store:
            previous = store.get_subscription(subscription_id)
            if previous is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")

            tier = self._require_tier(
                store,
                price_tier_id if price_tier_id is not None else previous.price_tier_id,
                previous.subscription_type_id,
            )
            start = valid_from or add_days(previous.valid_until, RENEWAL_GAP_DAYS)
            end = add_days(start, tier.duration_days)
            if overlaps(previous.valid_from, previous.valid_until, start, end):
                raise InvalidWindowError(
                    "Renewal must start after the previous subscription ends",
                    detail={
                        "start": start.isoformat(),
                        "previous_until": previous.valid_until.isoformat(),
                    },
                )

            renewed = self.create(
                previous.client_id,
                previous.subscription_type_id,
                tier.id,
                start,
                end,
                amount_paid if amount_paid is not None else tier.price,
                payment_date=payment_date,
                status=SubscriptionStatus.ACTIVE,
                payment_method_id=(
                    payment_method_id if payment_method_id is not None else previous.payment_method_id
                ),
                renewed_from_id=previous.id,
                tx=store,
            )
            # Kept grants follow the newest subscription; a cancelled predecessor restarts them.
            restart = start if previous.status == SubscriptionStatus.CANCELLED else None
            self.access.transfer(previous.id, renewed.id, end, access_from=restart, tx=store)

        self._emit(
            LifecycleEventType.SUBSCRIPTION_RENEWED,
            renewed,
            metadata={"renewed_from": str(previous.id)},
        )
        return renewed

    def update_window(
        self,
        subscription_id: int,
        *,
        valid_from: Optional[date] = None,
        valid_until: Optional[date] = None,
    ) -> Subscription:
        """Edit the validity window; a new end date is cascaded to every grant."""

        with self.repository.transaction() as store:
            current = store.get_subscription(subscription_id)
            if current is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            start, end = validate_partial_update(
                current.valid_from, current.valid_until, valid_from, valid_until
            )
            updated = store.update_subscription_window(
                subscription_id, valid_from=start, valid_until=end
            )
            if end != current.valid_until:
                self.access.rewrite_end_date(subscription_id, end, tx=store)

        self._emit(LifecycleEventType.SUBSCRIPTION_WINDOW_UPDATED, updated)
        return updated

    def terminate(self, subscription_id: int, at: date) -> Subscription:
        """Cancel the subscription and cut its grants off at ``at``."""

        with self.repository.transaction() as store:
            current = store.get_subscription(subscription_id)
            if current is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            if current.bucket == StatusBucket.CLOSED:
                raise InvalidStateError(
                    f"Subscription {subscription_id} is already closed (status: {current.status.value})"
                )
            updated = store.update_subscription_status(subscription_id, SubscriptionStatus.CANCELLED)
            if updated is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            truncated = self.access.terminate_for(subscription_id, at, tx=store)

        self._emit(
            LifecycleEventType.SUBSCRIPTION_TERMINATED,
            updated,
            metadata={"at": at.isoformat(), "grants_truncated": str(truncated)},
        )
        return updated

    def expire(
        self, subscription_id: int, *, tx: Optional[MembershipRepository] = None
    ) -> Optional[Subscription]:
        """Mark an active subscription as expired without touching its grants.

        Grants already end on the subscription's own end date, so natural
        expiry needs no cascade. Returns ``None`` when the subscription is no
        longer in the active bucket.
        """

        with unit_of_work(self.repository, tx) as store:
            updated = store.update_subscription_status(
                subscription_id,
                SubscriptionStatus.EXPIRED,
                expected=SubscriptionStatus.in_bucket(StatusBucket.ACTIVE),
            )
        if updated is not None:
            self._emit(LifecycleEventType.SUBSCRIPTION_EXPIRED, updated)
        return updated

    def remove(self, subscription_id: int) -> None:
        with self.repository.transaction() as store:
            current = store.get_subscription(subscription_id)
            if current is None:
                raise NotFoundError(f"Subscription {subscription_id} not found")
            grants = store.list_grants_for_subscription(subscription_id)
            if grants:
                raise ConflictError(
                    f"Subscription {subscription_id} still owns {len(grants)} access grant(s)",
                    detail={"grant_ids": [grant.id for grant in grants]},
                )
            store.delete_subscription(subscription_id)

        self._emit(LifecycleEventType.SUBSCRIPTION_REMOVED, current)

    def find_expiring(self, at: date, days_threshold: int = 30) -> List[Subscription]:
        """Active subscriptions ending between ``at`` and ``at + days_threshold``."""

        if days_threshold < 0:
            raise ValueError("days_threshold must be >= 0")
        return self.repository.list_subscriptions_ending_between(
            at,
            add_days(at, days_threshold),
            SubscriptionStatus.in_bucket(StatusBucket.ACTIVE),
        )

    def _require_tier(self, store: MembershipRepository, tier_id: int, type_id: int) -> PriceTier:
        tier = store.get_price_tier(tier_id)
        if tier is None:
            raise NotFoundError(f"Price tier {tier_id} not found")
        if tier.subscription_type_id != type_id:
            raise InvalidStateError(
                f"Price tier {tier_id} does not belong to subscription type {type_id}"
            )
        return tier

    def _emit(
        self,
        event_type: LifecycleEventType,
        subscription: Subscription,
        *,
        metadata: Optional[dict] = None,
    ) -> None:
        if self.event_logger is None:
            return
        self.event_logger.log(
            LifecycleEvent(
                event_type=event_type,
                subscription_id=subscription.id,
                client_id=subscription.client_id,
                metadata=metadata or {},
            )
        )


__all__ = ["LifecycleEventLogger", "RENEWAL_GAP_DAYS", "SubscriptionLifecycleManager"]
