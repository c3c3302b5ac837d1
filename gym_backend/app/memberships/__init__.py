"""Membership domain package: subscriptions, access grants and their time windows."""

from .access import AccessGrantManager
from .catalog import ServiceSetReconciler
from .errors import (
    ConflictError,
    InvalidStateError,
    InvalidWindowError,
    MembershipError,
    NotFoundError,
)
from .lifecycle import LifecycleEventLogger, SubscriptionLifecycleManager
from .models import (
    ActiveAccess,
    Client,
    GymService,
    LifecycleEvent,
    LifecycleEventType,
    NewAccessGrant,
    NewSubscription,
    PaymentMethod,
    PriceTier,
    ReconciliationResult,
    ServiceAccessGrant,
    StatusBucket,
    Subscription,
    SubscriptionStatus,
    SubscriptionType,
    SweepSummary,
    TypeServiceAssociation,
)
from .repository import MembershipRepository, unit_of_work
from .sweeper import ExpirationSweeper

__all__ = [
    "AccessGrantManager",
    "ActiveAccess",
    "Client",
    "ConflictError",
    "ExpirationSweeper",
    "GymService",
    "InvalidStateError",
    "InvalidWindowError",
    "LifecycleEvent",
    "LifecycleEventLogger",
    "LifecycleEventType",
    "MembershipError",
    "MembershipRepository",
    "NewAccessGrant",
    "NewSubscription",
    "NotFoundError",
    "PaymentMethod",
    "PriceTier",
    "ReconciliationResult",
    "ServiceAccessGrant",
    "ServiceSetReconciler",
    "StatusBucket",
    "Subscription",
    "SubscriptionLifecycleManager",
    "SubscriptionStatus",
    "SubscriptionType",
    "SweepSummary",
    "TypeServiceAssociation",
    "unit_of_work",
]
