"""Domain models for gym subscriptions and service access."""
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, model_validator


class StatusBucket(str, Enum):
    """Behavioral grouping shared by every subscription status."""

    PRE_ACTIVE = "pre_active"
    ACTIVE = "active"
    CLOSED = "closed"


class SubscriptionStatus(str, Enum):
    """Lifecycle state for subscriptions."""

    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"

    @property
    def bucket(self) -> StatusBucket:
        return _STATUS_BUCKETS[self]

    @classmethod
    def in_bucket(cls, bucket: StatusBucket) -> tuple["SubscriptionStatus", ...]:
        """Return every status belonging to ``bucket``."""

        return tuple(status for status in cls if status.bucket == bucket)


_STATUS_BUCKETS = {
    SubscriptionStatus.PENDING: StatusBucket.PRE_ACTIVE,
    SubscriptionStatus.ACTIVE: StatusBucket.ACTIVE,
    SubscriptionStatus.EXPIRED: StatusBucket.CLOSED,
    SubscriptionStatus.CANCELLED: StatusBucket.CLOSED,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Client(BaseModel):
    """Registered gym client."""

    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class GymService(BaseModel):
    """A service (class, pool, sauna...) clients can be granted access to."""

    id: int
    name: str
    description: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(frozen=True)


class SubscriptionType(BaseModel):
    """Named offering a client can subscribe to."""

    id: int
    name: str
    description: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PriceTier(BaseModel):
    """Duration and price of a subscription type for a given audience."""

    id: int
    subscription_type_id: int
    duration_days: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    audience: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class PaymentMethod(BaseModel):
    id: int
    name: str

    model_config = ConfigDict(frozen=True)


class Subscription(BaseModel):
    """A client's purchased period of a subscription type."""

    id: int
    client_id: int
    subscription_type_id: int
    price_tier_id: int
    valid_from: date
    valid_until: date
    amount_paid: Decimal = Field(ge=0)
    payment_date: date
    status: SubscriptionStatus
    payment_method_id: Optional[int] = None
    renewed_from_id: Optional[int] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_window(self) -> "Subscription":
        if self.valid_until <= self.valid_from:
            raise ValueError("valid_until must be later than valid_from")
        return self

    @property
    def bucket(self) -> StatusBucket:
        return self.status.bucket


class NewSubscription(BaseModel):
    """Values required to insert a subscription row."""

    client_id: int
    subscription_type_id: int
    price_tier_id: int
    valid_from: date
    valid_until: date
    amount_paid: Decimal = Field(ge=0)
    payment_date: date
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_method_id: Optional[int] = None
    renewed_from_id: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class ServiceAccessGrant(BaseModel):
    """Permission for a client to use a service during an access window."""

    id: int
    client_id: int
    service_id: int
    subscription_id: Optional[int] = None
    access_from: date
    access_until: Optional[date] = None
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_window(self) -> "ServiceAccessGrant":
        if self.access_until is not None and self.access_until <= self.access_from:
            raise ValueError("access_until must be later than access_from")
        return self

    @property
    def is_unlimited(self) -> bool:
        return self.access_until is None


class NewAccessGrant(BaseModel):
    client_id: int
    service_id: int
    subscription_id: Optional[int] = None
    access_from: date
    access_until: Optional[date] = None

    model_config = ConfigDict(frozen=True)


class TypeServiceAssociation(BaseModel):
    """Binding of a service to the subscription type that grants it."""

    subscription_type_id: int
    service_id: int
    created_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)


class ActiveAccess(BaseModel):
    """A grant valid at a point in time, paired with its service or client."""

    grant: ServiceAccessGrant
    service: Optional[GymService] = None
    client: Optional[Client] = None

    model_config = ConfigDict(frozen=True)

    @property
    def window(self) -> tuple[date, Optional[date]]:
        return self.grant.access_from, self.grant.access_until


class ReconciliationResult(BaseModel):
    """Outcome of aligning a subscription type with a desired service set."""

    subscription_type_id: int
    added: Sequence[int] = Field(default_factory=tuple)
    removed: Sequence[int] = Field(default_factory=tuple)
    associations: Sequence[TypeServiceAssociation] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)

    @property
    def changed(self) -> bool:
        return bool(self.added or self.removed)


class SweepSummary(BaseModel):
    """Result of one expiration sweep."""

    expired: int = 0
    failures: int = 0
    expired_ids: Sequence[int] = Field(default_factory=tuple)

    model_config = ConfigDict(frozen=True)


class LifecycleEventType(str, Enum):
    """Audit categories emitted by the lifecycle manager."""

    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_RENEWED = "subscription_renewed"
    SUBSCRIPTION_WINDOW_UPDATED = "subscription_window_updated"
    SUBSCRIPTION_TERMINATED = "subscription_terminated"
    SUBSCRIPTION_REMOVED = "subscription_removed"
    SUBSCRIPTION_EXPIRED = "subscription_expired"


class LifecycleEvent(BaseModel):
    event_type: LifecycleEventType
    subscription_id: int
    client_id: Optional[int] = None
    metadata: dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=_utcnow)

    model_config = ConfigDict(frozen=True)
