"""API schemas for membership endpoints."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..memberships import (
    ActiveAccess,
    Client,
    GymService,
    ReconciliationResult,
    ServiceAccessGrant,
    Subscription,
    SubscriptionStatus,
    SweepSummary,
    TypeServiceAssociation,
)


class SubscriptionCreateRequest(BaseModel):
    client_id: int = Field(alias="clientId")
    subscription_type_id: int = Field(alias="subscriptionTypeId")
    price_tier_id: int = Field(alias="priceTierId")
    valid_from: date = Field(alias="validFrom")
    valid_until: date = Field(alias="validUntil")
    amount_paid: Decimal = Field(alias="amountPaid", ge=0)
    payment_date: Optional[date] = Field(alias="paymentDate", default=None)
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE
    payment_method_id: Optional[int] = Field(alias="paymentMethodId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionRenewRequest(BaseModel):
    valid_from: Optional[date] = Field(alias="validFrom", default=None)
    price_tier_id: Optional[int] = Field(alias="priceTierId", default=None)
    amount_paid: Optional[Decimal] = Field(alias="amountPaid", default=None, ge=0)
    payment_date: Optional[date] = Field(alias="paymentDate", default=None)
    payment_method_id: Optional[int] = Field(alias="paymentMethodId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class WindowUpdateRequest(BaseModel):
    valid_from: Optional[date] = Field(alias="validFrom", default=None)
    valid_until: Optional[date] = Field(alias="validUntil", default=None)

    model_config = ConfigDict(populate_by_name=True)


class TerminateRequest(BaseModel):
    at: Optional[date] = None

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionResponse(BaseModel):
    subscription: Subscription

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionListResponse(BaseModel):
    subscriptions: List[Subscription]

    model_config = ConfigDict(populate_by_name=True)


class AccessGrantRequest(BaseModel):
    client_id: int = Field(alias="clientId")
    service_id: int = Field(alias="serviceId")
    access_from: date = Field(alias="accessFrom")
    access_until: Optional[date] = Field(alias="accessUntil", default=None)
    subscription_id: Optional[int] = Field(alias="subscriptionId", default=None)

    model_config = ConfigDict(populate_by_name=True)


class BulkAccessRequest(BaseModel):
    service_ids: List[int] = Field(alias="serviceIds", min_length=1)
    access_from: Optional[date] = Field(alias="accessFrom", default=None)
    access_until: Optional[date] = Field(alias="accessUntil", default=None)

    model_config = ConfigDict(populate_by_name=True)


class AccessWindowUpdateRequest(BaseModel):
    access_from: Optional[date] = Field(alias="accessFrom", default=None)
    access_until: Optional[date] = Field(alias="accessUntil", default=None)

    model_config = ConfigDict(populate_by_name=True)


class AccessGrantResponse(BaseModel):
    grant: ServiceAccessGrant

    model_config = ConfigDict(populate_by_name=True)


class BulkAccessResponse(BaseModel):
    count: int
    grants: List[ServiceAccessGrant]

    model_config = ConfigDict(populate_by_name=True)


class ActiveServiceItem(BaseModel):
    grant: ServiceAccessGrant
    service: GymService

    model_config = ConfigDict(populate_by_name=True)


class ActiveClientItem(BaseModel):
    grant: ServiceAccessGrant
    client: Client

    model_config = ConfigDict(populate_by_name=True)


class ActiveServicesResponse(BaseModel):
    items: List[ActiveServiceItem]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_access(cls, accesses: List[ActiveAccess]) -> "ActiveServicesResponse":
        return cls(items=[ActiveServiceItem(grant=item.grant, service=item.service) for item in accesses])


class ActiveClientsResponse(BaseModel):
    items: List[ActiveClientItem]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_access(cls, accesses: List[ActiveAccess]) -> "ActiveClientsResponse":
        return cls(items=[ActiveClientItem(grant=item.grant, client=item.client) for item in accesses])


class AccessCheckResponse(BaseModel):
    client_id: int = Field(alias="clientId")
    service_id: int = Field(alias="serviceId")
    at: date
    has_access: bool = Field(alias="hasAccess")

    model_config = ConfigDict(populate_by_name=True)


class TypeServicesUpdateRequest(BaseModel):
    service_ids: List[int] = Field(alias="serviceIds")

    model_config = ConfigDict(populate_by_name=True)


class TypeServicesResponse(BaseModel):
    services: List[GymService]

    model_config = ConfigDict(populate_by_name=True)


class ReconciliationResponse(BaseModel):
    added: List[int]
    removed: List[int]
    associations: List[TypeServiceAssociation]

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_result(cls, result: ReconciliationResult) -> "ReconciliationResponse":
        return cls(
            added=list(result.added),
            removed=list(result.removed),
            associations=list(result.associations),
        )


class SweepResponse(BaseModel):
    updated: int
    failures: int = 0

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_summary(cls, summary: SweepSummary) -> "SweepResponse":
        return cls(updated=summary.expired, failures=summary.failures)
