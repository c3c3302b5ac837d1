"""API routes exposing subscriptions, service access and the expiration sweep."""
from __future__ import annotations

from datetime import date, datetime, timezone
from functools import lru_cache
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Query, Response, status

from ..memberships import MembershipError
from ..schemas.memberships import (
    AccessCheckResponse,
    AccessGrantRequest,
    AccessGrantResponse,
    AccessWindowUpdateRequest,
    ActiveClientsResponse,
    ActiveServicesResponse,
    BulkAccessRequest,
    BulkAccessResponse,
    ReconciliationResponse,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionRenewRequest,
    SubscriptionResponse,
    SweepResponse,
    TerminateRequest,
    TypeServicesResponse,
    TypeServicesUpdateRequest,
    WindowUpdateRequest,
)
from ... import sweeps
from ...config import MembershipConfig, load_membership_config
from ..services.memberships import get_membership_services


def _today() -> date:
    return datetime.now(timezone.utc).date()


@lru_cache(maxsize=1)
def _membership_config() -> MembershipConfig:
    return load_membership_config()


router = APIRouter(prefix="/api/memberships", tags=["memberships"])


@router.post("/subscriptions", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(payload: SubscriptionCreateRequest) -> SubscriptionResponse:
    services = get_membership_services()
    try:
        subscription = services.lifecycle.create(
            payload.client_id,
            payload.subscription_type_id,
            payload.price_tier_id,
            payload.valid_from,
            payload.valid_until,
            payload.amount_paid,
            payment_date=payload.payment_date,
            status=payload.status,
            payment_method_id=payload.payment_method_id,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.get("/subscriptions/expiring", response_model=SubscriptionListResponse)
def list_expiring_subscriptions(
    days: Optional[int] = Query(default=None, ge=0, le=365),
    at: Optional[date] = Query(default=None),
) -> SubscriptionListResponse:
    threshold = days if days is not None else _membership_config().expiring_threshold_days
    services = get_membership_services()
    subscriptions = services.lifecycle.find_expiring(at or _today(), days_threshold=threshold)
    return SubscriptionListResponse(subscriptions=subscriptions)


@router.get("/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
def get_subscription(subscription_id: int) -> SubscriptionResponse:
    services = get_membership_services()
    try:
        subscription = services.lifecycle.get(subscription_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.post(
    "/subscriptions/{subscription_id}/renew",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
)
def renew_subscription(subscription_id: int, payload: SubscriptionRenewRequest) -> SubscriptionResponse:
    services = get_membership_services()
    try:
        subscription = services.lifecycle.renew(
            subscription_id,
            valid_from=payload.valid_from,
            price_tier_id=payload.price_tier_id,
            amount_paid=payload.amount_paid,
            payment_date=payload.payment_date,
            payment_method_id=payload.payment_method_id,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.patch("/subscriptions/{subscription_id}/window", response_model=SubscriptionResponse)
def update_subscription_window(subscription_id: int, payload: WindowUpdateRequest) -> SubscriptionResponse:
    if payload.valid_from is None and payload.valid_until is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No changes provided")
    services = get_membership_services()
    try:
        subscription = services.lifecycle.update_window(
            subscription_id,
            valid_from=payload.valid_from,
            valid_until=payload.valid_until,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.post("/subscriptions/{subscription_id}/terminate", response_model=SubscriptionResponse)
def terminate_subscription(subscription_id: int, payload: TerminateRequest) -> SubscriptionResponse:
    services = get_membership_services()
    try:
        subscription = services.lifecycle.terminate(subscription_id, payload.at or _today())
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(subscription=subscription)


@router.delete("/subscriptions/{subscription_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_subscription(subscription_id: int) -> Response:
    services = get_membership_services()
    try:
        services.lifecycle.remove(subscription_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/subscriptions/{subscription_id}/access",
    response_model=BulkAccessResponse,
    status_code=status.HTTP_201_CREATED,
)
def provision_subscription_access(subscription_id: int, payload: BulkAccessRequest) -> BulkAccessResponse:
    services = get_membership_services()
    try:
        subscription = services.lifecycle.get(subscription_id)
        grants = services.access.bulk_grant(
            subscription,
            payload.service_ids,
            payload.access_from or _today(),
            payload.access_until or subscription.valid_until,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return BulkAccessResponse(count=len(grants), grants=grants)


@router.post("/access", response_model=AccessGrantResponse, status_code=status.HTTP_201_CREATED)
def create_access_grant(payload: AccessGrantRequest) -> AccessGrantResponse:
    services = get_membership_services()
    try:
        grant = services.access.grant(
            payload.client_id,
            payload.service_id,
            payload.access_from,
            payload.access_until,
            payload.subscription_id,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return AccessGrantResponse(grant=grant)


@router.patch("/access/{grant_id}", response_model=AccessGrantResponse)
def update_access_grant(grant_id: int, payload: AccessWindowUpdateRequest) -> AccessGrantResponse:
    if payload.access_from is None and payload.access_until is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No changes provided")
    services = get_membership_services()
    try:
        grant = services.access.update_window(
            grant_id,
            access_from=payload.access_from,
            access_until=payload.access_until,
        )
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return AccessGrantResponse(grant=grant)


@router.delete("/access/{grant_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_access_grant(grant_id: int) -> Response:
    services = get_membership_services()
    try:
        services.access.revoke(grant_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/clients/{client_id}/services", response_model=ActiveServicesResponse)
def list_client_active_services(
    client_id: int,
    at: Optional[date] = Query(default=None),
) -> ActiveServicesResponse:
    services = get_membership_services()
    try:
        accesses = list(services.access.active_for(client_id, at or _today()))
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return ActiveServicesResponse.from_access(accesses)


@router.get("/clients/{client_id}/services/{service_id}/access", response_model=AccessCheckResponse)
def check_client_access(
    client_id: int,
    service_id: int,
    at: Optional[date] = Query(default=None),
) -> AccessCheckResponse:
    services = get_membership_services()
    check_date = at or _today()
    try:
        allowed = services.access.has_access(client_id, service_id, check_date)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return AccessCheckResponse(clientId=client_id, serviceId=service_id, at=check_date, hasAccess=allowed)


@router.get("/services/{service_id}/clients", response_model=ActiveClientsResponse)
def list_service_active_clients(
    service_id: int,
    at: Optional[date] = Query(default=None),
) -> ActiveClientsResponse:
    services = get_membership_services()
    try:
        accesses = list(services.access.active_clients_for(service_id, at or _today()))
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return ActiveClientsResponse.from_access(accesses)


@router.get("/types/{type_id}/services", response_model=TypeServicesResponse)
def list_type_services(type_id: int) -> TypeServicesResponse:
    services = get_membership_services()
    try:
        bound = services.reconciler.services_for(type_id)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return TypeServicesResponse(services=bound)


@router.put("/types/{type_id}/services", response_model=ReconciliationResponse)
def replace_type_services(type_id: int, payload: TypeServicesUpdateRequest) -> ReconciliationResponse:
    services = get_membership_services()
    try:
        result = services.reconciler.reconcile(type_id, payload.service_ids)
    except MembershipError as exc:
        raise exc.to_http_exception() from exc
    return ReconciliationResponse.from_result(result)


@router.post("/sweeps", response_model=SweepResponse)
def trigger_expiration_sweep() -> SweepResponse:
    summary = sweeps.run_sweep_job()
    if summary is None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="An expiration sweep is already running",
        )
    return SweepResponse.from_summary(summary)


@router.get("/sweeps/metrics")
def get_expiration_sweep_metrics() -> Dict[str, Any]:
    return sweeps.get_sweep_metrics()
