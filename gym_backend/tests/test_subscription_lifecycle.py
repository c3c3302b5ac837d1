"""Tests for subscription purchase, renewal, edits and termination."""
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import List

import pytest

from gym_backend.app.memberships import (
    ConflictError,
    InvalidStateError,
    InvalidWindowError,
    LifecycleEvent,
    LifecycleEventType,
    NotFoundError,
    StatusBucket,
    SubscriptionStatus,
)
from gym_backend.tests.fakes import (
    BASIC_TIER_ID,
    BASIC_TYPE_ID,
    CARDIO,
    MONTHLY_TIER_ID,
    POOL,
    PREMIUM_TYPE_ID,
    QUARTERLY_TIER_ID,
    SAUNA,
)


class RecordingEventLogger:
    def __init__(self) -> None:
        self.events: List[LifecycleEvent] = []

    def log(self, event: LifecycleEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> List[LifecycleEventType]:
        return [event.event_type for event in self.events]


@pytest.fixture()
def recorder(components) -> RecordingEventLogger:
    logger = RecordingEventLogger()
    components.lifecycle.event_logger = logger
    return logger


def _january(components, client_id=1, **kwargs):
    return components.lifecycle.create(
        client_id,
        PREMIUM_TYPE_ID,
        MONTHLY_TIER_ID,
        date(2025, 1, 1),
        date(2025, 1, 31),
        Decimal("45.00"),
        **kwargs,
    )


def test_create_provisions_one_grant_per_type_service(components, repository, recorder):
    subscription = _january(components, payment_method_id=1)

    assert repository.subscriptions[subscription.id] == subscription
    assert subscription.status == SubscriptionStatus.ACTIVE
    assert subscription.payment_date == date(2025, 1, 1)
    grants = repository.list_grants_for_subscription(subscription.id)
    assert sorted(grant.service_id for grant in grants) == [CARDIO, POOL]
    assert {(grant.access_from, grant.access_until) for grant in grants} == {
        (date(2025, 1, 1), date(2025, 1, 31))
    }
    assert recorder.types == [LifecycleEventType.SUBSCRIPTION_CREATED]


def test_create_for_type_without_services_creates_no_grants(components, repository):
    subscription = components.lifecycle.create(
        2, BASIC_TYPE_ID, BASIC_TIER_ID, date(2025, 1, 1), date(2025, 1, 31), Decimal("25.00")
    )

    assert repository.list_grants_for_subscription(subscription.id) == []


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"client_id": 404}, NotFoundError),
        ({"type_id": 404}, NotFoundError),
        ({"tier_id": 404}, NotFoundError),
        ({"tier_id": BASIC_TIER_ID}, InvalidStateError),
        ({"payment_method_id": 404}, NotFoundError),
        ({"valid_until": date(2025, 1, 1)}, InvalidWindowError),
    ],
)
def test_create_validates_references_and_window(components, repository, overrides, error):
    arguments = {
        "client_id": 1,
        "type_id": PREMIUM_TYPE_ID,
        "tier_id": MONTHLY_TIER_ID,
        "valid_from": date(2025, 1, 1),
        "valid_until": date(2025, 1, 31),
        "amount_paid": Decimal("45.00"),
        "payment_method_id": None,
    }
    arguments.update(overrides)

    with pytest.raises(error):
        components.lifecycle.create(**arguments)

    assert repository.subscriptions == {}
    assert repository.grants == {}


@pytest.mark.parametrize("status", [SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED])
def test_create_rejects_closed_status(components, repository, status):
    with pytest.raises(InvalidStateError):
        _january(components, status=status)

    assert repository.subscriptions == {}
    assert repository.grants == {}


def test_create_rolls_back_subscription_when_provisioning_fails(components, repository, recorder):
    repository.failing_grant_services.add(POOL)

    with pytest.raises(RuntimeError):
        _january(components)

    assert repository.subscriptions == {}
    assert repository.grants == {}
    assert repository.rollbacks == 1
    assert recorder.events == []


def test_create_keeps_existing_grant_for_same_service(components, repository):
    standalone = components.access.grant(1, CARDIO, date(2024, 6, 1))

    subscription = _january(components)

    assert repository.find_grant(1, CARDIO) == standalone
    assert [grant.service_id for grant in repository.list_grants_for_subscription(subscription.id)] == [POOL]


def test_get_unknown_subscription(components):
    with pytest.raises(NotFoundError):
        components.lifecycle.get(404)


def test_renew_chains_after_previous_window(components, repository, recorder):
    previous = _january(components, payment_method_id=1)

    renewed = components.lifecycle.renew(previous.id)

    assert renewed.renewed_from_id == previous.id
    assert renewed.valid_from == date(2025, 2, 1)
    assert renewed.valid_until == date(2025, 3, 3)
    assert renewed.amount_paid == Decimal("45.00")
    assert renewed.payment_method_id == 1
    assert renewed.status == SubscriptionStatus.ACTIVE
    assert repository.subscriptions[previous.id] == previous
    assert recorder.types == [
        LifecycleEventType.SUBSCRIPTION_CREATED,
        LifecycleEventType.SUBSCRIPTION_RENEWED,
    ]
    assert recorder.events[-1].metadata == {"renewed_from": str(previous.id)}


def test_renew_moves_existing_grants_to_new_subscription(components, repository):
    previous = _january(components)
    original_ids = {grant.id for grant in repository.list_grants_for_subscription(previous.id)}

    renewed = components.lifecycle.renew(previous.id)

    grants = repository.list_grants_for_subscription(renewed.id)
    assert {grant.id for grant in grants} == original_ids
    assert {(grant.access_from, grant.access_until) for grant in grants} == {
        (date(2025, 1, 1), renewed.valid_until)
    }
    assert repository.list_grants_for_subscription(previous.id) == []
    assert components.access.has_access(1, CARDIO, date(2025, 2, 15))


def test_renewal_chain_keeps_access_through_last_period(components, repository):
    first = _january(components)
    second = components.lifecycle.renew(first.id)
    third = components.lifecycle.renew(second.id)

    assert third.valid_from == date(2025, 3, 4)
    assert third.valid_until == date(2025, 4, 3)
    assert components.access.has_access(1, CARDIO, date(2025, 3, 15))
    assert components.access.has_access(1, POOL, third.valid_until)
    assert not components.access.has_access(1, POOL, date(2025, 4, 4))
    assert len(repository.list_grants_for_subscription(third.id)) == 2


def test_terminating_a_renewal_caps_carried_grants(components, repository):
    first = _january(components)
    second = components.lifecycle.renew(first.id)

    components.lifecycle.terminate(second.id, date(2025, 2, 10))

    assert {grant.access_until for grant in repository.list_grants_for_subscription(second.id)} == {
        date(2025, 2, 10)
    }
    assert components.access.has_access(1, CARDIO, date(2025, 2, 10))
    assert not components.access.has_access(1, CARDIO, date(2025, 2, 20))


def test_window_edit_on_a_renewal_reaches_carried_grants(components):
    first = _january(components)
    second = components.lifecycle.renew(first.id)

    components.lifecycle.update_window(second.id, valid_until=date(2025, 2, 20))

    assert components.access.has_access(1, CARDIO, date(2025, 2, 20))
    assert not components.access.has_access(1, CARDIO, date(2025, 2, 21))


def test_renewing_a_cancelled_subscription_restarts_grants(components, repository):
    first = _january(components)
    components.lifecycle.terminate(first.id, date(2025, 1, 10))

    renewed = components.lifecycle.renew(first.id)

    grants = repository.list_grants_for_subscription(renewed.id)
    assert {(grant.access_from, grant.access_until) for grant in grants} == {
        (date(2025, 2, 1), date(2025, 3, 3))
    }
    assert not components.access.has_access(1, CARDIO, date(2025, 1, 20))
    assert components.access.has_access(1, CARDIO, date(2025, 2, 1))


def test_renew_rejects_start_inside_previous_window(components, repository):
    previous = _january(components)
    grants = dict(repository.grants)

    with pytest.raises(InvalidWindowError):
        components.lifecycle.renew(previous.id, valid_from=date(2025, 1, 31))

    assert list(repository.subscriptions) == [previous.id]
    assert repository.grants == grants


def test_renew_provisions_services_added_to_type(components, repository):
    previous = _january(components)
    components.reconciler.reconcile(PREMIUM_TYPE_ID, [CARDIO, POOL, SAUNA])

    renewed = components.lifecycle.renew(previous.id)

    grants = {grant.service_id: grant for grant in repository.list_grants_for_subscription(renewed.id)}
    assert sorted(grants) == [CARDIO, POOL, SAUNA]
    assert (grants[SAUNA].access_from, grants[SAUNA].access_until) == (renewed.valid_from, renewed.valid_until)
    assert grants[CARDIO].access_from == previous.valid_from


def test_renew_with_other_tier_and_start(components):
    previous = _january(components)

    renewed = components.lifecycle.renew(
        previous.id,
        valid_from=date(2025, 3, 1),
        price_tier_id=QUARTERLY_TIER_ID,
        payment_date=date(2025, 2, 20),
    )

    assert renewed.valid_from == date(2025, 3, 1)
    assert renewed.valid_until == date(2025, 5, 30)
    assert renewed.price_tier_id == QUARTERLY_TIER_ID
    assert renewed.amount_paid == Decimal("120.00")
    assert renewed.payment_date == date(2025, 2, 20)


def test_renew_rejects_tier_of_other_type(components, repository):
    previous = _january(components)

    with pytest.raises(InvalidStateError):
        components.lifecycle.renew(previous.id, price_tier_id=BASIC_TIER_ID)

    assert list(repository.subscriptions) == [previous.id]


def test_renew_unknown_subscription(components):
    with pytest.raises(NotFoundError):
        components.lifecycle.renew(404)


def test_update_window_cascades_new_end_to_grants(components, repository, recorder):
    subscription = _january(components)

    updated = components.lifecycle.update_window(subscription.id, valid_until=date(2025, 2, 15))

    assert updated.valid_until == date(2025, 2, 15)
    assert {grant.access_until for grant in repository.list_grants_for_subscription(subscription.id)} == {
        date(2025, 2, 15)
    }
    assert recorder.types[-1] == LifecycleEventType.SUBSCRIPTION_WINDOW_UPDATED


def test_update_window_start_only_leaves_grants(components, repository):
    subscription = _january(components)
    grants = dict(repository.grants)

    updated = components.lifecycle.update_window(subscription.id, valid_from=date(2025, 1, 5))

    assert updated.valid_from == date(2025, 1, 5)
    assert repository.grants == grants


def test_update_window_rejects_inverted_result(components, repository):
    subscription = _january(components)

    with pytest.raises(InvalidWindowError):
        components.lifecycle.update_window(subscription.id, valid_from=date(2025, 2, 1))

    assert repository.subscriptions[subscription.id] == subscription


def test_terminate_caps_grants_and_cancels(components, repository, recorder):
    subscription = _january(components)
    unrelated = components.access.grant(1, SAUNA, date(2024, 12, 1), date(2025, 1, 10))

    terminated = components.lifecycle.terminate(subscription.id, date(2025, 1, 15))

    assert terminated.status == SubscriptionStatus.CANCELLED
    assert terminated.bucket == StatusBucket.CLOSED
    assert {grant.access_until for grant in repository.list_grants_for_subscription(subscription.id)} == {
        date(2025, 1, 15)
    }
    assert repository.grants[unrelated.id] == unrelated
    assert recorder.events[-1].metadata == {"at": "2025-01-15", "grants_truncated": "2"}


def test_terminate_closed_subscription_is_rejected(components):
    subscription = _january(components)
    components.lifecycle.terminate(subscription.id, date(2025, 1, 15))

    with pytest.raises(InvalidStateError):
        components.lifecycle.terminate(subscription.id, date(2025, 1, 20))


def test_terminate_before_grant_start_changes_nothing(components, repository):
    subscription = _january(components)
    grants = dict(repository.grants)

    with pytest.raises(InvalidWindowError):
        components.lifecycle.terminate(subscription.id, date(2024, 12, 20))

    assert repository.subscriptions[subscription.id].status == SubscriptionStatus.ACTIVE
    assert repository.grants == grants


def test_expire_marks_active_subscription_only(components, repository, recorder):
    subscription = _january(components)
    grants = dict(repository.grants)

    expired = components.lifecycle.expire(subscription.id)

    assert expired.status == SubscriptionStatus.EXPIRED
    assert repository.grants == grants
    assert components.lifecycle.expire(subscription.id) is None
    assert recorder.types.count(LifecycleEventType.SUBSCRIPTION_EXPIRED) == 1


def test_remove_blocked_by_grants(components, repository):
    subscription = _january(components)

    with pytest.raises(ConflictError) as exc_info:
        components.lifecycle.remove(subscription.id)

    assert sorted(exc_info.value.payload["grant_ids"]) == sorted(
        grant.id for grant in repository.list_grants_for_subscription(subscription.id)
    )
    assert subscription.id in repository.subscriptions


def test_remove_after_revoking_grants(components, repository, recorder):
    subscription = _january(components)
    for grant in repository.list_grants_for_subscription(subscription.id):
        components.access.revoke(grant.id)

    components.lifecycle.remove(subscription.id)

    assert subscription.id not in repository.subscriptions
    assert recorder.types[-1] == LifecycleEventType.SUBSCRIPTION_REMOVED
    with pytest.raises(NotFoundError):
        components.lifecycle.remove(subscription.id)


def test_find_expiring_uses_inclusive_threshold(components):
    january = _january(components)
    march = components.lifecycle.create(
        2, PREMIUM_TYPE_ID, MONTHLY_TIER_ID, date(2025, 3, 1), date(2025, 3, 31), Decimal("45.00")
    )
    cancelled = components.lifecycle.create(
        2, BASIC_TYPE_ID, BASIC_TIER_ID, date(2025, 1, 1), date(2025, 1, 20), Decimal("25.00")
    )
    components.lifecycle.terminate(cancelled.id, date(2025, 1, 10))

    assert [item.id for item in components.lifecycle.find_expiring(date(2025, 1, 15), 16)] == [january.id]
    assert [item.id for item in components.lifecycle.find_expiring(date(2025, 1, 15), 15)] == []
    assert [item.id for item in components.lifecycle.find_expiring(date(2025, 1, 15), 75)] == [
        january.id,
        march.id,
    ]
    with pytest.raises(ValueError):
        components.lifecycle.find_expiring(date(2025, 1, 15), -1)
