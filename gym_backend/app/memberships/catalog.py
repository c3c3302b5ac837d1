"""Reconciliation of the services bound to each subscription type."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .errors import NotFoundError
from .models import GymService, ReconciliationResult
from .repository import MembershipRepository, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class ServiceSetReconciler:
    """Keeps a subscription type's service set aligned with a desired set."""

    repository: MembershipRepository

    def services_for(
        self, type_id: int, *, tx: Optional[MembershipRepository] = None
    ) -> List[GymService]:
        with unit_of_work(self.repository, tx) as store:
            if store.get_subscription_type(type_id) is None:
                raise NotFoundError(f"Subscription type {type_id} not found")
            return store.list_type_services(type_id)

    def reconcile(
        self,
        type_id: int,
        desired_service_ids: Iterable[int],
        *,
        tx: Optional[MembershipRepository] = None,
    ) -> ReconciliationResult:
        """Apply the minimal add/remove diff so the type grants exactly ``desired``.

        Unchanged bindings are left in place. Calling this again with the same
        set is a no-op.
        """

        desired = set(desired_service_ids)
        with unit_of_work(self.repository, tx) as store:
            if store.get_subscription_type(type_id) is None:
                raise NotFoundError(f"Subscription type {type_id} not found")

            known = {service.id for service in store.get_services(sorted(desired))}
            missing = sorted(desired - known)
            if missing:
                raise NotFoundError(
                    "One or more services do not exist",
                    detail={"service_ids": missing},
                )

            current = {association.service_id for association in store.list_type_associations(type_id)}
            to_remove = sorted(current - desired)
            to_add = sorted(desired - current)

            if to_remove:
                store.remove_type_services(type_id, to_remove)

            added: List[int] = []
            for service_id in to_add:
                if store.has_type_service(type_id, service_id):
                    continue
                store.add_type_service(type_id, service_id)
                added.append(service_id)

            associations = store.list_type_associations(type_id)

        if to_remove or added:
            logger.info(
                "Reconciled services for subscription type %s added=%s removed=%s",
                type_id,
                added,
                to_remove,
            )
        return ReconciliationResult(
            subscription_type_id=type_id,
            added=tuple(added),
            removed=tuple(to_remove),
            associations=tuple(associations),
        )


__all__ = ["ServiceSetReconciler"]
