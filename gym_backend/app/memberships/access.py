"""Creation, cascading updates and queries of service access grants."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterator, List, Optional, Sequence

from .errors import ConflictError, InvalidStateError, NotFoundError
from .intervals import validate_partial_update, validate_window
from .models import (
    ActiveAccess,
    NewAccessGrant,
    ServiceAccessGrant,
    StatusBucket,
    Subscription,
)
from .repository import MembershipRepository, unit_of_work

logger = logging.getLogger(__name__)


@dataclass
class AccessGrantManager:
    """Maintains the access windows clients hold on individual services."""

    repository: MembershipRepository

    def grant(
        self,
        client_id: int,
        service_id: int,
        access_from: date,
        access_until: Optional[date] = None,
        subscription_id: Optional[int] = None,
        *,
        tx: Optional[MembershipRepository] = None,
    ) -> ServiceAccessGrant:
        """Issue a single grant after checking references and the window."""

        with unit_of_work(self.repository, tx) as store:
            client = store.get_client(client_id)
            if client is None:
                raise NotFoundError(f"Client {client_id} not found")

            service = store.get_service(service_id)
            if service is None:
                raise NotFoundError(f"Service {service_id} not found")
            if not service.is_active:
                raise InvalidStateError(f'Service "{service.name}" is not currently available')

            if subscription_id is not None:
                subscription = store.get_subscription(subscription_id)
                if subscription is None:
                    raise NotFoundError(f"Subscription {subscription_id} not found")
                if subscription.client_id != client_id:
                    raise InvalidStateError(
                        f"Subscription {subscription_id} does not belong to {client.display_name}"
                    )
                if subscription.bucket != StatusBucket.ACTIVE:
                    raise InvalidStateError(
                        f"Subscription {subscription_id} is not active (status: {subscription.status.value})"
                    )

            validate_window(access_from, access_until)

            if store.find_grant(client_id, service_id) is not None:
                raise ConflictError(
                    f"Client {client_id} already holds a grant for service {service_id}"
                )

            created = store.insert_grant(
                NewAccessGrant(
                    client_id=client_id,
                    service_id=service_id,
                    subscription_id=subscription_id,
                    access_from=access_from,
                    access_until=access_until,
                )
            )
        logger.info(
            "Access granted client=%s service=%s grant=%s", client_id, service_id, created.id
        )
        return created

    def bulk_grant(
        self,
        subscription: Subscription | int,
        service_ids: Sequence[int],
        access_from: date,
        access_until: date,
        *,
        tx: Optional[MembershipRepository] = None,
    ) -> List[ServiceAccessGrant]:
        """Provision one grant per service for the subscription's client.

        Pairs that already hold a grant are skipped, so running this twice
        never duplicates or overwrites an existing window. Returns the grants
        created by this call.
        """

        validate_window(access_from, access_until)
        unique_ids = list(dict.fromkeys(service_ids))

        with unit_of_work(self.repository, tx) as store:
            if isinstance(subscription, int):
                resolved = store.get_subscription(subscription)
                if resolved is None:
                    raise NotFoundError(f"Subscription {subscription} not found")
                subscription = resolved

            known = {service.id for service in store.get_services(unique_ids)}
            missing = [service_id for service_id in unique_ids if service_id not in known]
            if missing:
                raise NotFoundError(
                    "One or more services do not exist",
                    detail={"service_ids": missing},
                )

            created: List[ServiceAccessGrant] = []
            for service_id in unique_ids:
                if store.find_grant(subscription.client_id, service_id) is not None:
                    continue
                created.append(
                    store.insert_grant(
                        NewAccessGrant(
                            client_id=subscription.client_id,
                            service_id=service_id,
                            subscription_id=subscription.id,
                            access_from=access_from,
                            access_until=access_until,
                        )
                    )
                )

        logger.info(
            "Provisioned %s of %s grants for subscription %s",
            len(created),
            len(unique_ids),
            subscription.id,
        )
        return created

    def active_for(self, client_id: int, at: date) -> Iterator[ActiveAccess]:
        """Yield the services ``client_id`` may use on ``at``."""

        if self.repository.get_client(client_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
        return self._iter_active(at, client_id=client_id)

    def active_clients_for(self, service_id: int, at: date) -> Iterator[ActiveAccess]:
        """Yield the clients allowed to use ``service_id`` on ``at``."""

        if self.repository.get_service(service_id) is None:
            raise NotFoundError(f"Service {service_id} not found")
        return self._iter_active(at, service_id=service_id)

    def has_access(self, client_id: int, service_id: int, at: date) -> bool:
        if self.repository.get_client(client_id) is None:
            raise NotFoundError(f"Client {client_id} not found")
        if self.repository.get_service(service_id) is None:
            raise NotFoundError(f"Service {service_id} not found")
        grants = self.repository.list_grants_active_at(
            at, client_id=client_id, service_id=service_id
        )
        return bool(grants)

    def rewrite_end_date(
        self,
        subscription_id: int,
        new_until: date,
        *,
        tx: Optional[MembershipRepository] = None,
    ) -> int:
        """Set ``access_until`` on every grant of the subscription, unconditionally."""

        with unit_of_work(self.repository, tx) as store:
            for grant in store.list_grants_for_subscription(subscription_id):
                validate_window(grant.access_from, new_until)
            updated = store.set_grant_end_for_subscription(subscription_id, new_until)
        logger.debug(
            "Rewrote end date of %s grants for subscription %s to %s",
            updated,
            subscription_id,
            new_until,
        )
        return updated

    def transfer(
        self,
        from_subscription_id: int,
        to_subscription_id: int,
        access_until: date,
        *,
        access_from: Optional[date] = None,
        tx: Optional[MembershipRepository] = None,
    ) -> int:
        """Hand the grants of one subscription over to its successor.

        Every moved grant ends on ``access_until``; when ``access_from`` is
        given the grants restart on that day as well.
        """

        with unit_of_work(self.repository, tx) as store:
            for grant in store.list_grants_for_subscription(from_subscription_id):
                validate_window(access_from or grant.access_from, access_until)
            moved = store.reassign_grants(
                from_subscription_id,
                to_subscription_id,
                access_until=access_until,
                access_from=access_from,
            )
        logger.debug(
            "Moved %s grants from subscription %s to %s",
            moved,
            from_subscription_id,
            to_subscription_id,
        )
        return moved

    def terminate_for(
        self,
        subscription_id: int,
        at: date,
        *,
        tx: Optional[MembershipRepository] = None,
    ) -> int:
        """Cap every grant of the subscription at ``at``; never lengthens a window."""

        with unit_of_work(self.repository, tx) as store:
            for grant in store.list_grants_for_subscription(subscription_id):
                if grant.access_until is None or grant.access_until > at:
                    validate_window(grant.access_from, at)
            updated = store.truncate_grants_for_subscription(subscription_id, at)
        logger.debug(
            "Terminated %s grants for subscription %s at %s", updated, subscription_id, at
        )
        return updated

    def update_window(
        self,
        grant_id: int,
        *,
        access_from: Optional[date] = None,
        access_until: Optional[date] = None,
        tx: Optional[MembershipRepository] = None,
    ) -> ServiceAccessGrant:
        with unit_of_work(self.repository, tx) as store:
            grant = store.get_grant(grant_id)
            if grant is None:
                raise NotFoundError(f"Access grant {grant_id} not found")
            start, end = validate_partial_update(
                grant.access_from, grant.access_until, access_from, access_until
            )
            return store.update_grant_window(grant_id, access_from=start, access_until=end)

    def revoke(self, grant_id: int, *, tx: Optional[MembershipRepository] = None) -> None:
        with unit_of_work(self.repository, tx) as store:
            if store.get_grant(grant_id) is None:
                raise NotFoundError(f"Access grant {grant_id} not found")
            store.delete_grant(grant_id)
        logger.info("Access grant %s revoked", grant_id)

    def _iter_active(
        self,
        at: date,
        *,
        client_id: Optional[int] = None,
        service_id: Optional[int] = None,
    ) -> Iterator[ActiveAccess]:
        grants = self.repository.list_grants_active_at(
            at, client_id=client_id, service_id=service_id
        )
        if client_id is not None:
            services = {
                service.id: service
                for service in self.repository.get_services([grant.service_id for grant in grants])
            }
            for grant in sorted(grants, key=lambda item: services[item.service_id].name):
                yield ActiveAccess(grant=grant, service=services[grant.service_id])
        else:
            clients = {
                client.id: client
                for client in self.repository.get_clients([grant.client_id for grant in grants])
            }
            for grant in sorted(
                grants,
                key=lambda item: (clients[item.client_id].last_name, clients[item.client_id].first_name),
            ):
                yield ActiveAccess(grant=grant, client=clients[grant.client_id])


__all__ = ["AccessGrantManager"]
