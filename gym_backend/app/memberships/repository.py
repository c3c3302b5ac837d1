"""Persistence layer for subscriptions, access grants and type bindings."""
from __future__ import annotations

from contextlib import contextmanager
from datetime import date
from typing import ContextManager, Iterator, List, Optional, Protocol, Sequence

import psycopg2
import psycopg2.errors
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor

from ...app_context import get_conn
from .errors import ConflictError
from .models import (
    Client,
    GymService,
    NewAccessGrant,
    NewSubscription,
    PaymentMethod,
    PriceTier,
    ServiceAccessGrant,
    Subscription,
    SubscriptionStatus,
    SubscriptionType,
    TypeServiceAssociation,
)


class MembershipRepository(Protocol):
    """Storage operations required by the membership engine.

    ``transaction`` yields a repository bound to a single unit of work: all
    writes issued through it commit together or not at all.
    """

    def transaction(self) -> ContextManager["MembershipRepository"]:
        ...

    def get_client(self, client_id: int) -> Optional[Client]:
        ...

    def get_clients(self, client_ids: Sequence[int]) -> List[Client]:
        ...

    def get_service(self, service_id: int) -> Optional[GymService]:
        ...

    def get_services(self, service_ids: Sequence[int]) -> List[GymService]:
        ...

    def get_subscription_type(self, type_id: int) -> Optional[SubscriptionType]:
        ...

    def get_price_tier(self, tier_id: int) -> Optional[PriceTier]:
        ...

    def get_payment_method(self, payment_method_id: int) -> Optional[PaymentMethod]:
        ...

    def insert_subscription(self, subscription: NewSubscription) -> Subscription:
        ...

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        ...

    def update_subscription_window(
        self, subscription_id: int, *, valid_from: date, valid_until: date
    ) -> Subscription:
        ...

    def update_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        *,
        expected: Optional[Sequence[SubscriptionStatus]] = None,
    ) -> Optional[Subscription]:
        """Set the status, only when the current one is in ``expected`` if given."""

    def delete_subscription(self, subscription_id: int) -> None:
        ...

    def list_subscriptions_ending_before(
        self, day: date, statuses: Sequence[SubscriptionStatus]
    ) -> List[Subscription]:
        ...

    def list_subscriptions_ending_between(
        self, start: date, end: date, statuses: Sequence[SubscriptionStatus]
    ) -> List[Subscription]:
        ...

    def get_grant(self, grant_id: int) -> Optional[ServiceAccessGrant]:
        ...

    def find_grant(self, client_id: int, service_id: int) -> Optional[ServiceAccessGrant]:
        ...

    def insert_grant(self, grant: NewAccessGrant) -> ServiceAccessGrant:
        ...

    def update_grant_window(
        self, grant_id: int, *, access_from: date, access_until: Optional[date]
    ) -> ServiceAccessGrant:
        ...

    def delete_grant(self, grant_id: int) -> None:
        ...

    def list_grants_for_subscription(self, subscription_id: int) -> List[ServiceAccessGrant]:
        ...

    def set_grant_end_for_subscription(self, subscription_id: int, access_until: date) -> int:
        ...

    def reassign_grants(
        self,
        from_subscription_id: int,
        to_subscription_id: int,
        *,
        access_until: date,
        access_from: Optional[date] = None,
    ) -> int:
        """Move grants to another subscription and set their end (and start if given)."""

    def truncate_grants_for_subscription(self, subscription_id: int, at: date) -> int:
        """Cap grants ending after ``at`` (or never) at ``at``; return rows changed."""

    def list_grants_active_at(
        self,
        at: date,
        *,
        client_id: Optional[int] = None,
        service_id: Optional[int] = None,
    ) -> List[ServiceAccessGrant]:
        ...

    def list_type_associations(self, type_id: int) -> List[TypeServiceAssociation]:
        ...

    def list_type_services(self, type_id: int) -> List[GymService]:
        ...

    def has_type_service(self, type_id: int, service_id: int) -> bool:
        ...

    def add_type_service(self, type_id: int, service_id: int) -> TypeServiceAssociation:
        ...

    def remove_type_services(self, type_id: int, service_ids: Sequence[int]) -> int:
        ...


@contextmanager
def unit_of_work(
    repository: MembershipRepository,
    tx: Optional[MembershipRepository] = None,
) -> Iterator[MembershipRepository]:
    """Join the caller's transaction when given, otherwise open a new one."""

    if tx is not None:
        yield tx
        return
    with repository.transaction() as scoped:
        yield scoped


def _row_to_client(row: dict) -> Client:
    return Client(
        id=row["id"],
        first_name=row["first_name"],
        last_name=row["last_name"],
        email=row.get("email"),
        phone=row.get("phone"),
    )


def _row_to_service(row: dict) -> GymService:
    return GymService(
        id=row["id"],
        name=row["name"],
        description=row.get("description"),
        is_active=bool(row["is_active"]),
    )


def _row_to_subscription(row: dict) -> Subscription:
    return Subscription(
        id=row["id"],
        client_id=row["client_id"],
        subscription_type_id=row["subscription_type_id"],
        price_tier_id=row["price_tier_id"],
        valid_from=row["valid_from"],
        valid_until=row["valid_until"],
        amount_paid=row["amount_paid"],
        payment_date=row["payment_date"],
        status=SubscriptionStatus(row["status"]),
        payment_method_id=row.get("payment_method_id"),
        renewed_from_id=row.get("renewed_from_id"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_grant(row: dict) -> ServiceAccessGrant:
    return ServiceAccessGrant(
        id=row["id"],
        client_id=row["client_id"],
        service_id=row["service_id"],
        subscription_id=row.get("subscription_id"),
        access_from=row["access_from"],
        access_until=row.get("access_until"),
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_association(row: dict) -> TypeServiceAssociation:
    return TypeServiceAssociation(
        subscription_type_id=row["subscription_type_id"],
        service_id=row["service_id"],
        created_at=row["created_at"],
    )


_SUBSCRIPTION_COLUMNS = """
    id, client_id, subscription_type_id, price_tier_id, valid_from, valid_until,
    amount_paid, payment_date, status, payment_method_id, renewed_from_id,
    created_at, updated_at
"""

_GRANT_COLUMNS = """
    id, client_id, service_id, subscription_id, access_from, access_until,
    created_at, updated_at
"""


class PostgresMembershipRepository:
    """Concrete repository persisting membership records in PostgreSQL."""

    def __init__(self, *, conn: Optional[PgConnection] = None) -> None:
        self._conn = conn

    @contextmanager
    def transaction(self) -> Iterator["PostgresMembershipRepository"]:
        if self._conn is not None:
            yield self
            return

        connection = get_conn()
        try:
            yield PostgresMembershipRepository(conn=connection)
            connection.commit()
        except Exception:
            connection.rollback()
            raise
        finally:
            connection.close()

    @contextmanager
    def _cursor(self) -> Iterator[PgCursor]:
        with self.transaction() as scoped:
            cursor = scoped._conn.cursor(cursor_factory=psycopg2.extras.RealDictCursor)
            try:
                yield cursor
            except psycopg2.errors.UniqueViolation as exc:
                raise ConflictError(
                    "Record already exists",
                    detail={"constraint": getattr(exc.diag, "constraint_name", None)},
                ) from exc
            finally:
                cursor.close()

    def _fetch_one(self, query: str, params: object) -> Optional[dict]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return cursor.fetchone()

    def _fetch_all(self, query: str, params: object) -> List[dict]:
        with self._cursor() as cursor:
            cursor.execute(query, params)
            return list(cursor.fetchall())

    # Reference lookups

    def get_client(self, client_id: int) -> Optional[Client]:
        row = self._fetch_one(
            "SELECT id, first_name, last_name, email, phone FROM clients WHERE id = %s",
            (client_id,),
        )
        return _row_to_client(row) if row else None

    def get_clients(self, client_ids: Sequence[int]) -> List[Client]:
        if not client_ids:
            return []
        rows = self._fetch_all(
            "SELECT id, first_name, last_name, email, phone FROM clients WHERE id = ANY(%s)",
            (list(client_ids),),
        )
        return [_row_to_client(row) for row in rows]

    def get_service(self, service_id: int) -> Optional[GymService]:
        row = self._fetch_one(
            "SELECT id, name, description, is_active FROM services WHERE id = %s",
            (service_id,),
        )
        return _row_to_service(row) if row else None

    def get_services(self, service_ids: Sequence[int]) -> List[GymService]:
        if not service_ids:
            return []
        rows = self._fetch_all(
            "SELECT id, name, description, is_active FROM services WHERE id = ANY(%s)",
            (list(service_ids),),
        )
        return [_row_to_service(row) for row in rows]

    def get_subscription_type(self, type_id: int) -> Optional[SubscriptionType]:
        row = self._fetch_one(
            "SELECT id, name, description FROM subscription_types WHERE id = %s",
            (type_id,),
        )
        if row is None:
            return None
        return SubscriptionType(id=row["id"], name=row["name"], description=row.get("description"))

    def get_price_tier(self, tier_id: int) -> Optional[PriceTier]:
        row = self._fetch_one(
            """
            SELECT id, subscription_type_id, duration_days, price, audience
            FROM price_tiers
            WHERE id = %s
            """,
            (tier_id,),
        )
        if row is None:
            return None
        return PriceTier(
            id=row["id"],
            subscription_type_id=row["subscription_type_id"],
            duration_days=row["duration_days"],
            price=row["price"],
            audience=row.get("audience"),
        )

    def get_payment_method(self, payment_method_id: int) -> Optional[PaymentMethod]:
        row = self._fetch_one(
            "SELECT id, name FROM payment_methods WHERE id = %s",
            (payment_method_id,),
        )
        return PaymentMethod(id=row["id"], name=row["name"]) if row else None

    # Subscriptions

    def insert_subscription(self, subscription: NewSubscription) -> Subscription:
        row = self._fetch_one(
            f"""
            INSERT INTO subscriptions (
                client_id,
                subscription_type_id,
                price_tier_id,
                valid_from,
                valid_until,
                amount_paid,
                payment_date,
                status,
                payment_method_id,
                renewed_from_id
            )
            VALUES (%(client_id)s, %(subscription_type_id)s, %(price_tier_id)s,
                    %(valid_from)s, %(valid_until)s, %(amount_paid)s, %(payment_date)s,
                    %(status)s, %(payment_method_id)s, %(renewed_from_id)s)
            RETURNING {_SUBSCRIPTION_COLUMNS}
            """,
            {**subscription.model_dump(), "status": subscription.status.value},
        )
        return _row_to_subscription(row)

    def get_subscription(self, subscription_id: int) -> Optional[Subscription]:
        row = self._fetch_one(
            f"SELECT {_SUBSCRIPTION_COLUMNS} FROM subscriptions WHERE id = %s",
            (subscription_id,),
        )
        return _row_to_subscription(row) if row else None

    def update_subscription_window(
        self, subscription_id: int, *, valid_from: date, valid_until: date
    ) -> Subscription:
        row = self._fetch_one(
            f"""
            UPDATE subscriptions
            SET valid_from = %s, valid_until = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_SUBSCRIPTION_COLUMNS}
            """,
            (valid_from, valid_until, subscription_id),
        )
        if row is None:
            raise LookupError(f"Subscription {subscription_id} disappeared during update")
        return _row_to_subscription(row)

    def update_subscription_status(
        self,
        subscription_id: int,
        status: SubscriptionStatus,
        *,
        expected: Optional[Sequence[SubscriptionStatus]] = None,
    ) -> Optional[Subscription]:
        if expected is None:
            row = self._fetch_one(
                f"""
                UPDATE subscriptions
                SET status = %s, updated_at = NOW()
                WHERE id = %s
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                (status.value, subscription_id),
            )
        else:
            row = self._fetch_one(
                f"""
                UPDATE subscriptions
                SET status = %s, updated_at = NOW()
                WHERE id = %s AND status = ANY(%s)
                RETURNING {_SUBSCRIPTION_COLUMNS}
                """,
                (status.value, subscription_id, [item.value for item in expected]),
            )
        return _row_to_subscription(row) if row else None

    def delete_subscription(self, subscription_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM subscriptions WHERE id = %s", (subscription_id,))

    def list_subscriptions_ending_before(
        self, day: date, statuses: Sequence[SubscriptionStatus]
    ) -> List[Subscription]:
        rows = self._fetch_all(
            f"""
            SELECT {_SUBSCRIPTION_COLUMNS}
            FROM subscriptions
            WHERE valid_until < %s AND status = ANY(%s)
            ORDER BY valid_until ASC, id ASC
            """,
            (day, [status.value for status in statuses]),
        )
        return [_row_to_subscription(row) for row in rows]

    def list_subscriptions_ending_between(
        self, start: date, end: date, statuses: Sequence[SubscriptionStatus]
    ) -> List[Subscription]:
        rows = self._fetch_all(
            f"""
            SELECT {_SUBSCRIPTION_COLUMNS}
            FROM subscriptions
            WHERE valid_until >= %s AND valid_until <= %s AND status = ANY(%s)
            ORDER BY valid_until ASC, id ASC
            """,
            (start, end, [status.value for status in statuses]),
        )
        return [_row_to_subscription(row) for row in rows]

    # Access grants

    def get_grant(self, grant_id: int) -> Optional[ServiceAccessGrant]:
        row = self._fetch_one(
            f"SELECT {_GRANT_COLUMNS} FROM service_access_grants WHERE id = %s",
            (grant_id,),
        )
        return _row_to_grant(row) if row else None

    def find_grant(self, client_id: int, service_id: int) -> Optional[ServiceAccessGrant]:
        row = self._fetch_one(
            f"""
            SELECT {_GRANT_COLUMNS}
            FROM service_access_grants
            WHERE client_id = %s AND service_id = %s
            """,
            (client_id, service_id),
        )
        return _row_to_grant(row) if row else None

    def insert_grant(self, grant: NewAccessGrant) -> ServiceAccessGrant:
        row = self._fetch_one(
            f"""
            INSERT INTO service_access_grants (
                client_id, service_id, subscription_id, access_from, access_until
            )
            VALUES (%(client_id)s, %(service_id)s, %(subscription_id)s,
                    %(access_from)s, %(access_until)s)
            RETURNING {_GRANT_COLUMNS}
            """,
            grant.model_dump(),
        )
        return _row_to_grant(row)

    def update_grant_window(
        self, grant_id: int, *, access_from: date, access_until: Optional[date]
    ) -> ServiceAccessGrant:
        row = self._fetch_one(
            f"""
            UPDATE service_access_grants
            SET access_from = %s, access_until = %s, updated_at = NOW()
            WHERE id = %s
            RETURNING {_GRANT_COLUMNS}
            """,
            (access_from, access_until, grant_id),
        )
        if row is None:
            raise LookupError(f"Access grant {grant_id} disappeared during update")
        return _row_to_grant(row)

    def delete_grant(self, grant_id: int) -> None:
        with self._cursor() as cursor:
            cursor.execute("DELETE FROM service_access_grants WHERE id = %s", (grant_id,))

    def list_grants_for_subscription(self, subscription_id: int) -> List[ServiceAccessGrant]:
        rows = self._fetch_all(
            f"""
            SELECT {_GRANT_COLUMNS}
            FROM service_access_grants
            WHERE subscription_id = %s
            ORDER BY id ASC
            """,
            (subscription_id,),
        )
        return [_row_to_grant(row) for row in rows]

    def set_grant_end_for_subscription(self, subscription_id: int, access_until: date) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE service_access_grants
                SET access_until = %s, updated_at = NOW()
                WHERE subscription_id = %s
                """,
                (access_until, subscription_id),
            )
            return cursor.rowcount

    def reassign_grants(
        self,
        from_subscription_id: int,
        to_subscription_id: int,
        *,
        access_until: date,
        access_from: Optional[date] = None,
    ) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE service_access_grants
                SET subscription_id = %s,
                    access_from = COALESCE(%s, access_from),
                    access_until = %s,
                    updated_at = NOW()
                WHERE subscription_id = %s
                """,
                (to_subscription_id, access_from, access_until, from_subscription_id),
            )
            return cursor.rowcount

    def truncate_grants_for_subscription(self, subscription_id: int, at: date) -> int:
        with self._cursor() as cursor:
            cursor.execute(
                """
                UPDATE service_access_grants
                SET access_until = %s, updated_at = NOW()
                WHERE subscription_id = %s
                  AND (access_until IS NULL OR access_until > %s)
                """,
                (at, subscription_id, at),
            )
            return cursor.rowcount

    def list_grants_active_at(
        self,
        at: date,
        *,
        client_id: Optional[int] = None,
        service_id: Optional[int] = None,
    ) -> List[ServiceAccessGrant]:
        clauses = ["access_from <= %(at)s", "(access_until IS NULL OR access_until >= %(at)s)"]
        params: dict = {"at": at}
        if client_id is not None:
            clauses.append("client_id = %(client_id)s")
            params["client_id"] = client_id
        if service_id is not None:
            clauses.append("service_id = %(service_id)s")
            params["service_id"] = service_id
        rows = self._fetch_all(
            f"""
            SELECT {_GRANT_COLUMNS}
            FROM service_access_grants
            WHERE {' AND '.join(clauses)}
            ORDER BY access_from DESC, id ASC
            """,
            params,
        )
        return [_row_to_grant(row) for row in rows]

    # Subscription type bindings

    def list_type_associations(self, type_id: int) -> List[TypeServiceAssociation]:
        rows = self._fetch_all(
            """
            SELECT subscription_type_id, service_id, created_at
            FROM subscription_type_services
            WHERE subscription_type_id = %s
            ORDER BY service_id ASC
            """,
            (type_id,),
        )
        return [_row_to_association(row) for row in rows]

    def list_type_services(self, type_id: int) -> List[GymService]:
        rows = self._fetch_all(
            """
            SELECT s.id, s.name, s.description, s.is_active
            FROM subscription_type_services ts
            JOIN services s ON s.id = ts.service_id
            WHERE ts.subscription_type_id = %s
            ORDER BY s.name ASC, s.id ASC
            """,
            (type_id,),
        )
        return [_row_to_service(row) for row in rows]

    def has_type_service(self, type_id: int, service_id: int) -> bool:
        row = self._fetch_one(
            """
            SELECT 1 AS present
            FROM subscription_type_services
            WHERE subscription_type_id = %s AND service_id = %s
            """,
            (type_id, service_id),
        )
        return row is not None

    def add_type_service(self, type_id: int, service_id: int) -> TypeServiceAssociation:
        row = self._fetch_one(
            """
            INSERT INTO subscription_type_services (subscription_type_id, service_id)
            VALUES (%s, %s)
            RETURNING subscription_type_id, service_id, created_at
            """,
            (type_id, service_id),
        )
        return _row_to_association(row)

    def remove_type_services(self, type_id: int, service_ids: Sequence[int]) -> int:
        if not service_ids:
            return 0
        with self._cursor() as cursor:
            cursor.execute(
                """
                DELETE FROM subscription_type_services
                WHERE subscription_type_id = %s AND service_id = ANY(%s)
                """,
                (type_id, list(service_ids)),
            )
            return cursor.rowcount


__all__ = ["MembershipRepository", "PostgresMembershipRepository", "unit_of_work"]
