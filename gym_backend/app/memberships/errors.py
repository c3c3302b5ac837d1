"""Error taxonomy surfaced by the membership engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class MembershipError(Exception):
    """Represents a domain failure that maps onto an HTTP status."""

    message: str
    detail: Optional[Mapping[str, Any]] = None
    code: str = "membership_error"
    status_code: int = status.HTTP_400_BAD_REQUEST

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class NotFoundError(MembershipError):
    """A referenced client, service, type, tier or record does not exist."""

    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class InvalidWindowError(MembershipError):
    """A validity window whose end is not strictly after its start."""

    code: str = "invalid_window"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class InvalidStateError(MembershipError):
    """The target is in a state that forbids the operation."""

    code: str = "invalid_state"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class ConflictError(MembershipError):
    """Duplicate entity or a deletion blocked by dependents."""

    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


__all__ = [
    "ConflictError",
    "InvalidStateError",
    "InvalidWindowError",
    "MembershipError",
    "NotFoundError",
]
