"""
Authorization collaborator.

The engine asks yes/no questions before each state transition and never
inspects roles itself. Swap RoleBasedAuthorizer for another implementation
to change who may do what.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    ADMIN = "admin"
    ORGANIZER = "organizer"
    CUSTOMER = "customer"


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class BookingAuthorizer(ABC):
    """Pure predicates consulted by the booking engine."""

    @abstractmethod
    def can_manage_event(self, actor: Actor, organizer_id: str | None = None) -> bool:
        """Create events, or add tickets to the event owned by organizer_id."""

    @abstractmethod
    def can_create(self, actor: Actor) -> bool:
        ...

    @abstractmethod
    def can_view(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        ...

    @abstractmethod
    def can_confirm(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        ...

    @abstractmethod
    def can_cancel(self, actor: Actor, owner_id: str) -> bool:
        ...

    @abstractmethod
    def can_amend(self, actor: Actor, owner_id: str) -> bool:
        ...

    @abstractmethod
    def can_pay(self, actor: Actor, owner_id: str) -> bool:
        ...

    @abstractmethod
    def can_refund(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        ...

    @abstractmethod
    def can_delete(self, actor: Actor) -> bool:
        ...

    @abstractmethod
    def can_operate_outbox(self, actor: Actor) -> bool:
        """Inspect, dispatch or settle queued notifications."""


class RoleBasedAuthorizer(BookingAuthorizer):
    """
    Admins manage everything. Organizers manage bookings on their own
    events. Customers create bookings and act on the ones they own.
    """

    def can_manage_event(self, actor: Actor, organizer_id: str | None = None) -> bool:
        if actor.is_admin:
            return True
        if actor.role != Role.ORGANIZER:
            return False
        return organizer_id is None or organizer_id == actor.user_id

    def can_create(self, actor: Actor) -> bool:
        return actor.role == Role.CUSTOMER

    def can_view(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        if actor.is_admin:
            return True
        if actor.role == Role.ORGANIZER:
            return organizer_id == actor.user_id
        return owner_id == actor.user_id

    def can_confirm(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        if actor.is_admin:
            return True
        return actor.role == Role.ORGANIZER and organizer_id == actor.user_id

    def can_cancel(self, actor: Actor, owner_id: str) -> bool:
        return actor.is_admin or self._owns(actor, owner_id)

    def can_amend(self, actor: Actor, owner_id: str) -> bool:
        return actor.is_admin or self._owns(actor, owner_id)

    def can_pay(self, actor: Actor, owner_id: str) -> bool:
        return actor.is_admin or self._owns(actor, owner_id)

    def can_refund(self, actor: Actor, owner_id: str, organizer_id: str) -> bool:
        return self.can_confirm(actor, owner_id, organizer_id)

    def can_delete(self, actor: Actor) -> bool:
        return actor.is_admin

    def can_operate_outbox(self, actor: Actor) -> bool:
        return actor.is_admin

    @staticmethod
    def _owns(actor: Actor, owner_id: str) -> bool:
        return actor.role == Role.CUSTOMER and actor.user_id == owner_id
