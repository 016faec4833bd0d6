"""Contracts for the collaborators the facade consults synchronously.

Tenant scoping and offer tracking live outside this package. They are
injected into the TransactionFacade as plain objects matching these
protocols.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from transaction_engine.infrastructure.database.orm_models import Transaction


@runtime_checkable
class TenantScope(Protocol):
    """Decides whether an actor may see and act on a transaction."""

    def can_access(self, transaction: Transaction, actor_id: int) -> bool: ...


@runtime_checkable
class AcceptedOfferLookup(Protocol):
    """Answers whether a transaction has an accepted offer on record."""

    async def has_accepted_offer(self, transaction_id: int) -> bool: ...


class OwnerTenantScope:
    """Default scope: only the owning user can access a transaction."""

    def can_access(self, transaction: Transaction, actor_id: int) -> bool:
        return transaction.owner_user_id == actor_id
