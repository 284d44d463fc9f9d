"""Write contract the import pipeline requires from a lead store."""
from __future__ import annotations

from typing import ContextManager, Dict, Iterable, List, Optional, Protocol, Sequence

from ..models import ContactPerson, DedupKey, LeadAggregate


class LeadStore(Protocol):
    """Persistence boundary for lead aggregates.

    ``transactional`` stores roll back everything done inside :meth:`batch`
    when the block raises; non-transactional stores rely on the caller to undo
    applied writes.
    """

    transactional: bool

    def batch(self) -> ContextManager[None]:  # pragma: no cover - runtime protocol
        """Group writes into one logical unit."""

    def find_by_keys(self, keys: Iterable[DedupKey]) -> Dict[DedupKey, LeadAggregate]:  # pragma: no cover
        """Return the oldest persisted aggregate for each known dedup key."""

    def get(self, aggregate_id: str) -> Optional[LeadAggregate]:  # pragma: no cover
        """Return a copy of a stored aggregate."""

    def insert_aggregate(self, aggregate: LeadAggregate) -> str:  # pragma: no cover
        """Persist a new aggregate and return its identifier."""

    def delete_aggregate(self, aggregate_id: str) -> None:  # pragma: no cover
        """Remove an aggregate (inverse of :meth:`insert_aggregate`)."""

    def append_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:  # pragma: no cover
        """Append contact persons to an existing aggregate."""

    def remove_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:  # pragma: no cover
        """Remove previously appended contacts (inverse of :meth:`append_contacts`)."""

    def search_by_company(
        self, name: Optional[str] = None, website: Optional[str] = None
    ) -> List[LeadAggregate]:  # pragma: no cover
        """Return aggregates whose normalised company and/or website match."""


__all__ = ["LeadStore"]
