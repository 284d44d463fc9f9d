"""Thread-safe in-process lead store."""
from __future__ import annotations

import copy
import logging
import threading
import uuid
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List, Optional, Sequence

from ..errors import StoreError
from ..merge import contact_keys, dedup_key, normalise_company, normalise_website
from ..models import ContactPerson, DedupKey, LeadAggregate

LOGGER = logging.getLogger(__name__)


class InMemoryLeadStore:
    """Keeps aggregates in a dict; copies in and out so callers never share state."""

    transactional = False

    def __init__(self, aggregates: Optional[Iterable[LeadAggregate]] = None) -> None:
        self._lock = threading.RLock()
        self._aggregates: Dict[str, LeadAggregate] = {}
        self._order: List[str] = []
        for aggregate in aggregates or []:
            self.insert_aggregate(aggregate)

    def __len__(self) -> int:
        with self._lock:
            return len(self._aggregates)

    @contextmanager
    def batch(self) -> Iterator[None]:
        with self._lock:
            yield

    def all(self) -> List[LeadAggregate]:
        with self._lock:
            return [copy.deepcopy(self._aggregates[aggregate_id]) for aggregate_id in self._order]

    def get(self, aggregate_id: str) -> Optional[LeadAggregate]:
        with self._lock:
            aggregate = self._aggregates.get(aggregate_id)
            return copy.deepcopy(aggregate) if aggregate is not None else None

    def find_by_keys(self, keys: Iterable[DedupKey]) -> Dict[DedupKey, LeadAggregate]:
        wanted = set(keys)
        found: Dict[DedupKey, LeadAggregate] = {}
        with self._lock:
            for aggregate_id in self._order:
                aggregate = self._aggregates[aggregate_id]
                key = dedup_key(aggregate.company_name, aggregate.website)
                if key in wanted and key not in found:
                    found[key] = copy.deepcopy(aggregate)
        return found

    def insert_aggregate(self, aggregate: LeadAggregate) -> str:
        stored = copy.deepcopy(aggregate)
        stored.id = stored.id or uuid.uuid4().hex
        with self._lock:
            if stored.id in self._aggregates:
                raise StoreError(f"Aggregate {stored.id} already exists")
            self._aggregates[stored.id] = stored
            self._order.append(stored.id)
        LOGGER.debug("Inserted aggregate %s (%s)", stored.id, stored.company_name)
        return stored.id

    def delete_aggregate(self, aggregate_id: str) -> None:
        with self._lock:
            self._require(aggregate_id)
            del self._aggregates[aggregate_id]
            self._order.remove(aggregate_id)

    def append_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:
        with self._lock:
            aggregate = self._require(aggregate_id)
            aggregate.contact_persons.extend(copy.deepcopy(list(contacts)))

    def remove_contacts(self, aggregate_id: str, contacts: Sequence[ContactPerson]) -> None:
        targets = [contact_keys(contact) for contact in contacts]
        with self._lock:
            aggregate = self._require(aggregate_id)
            remaining = list(aggregate.contact_persons)
            for keys in targets:
                for index in range(len(remaining) - 1, -1, -1):
                    if contact_keys(remaining[index]) == keys:
                        del remaining[index]
                        break
            aggregate.contact_persons = remaining

    def search_by_company(self, name: Optional[str] = None, website: Optional[str] = None) -> List[LeadAggregate]:
        company_token = normalise_company(name) if name else None
        website_token = normalise_website(website) if website else None
        matches: List[LeadAggregate] = []
        with self._lock:
            for aggregate_id in self._order:
                aggregate = self._aggregates[aggregate_id]
                if company_token is not None and normalise_company(aggregate.company_name) != company_token:
                    continue
                if website_token is not None and normalise_website(aggregate.website) != website_token:
                    continue
                matches.append(copy.deepcopy(aggregate))
        return matches

    def _require(self, aggregate_id: str) -> LeadAggregate:
        aggregate = self._aggregates.get(aggregate_id)
        if aggregate is None:
            raise StoreError(f"Aggregate {aggregate_id} does not exist")
        return aggregate


__all__ = ["InMemoryLeadStore"]
