"""Row classification against the current job and previously persisted leads."""
from __future__ import annotations

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Literal, Optional, Sequence, Union

from .merge import dedup_key, merge_contacts, new_contacts
from .models import ContactPerson, DedupKey, ImportBatch, LeadAggregate, NormalizedRecord, ProcessingIssue
from .store.base import LeadStore

LOGGER = logging.getLogger(__name__)

Bucket = Literal["successful", "merged", "duplicates_in_file", "duplicates_in_db", "skipped"]


@dataclass(slots=True)
class Classification:
    """Outcome for one valid row."""

    position: int
    bucket: Bucket
    record: NormalizedRecord
    key: Optional[DedupKey] = None
    issue: Optional[ProcessingIssue] = None
    message: Optional[str] = None


@dataclass
class PendingMerge:
    """Contacts waiting to be appended to an already persisted aggregate."""

    aggregate_id: str
    company_name: str
    existing_contacts: List[ContactPerson]
    contacts: List[ContactPerson] = field(default_factory=list)
    positions: List[int] = field(default_factory=list)

    def absorb(self, position: int, incoming: Sequence[ContactPerson]) -> List[ContactPerson]:
        added = new_contacts(self.existing_contacts + self.contacts, incoming)
        if added:
            self.contacts.extend(copy.deepcopy(added))
            self.positions.append(position)
        return added


@dataclass
class NewAggregate:
    """Aggregate first seen in this job, collecting contacts from later duplicates."""

    aggregate: LeadAggregate
    positions: List[int] = field(default_factory=list)

    def absorb(self, position: int, incoming: Sequence[ContactPerson]) -> List[ContactPerson]:
        added = merge_contacts(self.aggregate.contact_persons, copy.deepcopy(list(incoming)))
        if added:
            self.positions.append(position)
        return added


@dataclass
class WritePlan:
    """Everything the writer has to persist for one job."""

    new_aggregates: List[LeadAggregate] = field(default_factory=list)
    merges: List[PendingMerge] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.new_aggregates and not self.merges


class Deduplicator:
    """Classify valid rows in file order.

    The "seen in this job" map is owned by a single instance and is only
    touched from :meth:`classify`, which must be called from one thread at a
    time. Persisted aggregates are looked up once per batch for the keys the
    job has not seen yet.
    """

    def __init__(
        self,
        store: LeadStore,
        *,
        owner: Optional[str] = None,
        group_id: Optional[str] = None,
        import_batch: Optional[ImportBatch] = None,
        raise_on_error: bool = False,
    ) -> None:
        self._store = store
        self._owner = owner
        self._group_id = group_id
        self._import_batch = import_batch
        self._raise_on_error = raise_on_error
        self._seen: Dict[DedupKey, Union[NewAggregate, PendingMerge]] = {}

    @property
    def seen_keys(self) -> int:
        return len(self._seen)

    def classify(self, records: Sequence[NormalizedRecord]) -> List[Classification]:
        keys: Dict[int, DedupKey] = {}
        results: Dict[int, Classification] = {}
        for index, record in enumerate(records):
            try:
                keys[index] = dedup_key(record.company_name, record.website)
            except ValueError as exc:
                if self._raise_on_error:
                    raise
                LOGGER.warning("Row %s could not be normalised: %s", record.position, exc)
                issue = ProcessingIssue(
                    position=record.position,
                    message=f"Could not normalise website '{record.website}': {exc}",
                    source=record.source,
                )
                results[index] = Classification(record.position, "skipped", record, issue=issue, message=issue.message)

        unseen = {key for key in keys.values() if key not in self._seen}
        persisted = self._store.find_by_keys(unseen) if unseen else {}

        for index, record in enumerate(records):
            if index in results:
                continue
            results[index] = self._classify_one(record, keys[index], persisted)
        return [results[index] for index in range(len(records))]

    def _classify_one(
        self,
        record: NormalizedRecord,
        key: DedupKey,
        persisted: Dict[DedupKey, LeadAggregate],
    ) -> Classification:
        entry = self._seen.get(key)
        if entry is not None:
            entry.absorb(record.position, record.contacts)
            return Classification(
                record.position,
                "duplicates_in_file",
                record,
                key=key,
                message=f"Duplicate of an earlier row for {record.company_name}",
            )

        existing = persisted.get(key)
        if existing is not None and existing.id:
            merge = PendingMerge(
                aggregate_id=existing.id,
                company_name=existing.company_name,
                existing_contacts=list(existing.contact_persons),
            )
            added = merge.absorb(record.position, record.contacts)
            self._seen[key] = merge
            if added:
                return Classification(record.position, "merged", record, key=key)
            return Classification(
                record.position,
                "duplicates_in_db",
                record,
                key=key,
                message=f"{record.company_name} already exists with the same contacts",
            )

        self._seen[key] = NewAggregate(self._build_aggregate(record), positions=[record.position])
        return Classification(record.position, "successful", record, key=key)

    def _build_aggregate(self, record: NormalizedRecord) -> LeadAggregate:
        return LeadAggregate(
            id=uuid.uuid4().hex,
            company_name=record.company_name,
            website=record.website,
            country=record.country,
            address=record.address,
            notes=record.notes,
            status=record.status,
            contact_persons=copy.deepcopy(record.contacts),
            owner=self._owner,
            group_id=self._group_id,
            import_batch=self._import_batch,
        )

    def plan(self) -> WritePlan:
        plan = WritePlan()
        for entry in self._seen.values():
            if isinstance(entry, NewAggregate):
                plan.new_aggregates.append(entry.aggregate)
            elif entry.contacts:
                plan.merges.append(entry)
        return plan


__all__ = ["Bucket", "Classification", "Deduplicator", "NewAggregate", "PendingMerge", "WritePlan"]
