"""Batch persistence of new aggregates and contact merges."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List

from .dedup import PendingMerge, WritePlan
from .errors import ProcessingError
from .models import LeadAggregate
from .store.base import LeadStore

LOGGER = logging.getLogger(__name__)


@dataclass
class WriteCommand:
    """A forward write paired with the operation that exactly reverses it."""

    description: str
    forward: Callable[[], None]
    inverse: Callable[[], None]
    applied: bool = False

    def apply(self) -> None:
        self.forward()
        self.applied = True

    def undo(self) -> None:
        if self.applied:
            self.inverse()
            self.applied = False


@dataclass
class WriteReport:
    inserted_ids: List[str] = field(default_factory=list)
    merged_aggregates: int = 0
    contacts_added: int = 0


class ImportWriter:
    """The only component allowed to mutate persisted lead state.

    All commands of a plan run inside one :meth:`LeadStore.batch`. When a
    command fails, a transactional store rolls the batch back itself; for
    other stores the applied commands are undone in reverse order. Either way
    a job-fatal :class:`ProcessingError` is raised.
    """

    def __init__(self, store: LeadStore) -> None:
        self._store = store

    def build_commands(self, plan: WritePlan, report: WriteReport) -> List[WriteCommand]:
        commands = [self._insert_command(aggregate, report) for aggregate in plan.new_aggregates]
        commands.extend(self._merge_command(merge, report) for merge in plan.merges)
        return commands

    def write(self, plan: WritePlan) -> WriteReport:
        report = WriteReport()
        if plan.is_empty:
            return report

        commands = self.build_commands(plan, report)
        applied: List[WriteCommand] = []
        try:
            with self._store.batch():
                for command in commands:
                    command.apply()
                    applied.append(command)
        except Exception as exc:
            LOGGER.error("Batch write failed after %s of %s operations: %s", len(applied), len(commands), exc)
            undo_failures = [] if self._store.transactional else self._rollback(applied)
            message = f"Failed to persist import batch after {len(applied)} of {len(commands)} operations: {exc}"
            if undo_failures:
                message += f" ({len(undo_failures)} operations could not be rolled back)"
            raise ProcessingError(message, job_fatal=True) from exc

        LOGGER.info(
            "Persisted %s new aggregates and %s contacts into %s existing aggregates",
            len(report.inserted_ids),
            report.contacts_added,
            report.merged_aggregates,
        )
        return report

    def _rollback(self, applied: List[WriteCommand]) -> List[WriteCommand]:
        failures: List[WriteCommand] = []
        for command in reversed(applied):
            try:
                command.undo()
            except Exception:
                LOGGER.exception("Could not undo %s", command.description)
                failures.append(command)
        return failures

    def _insert_command(self, aggregate: LeadAggregate, report: WriteReport) -> WriteCommand:
        def forward() -> None:
            aggregate.id = self._store.insert_aggregate(aggregate)
            report.inserted_ids.append(aggregate.id)

        def inverse() -> None:
            self._store.delete_aggregate(aggregate.id)
            report.inserted_ids.remove(aggregate.id)

        return WriteCommand(f"insert {aggregate.company_name}", forward, inverse)

    def _merge_command(self, merge: PendingMerge, report: WriteReport) -> WriteCommand:
        def forward() -> None:
            self._store.append_contacts(merge.aggregate_id, merge.contacts)
            report.merged_aggregates += 1
            report.contacts_added += len(merge.contacts)

        def inverse() -> None:
            self._store.remove_contacts(merge.aggregate_id, merge.contacts)
            report.merged_aggregates -= 1
            report.contacts_added -= len(merge.contacts)

        return WriteCommand(f"append {len(merge.contacts)} contacts to {merge.company_name}", forward, inverse)


__all__ = ["ImportWriter", "WriteCommand", "WriteReport"]
