"""Import orchestrator that drives extraction, validation, deduplication and writing."""
from __future__ import annotations

import logging
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple, Union

from ..dedup import Classification, Deduplicator
from ..errors import ImportCancelled, LeadImportError, ProcessingError, SchemaValidationError
from ..ingestion import ExtractedFile, RawRow, Upload, extract_uploads
from ..ingestion.loaders import PathLike
from ..models import (
    ErrorDetail,
    ImportAccepted,
    ImportBatch,
    ImportFailed,
    ImportOptions,
    ImportOutcome,
    ImportResult,
    ImportStage,
    NormalizedRecord,
    RowError,
    SchemaIssue,
    SchemaRejected,
)
from ..progress import ProgressRegistry
from ..schema import DEFAULT_CONTRACT, ColumnMapping, TemplateContract, ensure_schema, unknown_columns
from ..store.base import LeadStore
from ..validation import RowValidator
from ..writer import ImportWriter

LOGGER = logging.getLogger(__name__)

UploadLike = Union[Upload, PathLike]

_DUPLICATE_BUCKETS = ("duplicates_in_file", "duplicates_in_db")


def new_upload_id() -> str:
    return uuid.uuid4().hex


@dataclass
class _SchemaCheck:
    mappings: List[ColumnMapping] = field(default_factory=list)
    issues: List[SchemaIssue] = field(default_factory=list)
    detected_columns: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class _JobState:
    """Accumulated counts and error reports for one running job."""

    upload_id: str
    result: ImportResult
    multiple_files: bool = False
    max_reported_errors: int = 100

    @property
    def details(self) -> List[ErrorDetail]:
        if self.result.error_details is None:
            self.result.error_details = []
        return self.result.error_details

    def report(self, position: int, source: Optional[str], message: str) -> None:
        self.result.total_errors += 1
        if len(self.result.errors) >= self.max_reported_errors:
            return
        prefix = f"{source}: " if self.multiple_files and source else ""
        self.result.errors.append(f"{prefix}Row {position}: {message}")


class ImportTask:
    """Handle for an import running in the background."""

    def __init__(self, upload_id: str, future: "Future[ImportOutcome]", cancel_event: threading.Event) -> None:
        self.upload_id = upload_id
        self._future = future
        self._cancel_event = cancel_event

    def result(self, timeout: Optional[float] = None) -> ImportOutcome:
        return self._future.result(timeout=timeout)

    def done(self) -> bool:
        return self._future.done()

    def cancel(self) -> None:
        """Ask the job to stop at its next batch boundary."""

        self._cancel_event.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()


class ImportOrchestrator:
    """Runs one import job per submission and publishes its progress."""

    def __init__(
        self,
        store: LeadStore,
        *,
        registry: Optional[ProgressRegistry] = None,
        contract: TemplateContract = DEFAULT_CONTRACT,
        batch_size: int = 500,
        concurrent: bool = False,
        max_workers: Optional[int] = None,
        raise_on_error: bool = False,
        max_reported_errors: int = 100,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self._store = store
        self._registry = registry or ProgressRegistry()
        self._contract = contract
        self._batch_size = batch_size
        self._concurrent = concurrent
        self._max_workers = max_workers
        self._raise_on_error = raise_on_error
        self._max_reported_errors = max_reported_errors
        self._writer = ImportWriter(store)
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @property
    def registry(self) -> ProgressRegistry:
        return self._registry

    @property
    def store(self) -> LeadStore:
        return self._store

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------
    def submit(self, files: Sequence[UploadLike], options: Optional[ImportOptions] = None) -> ImportTask:
        """Run :meth:`import_files` on a worker thread.

        The upload id is assigned before the job starts so callers can
        subscribe to its progress first.
        """

        upload_id = new_upload_id()
        cancel_event = threading.Event()
        future = self._job_executor().submit(
            self.import_files, list(files), options, upload_id=upload_id, cancel_event=cancel_event
        )
        return ImportTask(upload_id, future, cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=wait)

    def import_files(
        self,
        files: Sequence[UploadLike],
        options: Optional[ImportOptions] = None,
        *,
        upload_id: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ImportOutcome:
        """Import every file of one submission as a single job.

        :class:`UnsupportedFormat` and :class:`CorruptFile` propagate to the
        caller; no job exists at that point, and subscriptions already waiting
        on ``upload_id`` are ended.
        """

        options = options or ImportOptions()
        upload_id = upload_id or new_upload_id()
        if not files:
            self._registry.discard(upload_id)
            raise ValueError("At least one file is required")

        try:
            extracted = extract_uploads(files)
        except (LeadImportError, OSError):
            self._registry.discard(upload_id)
            raise
        check = self._check_schema(extracted)
        if check.issues:
            self._registry.discard(upload_id)
            LOGGER.info("Rejected upload %s: %s schema issues", upload_id, len(check.issues))
            return SchemaRejected(
                message="File does not match the import template",
                issues=check.issues,
                detected_columns=check.detected_columns,
                expected_columns=self._contract.expected_columns(),
                warnings=check.warnings,
            )

        total = sum(extracted_file.total for extracted_file in extracted)
        self._registry.create(upload_id, total)
        state = _JobState(
            upload_id=upload_id,
            result=ImportResult(total=total, error_details=[]),
            multiple_files=len(extracted) > 1,
            max_reported_errors=self._max_reported_errors,
        )
        LOGGER.info("Started import %s with %s rows from %s file(s)", upload_id, total, len(extracted))

        try:
            self._run(extracted, check.mappings, options, state, cancel_event)
        except ProcessingError as exc:
            reason = str(exc)
            snapshot = self._registry.fail(upload_id, reason)
            LOGGER.warning("Import %s failed: %s", upload_id, reason)
            message = "Import cancelled" if isinstance(exc, ImportCancelled) else f"Import failed: {reason}"
            return ImportFailed(message=message, results=state.result, upload_id=upload_id, processed=snapshot.processed)
        except Exception as exc:
            self._registry.fail(upload_id, f"Unexpected error: {exc}")
            LOGGER.exception("Import %s aborted by an unexpected error", upload_id)
            raise

        result = state.result
        self._registry.complete(upload_id, result)
        LOGGER.info(
            "Finished import %s: %s inserted, %s merged, %s duplicates, %s skipped",
            upload_id,
            result.successful,
            result.merged,
            result.duplicates,
            result.skipped_rows,
        )
        return ImportAccepted(
            message=(
                f"Import completed: {result.successful} inserted, {result.merged} merged, "
                f"{result.duplicates} duplicates, {result.skipped_rows} skipped"
            ),
            results=result,
            upload_id=upload_id,
            warnings=check.warnings,
        )

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def _check_schema(self, extracted: Sequence[ExtractedFile]) -> _SchemaCheck:
        check = _SchemaCheck()
        for extracted_file in extracted:
            for column in extracted_file.columns:
                if column and column not in check.detected_columns:
                    check.detected_columns.append(column)
            try:
                check.mappings.append(ensure_schema(extracted_file.columns, self._contract))
            except SchemaValidationError as exc:
                for issue in exc.issues:
                    if len(extracted) > 1:
                        issue = replace(issue, message=f"{extracted_file.name}: {issue.message}")
                    check.issues.append(issue)
                continue
            for column in unknown_columns(extracted_file.columns, self._contract):
                check.warnings.append(
                    f"Column '{column}' in {extracted_file.name} is not part of the template and was ignored"
                )
        return check

    def _run(
        self,
        extracted: Sequence[ExtractedFile],
        mappings: Sequence[ColumnMapping],
        options: ImportOptions,
        state: _JobState,
        cancel_event: Optional[threading.Event],
    ) -> None:
        upload_id = state.upload_id
        records = self._validate(extracted, mappings, options, state, cancel_event)
        state.result.valid_rows = len(records)

        self._registry.advance_stage(upload_id, ImportStage.DEDUPING)
        deduplicator = Deduplicator(
            self._store,
            owner=options.owner,
            group_id=options.group_id,
            import_batch=ImportBatch(
                batch_id=upload_id,
                imported_at=datetime.now(timezone.utc),
                imported_by=options.owner,
                file_name=", ".join(extracted_file.name for extracted_file in extracted),
                total_count=state.result.total,
            ),
            raise_on_error=self._raise_on_error,
        )
        for batch in _chunks(records, self._batch_size):
            self._check_cancelled(cancel_event)
            classifications = deduplicator.classify([record for _, record in batch])
            deltas = self._tally(classifications, [raw for raw, _ in batch], state)
            self._registry.record_progress(upload_id, len(batch), deltas)

        self._check_cancelled(cancel_event)
        self._registry.advance_stage(upload_id, ImportStage.INSERTING)
        try:
            report = self._writer.write(deduplicator.plan())
        except ProcessingError:
            state.result.successful = state.result.merged = 0
            raise
        LOGGER.debug("Import %s wrote %s aggregates", upload_id, len(report.inserted_ids))

    def _validate(
        self,
        extracted: Sequence[ExtractedFile],
        mappings: Sequence[ColumnMapping],
        options: ImportOptions,
        state: _JobState,
        cancel_event: Optional[threading.Event],
    ) -> List[Tuple[RawRow, NormalizedRecord]]:
        chunks: List[Tuple[RowValidator, List[RawRow]]] = []
        for extracted_file, mapping in zip(extracted, mappings):
            validator = RowValidator(
                mapping,
                require_email=options.require_email,
                require_phone=options.require_phone,
            )
            chunks.extend((validator, rows) for rows in _chunks(extracted_file.rows, self._batch_size))

        records: List[Tuple[RawRow, NormalizedRecord]] = []
        for validator, rows, validated in self._validated_chunks(chunks, cancel_event):
            invalid = 0
            for raw, outcome in zip(rows, validated):
                if isinstance(outcome, RowError):
                    invalid += 1
                    self._row_error(raw, outcome, validator.mapping, state)
                else:
                    records.append((raw, outcome))
            if invalid:
                self._registry.record_progress(state.upload_id, invalid, {"skipped": invalid, "errors": invalid})
        return records

    def _validated_chunks(
        self,
        chunks: Sequence[Tuple[RowValidator, List[RawRow]]],
        cancel_event: Optional[threading.Event],
    ) -> Iterable[Tuple[RowValidator, List[RawRow], List[object]]]:
        if not self._concurrent or len(chunks) <= 1:
            for validator, rows in chunks:
                self._check_cancelled(cancel_event)
                yield validator, rows, [validator.validate(row) for row in rows]
            return

        with ThreadPoolExecutor(max_workers=self._max_workers) as executor:
            futures = [executor.submit(_validate_rows, validator, rows) for validator, rows in chunks]
            try:
                for (validator, rows), future in zip(chunks, futures):
                    self._check_cancelled(cancel_event)
                    yield validator, rows, future.result()
            finally:
                for future in futures:
                    future.cancel()

    def _tally(
        self,
        classifications: Sequence[Classification],
        raws: Sequence[RawRow],
        state: _JobState,
    ) -> Dict[str, int]:
        result = state.result
        deltas: Dict[str, int] = {}
        for classification, raw in zip(classifications, raws):
            bucket = classification.bucket
            if bucket == "successful":
                result.successful += 1
                continue
            if bucket == "merged":
                result.merged += 1
                deltas["merged"] = deltas.get("merged", 0) + 1
                continue
            if bucket in _DUPLICATE_BUCKETS:
                setattr(result, bucket, getattr(result, bucket) + 1)
                deltas[bucket] = deltas.get(bucket, 0) + 1
                state.details.append(
                    _detail(raw, classification.record, "duplicate", classification.message or "Duplicate row")
                )
                continue
            result.skipped_rows += 1
            deltas["skipped"] = deltas.get("skipped", 0) + 1
            deltas["errors"] = deltas.get("errors", 0) + 1
            message = classification.message or "Row could not be processed"
            state.report(classification.position, raw.source, message)
            state.details.append(_detail(raw, classification.record, "processing", message))
        return deltas

    def _row_error(self, raw: RawRow, error: RowError, mapping: ColumnMapping, state: _JobState) -> None:
        state.result.skipped_rows += 1
        state.report(error.position, error.source, error.message)
        state.details.append(
            ErrorDetail(
                row_number=error.position,
                error_type="validation",
                error_message=error.message,
                company_name=_cell(raw, mapping, "companyName"),
                website=_cell(raw, mapping, "website"),
                contact_email=_cell(raw, mapping, "contactEmail"),
                country=_cell(raw, mapping, "country"),
                source=raw.source,
            )
        )

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise ImportCancelled()

    def _job_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=self._max_workers, thread_name_prefix="lead-import")
            return self._executor


def _validate_rows(validator: RowValidator, rows: Sequence[RawRow]) -> List[object]:
    return [validator.validate(row) for row in rows]


def _chunks(items: Sequence, size: int) -> Iterable[list]:
    for start in range(0, len(items), size):
        yield list(items[start : start + size])


def _cell(raw: RawRow, mapping: ColumnMapping, name: str) -> Optional[str]:
    return raw.get(mapping.column_for(name)).strip() or None


def _detail(raw: RawRow, record: NormalizedRecord, error_type: str, message: str) -> ErrorDetail:
    return ErrorDetail(
        row_number=record.position,
        error_type=error_type,  # type: ignore[arg-type]
        error_message=message,
        company_name=record.company_name,
        website=record.website or None,
        contact_email=record.primary_email,
        country=record.country,
        source=raw.source,
    )


__all__ = ["ImportOrchestrator", "ImportTask", "new_upload_id"]
