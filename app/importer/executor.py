"""Write validated rows to the record store in small batches."""

import asyncio
import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from app.exceptions import RosterlyException
from app.importer.capabilities import RecordStore
from app.importer.types import (
    DuplicateDecision,
    ImportedRow,
    ImportResult,
    ProgressCallback,
    RowRecord,
    ValidationResult,
)
from app.utils.aio import notify, with_timeout

logger = logging.getLogger(__name__)


class BatchImportExecutor:
    """Creates valid rows and updates or skips duplicates.

    Rows are written sequentially in batches of ``batch_size`` with a pause of
    ``batch_delay`` seconds between batches. A failing row is recorded and the
    run continues; nothing is retried.
    """

    def __init__(
        self,
        store: RecordStore,
        kind: str,
        *,
        batch_size: int = 10,
        batch_delay: float = 0.1,
        timeout: float | None = None,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.store = store
        self.kind = kind
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self.timeout = timeout

    def _payload(self, record: RowRecord, now: datetime) -> dict[str, Any]:
        data = dict(record.extracted)
        data["is_active"] = True
        data["imported_at"] = now
        return data

    async def _write(self, record: RowRecord, now: datetime) -> tuple[str, ImportedRow]:
        """Create a valid row or update the student it duplicates."""
        if record.duplicate is not None:
            entity_id = record.duplicate_id
            data = self._payload(record, now)
            if record.duplicate.get("created_at") is not None:
                data["created_at"] = record.duplicate["created_at"]
            await with_timeout(
                self.store.update(self.kind, entity_id, data),
                self.timeout,
                f"Updating {self.kind} row {record.row_number}",
            )
            return "updated", ImportedRow(record=record, entity_id=entity_id)

        entity_id = await with_timeout(
            self.store.create(self.kind, self._payload(record, now)),
            self.timeout,
            f"Creating {self.kind} row {record.row_number}",
        )
        return "success", ImportedRow(record=record, entity_id=str(entity_id))

    async def execute(
        self,
        validation: ValidationResult,
        decisions: Mapping[int, DuplicateDecision] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ImportResult:
        """Import the valid rows and the duplicates marked for update.

        Args:
            validation: Output of a row validator
            decisions: Per duplicate, keyed by ``source_row_index``. Duplicates
                without an update decision are skipped and never written.
            on_progress: Called as ``(processed, total)`` after every batch,
                counting only the rows that are written
        """
        decisions = decisions or {}
        buckets: dict[str, list[ImportedRow]] = {"success": [], "updated": [], "failed": [], "skipped": []}
        updates = []
        for record in validation.duplicates:
            if decisions.get(record.ref.source_row_index) == DuplicateDecision.UPDATE:
                updates.append(record)
            else:
                buckets["skipped"].append(ImportedRow(record=record, entity_id=record.duplicate_id))
        records = sorted((*validation.valid, *updates), key=lambda r: r.ref)
        total = len(records)
        started_at = datetime.now(timezone.utc)

        logger.info(
            f"Importing {total} {self.kind} rows in batches of {self.batch_size}, "
            f"skipping {len(buckets['skipped'])} duplicates"
        )
        await notify(on_progress, 0, total)

        for start in range(0, total, self.batch_size):
            batch = records[start:start + self.batch_size]
            now = datetime.now(timezone.utc)
            for record in batch:
                try:
                    bucket, row = await self._write(record, now)
                except (RosterlyException, ValueError, LookupError) as e:
                    message = getattr(e, "message", None) or str(e)
                    logger.warning(f"Row {record.row_number} failed: {message}")
                    bucket, row = "failed", ImportedRow(record=record, error=message)
                except Exception as e:
                    logger.exception(f"Row {record.row_number} failed unexpectedly")
                    bucket, row = "failed", ImportedRow(record=record, error=f"{type(e).__name__}: {e}")
                buckets[bucket].append(row)

            processed = min(start + self.batch_size, total)
            await notify(on_progress, processed, total)
            if processed < total and self.batch_delay > 0:
                await asyncio.sleep(self.batch_delay)

        result = ImportResult(
            success=tuple(buckets["success"]),
            updated=tuple(buckets["updated"]),
            failed=tuple(buckets["failed"]),
            skipped_duplicates=tuple(buckets["skipped"]),
            started_at=started_at,
            finished_at=datetime.now(timezone.utc),
        )
        logger.info(
            f"Imported {self.kind}: {len(result.success)} created, {len(result.updated)} updated, "
            f"{len(result.skipped_duplicates)} skipped, {len(result.failed)} failed"
        )
        return result
