from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Protocol

from .jobs import FileResult, FileStatus, JobTracker

logger = logging.getLogger(__name__)


@dataclass
class ImportFile:
    file_id: str
    name: str
    mime_type: str | None = None
    md5_checksum: str | None = None


class MediaImportTarget(Protocol):
    """Storage/conversion side of a bulk import."""

    def find_duplicate(self, file: ImportFile) -> str | None:
        """Id of an existing asset with the same content, if any."""

    def import_file(self, file: ImportFile) -> str:
        """Fetch, convert and store one file; returns the new asset id."""


class BulkImporter:
    def __init__(self, tracker: JobTracker, target: MediaImportTarget) -> None:
        self.tracker = tracker
        self.target = target

    def start(self, files: list[ImportFile]) -> str:
        """Create a job and process it in a background thread. Returns the job id immediately."""
        job_id = self.tracker.create_job(len(files))
        thread = threading.Thread(
            target=self._run_guarded, args=(job_id, list(files)), name=f"bulk-import-{job_id[:8]}", daemon=True
        )
        thread.start()
        return job_id

    def _run_guarded(self, job_id: str, files: list[ImportFile]) -> None:
        try:
            self.run(job_id, files)
        except Exception:
            logger.exception("Import job %s aborted", job_id)
            try:
                self.tracker.fail_job(job_id)
            except Exception:
                logger.warning("Could not mark import job %s as failed", job_id, exc_info=True)

    def _import_one(self, file: ImportFile) -> FileResult:
        try:
            existing = self.target.find_duplicate(file) if file.md5_checksum else None
            if existing:
                logger.info("Skipping %s: duplicate of asset %s", file.name, existing)
                return FileResult(file.name, FileStatus.SKIPPED, asset_id=existing, mime_type=file.mime_type)
            asset_id = self.target.import_file(file)
        except Exception as exc:
            logger.warning("Failed to import %s: %s", file.name, exc)
            return FileResult(file.name, FileStatus.FAILED, mime_type=file.mime_type, error=str(exc))
        return FileResult(file.name, FileStatus.COMPLETED, asset_id=asset_id, mime_type=file.mime_type)

    def run(self, job_id: str, files: list[ImportFile]) -> None:
        self.tracker.mark_processing(job_id)
        for file in files:
            self.tracker.set_current_file(job_id, file.name)
            self.tracker.record_file_result(job_id, self._import_one(file))
        self.tracker.complete_job(job_id)
