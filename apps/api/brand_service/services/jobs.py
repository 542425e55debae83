from __future__ import annotations

import copy
import datetime as dt
import logging
import threading
import uuid
from dataclasses import dataclass, field
from enum import Enum

from ..errors import InvalidJobTransition

logger = logging.getLogger(__name__)


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FileStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class FileResult:
    name: str
    status: FileStatus
    asset_id: str | None = None
    mime_type: str | None = None
    error: str | None = None


@dataclass
class JobProgress:
    total: int
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0


@dataclass
class ImportJob:
    job_id: str
    progress: JobProgress
    status: JobStatus = JobStatus.PENDING
    current_file: str | None = None
    files: list[FileResult] = field(default_factory=list)
    created_at: dt.datetime = field(default_factory=lambda: dt.datetime.now(dt.UTC))
    completed_at: dt.datetime | None = None


class JobTracker:
    """
    In-memory store of bulk-import jobs.

    Process-local: jobs are lost on restart and are not shared between instances.
    Every public method holds the lock for its whole body; `get_job` hands out copies.
    Mutators ignore unknown ids since the sweep may evict a job that is still running.
    """

    def __init__(self, retention: dt.timedelta = dt.timedelta(hours=1)) -> None:
        self.retention = retention
        self._jobs: dict[str, ImportJob] = {}
        self._lock = threading.Lock()

    def _lookup(self, job_id: str, action: str) -> ImportJob | None:
        job = self._jobs.get(job_id)
        if job is None:
            logger.warning("Job %s not found, cannot %s", job_id, action)
        return job

    @staticmethod
    def _require(job: ImportJob, expected: JobStatus, action: str) -> None:
        if job.status != expected:
            raise InvalidJobTransition(f"Cannot {action} job {job.job_id} in state {job.status.value}")

    def create_job(self, total_files: int) -> str:
        if total_files < 0:
            raise ValueError("total_files must be >= 0")
        job = ImportJob(job_id=str(uuid.uuid4()), progress=JobProgress(total=total_files))
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info("Created import job %s with %d files", job.job_id, total_files)
        return job.job_id

    def get_job(self, job_id: str) -> ImportJob | None:
        with self._lock:
            job = self._jobs.get(job_id)
            return copy.deepcopy(job) if job is not None else None

    def list_jobs(self) -> list[ImportJob]:
        with self._lock:
            return [copy.deepcopy(job) for job in self._jobs.values()]

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            return self._jobs.pop(job_id, None) is not None

    def mark_processing(self, job_id: str) -> None:
        with self._lock:
            job = self._lookup(job_id, "start processing")
            if job is None:
                return
            self._require(job, JobStatus.PENDING, "start")
            job.status = JobStatus.PROCESSING

    def set_current_file(self, job_id: str, name: str) -> None:
        with self._lock:
            job = self._lookup(job_id, "set current file")
            if job is None:
                return
            self._require(job, JobStatus.PROCESSING, "set current file on")
            job.current_file = name

    def record_file_result(self, job_id: str, result: FileResult) -> None:
        status = FileStatus(result.status)
        with self._lock:
            job = self._lookup(job_id, "record file result")
            if job is None:
                return
            self._require(job, JobStatus.PROCESSING, "record a file result on")
            job.files.append(result)
            job.progress.processed += 1
            if status is FileStatus.COMPLETED:
                job.progress.succeeded += 1
            elif status is FileStatus.FAILED:
                job.progress.failed += 1
            else:
                job.progress.skipped += 1

    def complete_job(self, job_id: str) -> None:
        with self._lock:
            job = self._lookup(job_id, "complete")
            if job is None:
                return
            self._require(job, JobStatus.PROCESSING, "complete")
            if job.progress.processed < job.progress.total:
                raise InvalidJobTransition(
                    f"Cannot complete job {job_id}: {job.progress.processed}/{job.progress.total} files processed"
                )
            self._finish(job, JobStatus.COMPLETED)
            progress = job.progress
        logger.info(
            "Import job %s completed: %d succeeded, %d failed, %d skipped",
            job_id,
            progress.succeeded,
            progress.failed,
            progress.skipped,
        )

    def fail_job(self, job_id: str) -> None:
        with self._lock:
            job = self._lookup(job_id, "fail")
            if job is None:
                return
            self._require(job, JobStatus.PROCESSING, "fail")
            self._finish(job, JobStatus.FAILED)
        logger.warning("Import job %s failed", job_id)

    @staticmethod
    def _finish(job: ImportJob, status: JobStatus) -> None:
        job.status = status
        job.completed_at = dt.datetime.now(dt.UTC)
        job.current_file = None

    def sweep(self, now: dt.datetime | None = None) -> int:
        """Evict every job older than the retention window, whatever its state."""
        now = now or dt.datetime.now(dt.UTC)
        cutoff = now - self.retention
        with self._lock:
            expired = [job_id for job_id, job in self._jobs.items() if job.created_at < cutoff]
            for job_id in expired:
                del self._jobs[job_id]
        if expired:
            logger.info("Evicted %d import jobs older than %s", len(expired), self.retention)
        return len(expired)


class JobSweeper:
    """Runs `JobTracker.sweep` on a fixed interval in a daemon thread."""

    def __init__(self, tracker: JobTracker, interval_seconds: float) -> None:
        self.tracker = tracker
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="job-sweeper", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            try:
                self.tracker.sweep()
            except Exception:
                logger.exception("Job sweep failed")
