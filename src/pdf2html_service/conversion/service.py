import asyncio
import base64
import binascii
import logging
import random
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from .errors import (
    ConversionError,
    InvalidTransitionError,
    NotFoundError,
    PayloadTooLargeError,
    ValidationError,
)
from .interfaces import JobStoreGateway, ObjectStoreGateway
from .template import CSS_CONTENT, render_document

logger = logging.getLogger(__name__)

INITIAL_PROGRESS = 5
PROGRESS_STEPS = (25, 50, 75, 90)
DEFAULT_STEP_DELAYS = (0.2, 0.8, 0.0, 0.6, 0.0)
ARTIFACT_PREFIX = "conversions"


class JobStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    ALL = frozenset({PENDING, PROCESSING, COMPLETED, FAILED})
    TERMINAL = frozenset({COMPLETED, FAILED})


_TRANSITIONS: dict[str, frozenset[str]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.PROCESSING, JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def check_transition(job_id: str, current: str, new: str) -> None:
    if new not in _TRANSITIONS.get(current, frozenset()):
        raise InvalidTransitionError(job_id, current, new)


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds").replace("+00:00", "Z")


def new_job_id() -> str:
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=9))
    return f"job_{int(time.time() * 1000)}_{suffix}"


@dataclass
class JobRecord:
    data: dict[str, Any]

    @property
    def id(self) -> str:
        return str(self.data["id"])

    @property
    def user_id(self) -> str:
        return str(self.data["userId"])

    @property
    def status(self) -> str:
        return str(self.data.get("status", JobStatus.PENDING))

    @property
    def progress(self) -> int:
        return int(self.data.get("progress") or 0)

    @property
    def is_terminal(self) -> bool:
        return self.status in JobStatus.TERMINAL

    def snapshot(self) -> dict[str, Any]:
        """Public view of the row as returned by the status endpoint."""
        return {
            "id": self.id,
            "fileName": self.data.get("fileName"),
            "status": self.status,
            "progress": self.progress,
            "createdAt": self.data.get("createdAt"),
            "completedAt": self.data.get("completedAt"),
            "htmlUrl": self.data.get("htmlUrl"),
            "cssContent": self.data.get("cssContent"),
            "errorMessage": self.data.get("errorMessage"),
        }


def decode_upload(file_b64: str | None, *, max_upload_mb: int) -> bytes:
    if not file_b64:
        raise ValidationError("Missing file data")
    payload = file_b64
    if payload.startswith("data:") and "," in payload:
        # browsers hand over data URLs; keep only the base64 part
        payload = payload.split(",", 1)[1]
    payload = "".join(payload.split())
    try:
        raw = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("File data is not valid base64")
    if not raw:
        raise ValidationError("Missing file data")
    if len(raw) > max_upload_mb * 1024 * 1024:
        raise PayloadTooLargeError(f"upload exceeds {max_upload_mb} MB")
    return raw


class ConversionService:
    """Core domain service orchestrating conversion jobs.

    This service is framework-agnostic. It creates job rows, runs one
    background task per job that walks the job through its progress steps,
    and answers owner-scoped lookups. Storage is reached only through the
    job store and object store gateways.
    """

    def __init__(
        self,
        jobs: JobStoreGateway,
        objects: ObjectStoreGateway,
        *,
        step_delays: tuple[float, ...] = DEFAULT_STEP_DELAYS,
        job_timeout_sec: float | None = 60.0,
        max_upload_mb: int = 50,
        css: str = CSS_CONTENT,
    ) -> None:
        if len(step_delays) != len(PROGRESS_STEPS) + 1:
            raise ValueError(f"expected {len(PROGRESS_STEPS) + 1} step delays, got {len(step_delays)}")
        self._jobs = jobs
        self._objects = objects
        self._step_delays = step_delays
        self._job_timeout_sec = job_timeout_sec
        self._max_upload_mb = max_upload_mb
        self._css = css
        self._tasks: dict[str, asyncio.Task] = {}
        self._accepting = False

    @property
    def running_jobs(self) -> list[str]:
        return list(self._tasks)

    async def start(self) -> None:
        self._accepting = True
        logger.info("conversion service started")

    async def stop(self) -> None:
        self._accepting = False
        tasks = list(self._tasks.values())
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("conversion service stopped (%d jobs cancelled)", len(tasks))

    async def create_job(
        self,
        user_id: str,
        file_b64: str | None,
        *,
        file_name: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> JobRecord:
        """Validate the upload, persist a new job row and launch its pipeline.

        Returns as soon as the row exists; the pipeline keeps running in the
        background and reports only through the row.
        """
        raw = decode_upload(file_b64, max_upload_mb=self._max_upload_mb)
        if not self._accepting:
            raise RuntimeError("conversion service is not running")

        job_id = new_job_id()
        now_ms = int(time.time() * 1000)
        row: dict[str, Any] = {
            "id": job_id,
            "userId": user_id,
            "fileName": file_name or f"upload_{now_ms}.pdf",
            "status": JobStatus.PROCESSING,
            "progress": INITIAL_PROGRESS,
            "createdAt": utc_now(),
            "completedAt": None,
            "htmlUrl": None,
            "cssContent": None,
            "errorMessage": None,
            "options": options or {},
            "sizeBytes": len(raw),
        }
        await asyncio.to_thread(self._jobs.create, row)
        logger.info("created job %s for user %s (%d bytes)", job_id, user_id, len(raw))

        task = asyncio.create_task(self._run_with_watchdog(job_id), name=f"conversion-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda _t: self._tasks.pop(job_id, None))
        return JobRecord(row)

    async def join(self, job_id: str) -> None:
        """Wait until the background task of `job_id` (if any) has finished."""
        task = self._tasks.get(job_id)
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    async def get_job(self, user_id: str, job_id: str) -> JobRecord:
        rows = await asyncio.to_thread(
            self._jobs.list_jobs, {"id": job_id, "userId": user_id}, limit=1
        )
        if not rows:
            raise NotFoundError("Job not found")
        return JobRecord(rows[0])

    async def list_jobs(self, user_id: str, *, limit: int = 20) -> list[JobRecord]:
        rows = await asyncio.to_thread(
            self._jobs.list_jobs,
            {"userId": user_id},
            order_by="createdAt",
            descending=True,
            limit=limit,
        )
        return [JobRecord(r) for r in rows]

    async def _run_with_watchdog(self, job_id: str) -> None:
        try:
            await asyncio.wait_for(self.run_pipeline(job_id), timeout=self._job_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("job %s exceeded %ss deadline", job_id, self._job_timeout_sec)
            await self._fail(job_id, f"timed out after {self._job_timeout_sec:g} seconds")
        except asyncio.CancelledError:
            await self._fail(job_id, "service shutting down")
            raise

    async def run_pipeline(self, job_id: str) -> None:
        """Advance `job_id` through the fixed conversion steps.

        Any exception marks the job failed; nothing propagates to the caller.
        """
        delays = self._step_delays
        try:
            logger.info("starting conversion for job %s", job_id)
            await asyncio.sleep(delays[0])
            await self._advance(job_id, PROGRESS_STEPS[0])

            await asyncio.sleep(delays[1])
            await self._advance(job_id, PROGRESS_STEPS[1])

            await asyncio.sleep(delays[2])
            await self._advance(job_id, PROGRESS_STEPS[2])

            await asyncio.sleep(delays[3])
            document = render_document(self._css)
            await self._advance(job_id, PROGRESS_STEPS[3])

            await asyncio.sleep(delays[4])
            html_url = await asyncio.to_thread(
                self._objects.upload,
                document.encode("utf-8"),
                f"{ARTIFACT_PREFIX}/{job_id}.html",
                content_type="text/html",
            )
            if not html_url:
                raise ConversionError("object store returned no URL")

            await self._write(
                job_id,
                {
                    "status": JobStatus.COMPLETED,
                    "progress": 100,
                    "completedAt": utc_now(),
                    "htmlUrl": html_url,
                    "cssContent": self._css,
                },
            )
            logger.info("job %s completed: %s", job_id, html_url)
        except Exception as e:
            logger.exception("conversion failed for job %s", job_id)
            await self._fail(job_id, str(e) or e.__class__.__name__)

    async def _advance(self, job_id: str, progress: int) -> None:
        logger.info("job %s progress %d%%", job_id, progress)
        await self._write(job_id, {"status": JobStatus.PROCESSING, "progress": progress})

    async def _fail(self, job_id: str, reason: str) -> None:
        try:
            current = await self._load(job_id)
            if current.is_terminal:
                return
            await self._write(
                job_id,
                {
                    "status": JobStatus.FAILED,
                    "progress": 0,
                    "completedAt": utc_now(),
                    "errorMessage": f"Conversion failed: {reason}",
                },
            )
        except Exception:
            logger.exception("could not record failure for job %s", job_id)

    async def _load(self, job_id: str) -> JobRecord:
        rows = await asyncio.to_thread(self._jobs.list_jobs, {"id": job_id}, limit=1)
        if not rows:
            raise NotFoundError(f"job {job_id} not found")
        return JobRecord(rows[0])

    async def _write(self, job_id: str, fields: dict[str, Any]) -> JobRecord:
        current = await self._load(job_id)
        new_status = str(fields.get("status", current.status))
        check_transition(job_id, current.status, new_status)
        if new_status == JobStatus.PROCESSING and int(fields.get("progress", current.progress)) < current.progress:
            raise ConversionError(
                f"progress for job {job_id} cannot drop from {current.progress} to {fields['progress']}"
            )
        # the store rejects the write if the watchdog or shutdown got there first
        row = await asyncio.to_thread(
            self._jobs.update, job_id, fields, expected_status=current.status
        )
        return JobRecord(row)
