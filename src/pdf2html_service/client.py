"""HTTP client for the conversion API and the progress polling loop."""
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

import requests

logger = logging.getLogger(__name__)

# Progress shown while work is ongoing never drops below this.
MIN_DISPLAY_PROGRESS = 5


class ApiError(Exception):
    def __init__(self, status_code: int | None, message: str) -> None:
        super().__init__(f"{status_code}: {message}" if status_code else message)
        self.status_code = status_code
        self.message = message


class PollError(Exception):
    """Raised when polling gives up (retries exhausted or overall timeout)."""


class ConversionFailedError(Exception):
    def __init__(self, job: dict[str, Any]) -> None:
        self.job = job
        super().__init__(job.get("errorMessage") or "Conversion failed")


@dataclass(frozen=True)
class PollPolicy:
    initial_delay: float = 0.5
    interval: float = 0.5
    error_delay: float = 1.0
    backoff_factor: float = 1.5
    max_error_delay: float = 8.0
    max_attempts: int = 5
    timeout: float | None = None


class ConversionClient:
    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        session: requests.Session | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base = base_url.rstrip("/")
        self._token = token
        self._session = session or requests.Session()
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"}

    def _json(self, resp: requests.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            raise ApiError(resp.status_code, resp.text or "invalid JSON response")
        if not isinstance(data, dict):
            raise ApiError(resp.status_code, "unexpected response body")
        if resp.status_code != 200 or not data.get("success"):
            raise ApiError(resp.status_code, str(data.get("error") or "request failed"))
        return data

    def convert(
        self,
        content: bytes,
        *,
        file_name: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> str:
        """Upload `content` and return the new job id."""
        body: dict[str, Any] = {"file": base64.b64encode(content).decode("ascii")}
        if file_name:
            body["fileName"] = file_name
        if options:
            body["options"] = options
        resp = self._session.post(
            f"{self._base}/convert", json=body, headers=self._headers(), timeout=self._timeout
        )
        data = self._json(resp)
        job_id = str(data["jobId"])
        logger.info("started conversion job %s", job_id)
        return job_id

    def status(self, job_id: str) -> dict[str, Any]:
        resp = self._session.get(
            f"{self._base}/status/{job_id}", headers=self._headers(), timeout=self._timeout
        )
        return self._json(resp)["job"]

    def history(self, limit: int = 20) -> list[dict[str, Any]]:
        resp = self._session.get(
            f"{self._base}/jobs", params={"limit": limit}, headers=self._headers(), timeout=self._timeout
        )
        return list(self._json(resp)["jobs"])

    def download(self, html_url: str) -> str:
        resp = self._session.get(html_url, timeout=self._timeout)
        if resp.status_code != 200:
            raise ApiError(resp.status_code, "artifact not available")
        return resp.text


def poll_job(
    client: ConversionClient,
    job_id: str,
    policy: PollPolicy = PollPolicy(),
    *,
    on_progress: Callable[[int, dict[str, Any]], None] | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> dict[str, Any]:
    """Poll `job_id` until it reaches a terminal status.

    Returns the completed snapshot, raises ConversionFailedError for a failed
    job and PollError once `policy.max_attempts` consecutive status calls
    fail or `policy.timeout` elapses.
    """
    started = clock()
    displayed = 0
    failures = 0
    error_delay = policy.error_delay

    def report(progress: int, job: dict[str, Any]) -> None:
        nonlocal displayed
        displayed = max(displayed, progress)
        if on_progress is not None:
            on_progress(displayed, job)

    def wait(delay: float) -> None:
        if policy.timeout is not None and clock() - started + delay > policy.timeout:
            raise PollError(f"job {job_id} did not finish within {policy.timeout:g}s")
        sleep(delay)

    wait(policy.initial_delay)
    while True:
        try:
            job = client.status(job_id)
        except (requests.RequestException, ApiError) as e:
            failures += 1
            logger.warning("status poll %d for %s failed: %s", failures, job_id, e)
            if failures >= policy.max_attempts:
                raise PollError(f"status check failed after {failures} attempts: {e}") from e
            wait(error_delay)
            error_delay = min(error_delay * policy.backoff_factor, policy.max_error_delay)
            continue

        failures = 0
        error_delay = policy.error_delay
        job_status = job.get("status")
        if job_status == "completed":
            report(100, job)
            return job
        if job_status == "failed":
            raise ConversionFailedError(job)
        report(max(int(job.get("progress") or 0), MIN_DISPLAY_PROGRESS), job)
        wait(policy.interval)
