import base64
import json
import logging
import re
import secrets
import threading
import zlib
from pathlib import Path
from typing import Any

from argon2 import low_level
from argon2.exceptions import InvalidHashError, VerificationError

from .errors import AuthError, WriteConflictError
from .interfaces import AuthGateway, JobStoreGateway, ObjectStoreGateway

logger = logging.getLogger(__name__)

_JOB_ID_RE = re.compile(r"[A-Za-z0-9_-]+")
_LOCK_STRIPES = 64


class LocalJobStore(JobStoreGateway):
    """One JSON document per job under `<data_dir>/jobs/<job_id>/job.json`."""

    def __init__(self, jobs_dir: str | Path) -> None:
        self._base = Path(jobs_dir).resolve()
        # fixed pool; a job id always maps to the same lock
        self._locks = tuple(threading.Lock() for _ in range(_LOCK_STRIPES))

    def _lock_for(self, job_id: str) -> threading.Lock:
        return self._locks[zlib.crc32(job_id.encode("utf-8")) % len(self._locks)]

    def _job_path(self, job_id: str) -> Path:
        if not _JOB_ID_RE.fullmatch(job_id):
            raise KeyError(job_id)
        return self._base / job_id / "job.json"

    def _read(self, path: Path) -> dict[str, Any]:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def _write(self, path: Path, row: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_suffix(".json.tmp")
        with tmp.open("w", encoding="utf-8") as f:
            json.dump(row, f, ensure_ascii=False, indent=2)
        # readers never see a half-written file
        tmp.replace(path)

    def create(self, row: dict[str, Any]) -> dict[str, Any]:
        job_id = str(row["id"])
        path = self._job_path(job_id)
        with self._lock_for(job_id):
            if path.exists():
                raise ValueError(f"job {job_id} already exists")
            self._write(path, row)
        return dict(row)

    def update(
        self, job_id: str, fields: dict[str, Any], *, expected_status: str | None = None
    ) -> dict[str, Any]:
        path = self._job_path(job_id)
        with self._lock_for(job_id):
            if not path.exists():
                raise KeyError(job_id)
            row = self._read(path)
            if expected_status is not None and row.get("status") != expected_status:
                raise WriteConflictError(job_id, expected_status, row.get("status"))
            row.update(fields)
            self._write(path, row)
        return row

    def list_jobs(
        self,
        where: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        job_id = where.get("id")
        if job_id is not None:
            # direct lookup instead of a directory scan
            try:
                path = self._job_path(str(job_id))
            except KeyError:
                return []
            candidates = [path] if path.exists() else []
        elif self._base.exists():
            candidates = sorted(self._base.glob("*/job.json"))
        else:
            candidates = []

        rows = []
        for path in candidates:
            with self._lock_for(path.parent.name):
                try:
                    row = self._read(path)
                except FileNotFoundError:
                    continue
            if all(row.get(k) == v for k, v in where.items()):
                rows.append(row)

        if order_by:
            rows.sort(key=lambda r: str(r.get(order_by) or ""), reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        return rows


class LocalObjectStore(ObjectStoreGateway):
    """Writes blobs below a directory that the API serves at `/storage`."""

    def __init__(self, storage_dir: str | Path, public_base_url: str) -> None:
        self._base = Path(storage_dir).resolve()
        self._public_base_url = public_base_url.rstrip("/")

    def upload(self, data: bytes, path: str, *, content_type: str) -> str:
        target = (self._base / path).resolve()
        if self._base not in target.parents:
            raise ValueError(f"path escapes storage root: {path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        logger.debug("stored %d bytes (%s) at %s", len(data), content_type, target)
        return f"{self._public_base_url}/storage/{target.relative_to(self._base).as_posix()}"


class TokenSecurity:
    """Argon2id hashing of token secrets, stored as PHC strings."""

    def __init__(self, *, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 1) -> None:
        self.time_cost = time_cost
        self.memory_cost = memory_cost
        self.parallelism = parallelism

    def new_secret(self) -> str:
        raw = secrets.token_bytes(32)
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    def hash_secret(self, secret: str) -> str:
        raw = self._b64url_to_bytes(secret)
        phc_bytes = low_level.hash_secret(
            secret=raw,
            salt=secrets.token_bytes(16),
            time_cost=self.time_cost,
            memory_cost=self.memory_cost,
            parallelism=self.parallelism,
            hash_len=32,
            type=low_level.Type.ID,
        )
        return phc_bytes.decode("utf-8")

    def verify(self, stored_hash: str, secret: str) -> bool:
        """Check `secret` against an Argon2id PHC string; malformed input never verifies."""
        try:
            raw = self._b64url_to_bytes(secret)
        except ValueError:
            return False
        try:
            return low_level.verify_secret(stored_hash.encode("utf-8"), raw, low_level.Type.ID)
        except (VerificationError, InvalidHashError):
            return False

    @staticmethod
    def _b64url_to_bytes(value: str) -> bytes:
        if not re.fullmatch(r"[A-Za-z0-9_-]+", value):
            raise ValueError("not base64url")
        pad = "=" * (-len(value) % 4)
        return base64.urlsafe_b64decode(value + pad)


class LocalTokenAuth(AuthGateway):
    """Token registry kept in a JSON file mapping user id to a hashed secret.

    Tokens handed to users look like `<user_id>.<secret>`; only the hash of the
    secret is persisted.
    """

    def __init__(self, tokens_path: str | Path, security: TokenSecurity | None = None) -> None:
        self._path = Path(tokens_path).resolve()
        self._security = security or TokenSecurity()
        self._lock = threading.Lock()

    def _load(self) -> dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as f:
            return json.load(f)

    def issue_token(self, user_id: str) -> str:
        if not user_id or not re.fullmatch(r"[A-Za-z0-9_@-][A-Za-z0-9_@.-]*", user_id):
            raise ValueError(f"invalid user id: {user_id!r}")
        secret = self._security.new_secret()
        with self._lock:
            tokens = self._load()
            tokens[user_id] = self._security.hash_secret(secret)
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with self._path.open("w", encoding="utf-8") as f:
                json.dump(tokens, f, indent=2)
        logger.info("issued API token for user %s", user_id)
        return f"{user_id}.{secret}"

    def validate(self, token: str) -> str:
        user_id, _, secret = token.rpartition(".")
        if not user_id or not secret:
            raise AuthError("Invalid authentication token")
        with self._lock:
            stored = self._load().get(user_id)
        if not stored or not self._security.verify(stored, secret):
            raise AuthError("Invalid authentication token")
        return user_id
