from typing import Any, Protocol


class JobStoreGateway(Protocol):
    def create(self, row: dict[str, Any]) -> dict[str, Any]:
        ...

    def update(
        self, job_id: str, fields: dict[str, Any], *, expected_status: str | None = None
    ) -> dict[str, Any]:
        """Merge `fields` into the stored row and return the new row.

        Writes to the same job id must be applied in the order they are issued.
        With `expected_status`, the check and the write happen atomically and a
        row in any other status raises WriteConflictError untouched.
        """

    def list_jobs(
        self,
        where: dict[str, Any],
        *,
        order_by: str | None = None,
        descending: bool = False,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return rows whose fields equal every value in `where`."""


class ObjectStoreGateway(Protocol):
    def upload(self, data: bytes, path: str, *, content_type: str) -> str:
        """Store `data` under `path` (overwriting) and return its public URL."""


class AuthGateway(Protocol):
    def validate(self, token: str) -> str:
        """Return the user id owning `token`, or raise AuthError."""
