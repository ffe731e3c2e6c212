class ServiceError(Exception):
    """Base class for errors that map onto an HTTP response."""

    status_code = 500
    public_message: str | None = None

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message

    @property
    def response_message(self) -> str:
        return self.public_message or self.message


class AuthError(ServiceError):
    status_code = 401


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class MethodError(ServiceError):
    status_code = 405


class PayloadTooLargeError(ServiceError):
    status_code = 413


class InternalError(ServiceError):
    status_code = 500
    # never echo internals back to the caller
    public_message = "Internal server error"


class ConversionError(Exception):
    """Raised inside a background pipeline; recorded on the job row, never returned over HTTP."""


class InvalidTransitionError(ValueError):
    def __init__(self, job_id: str, current: str, new: str) -> None:
        super().__init__(f"job {job_id}: cannot move from {current!r} to {new!r}")
        self.job_id = job_id
        self.current = current
        self.new = new


class WriteConflictError(Exception):
    """The stored row no longer has the status the writer expected."""

    def __init__(self, job_id: str, expected: str, actual: str | None) -> None:
        super().__init__(f"job {job_id}: expected status {expected!r}, found {actual!r}")
        self.job_id = job_id
        self.expected = expected
        self.actual = actual
