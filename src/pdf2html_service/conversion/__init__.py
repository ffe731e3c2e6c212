"""
Domain layer for PDF-to-HTML conversion jobs.
Provides interfaces (gateways) and a service to orchestrate conversion jobs,
abstracting the job store, object store and token verification so front-ends
(HTTP or others) can use the same core logic.
"""

from .errors import (
    AuthError,
    ConversionError,
    InternalError,
    InvalidTransitionError,
    MethodError,
    NotFoundError,
    PayloadTooLargeError,
    ServiceError,
    ValidationError,
    WriteConflictError,
)
from .interfaces import AuthGateway, JobStoreGateway, ObjectStoreGateway
from .service import ConversionService, JobRecord, JobStatus
