import asyncio
import logging
from typing import Literal

from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

from pdf2html_service import __version__
from pdf2html_service.config import Settings
from pdf2html_service.conversion import (
    AuthError,
    AuthGateway,
    ConversionService,
    InternalError,
    MethodError,
    ServiceError,
    ValidationError,
)
from pdf2html_service.conversion.adapters import LocalJobStore, LocalObjectStore, LocalTokenAuth

logger = logging.getLogger(__name__)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type, Authorization",
}

_HTTP_MESSAGES = {
    404: "Not found",
}


class ConversionOptions(BaseModel):
    preserveImages: bool | None = None
    extractCss: bool | None = None
    quality: Literal["low", "medium", "high"] | None = None


class ConvertRequest(BaseModel):
    file: str | None = None
    fileName: str | None = None
    options: ConversionOptions | None = None


router = APIRouter()


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message}, headers=headers)


def _service(request: Request) -> ConversionService:
    return request.app.state.service


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise AuthError("Missing or invalid authorization header")
    scheme, _, rest = authorization.partition(" ")
    if scheme.lower() != "bearer" or not rest.strip():
        raise AuthError("Missing or invalid authorization header")
    return rest.strip()


async def current_user(request: Request, authorization: str | None = Header(None)) -> str:
    """Resolve the caller's user id; runs before anything touches the job store."""
    token = _bearer_token(authorization)
    auth: AuthGateway = request.app.state.auth
    return await asyncio.to_thread(auth.validate, token)


@router.get("/health")
def health() -> dict[str, str]:
    """Basic health check endpoint."""
    return {"status": "ok"}


@router.options("/convert")
@router.options("/status/{job_id}")
@router.options("/jobs")
def preflight() -> Response:
    return Response(status_code=200, headers=CORS_HEADERS)


@router.post("/convert")
async def convert(request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
    """Start a conversion job for a base64-encoded upload.

    Accepts JSON `{file, fileName?, options?}`. Creates the job row and
    returns immediately; progress is observable through `/status/{job_id}`.
    """
    try:
        payload = await request.json()
    except ValueError:
        raise ValidationError("Request body must be JSON")
    try:
        body = ConvertRequest.model_validate(payload)
    except PydanticValidationError:
        raise ValidationError("Invalid request body")

    options = body.options.model_dump(exclude_none=True) if body.options else {}
    job = await _service(request).create_job(
        user_id,
        body.file,
        file_name=body.fileName,
        options=options,
    )
    return JSONResponse(
        content={
            "success": True,
            "jobId": job.id,
            "status": job.status,
            "message": "Conversion started successfully",
        }
    )


@router.get("/status")
@router.get("/status/")
async def status_missing_id(user_id: str = Depends(current_user)) -> JSONResponse:
    raise ValidationError("Missing job ID")


@router.get("/status/{job_id}")
async def status(job_id: str, request: Request, user_id: str = Depends(current_user)) -> JSONResponse:
    job = await _service(request).get_job(user_id, job_id)
    return JSONResponse(content={"success": True, "job": job.snapshot()})


@router.get("/jobs")
async def history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    user_id: str = Depends(current_user),
) -> JSONResponse:
    """The caller's most recent jobs, newest first."""
    jobs = await _service(request).list_jobs(user_id, limit=limit)
    return JSONResponse(content={"success": True, "jobs": [j.snapshot() for j in jobs]})


async def _service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            "%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__
        )
    return _error(exc.status_code, exc.response_message)


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == MethodError.status_code:
        response = await _service_error_handler(request, MethodError("Method not allowed"))
    else:
        response = _error(exc.status_code, _HTTP_MESSAGES.get(exc.status_code, str(exc.detail)))
    if exc.headers:
        response.headers.update(exc.headers)
    return response


async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error(400, "Invalid request")


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = InternalError(f"{exc.__class__.__name__}: {exc}")
    error.__cause__ = exc
    response = await _service_error_handler(request, error)
    # runs outside CORSMiddleware
    response.headers.update(CORS_HEADERS)
    return response


def configure_logging(level: str) -> None:
    """Install the log format and apply `level` to this package's loggers.

    Runs in whichever process builds the app, which under `--reload` is the
    spawned worker rather than the process that called `run()`.
    """
    logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("pdf2html_service").setLevel(level)


def create_app(
    settings: Settings | None = None,
    *,
    service: ConversionService | None = None,
    auth: AuthGateway | None = None,
) -> FastAPI:
    """Build the API with explicitly constructed collaborators.

    Defaults to the local job store, object store and token registry under
    `settings.data_dir`. The service is started and stopped with the app.
    """
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    if service is None:
        service = ConversionService(
            LocalJobStore(settings.jobs_dir),
            LocalObjectStore(settings.storage_dir, settings.public_base_url),
            step_delays=settings.step_delays,
            job_timeout_sec=settings.job_timeout_sec,
            max_upload_mb=settings.max_upload_mb,
        )
    if auth is None:
        auth = LocalTokenAuth(settings.tokens_path)

    app = FastAPI(
        title="PDF to HTML Conversion Service",
        version=__version__,
        description="REST API that turns uploaded PDF files into HTML documents and reports job progress.",
    )
    app.state.settings = settings
    app.state.service = service
    app.state.auth = auth

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    app.add_exception_handler(ServiceError, _service_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(RequestValidationError, _validation_error_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(router)
    app.mount("/storage", StaticFiles(directory=str(settings.storage_dir), check_dir=False), name="storage")

    @app.on_event("startup")
    async def _startup() -> None:
        # Ensure base directories
        for d in (settings.jobs_dir, settings.storage_dir):
            d.mkdir(parents=True, exist_ok=True)
        await service.start()

    @app.on_event("shutdown")
    async def _shutdown() -> None:
        await service.stop()

    return app


def run() -> None:
    """Run a development ASGI server using uvicorn.

    Exposes the app at host:port (default 0.0.0.0:8080). Set PORT env var to override.
    """
    import uvicorn

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    uvicorn.run(
        "pdf2html_service.webapi:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
    )


if __name__ == "__main__":
    run()
