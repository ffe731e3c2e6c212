"""
Test Configuration and Fixtures
"""
import base64

import pytest
from fastapi.testclient import TestClient

from pdf2html_service.config import Settings
from pdf2html_service.conversion import ConversionService
from pdf2html_service.conversion.adapters import (
    LocalJobStore,
    LocalObjectStore,
    LocalTokenAuth,
    TokenSecurity,
)
from pdf2html_service.webapi import create_app

PDF_BYTES = b"%PDF-1.4\n1 0 obj << /Type /Catalog >> endobj\ntrailer << /Root 1 0 R >>\n%%EOF\n"
PDF_B64 = base64.b64encode(PDF_BYTES).decode("ascii")


class RecordingJobStore(LocalJobStore):
    """Local store that remembers every call made through the gateway."""

    def __init__(self, jobs_dir):
        super().__init__(jobs_dir)
        self.created = []
        self.updates = []
        self.queries = []

    def create(self, row):
        self.created.append(dict(row))
        return super().create(row)

    def update(self, job_id, fields, **kwargs):
        self.updates.append((job_id, dict(fields)))
        return super().update(job_id, fields, **kwargs)

    def list_jobs(self, where, **kwargs):
        self.queries.append(dict(where))
        return super().list_jobs(where, **kwargs)

    def progress_for(self, job_id):
        return [f["progress"] for jid, f in self.updates if jid == job_id and "progress" in f]


class BrokenObjectStore:
    def upload(self, data, path, *, content_type):
        raise OSError("storage unavailable")


@pytest.fixture
def pdf_b64():
    return PDF_B64


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path,
        public_base_url="http://testserver",
        max_upload_mb=1,
        job_timeout_sec=5.0,
        step_delays=(0.0, 0.0, 0.0, 0.0, 0.0),
        reload=False,
    )


@pytest.fixture
def job_store(settings):
    return RecordingJobStore(settings.jobs_dir)


@pytest.fixture
def object_store(settings):
    return LocalObjectStore(settings.storage_dir, settings.public_base_url)


@pytest.fixture
def service(settings, job_store, object_store):
    return ConversionService(
        job_store,
        object_store,
        step_delays=settings.step_delays,
        job_timeout_sec=settings.job_timeout_sec,
        max_upload_mb=settings.max_upload_mb,
    )


@pytest.fixture
def security():
    """Argon2id with the smallest allowed cost so tests stay fast."""
    return TokenSecurity(time_cost=1, memory_cost=8, parallelism=1)


@pytest.fixture
def auth(settings, security):
    return LocalTokenAuth(settings.tokens_path, security)


@pytest.fixture
def tokens(auth):
    return {"alice": auth.issue_token("alice"), "bob": auth.issue_token("bob")}


@pytest.fixture
def app(settings, service, auth):
    return create_app(settings, service=service, auth=auth)


@pytest.fixture
def client(app):
    """Test client with startup/shutdown events running."""
    with TestClient(app) as c:
        yield c


@pytest.fixture
def headers(tokens):
    """Authorization headers keyed by user id."""
    return {user: {"Authorization": f"Bearer {token}"} for user, token in tokens.items()}


@pytest.fixture
def failing_service(settings, job_store):
    """Service whose object store rejects every upload."""
    return ConversionService(job_store, BrokenObjectStore(), step_delays=settings.step_delays)
