"""Shared test fixtures."""

from __future__ import annotations

import json

import httpx
import pytest

from cv_tailor.clients.resolver import ConfigurationResolver, TenantTiers, TierSettings
from cv_tailor.config import AppConfig
from cv_tailor.models.document import CvDocument
from cv_tailor.models.generation import TenantIdentity
from cv_tailor.store.document_store import SqliteDocumentStore


class StaticTenantSource:
    """Tenant settings held in memory."""

    def __init__(self, user: TierSettings | None = None, organisation: TierSettings | None = None):
        self.tiers = TenantTiers(user=user, organisation=organisation)
        self.calls: list[tuple[str, str | None]] = []

    def resolve_tenant_config(self, user_id, organisation_id=None):
        self.calls.append((user_id, organisation_id))
        return self.tiers


class RecordingTransport(httpx.MockTransport):
    """MockTransport that keeps every request it answered."""

    def __init__(self, handler):
        self.requests: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return handler(request)

        super().__init__(record)

    def json_body(self, index: int = -1) -> dict:
        return json.loads(self.requests[index].content)


@pytest.fixture
def make_transport():
    """Build a RecordingTransport around a request handler."""
    return RecordingTransport


@pytest.fixture
def tenant() -> TenantIdentity:
    return TenantIdentity(user_id="user-1", organisation_id="org-1")


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig()


@pytest.fixture
def make_resolver(app_config):
    def _make(user=None, organisation=None, env=None, decrypt=None):
        source = StaticTenantSource(user=user, organisation=organisation)
        return ConfigurationResolver(
            source,
            decrypt or (lambda ciphertext: ciphertext.removeprefix("enc:") or None),
            app_config,
            env=env or {},
        )

    return _make


@pytest.fixture
def sample_document_data() -> dict:
    return {
        "profile": {"fullName": "Jane Doe", "email": "jane@example.com", "location": "Leeds"},
        "professionalSummary": {
            "description": "Backend engineer with eight years of experience.",
            "strengths": ["Python", "Mentoring"],
        },
        "workExperience": [
            {
                "entityId": "work-1",
                "position": "Senior Engineer",
                "companyName": "Acme Ltd",
                "startDate": "2021-03-01",
                "description": "Leads the payments team.",
                "responsibilityCategories": [
                    {
                        "entityId": "cat-1",
                        "name": "Delivery",
                        "items": [
                            {"entityId": "item-1", "content": "Shipped the new checkout"},
                            {"entityId": "item-2", "content": "Cut p95 latency by 40%"},
                        ],
                    }
                ],
            },
            {
                "entityId": "work-2",
                "position": "Engineer",
                "companyName": "Globex",
                "startDate": "2017-01-01",
                "endDate": "2020-12-31",
                "description": "Built internal tooling.",
            },
        ],
        "education": [
            {
                "entityId": "edu-1",
                "degree": "BSc Computer Science",
                "institution": "University of Leeds",
                "description": "First class honours.",
            }
        ],
        "skills": [
            {"entityId": "skill-1", "name": "Python", "category": "Languages"},
            {"entityId": "skill-2", "name": "PostgreSQL", "category": "Databases"},
        ],
        "projects": [
            {"entityId": "proj-1", "title": "Ledger", "description": "Double-entry ledger service."}
        ],
        "interests": [{"entityId": "int-1", "name": "Climbing"}],
    }


@pytest.fixture
def sample_document(sample_document_data) -> CvDocument:
    return CvDocument.model_validate(sample_document_data)


@pytest.fixture
def five_jobs_document() -> CvDocument:
    return CvDocument.model_validate({
        "work_experience": [
            {"entity_id": f"job-{i}", "position": f"Role {i}", "company_name": f"Company {i}"}
            for i in range(1, 6)
        ]
    })


@pytest.fixture
def document_store(tmp_path) -> SqliteDocumentStore:
    return SqliteDocumentStore(tmp_path / "cv.db")
