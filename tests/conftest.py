"""Shared test fixtures."""
import json
import os
from typing import Any, Dict, List, Optional, Set

# Settings are read at import time; configure before prospector is imported.
os.environ["APOLLO_API_KEY"] = "apollo-test-key"
os.environ["API_SECRET_KEY"] = "shared-test-secret"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ROW_CHECK_DELAY_SECONDS"] = "0"
os.environ["RATE_LIMIT_BACKOFF_SECONDS"] = "0"
os.environ["DEV_MODE"] = "true"

import httpx
import pytest
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine
from sqlmodel import SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

import prospector.models  # noqa: F401
from prospector.core.exceptions import MissingColumnError
from prospector.models.enrichment_log import EnrichmentLog
from prospector.repositories.record_store import RecordStore
from prospector.services.apollo_service import ApolloService

APOLLO_TEST_BASE_URL = "https://apollo.test/api/v1"

# Caller-owned enrichment table, deliberately missing some mapped columns
ENRICHED_LEADS_DDL = """
CREATE TABLE enriched_leads (
    id TEXT PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    title TEXT,
    linkedin_url TEXT,
    email TEXT,
    email_status TEXT,
    primary_phone TEXT,
    phone_numbers JSON,
    organization_name TEXT,
    enrichment_status TEXT,
    updated_at TIMESTAMP
)
"""


@pytest.fixture
async def db_engine(tmp_path):
    """File-backed SQLite engine with the service tables and a caller table."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
        await conn.execute(text(ENRICHED_LEADS_DDL))
    yield engine
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    async with AsyncSession(db_engine, expire_on_commit=False) as session:
        yield session


@pytest.fixture
def new_session(db_engine):
    """Factory for independent sessions, used to read back what was committed."""
    def _make():
        return AsyncSession(db_engine, expire_on_commit=False)
    return _make


async def insert_enriched_lead(engine, record_id: str, **values):
    columns = {"id": record_id, **values}
    names = ", ".join(columns)
    params = ", ".join(f":{name}" for name in columns)
    async with engine.begin() as conn:
        await conn.execute(text(f"INSERT INTO enriched_leads ({names}) VALUES ({params})"), columns)


async def fetch_enriched_lead(engine, record_id: str) -> Optional[dict]:
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT * FROM enriched_leads WHERE id = :id"), {"id": record_id})
        row = result.first()
    return dict(row._mapping) if row else None


async def fetch_logs(new_session, record_id: str) -> List[EnrichmentLog]:
    """Committed audit entries for one record, oldest first."""
    async with new_session() as session:
        result = await session.exec(
            select(EnrichmentLog).where(EnrichmentLog.record_id == record_id).order_by(EnrichmentLog.created_at)
        )
        return list(result.all())


class ApolloStub:
    """
    httpx.MockTransport handler emulating the Apollo endpoints used here.

    Companies and people are served page by page from in-memory lists.
    Queue explicit (status, json) responses per path to override that.
    """

    def __init__(self, companies: Optional[List[dict]] = None, people: Optional[List[dict]] = None):
        self.companies = companies or []
        self.people = people or []
        self.queued: Dict[str, List[tuple]] = {}
        self.calls: List[dict] = []

    def queue(self, path: str, status: int, payload: Any = None):
        self.queued.setdefault(path, []).append((status, payload if payload is not None else {}))

    def calls_to(self, path: str) -> List[dict]:
        return [call for call in self.calls if call["path"] == path]

    @staticmethod
    def _page(items: List[dict], body: dict) -> List[dict]:
        page = body.get("page", 1)
        per_page = body.get("per_page", 100)
        return items[(page - 1) * per_page:page * per_page]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.split("/api/v1", 1)[-1]
        body = json.loads(request.content) if request.content else {}
        self.calls.append({
            "path": path,
            "body": body,
            "params": dict(request.url.params),
            "headers": dict(request.headers),
        })

        if self.queued.get(path):
            status, payload = self.queued[path].pop(0)
            return httpx.Response(status, json=payload)

        if path == "/mixed_companies/search":
            return httpx.Response(200, json={"organizations": self._page(self.companies, body)})
        if path == "/mixed_people/search":
            org_ids = set(body.get("organization_ids") or [])
            matching = [p for p in self.people if p.get("organization_id") in org_ids]
            return httpx.Response(200, json={"people": self._page(matching, body)})
        if path in ("/people/match", "/people/bulk_match"):
            return httpx.Response(200, json={"matches": []})
        return httpx.Response(404, json={"error": "not found"})


def make_apollo(stub: ApolloStub, api_key: str = "apollo-test-key", retries: int = 2) -> ApolloService:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(stub),
        base_url=APOLLO_TEST_BASE_URL,
    )
    return ApolloService(
        api_key=api_key,
        base_url=APOLLO_TEST_BASE_URL,
        client=client,
        rate_limit_retries=retries,
        backoff_seconds=0,
    )


@pytest.fixture
def apollo_stub():
    return ApolloStub()


@pytest.fixture
async def apollo(apollo_stub):
    service = make_apollo(apollo_stub)
    yield service
    await service.aclose()


def make_companies(count: int, prefix: str = "org") -> List[dict]:
    return [{"id": f"{prefix}-{i}", "name": f"Company {i}"} for i in range(1, count + 1)]


def make_people(count: int, org_ids: List[str]) -> List[dict]:
    people = []
    for i in range(1, count + 1):
        org_id = org_ids[(i - 1) % len(org_ids)]
        people.append({
            "id": f"person-{i}",
            "first_name": f"First{i}",
            "last_name": f"Last{i}",
            "title": "CTO",
            "linkedin_url": f"https://linkedin.com/in/person-{i}",
            "organization_id": org_id,
            "organization": {"id": org_id, "name": f"Company of {org_id}"},
        })
    return people


class InMemoryRecordStore(RecordStore):
    """RecordStore over dicts, with an optional delay before rows appear."""

    def __init__(self, columns: Set[str], rows: Optional[Dict[str, dict]] = None, visible_after: int = 0):
        self.columns = set(columns)
        self.rows = rows if rows is not None else {}
        self.visible_after = visible_after
        self.exists_calls = 0
        self.update_calls: List[dict] = []

    async def describe_columns(self, table_name: str) -> Set[str]:
        return set(self.columns)

    async def exists(self, table_name: str, record_id: str) -> bool:
        self.exists_calls += 1
        if self.exists_calls <= self.visible_after:
            return False
        return record_id in self.rows

    async def update(self, table_name: str, record_id: str, values: Dict[str, Any]) -> List[Dict[str, Any]]:
        self.update_calls.append(dict(values))
        for column in values:
            if column not in self.columns:
                raise MissingColumnError(table_name, column)
        row = self.rows.get(record_id)
        if row is None:
            return []
        row.update(values)
        return [dict(row)]


class RecordingLogRepo:
    """Stand-in for EnrichmentLogRepository that keeps entries in memory."""

    def __init__(self):
        self.entries: List[dict] = []
        self.rollbacks = 0

    async def append(self, record_id, table_name, status, details=None):
        self.entries.append({
            "record_id": record_id,
            "table_name": table_name,
            "status": status,
            "details": details or {},
        })

    async def rollback(self):
        self.rollbacks += 1


@pytest.fixture
def log_repo():
    return RecordingLogRepo()


@pytest.fixture
async def client(db_engine, apollo_stub):
    """API client with the database and Apollo routed to test doubles."""
    from prospector.main import app
    from prospector.database import get_session
    from prospector.api.deps import get_apollo_service

    async def override_session():
        async with AsyncSession(db_engine, expire_on_commit=False) as session:
            yield session

    async def override_apollo():
        service = make_apollo(apollo_stub)
        try:
            yield service
        finally:
            await service.aclose()

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_apollo_service] = override_apollo
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as c:
        yield c
    app.dependency_overrides.clear()
