"""
Shared test fixtures — SQLite async database, FastAPI client and stores.

Strategy:
1. Point DATABASE_URL at a throwaway SQLite file before riskengine loads
2. Routers get a SqlRiskStore bound to the test session via dependency override
3. Engine-level tests use MemoryRiskStore with explicit timestamps
"""
import os
import tempfile
from collections.abc import AsyncGenerator
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.pool import NullPool

# ── 1. Environment ──
_DB_PATH = os.path.join(tempfile.mkdtemp(prefix="risklens-tests-"), "test.db")
TEST_DATABASE_URL = f"sqlite+aiosqlite:///{_DB_PATH}"
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["DEBUG"] = "false"

# ── 2. Test engine ──
from riskengine.database import build_engine, build_sessionmaker  # noqa: E402

# NullPool: each test runs on its own event loop
TEST_ENGINE = build_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)
TestSession = build_sessionmaker(TEST_ENGINE)


# ── 3. Now import the app ──
from riskengine.dependencies import get_gap_cache, get_store  # noqa: E402
from riskengine.cache import TTLCache  # noqa: E402
from riskengine.main import app as fastapi_app  # noqa: E402
from riskengine.models import Base  # noqa: E402
from riskengine.repository.memory import MemoryRiskStore  # noqa: E402
from riskengine.repository.sql import SqlRiskStore  # noqa: E402

NOW = datetime(2026, 3, 1, 12, 0, 0)


# ── Fixtures ──

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create all tables before each test, drop after."""
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def sql_store() -> SqlRiskStore:
    return SqlRiskStore(TestSession)


@pytest.fixture
def gap_cache() -> TTLCache:
    return TTLCache(ttl_seconds=300)


@pytest_asyncio.fixture
async def client(sql_store, gap_cache) -> AsyncGenerator[AsyncClient, None]:
    fastapi_app.dependency_overrides[get_store] = lambda: sql_store
    fastapi_app.dependency_overrides[get_gap_cache] = lambda: gap_cache
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSession() as session:
        yield session


@pytest.fixture
def store() -> MemoryRiskStore:
    return MemoryRiskStore(clock=lambda: NOW)


# ── Seed data helpers ──

@pytest_asyncio.fixture
async def seed_org(db: AsyncSession) -> int:
    from riskengine.models import Organization

    org = Organization(name="Acme AI")
    db.add(org)
    await db.commit()
    return org.id


@pytest_asyncio.fixture
async def seed_catalog(db: AsyncSession, seed_org):
    """Two frameworks with two controls each and one EQUIVALENT mapping A.1 ↔ B.1.

    Returns (org_id, {"fw_a": id, "fw_b": id, "a1": id, "a2": id, "b1": id, "b2": id}).
    """
    from riskengine.models import Control, ControlMapping, Framework

    fw_a = Framework(name="ISO/IEC 42001", short_name="ISO42001")
    fw_b = Framework(name="NIST AI RMF", short_name="NIST-AI")
    db.add_all([fw_a, fw_b])
    await db.flush()

    a1 = Control(framework_id=fw_a.id, code="A.1", title="AI policy", sort_order=1)
    a2 = Control(framework_id=fw_a.id, code="A.2", title="Impact assessment", sort_order=2)
    b1 = Control(framework_id=fw_b.id, code="GOVERN-1", title="Policies in place", sort_order=1)
    b2 = Control(framework_id=fw_b.id, code="MAP-1", title="Context established", sort_order=2)
    db.add_all([a1, a2, b1, b2])
    await db.flush()

    db.add(ControlMapping(
        source_control_id=a1.id, target_control_id=b1.id,
        source_framework_id=fw_a.id, target_framework_id=fw_b.id,
        mapping_type="EQUIVALENT", confidence="HIGH",
    ))
    await db.commit()
    return seed_org, {
        "fw_a": fw_a.id, "fw_b": fw_b.id,
        "a1": a1.id, "a2": a2.id, "b1": b1.id, "b2": b2.id,
    }


@pytest_asyncio.fixture
async def seed_risk(db: AsyncSession, seed_catalog):
    """One IN_PROGRESS assessment on framework A with a 4×4 risk linked to A.1 at 50%.

    Returns (org_id, ids) where ids also holds "assessment" and "risk".
    """
    from riskengine.models import Assessment, Risk, RiskControl

    org_id, ids = seed_catalog
    assessment = Assessment(
        organization_id=org_id, framework_id=ids["fw_a"],
        ai_system_name="Credit scoring model", title="Q1 review", status="IN_PROGRESS",
    )
    db.add(assessment)
    await db.flush()

    risk = Risk(
        assessment_id=assessment.id, title="Biased approvals", category="BIAS_FAIRNESS",
        likelihood=4, impact=4, inherent_score=16, residual_score=16,
    )
    db.add(risk)
    await db.flush()
    db.add(RiskControl(risk_id=risk.id, control_id=ids["a1"], effectiveness=50))
    await db.commit()
    return org_id, {**ids, "assessment": assessment.id, "risk": risk.id}
