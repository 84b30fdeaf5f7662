from __future__ import annotations

import os
import tempfile

# Point settings at a throwaway SQLite file before any signalflow module builds the engine.
_DB_DIR = tempfile.mkdtemp(prefix="signalflow-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{os.path.join(_DB_DIR, 'signalflow.db')}")
os.environ.setdefault("LLM_PROVIDER", "fake")

import pytest

from signalflow.core.config import get_settings
from signalflow.domain.models import Base
from signalflow.persistence.db import SessionLocal, engine
from signalflow.services.ai.cache import reset_execution_cache
from signalflow.services.audit import drain_pending_audits
from signalflow.services.telemetry import reset_telemetry


@pytest.fixture(autouse=True)
async def reset_database_between_tests() -> None:
    # Every test starts from empty tables; drain audit writes before dropping them.
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    await drain_pending_audits()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    # Dispose the async engine to prevent cross-loop connection reuse between tests.
    await engine.dispose()


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Cache, telemetry and settings are process-wide; isolate them per test.
    reset_execution_cache()
    reset_telemetry()
    yield
    reset_execution_cache()
    reset_telemetry()
    get_settings.cache_clear()


@pytest.fixture
async def session():
    async with SessionLocal() as db_session:
        yield db_session
