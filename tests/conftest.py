"""Shared test fixtures for the toolgate test suite."""

from datetime import UTC, datetime

import pytest

from toolgate.core.models import InvocationContext
from toolgate.storage.memory import MemoryToolStore
from toolgate.storage.sql import SqlToolStore
from toolgate.tools.catalog import ToolCatalog

FIXED_NOW = datetime(2026, 3, 15, 10, 30, tzinfo=UTC)


@pytest.fixture
def ctx():
    return InvocationContext(
        actor_id="user-alice",
        workspace_id="ws-acme",
        project_id="proj-launch",
        session_id="chat-1",
    )


@pytest.fixture
def other_ctx():
    return InvocationContext(actor_id="user-bob", workspace_id="ws-other")


@pytest.fixture
def catalog():
    return ToolCatalog()


@pytest.fixture
def memory_store():
    return MemoryToolStore()


@pytest.fixture
def sql_store():
    store = SqlToolStore(":memory:")
    yield store
    store.close()


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Every ToolStore implementation, for contract tests."""
    if request.param == "memory":
        yield MemoryToolStore()
    else:
        sql = SqlToolStore(":memory:")
        yield sql
        sql.close()


@pytest.fixture
def fixed_clock():
    return lambda: FIXED_NOW


@pytest.fixture
def write_raw_policy():
    """Write a policy row as-is, bypassing PolicyConfig validation."""

    def write(sql: SqlToolStore, workspace_id: str, raw: str) -> None:
        sql._conn.execute(
            "INSERT INTO workspace_policies (workspace_id, policy, updated_at) VALUES (?, ?, ?)",
            (workspace_id, raw, FIXED_NOW.isoformat()),
        )
        sql._conn.commit()

    return write
