"""
Shared test fixtures and configuration for pytest.
"""

import hashlib
import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional

import pytest

# Add src directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from process_engine.providers.base import CognitiveBackend  # noqa: E402
from vector.exceptions import EmbeddingUnavailableError  # noqa: E402


logger = logging.getLogger(__name__)


# ============================================================================
# Environment detection
# ============================================================================

def sqlserver_connection_string() -> Optional[str]:
    """Build a connection string from the environment, or None without a password."""
    explicit = os.environ.get("ENGINE_SQLSERVER_CONN_STR")
    if explicit:
        return explicit

    password = os.environ.get("ENGINE_SQLSERVER_PASSWORD") or os.environ.get("MSSQL_SA_PASSWORD")
    if not password:
        return None

    host = os.environ.get("ENGINE_SQLSERVER_HOST", "localhost")
    port = int(os.environ.get("ENGINE_SQLSERVER_PORT", "1433"))
    database = os.environ.get("ENGINE_SQLSERVER_DATABASE",
                              os.environ.get("MSSQL_DATABASE", "master"))
    username = os.environ.get("ENGINE_SQLSERVER_USER", "sa")
    driver = os.environ.get("ENGINE_SQLSERVER_DRIVER", "ODBC Driver 18 for SQL Server")
    return (
        f"Driver={{{driver}}};"
        f"Server={host},{port};"
        f"Database={database};"
        f"UID={username};"
        f"PWD={password};"
        f"TrustServerCertificate=yes"
    )


def is_sqlserver_available() -> bool:
    """Check if SQL Server is available for testing."""
    conn_str = sqlserver_connection_string()
    if not conn_str:
        return False

    try:
        import pyodbc

        conn = pyodbc.connect(conn_str, timeout=5)
        conn.close()
        return True
    except Exception as e:
        logger.debug(f"SQL Server not available: {e}")
        return False


# ============================================================================
# Pytest hooks
# ============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (no external dependencies)")
    config.addinivalue_line("markers", "integration: Integration tests (requires SQL Server)")


def pytest_collection_modifyitems(config, items):
    """Automatically skip integration tests if SQL Server is not available."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_sqlserver_available():
        return

    skip_sqlserver = pytest.mark.skip(
        reason="SQL Server not available (set ENGINE_SQLSERVER_PASSWORD or MSSQL_SA_PASSWORD)"
    )
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_sqlserver)


# ============================================================================
# Test doubles
# ============================================================================

class FakeBackend(CognitiveBackend):
    """
    Deterministic embedding backend.

    Vectors are derived from a hash of the text, so equal text gives equal
    vectors. Texts listed in ``fail_on`` (or containing one of them) raise
    EmbeddingUnavailableError.
    """

    embedding_model = "fake-embed"

    def __init__(self, dimension: int = 4, fail_on: Optional[List[str]] = None):
        self.dimension = dimension
        self.fail_on = fail_on or []
        self.calls: List[str] = []

    def generate_embedding(self, text: str) -> List[float]:
        self.calls.append(text)
        if any(marker in text for marker in self.fail_on):
            raise EmbeddingUnavailableError("backend offline", provider="fake")
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        return [(digest[i] - 127.5) / 127.5 for i in range(self.dimension)]

    def generate_text(self, prompt: str, system_prompt: Optional[str] = None) -> str:
        return f"echo: {prompt}"


class FakeClock:
    """Clock advancing one second per call, starting at a fixed instant."""

    def __init__(self, start: Optional[datetime] = None):
        self.current = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        value = self.current
        self.current = self.current + timedelta(seconds=1)
        return value


# ============================================================================
# Fixtures
# ============================================================================

@pytest.fixture
def fake_backend() -> FakeBackend:
    """Deterministic 4-dimensional embedding backend."""
    return FakeBackend(dimension=4)


@pytest.fixture
def backend_factory():
    """Build FakeBackend instances with custom dimension or failures."""
    return FakeBackend


@pytest.fixture
def clock() -> FakeClock:
    """Deterministic clock."""
    return FakeClock()


@pytest.fixture
def execution_store(tmp_path):
    """SQLite execution store in a temporary directory."""
    from process_engine.storage.sqlite_execution_store import SqliteExecutionStore

    store = SqliteExecutionStore(tmp_path / "engine.db")
    yield store
    store.close()


@pytest.fixture
def embedding_store(tmp_path):
    """SQLite embedding store with small shards for tests."""
    from vector.store import SqliteEmbeddingStore

    store = SqliteEmbeddingStore(tmp_path / "vectors.db", dimensions=(3, 4, 8))
    yield store
    store.close()


@pytest.fixture(scope="session")
def sqlserver_conn_str() -> Optional[str]:
    """SQL Server connection string from the environment."""
    return sqlserver_connection_string()


@pytest.fixture(scope="function")
def test_schema_name() -> str:
    """Fixture providing a unique test schema name."""
    import uuid
    return f"test_{uuid.uuid4().hex[:8]}"
