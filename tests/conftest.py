import sqlite3

import pytest
from dependency_injector import providers
from fastapi.testclient import TestClient

from core.config import Settings
from core.container import container
from core.kv_store import KeyValueStore


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test.db"


@pytest.fixture
def settings(db_path):
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{db_path}",
        kv_backend="memory",
        redis_enabled=False,
        scheduler_enabled=False,
        insights_batch_pause_seconds=0,
        openai_api_key=None,
        log_format="console",
    )


@pytest.fixture
def memory_store(settings, clock):
    return KeyValueStore(settings, namespace="cache", clock=clock)


@pytest.fixture
def app_container(settings):
    container.settings.override(providers.Object(settings))
    container.reset_singletons()
    yield container
    container.settings.reset_override()
    container.reset_singletons()


@pytest.fixture
def users_table(db_path):
    """Plain table with 120 rows, created outside the ORM."""
    conn = sqlite3.connect(db_path)
    conn.execute(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, name TEXT, email VARCHAR(255), age INTEGER)"
    )
    conn.executemany(
        "INSERT INTO users (id, name, email, age) VALUES (?, ?, ?, ?)",
        [(i, f"Person {i}", f"person{i}@example.com", 20 + i % 3) for i in range(1, 121)],
    )
    conn.commit()
    conn.close()
    return "users"


@pytest.fixture
def client(app_container, users_table):
    from main import app

    with TestClient(app) as test_client:
        yield test_client
