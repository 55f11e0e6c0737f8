# test/conftest.py
# --- añadir la raíz del repo al sys.path ---
import os
import sys

SYS_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if SYS_ROOT not in sys.path:
    sys.path.insert(0, SYS_ROOT)
# -------------------------------------------

import tempfile

# Logs y BD por defecto fuera del repo (antes de importar common.config)
_TMP = tempfile.mkdtemp(prefix="pytest_lockout_")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP, "logs"))
os.environ.setdefault("DB_PATH", os.path.join(_TMP, "default.db"))

import pytest

from lockout.store import MemoryPrincipalStore


class FakeClock:
    """Reloj manual: instantes en segundos epoch."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> float:
        self.now += seconds
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store():
    return MemoryPrincipalStore(timeout=1.0)


@pytest.fixture
def tmp_db(tmp_path, monkeypatch):
    """BD SQLite temporal para este test (users + attempt_ledgers)."""
    import server.persistence as persistence

    db_path = str(tmp_path / "test.db")
    monkeypatch.setattr(persistence, "DB_PATH", db_path)
    persistence.init_db()
    return db_path
