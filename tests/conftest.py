"""
Shared fixtures for cache tests.
"""
import threading
from pathlib import Path
from typing import Any, List, Optional

import pytest

from app.cache.errors import RemoteFetchError
from config.settings import Settings


class FakeFetcher:
    """
    Stand-in for the Sheets client.

    Returns queued outcomes in order (the last one repeats). An outcome that
    is an Exception instance is raised instead of returned. When ``gate`` is
    given, each call blocks on it after signalling ``started``, which lets
    tests hold a fetch in flight.
    """

    def __init__(self, outcomes: Optional[List[Any]] = None, gate: Optional[threading.Event] = None):
        self.outcomes = list(outcomes or [{"values": [["a", "b"], ["1", "2"]]}])
        self.gate = gate
        self.started = threading.Event()
        self.calls = 0
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def __call__(self) -> Any:
        with self._lock:
            self.calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
            index = min(self.calls - 1, len(self.outcomes) - 1)
            outcome = self.outcomes[index]
        try:
            self.started.set()
            if self.gate is not None:
                self.gate.wait(timeout=5)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome
        finally:
            with self._lock:
                self.active -= 1


def make_settings(tmp_path: Path, configured: bool = True, **overrides) -> Settings:
    """Settings isolated from the environment and the real cache file."""
    values = {
        "google_sheets_api_key": "test-key" if configured else None,
        "google_spreadsheet_id": "sheet-123" if configured else None,
        "cache_file_path": tmp_path / ".data" / "sheet_cache.json",
        "bootstrap_wait_seconds": 5.0,
        "fetch_max_attempts": 3,
        "fetch_retry_multiplier": 0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def test_settings(tmp_path):
    return make_settings(tmp_path)


@pytest.fixture
def payload():
    return {"range": "All!A1:AZ3", "values": [["name", "score"], ["ada", "10"], ["bob", "7"]]}


@pytest.fixture
def forbidden():
    return RemoteFetchError('{"error": {"code": 403, "status": "PERMISSION_DENIED"}}', status_code=403)
