"""Shared test fixtures for HomeControl tests.

This module provides common fixtures used across all test modules:
- Database isolation with temporary files
- Standard household/user/token data
- A fake push transport

Usage:
    def test_something(mobile_db):
        # mobile_db points homecontrol.mobile at a throwaway database
        ...
"""

import os
import tempfile
from collections.abc import Generator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import patch

import pytest

from homecontrol.config_models import PushConfig
from homecontrol.mobile.models import PushTicket


# ─────────────────────────────────────────────────────────────────────────────
# Path Constants
# ─────────────────────────────────────────────────────────────────────────────

PROJECT_ROOT = Path(__file__).parent.parent


# ─────────────────────────────────────────────────────────────────────────────
# Database Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def temp_db() -> Generator[Path, None, None]:
    """Create a temporary database file for testing.

    The database file is automatically deleted after the test completes.

    Yields:
        Path to the temporary database file
    """
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = Path(f.name)

    yield db_path

    # Cleanup
    if db_path.exists():
        os.unlink(db_path)


@pytest.fixture
def mobile_db(temp_db: Path) -> Generator[Path, None, None]:
    """Point the mobile package (queue, dead letters, push settings) at a temp database."""
    with patch("homecontrol.mobile.DB_PATH", temp_db):
        yield temp_db


@pytest.fixture
def tasks_db(tmp_path: Path) -> Generator[Path, None, None]:
    """Point the task store at a temp database."""
    db_path = tmp_path / "tasks.db"
    with patch("homecontrol.tasks.DB_PATH", db_path):
        yield db_path


# ─────────────────────────────────────────────────────────────────────────────
# Configuration Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def push_config() -> PushConfig:
    """Default push configuration, independent of args/push.yaml."""
    return PushConfig()


# ─────────────────────────────────────────────────────────────────────────────
# Push Fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def now() -> datetime:
    """Fixed sweep time: Monday 2025-03-10 22:30 UTC."""
    return datetime(2025, 3, 10, 22, 30, tzinfo=timezone.utc)


@pytest.fixture
def household_id() -> str:
    return "household_nordmann"


@pytest.fixture
def tokens() -> list[str]:
    """Three valid Expo tokens."""
    return [
        "ExponentPushToken[aaaaaaaaaaaaaaaaaaaaaa]",
        "ExponentPushToken[bbbbbbbbbbbbbbbbbbbbbb]",
        "ExponentPushToken[cccccccccccccccccccccc]",
    ]


class FakeTransport:
    """Records every chunk and answers with scripted tickets.

    `responses` maps a token to the ticket it should get; unknown tokens get
    an ok ticket. `error` makes every send() raise instead.
    """

    chunk_size = 100

    def __init__(self, responses: dict | None = None, error: Exception | None = None):
        self.responses = responses or {}
        self.error = error
        self.calls: list[list] = []

    async def send(self, messages):
        self.calls.append(list(messages))
        if self.error is not None:
            raise self.error
        return [
            self.responses.get(m.to, PushTicket(status="ok", id=f"ticket-{i}"))
            for i, m in enumerate(messages)
        ]

    @property
    def sent_tokens(self) -> list[str]:
        return [m.to for chunk in self.calls for m in chunk]


@pytest.fixture
def fake_transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def make_transport():
    """Factory for FakeTransport with scripted responses or a send() error."""
    return FakeTransport
