"""Pytest configuration and fixtures for wikiportable tests."""

import json
import logging
import os
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pytest
from hypothesis import settings, Phase

from wikiportable.backups import BackupManager
from wikiportable.config import Configuration
from wikiportable.logger import LOGGER_NAME
from wikiportable.service import WikiService
from wikiportable.store import EntryStore
from wikiportable.web import create_app

# Configure hypothesis to use fewer examples for faster test runs
# Disable shrinking phase to speed up tests further
settings.register_profile(
    "fast",
    max_examples=10,
    deadline=10000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate]
)
settings.register_profile("ci", max_examples=50, deadline=10000)
settings.register_profile("dev", max_examples=2, deadline=10000)

# Use the fast profile by default
settings.load_profile("fast")


class FakeClock:
    """Local clock that moves one second forward on every call."""

    def __init__(self, start: datetime = datetime(2025, 1, 1, 12, 0, 0)):
        self.current = start

    def __call__(self) -> datetime:
        value = self.current
        self.current += timedelta(seconds=1)
        return value


def write_json(path: Path, content: Any, mtime: Optional[float] = None) -> Path:
    """Write content as JSON, optionally forcing the file's mtime."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(content, ensure_ascii=False), encoding="utf-8")
    if mtime is not None:
        os.utime(path, (mtime, mtime))
    return path


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path: Path) -> Configuration:
    """Default configuration rooted in a temporary folder."""
    return Configuration().resolve_paths(tmp_path)


@pytest.fixture
def data_path(config: Configuration) -> Path:
    return config.storage.data_path


@pytest.fixture
def backup_dir(config: Configuration) -> Path:
    return config.storage.backup_dir


@pytest.fixture
def backups(config: Configuration, clock: FakeClock) -> BackupManager:
    return BackupManager(
        source=config.storage.data_path,
        backup_dir=config.storage.backup_dir,
        max_backups=config.retention.max_backups,
        clock=clock,
    )


@pytest.fixture
def store(config: Configuration, backups: BackupManager) -> EntryStore:
    return EntryStore(config.storage.data_path, backups=backups)


@pytest.fixture
def service(config: Configuration, clock: FakeClock) -> WikiService:
    return WikiService(config, clock=clock)


@pytest.fixture
def app(service: WikiService):
    app = create_app(service=service)
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def cleanup_logger():
    """Close and remove the package logger's handlers after a test."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
