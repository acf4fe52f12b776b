import shutil
from pathlib import Path

import pytest

from pet_evolution.config import Settings
from pet_evolution.storage import InMemoryRepository, JsonRepository

TEST_DATA_DIR = Path("data-tests")


@pytest.fixture
def settings() -> Settings:
    return Settings()


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def json_repository():
    """Wipe and re-create data-tests/ for a file-backed repository."""
    if TEST_DATA_DIR.exists():
        shutil.rmtree(TEST_DATA_DIR)
    yield JsonRepository(TEST_DATA_DIR)
    # leave data-tests around after tests for inspection; CI can ignore it
