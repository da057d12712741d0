from datetime import datetime, timezone

import pytest

from mergegate.repository import MemoryRepository
from mergegate.service import LifecycleService
from mergegate.states import Approval


@pytest.fixture
def approval():
    return Approval(priority=1, time=datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc), username="alice")


@pytest.fixture
def repo():
    return MemoryRepository()


@pytest.fixture
def service(repo):
    return LifecycleService(repository=repo)
