from __future__ import annotations

import pytest

from core.runtime import build_runtime
from core.storage import InMemoryStorage
from helpers import FakeGateway, make_config


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def runtime(gateway, storage):
    return build_runtime(make_config(), storage, gateway)
