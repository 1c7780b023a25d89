"""Shared fixtures for engine tests."""

import pytest

from fakes import FakeSpawner, RecordingSink


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def spawner():
    return FakeSpawner()
