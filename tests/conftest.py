"""Shared fixtures."""

import random

import pytest

from tests.fakes import FakeClock, RecordingSleep, public_resolver


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def rng():
    return random.Random(42)


@pytest.fixture
def resolver():
    return public_resolver
