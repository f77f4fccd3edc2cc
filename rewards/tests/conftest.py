"""Shared test fixtures."""

import pytest

from rewards.auth import InMemoryIdentityProvider
from rewards.config import Settings
from rewards.service import RewardsService
from rewards.store import InMemoryStorage


PASSWORD = "s3cret-pass"


@pytest.fixture
def settings():
    return Settings(log_format="console")


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def auth():
    return InMemoryIdentityProvider()


@pytest.fixture
def service(storage, auth, settings):
    return RewardsService(storage=storage, auth=auth, settings=settings)


@pytest.fixture
def make_user(service):
    """Sign up a user with a unique email."""
    counter = {"n": 0}

    def _make(name="Alice", referral_code=None, email=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        return service.sign_up(email, PASSWORD, name, referral_code)

    return _make
