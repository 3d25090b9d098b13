"""Shared fixtures for resilient_db tests."""

import pytest

from resilient_db import Database
from tests.utils.fake_driver import FakeDriver, fast_config


@pytest.fixture
def fake_driver():
    return FakeDriver()


@pytest.fixture
def make_database(fake_driver):
    """Factory building a Database over the fake driver."""
    def factory(driver=None, on_fatal=None, logger=None, **overrides):
        return Database(
            fast_config(**overrides),
            driver=driver or fake_driver,
            logger=logger,
            on_fatal=on_fatal,
        )
    return factory
