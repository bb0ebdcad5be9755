"""Pytest configuration for rotlog tests."""

import logging

import pytest


@pytest.fixture(autouse=True)
def quiet_rotlog_logger():
    """Drop handlers bound to captured streams between tests."""
    yield
    logger = logging.getLogger('rotlog')
    logger.handlers.clear()
    logger.setLevel(logging.WARNING)
