#!/usr/bin/env python3
"""
Pytest configuration for syno-iscsi tests.

This file contains shared fixtures and configurations for unit tests.
"""

import os
import sys
import pytest
import logging
from unittest.mock import MagicMock

# Add project root to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../')))

from syno_iscsi.config import (
    HOST_ENV_VAR, PORT_ENV_VAR, USER_ENV_VAR, PASS_ENV_VAR, HTTPS_ENV_VAR, VERIFY_SSL_ENV_VAR
)
from tests.appliance_data import (
    VOL1, VOL2, LUN1, LUN2, TARGET1, TARGET2, CONNECTION, make_client
)

SYNO_ENV_VARS = [HOST_ENV_VAR, PORT_ENV_VAR, USER_ENV_VAR, PASS_ENV_VAR, HTTPS_ENV_VAR, VERIFY_SSL_ENV_VAR]


@pytest.fixture
def mock_logger():
    """Fixture providing a mock logger that won't output during tests."""
    logger = MagicMock(spec=logging.Logger)
    return logger


@pytest.fixture
def connection_config():
    """Fixture providing complete connection settings."""
    return dict(CONNECTION)


@pytest.fixture
def mock_client():
    """Fixture providing a storage client that knows the sample volumes, LUNs and targets."""
    return make_client(
        volumes=[VOL1, VOL2],
        luns=[LUN1, LUN2],
        targets=[TARGET1, TARGET2]
    )


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """
    Fixture isolating tests from the SYNO_* environment and any .env file.

    Runs the test from an empty working directory. Variables a test loads
    through python-dotenv are removed again afterwards.
    """
    for var in SYNO_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)

    yield tmp_path

    for var in SYNO_ENV_VARS:
        os.environ.pop(var, None)
