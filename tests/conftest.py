# tests/conftest.py

import os

# Секрет должен быть задан до импорта ecahub.core.jwt_auth
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENVIRONMENT", "test")

import pytest  # noqa: E402

from ecahub.core.limits import limiter  # noqa: E402


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
