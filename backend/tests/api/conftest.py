"""Fixtures for the HTTP API tests.

client  TestClient bound to the shared test session; job dispatch is a
        MagicMock exposed as ``client.dispatch``.
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from grantwatch.api.deps import get_job_dispatcher
from grantwatch.main import app
from grantwatch.models.base import get_db


@pytest.fixture
def client(db):
    dispatch = MagicMock()

    def override_get_db():
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_job_dispatcher] = lambda: dispatch

    # No context manager: the lifespan would create tables on the configured engine
    test_client = TestClient(app)
    test_client.dispatch = dispatch
    yield test_client
    app.dependency_overrides.clear()
