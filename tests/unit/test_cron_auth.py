"""Tests for scheduler shared-secret authentication

Tests cover:
- Valid bearer token accepted
- Missing, malformed and wrong tokens rejected with a uniform 401
- Missing secret allowed in development, refused in production
"""

from __future__ import annotations

import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from rdevidence.api.middleware.auth import require_cron_secret


@pytest.fixture
def client():
    app = FastAPI()

    @app.post("/protected")
    def protected(authenticated: bool = Depends(require_cron_secret)):
        return {"ok": True}

    return TestClient(app)


@pytest.fixture
def cron_secret(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", "s3cret-value")
    return "s3cret-value"


def test_valid_token_accepted(client, cron_secret):
    response = client.post("/protected", headers={"Authorization": f"Bearer {cron_secret}"})
    assert response.status_code == 200
    assert response.json() == {"ok": True}


def test_scheme_is_case_insensitive(client, cron_secret):
    response = client.post("/protected", headers={"Authorization": f"bearer {cron_secret}"})
    assert response.status_code == 200


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "s3cret-value"},
        {"Authorization": "Basic s3cret-value"},
        {"Authorization": "Bearer wrong-value"},
        {"Authorization": "Bearer "},
    ],
)
def test_rejected_requests_get_uniform_401(client, cron_secret, headers):
    response = client.post("/protected", headers=headers)
    assert response.status_code == 401
    assert response.json() == {"detail": "Unauthorized"}


def test_no_secret_allowed_in_development(client):
    assert client.post("/protected").status_code == 200


def test_no_secret_refused_in_production(client, monkeypatch):
    monkeypatch.setenv("RDEVIDENCE_ENV", "production")
    assert client.post("/protected").status_code == 401
