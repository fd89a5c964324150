"""Shared fixtures: a throwaway SQLite file per test and the objects built on it."""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from jwtlab.config import Settings
from jwtlab.main import create_app, open_store
from jwtlab.service import TokenService

from tests.factories import SECRET


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_uri=str(tmp_path / "tokens.sqlite"),
        jwt_secret=SECRET,
        store_timeout_sec=5.0,
    )


@pytest.fixture
def store(settings):
    s = open_store(settings)
    yield s
    s.close()


@pytest.fixture
def service(store) -> TokenService:
    return TokenService(store, secret=SECRET)


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
