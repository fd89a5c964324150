import logging

import pytest
import uvicorn

from jwtlab import server
from jwtlab.logging_conf import set_level
from jwtlab.main import open_store


@pytest.fixture
def env(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DATABASE_URI", str(tmp_path / "server.sqlite"))
    monkeypatch.setenv("JWT_SECRET", "server-secret-0123456789abcdef0123456789")
    monkeypatch.delenv("SERVER_PORT", raising=False)
    previous = logging.getLogger().level
    yield tmp_path
    set_level(previous)


def _no_serve(monkeypatch):
    def run(self):
        raise AssertionError("server must not start")

    monkeypatch.setattr(uvicorn.Server, "run", run)


def test_invalid_port_is_fatal(env, monkeypatch):
    _no_serve(monkeypatch)
    monkeypatch.setenv("SERVER_PORT", "eighty")
    with pytest.raises(SystemExit) as exc:
        server.main()
    assert exc.value.code == 1


def test_unopenable_database_is_fatal(env, monkeypatch):
    _no_serve(monkeypatch)
    monkeypatch.setenv("DATABASE_URI", str(env / "missing" / "db.sqlite"))
    with pytest.raises(SystemExit) as exc:
        server.main()
    assert exc.value.code == 1


def test_store_closes_after_server_stops(env, monkeypatch):
    events = []

    def spying_open_store(settings):
        store = open_store(settings)
        real_close = store.close

        def close():
            events.append("close")
            real_close()

        store.close = close
        return store

    def run(self):
        events.append("serve")
        self.started = True

    monkeypatch.setattr(server, "open_store", spying_open_store)
    monkeypatch.setattr(uvicorn.Server, "run", run)
    monkeypatch.setenv("SERVER_PORT", "18080")

    server.main()

    assert events == ["serve", "close"]


def test_log_level_from_env_file_reaches_app_loggers(env, monkeypatch):
    (env / ".env").write_text("LOG_LEVEL=WARNING\n")
    monkeypatch.delenv("LOG_LEVEL", raising=False)

    def run(self):
        self.started = True

    monkeypatch.setattr(uvicorn.Server, "run", run)
    server.main()

    assert logging.getLogger("jwtlab.service.tokens").getEffectiveLevel() == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
