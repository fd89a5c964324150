import sqlite3
from datetime import datetime

import pytest
from sqlalchemy import text

from jwtlab.domain.errors import (
    DuplicateKeyError,
    PersistenceError,
    StoreConnectionError,
)
from jwtlab.domain.models import TokenUsage, from_epoch
from jwtlab.store import SQLiteTokenStore
from jwtlab.store.sqlite import to_sqlalchemy_url
from tests.factories import make_token


def test_open_applies_pragmas(store):
    with store.engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
        assert conn.exec_driver_sql("PRAGMA synchronous").scalar() == 1  # NORMAL
        assert conn.exec_driver_sql("PRAGMA foreign_keys").scalar() == 1


def test_pool_is_capped_to_one_connection(tmp_path):
    store = SQLiteTokenStore.open(str(tmp_path / "one.sqlite"), timeout=0.2)
    try:
        assert store.engine.pool.size() == 1
        with store.engine.connect():
            # The only connection is checked out; a second caller must time out.
            with pytest.raises(StoreConnectionError):
                store.ping()
        store.ping()
    finally:
        store.close()


def test_open_fails_on_unreachable_path(tmp_path):
    with pytest.raises(StoreConnectionError):
        SQLiteTokenStore.open(str(tmp_path / "missing" / "dir" / "db.sqlite"))


def test_to_sqlalchemy_url():
    assert to_sqlalchemy_url("jwtgo.sqlite") == "sqlite:///jwtgo.sqlite"
    assert to_sqlalchemy_url("sqlite:////tmp/x.db") == "sqlite:////tmp/x.db"


def test_migrate_is_idempotent(store):
    store.create(make_token("keep-me"))
    store.migrate()
    store.migrate()
    assert [t.id for t in store.list_tokens()] == ["keep-me"]
    with store.engine.connect() as conn:
        tables = {row[0] for row in conn.exec_driver_sql("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {"tokens", "token_usages"} <= tables


def test_list_empty(store):
    assert store.list_tokens() == []


def test_create_and_list_round_trip(store):
    token = make_token("t-1", issued=1_700_000_000, lifetime=3600)
    store.create(token)

    [loaded] = store.list_tokens()
    assert loaded.id == "t-1"
    assert loaded.is_revoked is False
    assert loaded.issued_at == from_epoch(1_700_000_000)
    assert loaded.expires_at == from_epoch(1_700_003_600)
    assert loaded.updated_at == loaded.issued_at
    assert loaded.token is None


def test_list_orders_by_updated_at_numerically(store):
    # "999" sorts after "1000" as text; the listing must use numeric order.
    store.create(make_token("c", issued=500, updated=1000))
    store.create(make_token("a", issued=500, updated=999))
    store.create(make_token("b", issued=500, updated=5000))

    assert [t.id for t in store.list_tokens()] == ["a", "c", "b"]


def test_create_duplicate_id(store):
    store.create(make_token("dup"))
    with pytest.raises(DuplicateKeyError):
        store.create(make_token("dup"))
    assert len(store.list_tokens()) == 1


def test_list_aborts_on_malformed_timestamp(store):
    store.create(make_token("good"))
    with store.engine.begin() as conn:
        conn.execute(
            text(
                "INSERT INTO tokens (id, is_revoked, issued_at, expires_at, updated_at) "
                "VALUES ('bad', 0, 'yesterday', '2', '3')"
            )
        )
    with pytest.raises(PersistenceError):
        store.list_tokens()


def test_statement_past_deadline_is_interrupted(store):
    with store.engine.begin() as conn:
        conn.exec_driver_sql(
            "WITH RECURSIVE n(i) AS (SELECT 1 UNION ALL SELECT i + 1 FROM n WHERE i < 20000) "
            "INSERT INTO tokens (id, is_revoked, issued_at, expires_at, updated_at) "
            "SELECT printf('bulk-%d', i), 0, '1', '2', CAST(20000 - i AS TEXT) FROM n"
        )

    with pytest.raises(PersistenceError):
        store.list_tokens(timeout=0.0)

    # The deadline is per call; the connection is usable again afterwards.
    assert len(store.list_tokens()) == 20000


def test_create_gives_up_on_locked_database(tmp_path):
    path = tmp_path / "locked.sqlite"
    store = SQLiteTokenStore.open(str(path), timeout=0.2)
    store.migrate()
    other = sqlite3.connect(path, isolation_level=None)
    try:
        other.execute("BEGIN IMMEDIATE")
        with pytest.raises(PersistenceError):
            store.create(make_token("blocked"))
        other.execute("ROLLBACK")
        store.create(make_token("after"))
        assert [t.id for t in store.list_tokens()] == ["after"]
    finally:
        other.close()
        store.close()


def test_close_is_idempotent(tmp_path):
    store = SQLiteTokenStore.open(str(tmp_path / "c.sqlite"))
    store.close()
    store.close()
    SQLiteTokenStore().close()


def test_operations_after_close_fail(tmp_path):
    store = SQLiteTokenStore.open(str(tmp_path / "c.sqlite"))
    store.migrate()
    store.close()
    with pytest.raises(StoreConnectionError):
        store.ping()
    with pytest.raises(PersistenceError):
        store.create(make_token("late"))


def test_get(store):
    store.create(make_token("x"))
    assert store.get("x").id == "x"
    assert store.get("nope") is None


def test_revoke_is_monotonic(store):
    store.create(make_token("r", issued=1_000, updated=1_000))

    first = store.revoke("r", now=from_epoch(2_000))
    assert first.is_revoked is True
    assert first.updated_at == from_epoch(2_000)

    again = store.revoke("r", now=from_epoch(3_000))
    assert again.is_revoked is True
    assert again.updated_at == from_epoch(2_000)

    assert store.revoke("missing", now=from_epoch(3_000)) is None


def test_usages_follow_their_token(store):
    store.create(make_token("u"))
    store.record_usage(TokenUsage(token_id="u", used_at=from_epoch(10), client_ip="1.2.3.4", user_agent="ua"))
    saved = store.record_usage(TokenUsage(token_id="u", used_at=from_epoch(20)))
    assert saved.id is not None

    usages = store.list_usages("u")
    assert [u.used_at for u in usages] == [from_epoch(10), from_epoch(20)]
    assert usages[0].client_ip == "1.2.3.4"

    assert store.delete("u") is True
    assert store.list_usages("u") == []
    assert store.delete("u") is False


def test_usage_requires_existing_token(store):
    with pytest.raises(PersistenceError):
        store.record_usage(TokenUsage(token_id="ghost", used_at=datetime.now().astimezone()))
