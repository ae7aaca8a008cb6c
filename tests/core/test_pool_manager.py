"""Unit tests for core.pool.manager: ConnectionPool and PoolRegistry."""

from unittest.mock import MagicMock, patch

import pytest

from dbstage.core.errors import ConfigError, ShutdownError
from dbstage.core.pool import ConnectionPool, PoolRegistry, get_pool_registry
from dbstage.models import resolve_config
from tests.conftest import CFG
from tests.utils.fake_driver import FakeConnection


def _pool(**kwargs) -> ConnectionPool:
    return ConnectionPool(resolve_config(CFG), **kwargs)


# --- ConnectionPool ---


def test_acquire_release_reuses_connection(mock_connect: MagicMock, fake_conn: FakeConnection) -> None:
    pool = _pool()
    conn1 = pool.acquire()
    pool.release(conn1)
    conn2 = pool.acquire()

    assert conn1 is conn2 is fake_conn
    assert mock_connect.call_count == 1
    # reset on release and again on checkout
    assert fake_conn.calls == ["rollback", "rollback"]


def test_release_is_idempotent(mock_connect: MagicMock, fake_conn: FakeConnection) -> None:
    pool = _pool()
    conn = pool.acquire()
    pool.release(conn)
    pool.release(conn)
    pool.release(object())
    assert pool.stats() == {"idle_connections": 1, "checked_out": 0}


def test_release_closes_when_pool_full() -> None:
    conns = [FakeConnection(), FakeConnection()]
    with patch("dbstage.core.pool.manager.connect", side_effect=conns):
        pool = _pool(pool_size=1)
        a = pool.acquire()
        b = pool.acquire()
        pool.release(a)
        pool.release(b)
    assert not conns[0].closed
    assert conns[1].closed
    assert pool.stats()["idle_connections"] == 1


def test_release_closes_when_reset_fails(mock_connect: MagicMock, fake_conn: FakeConnection) -> None:
    pool = _pool()
    conn = pool.acquire()
    fake_conn.fail("rollback", RuntimeError("broken"))
    pool.release(conn)
    assert fake_conn.closed
    assert pool.stats() == {"idle_connections": 0, "checked_out": 0}


def test_expired_connection_is_replaced() -> None:
    old, new = FakeConnection(), FakeConnection()
    with patch("dbstage.core.pool.manager.connect", side_effect=[old, new]):
        pool = _pool(max_age=-1.0)
        conn = pool.acquire()
        pool.release(conn)
        assert old.closed
        assert pool.acquire() is new


def test_close_drains_idle_and_closes_late_releases() -> None:
    idle, busy = FakeConnection(), FakeConnection()
    with patch("dbstage.core.pool.manager.connect", side_effect=[idle, busy]):
        pool = _pool()
        a = pool.acquire()
        b = pool.acquire()
        pool.release(a)
        pool.close()
        assert idle.closed
        assert not busy.closed
        pool.release(b)
    assert busy.closed
    assert pool.closed


def test_acquire_after_close_is_shutdown_error(mock_connect: MagicMock) -> None:
    pool = _pool()
    pool.close()
    with pytest.raises(ShutdownError):
        pool.acquire()
    mock_connect.assert_not_called()


def test_connect_failure_propagates(mock_connect: MagicMock) -> None:
    mock_connect.side_effect = OSError("refused")
    pool = _pool()
    with pytest.raises(OSError):
        pool.acquire()
    assert pool.stats()["checked_out"] == 0


# --- PoolRegistry ---


def test_registry_caches_pool_per_identity(mock_connect: MagicMock) -> None:
    reg = PoolRegistry()
    p1 = reg.get_pool(CFG)
    p2 = reg.get_pool(dict(CFG))
    p3 = reg.get_pool("mysql://u:p@localhost:3306/db")
    p4 = reg.get_pool({**CFG, "database": "other"})
    assert p1 is p2 is p3
    assert p4 is not p1
    assert reg.stats()["pools"] == 2


@pytest.mark.parametrize("bad", [None, {}, "", {"host": "localhost"}, "oracle://u@h/db"])
def test_registry_rejects_bad_config(bad: object) -> None:
    with pytest.raises(ConfigError):
        PoolRegistry().get_pool(bad)


def test_curtains_closes_pools_and_rejects_new_work(
    mock_connect: MagicMock, fake_conn: FakeConnection
) -> None:
    reg = PoolRegistry()
    pool = reg.get_pool(CFG)
    pool.release(pool.acquire())
    done = MagicMock()

    reg.curtains(done)

    done.assert_called_once_with()
    assert reg.closing
    assert pool.closed
    assert fake_conn.closed
    with pytest.raises(ShutdownError):
        reg.get_pool(CFG)
    with pytest.raises(ShutdownError):
        reg.submit(lambda: None)


def test_curtains_twice_is_harmless() -> None:
    reg = PoolRegistry()
    reg.curtains()
    reg.curtains()
    assert reg.closing


def test_submit_runs_on_worker_thread() -> None:
    reg = PoolRegistry(max_workers=1)
    try:
        fut = reg.submit(lambda: 41 + 1)
        assert fut.result(timeout=5) == 42
    finally:
        reg.curtains()


def test_get_pool_registry_is_singleton() -> None:
    assert get_pool_registry() is get_pool_registry()
