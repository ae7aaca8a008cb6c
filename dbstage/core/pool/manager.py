"""
Connection pools for stage finalization.

One ConnectionPool per DataSourceConfig identity, cached in a process-scoped
PoolRegistry. The registry also owns the worker threads that run finale()
calls, and is torn down once by curtains().
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, NamedTuple

from dbstage.core.config import settings
from dbstage.core.errors import ShutdownError
from dbstage.models import DataSourceConfig, resolve_config

from .connect import connect

_log = logging.getLogger(__name__)

_SHUTDOWN_MESSAGE = "Databases are closing down."


class _PoolEntry(NamedTuple):
    conn: Any
    created_at: float  # time.monotonic() when the connection was opened
    last_used: float   # time.monotonic() when last returned to pool


class ConnectionPool:
    """Idle-connection pool for one datasource, with max-age eviction."""

    def __init__(
        self,
        config: DataSourceConfig,
        *,
        pool_size: int | None = None,
        max_age: float | None = None,
    ) -> None:
        self.config = config
        self._idle: list[_PoolEntry] = []
        self._checked_out: dict[int, tuple[Any, float]] = {}
        self._lock = threading.Lock()
        self._closed = False
        self._pool_size = settings.POOL_SIZE if pool_size is None else pool_size
        self._max_age = float(settings.POOL_MAX_AGE_SEC if max_age is None else max_age)

    @property
    def closed(self) -> bool:
        return self._closed

    def acquire(self) -> Any:
        """Check out a connection (from the idle list or freshly opened)."""
        while True:
            entry = self._pop()
            if entry is None:
                break
            if self._is_expired(entry):
                self._close_quiet(entry.conn)
                continue
            try:
                entry.conn.rollback()
            except Exception:
                self._close_quiet(entry.conn)
                continue
            return self._check_out(entry.conn, entry.created_at)

        conn = connect(self.config)
        return self._check_out(conn, time.monotonic())

    def release(self, conn: Any) -> None:
        """Return a connection. Releasing one twice, or one this pool never lent, is a no-op."""
        with self._lock:
            held = self._checked_out.pop(id(conn), None)
        if held is None:
            return
        created_at = held[1]

        try:
            conn.rollback()
        except Exception:
            self._close_quiet(conn)
            return

        with self._lock:
            if not self._closed and len(self._idle) < self._pool_size:
                entry = _PoolEntry(conn=conn, created_at=created_at, last_used=time.monotonic())
                if not self._is_expired(entry):
                    self._idle.append(entry)
                    return

        self._close_quiet(conn)

    def close(self) -> None:
        """Close idle connections; connections still checked out are closed on release."""
        with self._lock:
            self._closed = True
            entries = self._idle
            self._idle = []
        for e in entries:
            self._close_quiet(e.conn)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "idle_connections": len(self._idle),
                "checked_out": len(self._checked_out),
            }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _pop(self) -> _PoolEntry | None:
        with self._lock:
            if self._closed:
                raise ShutdownError(_SHUTDOWN_MESSAGE)
            if self._idle:
                return self._idle.pop()
        return None

    def _check_out(self, conn: Any, created_at: float) -> Any:
        with self._lock:
            if self._closed:
                closed = True
            else:
                closed = False
                self._checked_out[id(conn)] = (conn, created_at)
        if closed:
            self._close_quiet(conn)
            raise ShutdownError(_SHUTDOWN_MESSAGE)
        return conn

    def _is_expired(self, entry: _PoolEntry) -> bool:
        return (time.monotonic() - entry.created_at) > self._max_age

    @staticmethod
    def _close_quiet(conn: Any) -> None:
        try:
            conn.close()
        except Exception as e:
            _log.debug("Ignoring error while closing connection: %s", e)


class PoolRegistry:
    """Pools keyed by config identity, plus the finale worker threads."""

    def __init__(self, *, max_workers: int | None = None) -> None:
        self._pools: dict[str, ConnectionPool] = {}
        self._lock = threading.Lock()
        self._closing = False
        self._executor: ThreadPoolExecutor | None = None
        self._max_workers = max_workers or settings.FINALE_WORKERS

    @property
    def closing(self) -> bool:
        return self._closing

    def get_pool(self, config: Any) -> ConnectionPool:
        """Return the cached pool for *config*, creating it on first use."""
        cfg = resolve_config(config)
        key = cfg.identity
        with self._lock:
            if self._closing:
                raise ShutdownError(_SHUTDOWN_MESSAGE)
            pool = self._pools.get(key)
            if pool is None:
                pool = ConnectionPool(cfg)
                self._pools[key] = pool
                _log.info(
                    "Created pool for %s@%s:%s/%s",
                    cfg.username,
                    cfg.host,
                    cfg.port,
                    cfg.database or "",
                )
        return pool

    def submit(self, fn: Callable[[], Any]) -> Future:
        with self._lock:
            if self._closing:
                raise ShutdownError(_SHUTDOWN_MESSAGE)
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="dbstage-finale"
                )
            executor = self._executor
        return executor.submit(fn)

    def curtains(self, callback: Callable[[], Any] | None = None) -> None:
        """
        Reject all further finalizations, then close every cached pool.

        In-flight finalizations are not interrupted; their connections are
        closed when released. Safe to call more than once.
        """
        with self._lock:
            self._closing = True
            pools = list(self._pools.values())
            self._pools.clear()
            executor = self._executor
            self._executor = None
        _log.info("Curtains: closing %d pool(s)", len(pools))
        for pool in pools:
            pool.close()
        if executor is not None:
            executor.shutdown(wait=False)
        if callback is not None:
            callback()

    def stats(self) -> dict[str, int]:
        """Return registry statistics for monitoring."""
        with self._lock:
            pools = list(self._pools.values())
        idle = 0
        checked_out = 0
        for pool in pools:
            s = pool.stats()
            idle += s["idle_connections"]
            checked_out += s["checked_out"]
        return {
            "pools": len(pools),
            "idle_connections": idle,
            "checked_out": checked_out,
        }


_registry: PoolRegistry | None = None
_registry_lock = threading.Lock()


def get_pool_registry() -> PoolRegistry:
    """Return the process-wide PoolRegistry (thread-safe double-checked locking)."""
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                _registry = PoolRegistry()
    return _registry
