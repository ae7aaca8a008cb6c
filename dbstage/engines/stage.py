"""
Stage: an ordered, single-use batch of operations for one datasource.

    stage(cfg).execute("insert into t(a) values (?)", [[1], [2]]) \\
        .query_int("select count(*) from t") \\
        .finale(lambda err, results: ...)

finale() runs the batch on a worker thread and reports through the
callback; run() is the blocking equivalent. A stage can be finalized once.
"""

import logging
import threading
from concurrent.futures import Future
from typing import Any, Callable, Sequence

from dbstage.core.errors import ShutdownError, UsageError
from dbstage.core.pool.manager import PoolRegistry, get_pool_registry
from dbstage.engines.sql import (
    SCALAR_OPCODES,
    Opcode,
    Operation,
    PlaceholderKind,
    build_operation,
    run_stage,
)
from dbstage.models import resolve_config

_log = logging.getLogger(__name__)

Callback = Callable[[BaseException | None, Any], Any]

_SHUTDOWN_MESSAGE = "Databases are closing down."
_REUSED_MESSAGE = "You already had your finale on this stage. Go get a new stage."


def _check_references(op: Operation, earlier: Sequence[Operation]) -> None:
    """Every $N must name an earlier operation whose result is a single value."""
    for ref in op.statement.refs_of(PlaceholderKind.REFERENCE):
        if ref >= len(earlier):
            raise UsageError(
                f'"{op.statement.raw_sql}" refers to ${ref}, but only '
                f"{len(earlier)} operation(s) run before it."
            )
        target = earlier[ref]
        single_value = target.opcode == Opcode.EXECUTE or (
            target.opcode in SCALAR_OPCODES and not target.is_multi
        )
        if not single_value:
            raise UsageError(
                f'"{op.statement.raw_sql}" refers to ${ref}, whose result is not a single value.'
            )


def _completed(error: BaseException) -> Future:
    fut: Future = Future()
    fut.set_exception(error)
    return fut


class Stage:
    """
    Queue of operations for one datasource, acted out by finale() or run().

    The config may be a DataSourceConfig, a mapping, or a connection URL; it is
    validated when the stage is finalized. registry defaults to the
    process-wide PoolRegistry.
    """

    def __init__(self, config: Any, *, registry: PoolRegistry | None = None) -> None:
        self._config = config
        self._registry = registry
        self._ops: list[Operation] = []
        self._lock = threading.Lock()
        self._sealed = False

    @property
    def operations(self) -> tuple[Operation, ...]:
        return tuple(self._ops)

    @property
    def finalized(self) -> bool:
        return self._sealed

    @property
    def registry(self) -> PoolRegistry:
        return self._registry if self._registry is not None else get_pool_registry()

    def add(self, *operations: Operation) -> "Stage":
        """Append already-built operations, in order."""
        with self._lock:
            if self._sealed:
                raise UsageError(_REUSED_MESSAGE)
            pending = list(self._ops)
            for op in operations:
                if not isinstance(op, Operation):
                    raise UsageError(f"Expected an Operation, got {type(op).__name__}")
                _check_references(op, pending)
                pending.append(op)
            self._ops = pending
        return self

    def execute(self, sql: str, params: Any = None) -> "Stage":
        """Queue a statement whose result is the number of rows it modified."""
        return self.add(build_operation(Opcode.EXECUTE, sql, params))

    def query(self, sql: str, params: Any = None) -> "Stage":
        """Queue a query whose result is a list of dicts (one per row)."""
        return self.add(build_operation(Opcode.QUERY, sql, params))

    def query_int(self, sql: str, params: Any = None, default: Any = None) -> "Stage":
        """Queue a query returning one integer, or *default* if there isn't one."""
        return self.add(build_operation(Opcode.QUERY_INT, sql, params, default))

    def query_float(self, sql: str, params: Any = None, default: Any = None) -> "Stage":
        """Queue a query returning one float, or *default* if there isn't one."""
        return self.add(build_operation(Opcode.QUERY_FLOAT, sql, params, default))

    def query_string(self, sql: str, params: Any = None, default: Any = None) -> "Stage":
        """Queue a query returning one string, or *default* if the value is missing or null."""
        return self.add(build_operation(Opcode.QUERY_STRING, sql, params, default))

    def _seal(self) -> None:
        registry = self.registry
        if registry.closing:
            raise ShutdownError(_SHUTDOWN_MESSAGE)
        with self._lock:
            if self._sealed:
                raise UsageError(_REUSED_MESSAGE)
            self._sealed = True

    def run(self, autocommit: bool = False) -> Any:
        """
        Act out the queued statements on the calling thread and return the result.

        One queued statement gives back its bare result; otherwise a list with
        one result per statement. With autocommit=False (the default) the batch
        runs in a transaction, committed on success and rolled back on failure.
        """
        self._seal()
        return run_stage(
            self.registry, self._config, self._ops, transactional=not autocommit
        )

    def finale(self, callback: Callback, autocommit: bool = False) -> Future:
        """
        Act out the queued statements on a worker thread.

        callback(error, result) is called exactly once: from the worker when
        the batch finishes, or right away on this thread if the stage was
        already finalized or curtains() has been called. The returned Future
        resolves to the same result (or error).
        """
        if callback is None or not callable(callback):
            raise UsageError(
                "Oops, you forgot to provide a function to call back after the finale."
            )
        try:
            self._seal()
        except (ShutdownError, UsageError) as e:
            callback(e, None)
            return _completed(e)

        registry = self.registry
        transactional = not autocommit
        ops = list(self._ops)

        def _act() -> Any:
            try:
                result = run_stage(registry, self._config, ops, transactional=transactional)
            except Exception as e:
                callback(e, None)
                raise
            callback(None, result)
            return result

        try:
            return registry.submit(_act)
        except ShutdownError as e:
            # curtains() landed between the seal and the submit
            callback(e, None)
            return _completed(e)


def act(
    config: Any,
    operations: Operation | Sequence[Operation],
    callback: Callback | None = None,
    *,
    registry: PoolRegistry | None = None,
) -> Future:
    """
    Run one operation or a list of operations in autocommit mode.

    A single operation gives back its bare result; a list always gives back
    a list, even with one element.
    """
    return _act_flat(config, operations, callback, registry=registry, autocommit=True)


def transact(
    config: Any,
    operations: Operation | Sequence[Operation],
    callback: Callback | None = None,
    *,
    registry: PoolRegistry | None = None,
) -> Future:
    """Like act(), but inside a transaction: commit on success, rollback on error."""
    return _act_flat(config, operations, callback, registry=registry, autocommit=False)


def _act_flat(
    config: Any,
    operations: Operation | Sequence[Operation],
    callback: Callback | None,
    *,
    registry: PoolRegistry | None,
    autocommit: bool,
) -> Future:
    config = resolve_config(config)
    if operations is None:
        raise UsageError(
            "Usage: you need to supply a db configuration, a list of actions, "
            "and a callback(err, results)."
        )
    single = isinstance(operations, Operation)
    ops = [operations] if single else list(operations)
    user_cb = callback if callback is not None else (lambda err, result: None)

    def _cb(err: BaseException | None, result: Any) -> None:
        if err is None and not single and len(ops) == 1:
            result = [result]
        user_cb(err, result)

    fut = Stage(config, registry=registry).add(*ops).finale(_cb, autocommit=autocommit)
    if single or len(ops) != 1:
        return fut

    wrapped: Future = Future()

    def _relay(f: Future) -> None:
        if f.exception() is not None:
            wrapped.set_exception(f.exception())
        else:
            wrapped.set_result([f.result()])

    fut.add_done_callback(_relay)
    return wrapped
