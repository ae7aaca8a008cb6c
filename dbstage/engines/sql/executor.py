"""
Run a stage's operations against a datasource.

Everything happens on one pooled connection, strictly in order:

    get pool -> acquire connection -> set commit mode -> [begin]
    -> run operations -> [commit] -> release

Any failure skips straight to the end: a started transaction is rolled back
(best effort; a rollback failure is logged and the original error kept) and
the connection is always released.

Result shape:
- one operation: its bare result
- otherwise: list of per-operation results, in stage order
"""

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Iterator, Sequence

import psycopg
import pymysql

from dbstage.core.errors import DriverError, StageError
from dbstage.core.pool import (
    affected_rows,
    begin,
    cursor_to_dicts,
    execute,
    set_commit_mode,
)
from dbstage.core.pool.manager import ConnectionPool, PoolRegistry
from dbstage.models import DataSourceConfig

from .coerce import coerce_rows
from .operation import Opcode, Operation

_log = logging.getLogger(__name__)


@dataclass
class _ExecutionContext:
    pool: ConnectionPool
    transactional: bool
    conn: Any = None
    results: list[Any] = field(default_factory=list)
    in_transaction: bool = False

    @property
    def config(self) -> DataSourceConfig:
        return self.pool.config


@contextmanager
def _driver_errors(action: str) -> Iterator[None]:
    """Re-raise anything the driver throws as DriverError, keeping the cause."""
    try:
        yield
    except StageError:
        raise
    except pymysql.err.ProgrammingError as e:
        _log.warning("MySQL programming error during %s: %s", action, e)
        raise DriverError(f"{action} failed: {e}") from e
    except (pymysql.Error, psycopg.Error) as e:
        _log.error("Database error during %s: %s", action, e, exc_info=True)
        raise DriverError(f"{action} failed: {e}") from e
    except Exception as e:
        _log.error("%s failed: %s", action, e, exc_info=True)
        raise DriverError(f"{action} failed: {e}") from e


def _echo(ctx: _ExecutionContext, verb: str, sql: str, args: Sequence[Any]) -> None:
    msg = f'{verb} "{sql}" with {json.dumps(list(args), default=str)}'
    _log.debug(msg)
    if ctx.config.echo:
        print(msg, flush=True)


def _run_statement(
    ctx: _ExecutionContext, verb: str, sql: str, args: Sequence[Any]
) -> tuple[int, list[dict[str, Any]] | None]:
    """Run one bound statement; return (affected rows, rows or None)."""
    _echo(ctx, verb, sql, args)
    with _driver_errors("statement"):
        cur = execute(ctx.conn, sql, args)
        try:
            return affected_rows(cur), cursor_to_dicts(cur)
        finally:
            cur.close()


def _run_operation(ctx: _ExecutionContext, op: Operation) -> Any:
    """Run *op* once per parameter row and combine the per-row results."""
    if op.opcode == Opcode.EXECUTE:
        total = 0
        for row in op.param_rows():
            args = op.bind(row, ctx.results)
            n, _rows = _run_statement(ctx, "executing", op.sql, args)
            total += n
        return total

    per_row: list[Any] = []
    for row in op.param_rows():
        args = op.bind(row, ctx.results)
        _n, rows = _run_statement(ctx, "querying", op.sql, args)
        per_row.append(coerce_rows(op.opcode, rows, op.default))
    return per_row if op.is_multi else per_row[0]


def _set_commit_mode(ctx: _ExecutionContext) -> None:
    autocommit = not ctx.transactional
    with _driver_errors("set commit mode"):
        stmt = set_commit_mode(ctx.conn, ctx.config.product_type, autocommit=autocommit)
    if stmt is not None:
        _run_statement(ctx, "executing", stmt, ())


def _rollback_quiet(ctx: _ExecutionContext) -> None:
    try:
        ctx.conn.rollback()
    except Exception as e:
        _log.warning("Rollback after failed stage also failed: %s", e)
    finally:
        ctx.in_transaction = False


def run_stage(
    registry: PoolRegistry,
    config: Any,
    operations: Sequence[Operation],
    *,
    transactional: bool = True,
) -> Any:
    """
    Run *operations* in order on one connection from *registry*'s pool for *config*.

    transactional: if True, wrap the batch in a transaction that is committed
    on success and rolled back on failure; if False, run in autocommit mode so
    operations that finished before a failure stay committed.

    Raises ShutdownError, ConfigError, UsageError or DriverError.
    """
    pool = registry.get_pool(config)
    ctx = _ExecutionContext(pool=pool, transactional=transactional)
    try:
        with _driver_errors("connection acquisition"):
            ctx.conn = pool.acquire()

        _set_commit_mode(ctx)

        if transactional:
            with _driver_errors("begin transaction"):
                begin(ctx.conn, ctx.config.product_type)
            ctx.in_transaction = True

        for op in operations:
            ctx.results.append(_run_operation(ctx, op))

        if ctx.in_transaction:
            with _driver_errors("commit"):
                ctx.conn.commit()
            ctx.in_transaction = False
    except Exception:
        if ctx.in_transaction:
            _rollback_quiet(ctx)
        raise
    finally:
        if ctx.conn is not None:
            pool.release(ctx.conn)

    if len(operations) == 1:
        return ctx.results[0]
    return ctx.results
