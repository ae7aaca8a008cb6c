"""
DB connection helpers for stage execution.

Uses pymysql (MySQL) or psycopg (PostgreSQL) based on product_type.
Both drivers use the ``format`` paramstyle, so every statement reaching
execute() carries ``%s`` bind markers and ``%%`` for a literal percent.
"""

from typing import Any, Sequence

import psycopg
import pymysql

from dbstage.core.config import settings
from dbstage.models import DataSourceConfig, ProductTypeEnum


def connect(config: DataSourceConfig) -> Any:
    """Open a new driver connection for *config* (autocommit is set later, per finalization)."""
    timeout = settings.CONNECT_TIMEOUT

    if config.product_type == ProductTypeEnum.MYSQL:
        kwargs: dict[str, Any] = {
            "host": config.host,
            "port": int(config.port),
            "user": config.username,
            "password": config.password,
            "connect_timeout": timeout,
        }
        if config.database:
            kwargs["database"] = config.database
        return pymysql.connect(**kwargs)
    if config.product_type == ProductTypeEnum.POSTGRES:
        return psycopg.connect(
            host=config.host,
            port=int(config.port),
            dbname=config.database or config.username,
            user=config.username,
            password=config.password,
            connect_timeout=timeout,
        )
    raise ValueError(f"Unsupported product_type: {config.product_type}")


def execute(conn: Any, sql: str, args: Sequence[Any] = ()) -> Any:
    """
    Execute one bound statement and return the cursor.

    Args are always passed (possibly empty) so that ``%%`` is unescaped by
    the driver even for statements without placeholders. Caller uses
    cursor_to_dicts(cursor) or affected_rows(cursor) and closes the cursor.
    """
    cur = conn.cursor()
    try:
        cur.execute(sql, tuple(args))
    except BaseException:
        cur.close()
        raise
    return cur


def cursor_to_dicts(cursor: Any) -> list[dict[str, Any]] | None:
    """Convert cursor result to list of dicts; None when the statement produced no result set."""
    desc = cursor.description
    if not desc:
        return None
    names = [d[0] for d in desc]
    return [dict(zip(names, row, strict=True)) for row in cursor.fetchall()]


def affected_rows(cursor: Any) -> int:
    """Rows affected by the last statement; drivers report -1 when unknown."""
    rc = cursor.rowcount
    if rc is None or rc < 0:
        return 0
    return rc


def set_commit_mode(conn: Any, product_type: ProductTypeEnum, *, autocommit: bool) -> str | None:
    """
    Put the session in autocommit or manual-commit mode.

    MySQL: returns the ``SET autocommit`` statement for the caller to run
    through its normal (echoed) statement path. PostgreSQL: flips the
    connection attribute and returns None.
    """
    if product_type == ProductTypeEnum.MYSQL:
        return "SET autocommit=%d" % (1 if autocommit else 0)
    if product_type == ProductTypeEnum.POSTGRES:
        conn.autocommit = autocommit
        return None
    raise ValueError(f"Unsupported product_type: {product_type}")


def begin(conn: Any, product_type: ProductTypeEnum) -> None:
    """Start a transaction. PostgreSQL opens one implicitly once autocommit is off."""
    if product_type == ProductTypeEnum.MYSQL:
        conn.begin()
