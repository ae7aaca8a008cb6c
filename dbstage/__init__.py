"""
dbstage: queue SQL statements on a stage, then act them out in one go.

    import dbstage

    dbstage.stage(cfg) \\
        .execute("insert into t(id, txt) values (:id, :txt)", [{"id": 1, "txt": "a"}, {"id": 2, "txt": "b"}]) \\
        .query_int("select count(*) from t") \\
        .execute("insert into t(id, txt) values ($1, 'count')") \\
        .finale(lambda err, results: print(err, results))

    dbstage.curtains()
"""

from typing import Any, Callable

from dbstage.core.errors import ConfigError, DriverError, ShutdownError, StageError, UsageError
from dbstage.core.pool import PoolRegistry, get_pool_registry
from dbstage.engines import Stage, act, transact
from dbstage.engines.sql import (
    Opcode,
    Operation,
    execute,
    query,
    query_float,
    query_int,
    query_string,
)
from dbstage.models import DataSourceConfig, ProductTypeEnum


def stage(config: Any, *, registry: PoolRegistry | None = None) -> Stage:
    """
    Return a new Stage for *config* on which to queue statements with
    execute() and the query methods, then finale() or run().
    """
    return Stage(config, registry=registry)


def curtains(callback: Callable[[], Any] | None = None) -> None:
    """
    Gracefully close every pool opened through the process-wide registry.
    Later finalizations fail with ShutdownError. Pass an optional callback
    to be told when it's all over.
    """
    get_pool_registry().curtains(callback)


__all__ = [
    "stage",
    "curtains",
    "act",
    "transact",
    "execute",
    "query",
    "query_int",
    "query_float",
    "query_string",
    "Stage",
    "Operation",
    "Opcode",
    "PoolRegistry",
    "get_pool_registry",
    "DataSourceConfig",
    "ProductTypeEnum",
    "StageError",
    "UsageError",
    "ConfigError",
    "DriverError",
    "ShutdownError",
]
