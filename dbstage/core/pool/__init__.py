"""
DB connections and connection pools for stage finalization.

No driver layer: pymysql and psycopg are installed via pip; a DataSourceConfig
(product_type, host, ...) is enough.
"""

from .connect import affected_rows, begin, connect, cursor_to_dicts, execute, set_commit_mode
from .manager import ConnectionPool, PoolRegistry, get_pool_registry

__all__ = [
    "connect",
    "execute",
    "cursor_to_dicts",
    "affected_rows",
    "set_commit_mode",
    "begin",
    "ConnectionPool",
    "PoolRegistry",
    "get_pool_registry",
]
