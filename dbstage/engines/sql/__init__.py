"""
SQL stage engine: placeholder parsing, operations, result coercion, execution.

Exports: parse_placeholders, build_operation, Operation, Opcode, coerce_rows, run_stage.
"""

from dbstage.engines.sql.coerce import RowSet, coerce_rows
from dbstage.engines.sql.executor import run_stage
from dbstage.engines.sql.operation import (
    SCALAR_OPCODES,
    Opcode,
    Operation,
    ParamShape,
    build_operation,
    execute,
    query,
    query_float,
    query_int,
    query_string,
)
from dbstage.engines.sql.parser import ParsedStatement, PlaceholderKind, parse_placeholders

__all__ = [
    "ParsedStatement",
    "PlaceholderKind",
    "parse_placeholders",
    "Opcode",
    "SCALAR_OPCODES",
    "ParamShape",
    "Operation",
    "build_operation",
    "execute",
    "query",
    "query_int",
    "query_float",
    "query_string",
    "RowSet",
    "coerce_rows",
    "run_stage",
]
