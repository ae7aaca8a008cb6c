"""
Operations: one statement, its parameter container and its result kind.

An Operation is validated completely when it is built, before any
connection is touched. The parameter container's shape is fixed here and
drives binding later, so nothing downstream inspects parameter types again.
"""

import copy
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from dbstage.core.errors import UsageError

from .parser import ParsedStatement, PlaceholderKind, parse_placeholders


class Opcode(str, Enum):
    """What a statement returns: a row count, rows, or one typed value."""

    EXECUTE = "e"
    QUERY = "q"
    QUERY_INT = "qi"
    QUERY_FLOAT = "qf"
    QUERY_STRING = "qs"


SCALAR_OPCODES = frozenset({Opcode.QUERY_INT, Opcode.QUERY_FLOAT, Opcode.QUERY_STRING})


class ParamShape(str, Enum):
    NONE = "none"
    SCALAR = "scalar"
    ARRAY = "array"
    OBJECT = "object"
    ARRAY_OF_ARRAYS = "array.array"
    ARRAY_OF_OBJECTS = "array.object"


_MULTI_SHAPES = frozenset({ParamShape.ARRAY_OF_ARRAYS, ParamShape.ARRAY_OF_OBJECTS})
_POSITIONAL_SHAPES = frozenset({ParamShape.ARRAY, ParamShape.ARRAY_OF_ARRAYS})
_NAMED_SHAPES = frozenset({ParamShape.OBJECT, ParamShape.ARRAY_OF_OBJECTS})

_NULL_MESSAGE = (
    "You have at least one null value in your parameters. "
    "That's not going to go well for you."
)


def _is_array(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _is_object(value: Any) -> bool:
    return isinstance(value, Mapping)


def _param_shape(params: Any) -> ParamShape:
    if params is None:
        return ParamShape.NONE
    if _is_object(params):
        return ParamShape.OBJECT
    if not _is_array(params):
        return ParamShape.SCALAR
    if len(params) == 0 or params[0] is None:
        return ParamShape.ARRAY
    if _is_array(params[0]):
        return ParamShape.ARRAY_OF_ARRAYS
    if _is_object(params[0]):
        return ParamShape.ARRAY_OF_OBJECTS
    return ParamShape.ARRAY


def _reject_nulls(value: Any) -> None:
    if value is None:
        raise UsageError(_NULL_MESSAGE)
    if _is_object(value):
        for v in value.values():
            _reject_nulls(v)
    elif _is_array(value):
        for v in value:
            _reject_nulls(v)


@dataclass(frozen=True)
class Operation:
    opcode: Opcode
    statement: ParsedStatement
    params: Any = None
    shape: ParamShape = ParamShape.NONE
    default: Any = None

    @property
    def sql(self) -> str:
        return self.statement.sql

    @property
    def is_multi(self) -> bool:
        """True when the statement runs once per element of the parameter container."""
        return self.shape in _MULTI_SHAPES

    def param_rows(self) -> list[Any]:
        """One parameter row per execution of the statement."""
        if self.is_multi:
            return list(self.params)
        return [self.params]

    def bind(self, row: Any, prior_results: Sequence[Any]) -> list[Any]:
        """Resolve every placeholder of the statement against *row* and earlier results."""
        args: list[Any] = []
        for ref, kind in zip(self.statement.param_refs, self.statement.param_types):
            if kind is PlaceholderKind.REFERENCE:
                if ref >= len(prior_results):
                    raise UsageError(
                        f"${ref} refers to an operation that has not run yet "
                        f"in {self.statement.raw_sql!r}"
                    )
                args.append(prior_results[ref])
            else:
                # NAMED and POSITIONAL both index the row; shape was checked at build time
                args.append(row[ref])
        return args


def build_operation(
    opcode: Opcode | str | None,
    sql: Any,
    params: Any = None,
    default: Any = None,
) -> Operation:
    """
    Validate and build one Operation. Raises UsageError on any problem.

    - sql must be a non-empty string using at most one of the ``:`` / ``?`` styles.
    - ``?`` needs a list (one row) or a list of lists (one execution per row).
    - ``:`` needs a dict (one row) or a list of dicts (one execution per row).
    - no parameter value may be None, and every placeholder must find a value.
    """
    if not opcode:
        raise UsageError("Internal error: missing opcode")
    try:
        op_kind = Opcode(opcode)
    except ValueError as e:
        raise UsageError(f"Unknown opcode: {opcode!r}") from e
    if not sql:
        raise UsageError("The SQL provided is blank or missing.")
    if not isinstance(sql, str):
        raise UsageError("The SQL provided is not a string.")
    if not sql.strip():
        raise UsageError("The SQL provided is blank or missing.")

    statement = parse_placeholders(sql)
    params = copy.deepcopy(params)
    shape = _param_shape(params)
    styles = statement.bind_styles

    if PlaceholderKind.NAMED in styles and PlaceholderKind.POSITIONAL in styles:
        raise UsageError(
            f'The SQL statement "{sql}" uses ? placeholders and : named placeholders. '
            "Pick one. It won't work to use both in the same SQL statement."
        )
    if PlaceholderKind.POSITIONAL in styles and shape not in _POSITIONAL_SHAPES:
        hint = (
            " You probably mean to wrap your param with [] to form a list?"
            if shape == ParamShape.SCALAR
            else ""
        )
        raise UsageError(
            f'The SQL statement "{sql}" uses ? placeholders, but params is {shape.value} '
            f"instead of a single list, or a list of lists.{hint}"
        )
    if PlaceholderKind.NAMED in styles and shape not in _NAMED_SHAPES:
        raise UsageError(
            f'The SQL statement "{sql}" uses : placeholders, but params is {shape.value} '
            "instead of a single dict, or a list of dicts."
        )

    _reject_nulls(params)

    op = Operation(
        opcode=op_kind,
        statement=statement,
        params=params,
        shape=shape,
        default=default,
    )
    _check_rows(op)
    return op


def _check_rows(op: Operation) -> None:
    rows = op.param_rows()
    if op.is_multi:
        want = _is_array if op.shape == ParamShape.ARRAY_OF_ARRAYS else _is_object
        for i, row in enumerate(rows):
            if not want(row):
                raise UsageError(
                    f"Row {i} of the params for \"{op.statement.raw_sql}\" is not a "
                    f"{'list' if want is _is_array else 'dict'} like the first row."
                )

    names = op.statement.refs_of(PlaceholderKind.NAMED)
    indexes = op.statement.refs_of(PlaceholderKind.POSITIONAL)
    for i, row in enumerate(rows):
        for name in names:
            if name not in row:
                raise UsageError(
                    f'Parameter :{name} of "{op.statement.raw_sql}" is missing from row {i}.'
                )
        if indexes and len(row) <= indexes[-1]:
            raise UsageError(
                f'"{op.statement.raw_sql}" has {len(indexes)} ? placeholder(s) but row {i} '
                f"supplies {len(row)} value(s)."
            )


def execute(sql: str, params: Any = None) -> Operation:
    """A statement whose result is the number of rows it affected."""
    return build_operation(Opcode.EXECUTE, sql, params)


def query(sql: str, params: Any = None) -> Operation:
    """A query whose result is a list of dicts, one per row."""
    return build_operation(Opcode.QUERY, sql, params)


def query_int(sql: str, params: Any = None, default: Any = None) -> Operation:
    """
    A query that returns one integer: the first column of the first row.
    *default* is returned when the result set is empty, or the first value
    is null or isn't an integer.
    """
    return build_operation(Opcode.QUERY_INT, sql, params, default)


def query_float(sql: str, params: Any = None, default: Any = None) -> Operation:
    """
    A query that returns one floating point number. *default* is returned
    when the result set is empty, or the first value isn't a number.
    """
    return build_operation(Opcode.QUERY_FLOAT, sql, params, default)


def query_string(sql: str, params: Any = None, default: Any = None) -> Operation:
    """
    A query that returns one string. *default* is returned when the result
    set is empty, or the first value is null.
    """
    return build_operation(Opcode.QUERY_STRING, sql, params, default)
