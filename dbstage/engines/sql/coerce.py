"""
Result coercion by opcode.

QUERY returns rows unchanged. The scalar opcodes look only at the first
column of the first row and fall back to the caller's default when there is
no usable value; they never raise.
"""

from __future__ import annotations

import math
from decimal import Decimal
from typing import Any, Callable

from .operation import Opcode

RowSet = list[dict[str, Any]]

_MISSING = object()


def _first_value(rows: RowSet | None) -> Any:
    if not rows:
        return _MISSING
    row = rows[0]
    if not row:
        return _MISSING
    value = next(iter(row.values()))
    return _MISSING if value is None else value


def _text(value: Any) -> str:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _parse_number(text: str) -> int | float | None:
    s = text.strip()
    if not s:
        return None
    try:
        return int(s)
    except ValueError:
        pass
    try:
        return float(s)
    except ValueError:
        return None


def _coerce_int(value: Any, default: Any) -> Any:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, (float, Decimal)):
        x: int | float | Decimal | None = value
    else:
        x = _parse_number(_text(value))
    if isinstance(x, int):
        return x
    if x is None or not math.isfinite(x) or x != int(x):
        return default
    return int(x)


def _coerce_float(value: Any, default: Any) -> Any:
    if isinstance(value, bool):
        return default
    if isinstance(value, (int, float, Decimal)):
        x = float(value)
    else:
        parsed = _parse_number(_text(value))
        if parsed is None:
            return default
        x = float(parsed)
    if math.isnan(x):
        return default
    return x


def _coerce_string(value: Any, default: Any) -> Any:
    return value if isinstance(value, str) else _text(value)


_SCALAR_COERCERS: dict[Opcode, Callable[[Any, Any], Any]] = {
    Opcode.QUERY_INT: _coerce_int,
    Opcode.QUERY_FLOAT: _coerce_float,
    Opcode.QUERY_STRING: _coerce_string,
}


def coerce_rows(opcode: Opcode, rows: RowSet | None, default: Any = None) -> Any:
    """
    Turn one statement's rows into the opcode's result.

    - rows: list of column->value dicts, or None when the statement produced
      no result set.
    - QUERY: a fresh list of dicts (empty list when there was no result set).
    - QUERY_INT / QUERY_FLOAT / QUERY_STRING: the coerced first value, or
      *default* when it is missing, null, or does not convert.
    """
    if opcode == Opcode.QUERY:
        return [dict(row) for row in rows or []]
    coerce_fn = _SCALAR_COERCERS.get(opcode)
    if coerce_fn is None:
        raise ValueError(f"No result coercion for opcode {opcode!r}")
    value = _first_value(rows)
    if value is _MISSING:
        return default
    return coerce_fn(value, default)
