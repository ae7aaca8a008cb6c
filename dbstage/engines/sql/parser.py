"""
Placeholder parsing for stage statements.

Three placeholder kinds are recognised, left to right:

- ``:name``  named, bound from a mapping
- ``?``      positional, bound from a sequence (0-based among ``?`` tokens)
- ``$N``     the result of operation N earlier in the same stage

Each one becomes the driver bind marker ``%s``. Literal ``%`` is doubled.
Quoted literals, ``$$`` dollar quotes, ``--`` and ``/* */`` comments and
``::`` casts are not scanned for placeholders. ``#`` is not a comment here: it
is an operator in PostgreSQL.
"""

import re
from dataclasses import dataclass
from enum import Enum

from dbstage.core.errors import UsageError

BIND_MARKER = "%s"

_TOKEN_RE = re.compile(
    r"""
      (?P<comment>--[^\n]*|/\*.*?(?:\*/|\Z))
    | (?P<dollar>\$\$.*?(?:\$\$|\Z))
    | (?P<quoted>'(?:[^'\\]|\\.|'')*'|"(?:[^"\\]|\\.|"")*"|`[^`]*`)
    | (?P<cast>::)
    | (?P<named>:[A-Za-z0-9_]+)
    | (?P<positional>\?)
    | (?P<ref>\$[0-9]+)
    | (?P<percent>%)
    """,
    re.VERBOSE | re.DOTALL,
)


class PlaceholderKind(str, Enum):
    NAMED = ":"
    POSITIONAL = "?"
    REFERENCE = "$"


@dataclass(frozen=True)
class ParsedStatement:
    raw_sql: str
    sql: str
    param_refs: tuple[str | int, ...]
    param_types: tuple[PlaceholderKind, ...]

    @property
    def bind_styles(self) -> frozenset[PlaceholderKind]:
        return frozenset(self.param_types)

    def refs_of(self, kind: PlaceholderKind) -> list[str | int]:
        return [r for r, t in zip(self.param_refs, self.param_types) if t is kind]


def parse_placeholders(sql: str) -> ParsedStatement:
    """Replace placeholders in *sql* with bind markers and record what each one refers to."""
    refs: list[str | int] = []
    types: list[PlaceholderKind] = []
    out: list[str] = []
    pos = 0
    n_positional = 0

    for m in _TOKEN_RE.finditer(sql):
        out.append(sql[pos : m.start()])
        pos = m.end()
        kind = m.lastgroup
        text = m.group()

        if kind in ("comment", "dollar", "quoted"):
            out.append(text.replace("%", "%%"))
            continue
        if kind == "cast":
            out.append(text)
            continue
        if kind == "percent":
            out.append("%%")
            continue

        if kind == "named":
            refs.append(text[1:])
            types.append(PlaceholderKind.NAMED)
        elif kind == "positional":
            refs.append(n_positional)
            types.append(PlaceholderKind.POSITIONAL)
            n_positional += 1
        elif kind == "ref":
            refs.append(int(text[1:]))
            types.append(PlaceholderKind.REFERENCE)
        else:
            raise UsageError(f"parse error at {text!r} in {sql!r}")
        out.append(BIND_MARKER)

    out.append(sql[pos:])
    return ParsedStatement(
        raw_sql=sql,
        sql="".join(out),
        param_refs=tuple(refs),
        param_types=tuple(types),
    )
