"""Unit tests for engines.sql.parser."""

from dbstage.engines.sql import PlaceholderKind, parse_placeholders


def test_no_placeholders() -> None:
    p = parse_placeholders("select 1+1 as ttl")
    assert p.sql == "select 1+1 as ttl"
    assert p.param_refs == ()
    assert p.param_types == ()
    assert p.bind_styles == frozenset()


def test_positional_indexes_count_only_question_marks() -> None:
    p = parse_placeholders("insert into t(a, b, c) values ($3, ?, ?)")
    assert p.sql == "insert into t(a, b, c) values (%s, %s, %s)"
    assert p.param_refs == (3, 0, 1)
    assert p.param_types == (
        PlaceholderKind.REFERENCE,
        PlaceholderKind.POSITIONAL,
        PlaceholderKind.POSITIONAL,
    )


def test_named_in_textual_order() -> None:
    p = parse_placeholders("insert into t(col1, col2, col3) values (:id, :x, :y)")
    assert p.sql == "insert into t(col1, col2, col3) values (%s, %s, %s)"
    assert p.param_refs == ("id", "x", "y")
    assert p.bind_styles == frozenset({PlaceholderKind.NAMED})


def test_named_may_repeat_and_mix_with_reference() -> None:
    p = parse_placeholders("update t set a = :v where b = :v and c = $0")
    assert p.param_refs == ("v", "v", 0)
    assert p.refs_of(PlaceholderKind.NAMED) == ["v", "v"]
    assert p.refs_of(PlaceholderKind.REFERENCE) == [0]


def test_mixed_styles_are_parsed_not_rejected() -> None:
    # rejection happens when the operation is built
    p = parse_placeholders("select :a, ?")
    assert p.bind_styles == frozenset({PlaceholderKind.NAMED, PlaceholderKind.POSITIONAL})


def test_refs_and_types_stay_parallel() -> None:
    p = parse_placeholders("select ?, :a, $1, ?, :b")
    assert len(p.param_refs) == len(p.param_types) == 5


def test_percent_is_escaped() -> None:
    p = parse_placeholders("select * from t where name like '100%' and pct > 5 % 2")
    assert p.sql == "select * from t where name like '100%%' and pct > 5 %% 2"


def test_quoted_literals_are_not_scanned() -> None:
    p = parse_placeholders("select 'is it?', \"a:b\", `x?` from t where id = ?")
    assert p.sql == "select 'is it?', \"a:b\", `x?` from t where id = %s"
    assert p.param_refs == (0,)


def test_doubled_quote_inside_literal() -> None:
    p = parse_placeholders("select 'it''s :not a param' , :yes")
    assert p.param_refs == ("yes",)
    assert p.sql == "select 'it''s :not a param' , %s"


def test_postgres_cast_is_not_a_named_placeholder() -> None:
    p = parse_placeholders("select :v::int")
    assert p.sql == "select %s::int"
    assert p.param_refs == ("v",)


def test_raw_sql_kept() -> None:
    sql = "select ? from dual"
    assert parse_placeholders(sql).raw_sql == sql


def test_line_comment_with_apostrophe_keeps_later_placeholders() -> None:
    p = parse_placeholders("select a -- don't\nfrom t where b = ? and c = 'x'")
    assert p.param_refs == (0,)
    assert p.sql == "select a -- don't\nfrom t where b = %s and c = 'x'"


def test_placeholders_inside_comments_are_ignored() -> None:
    p = parse_placeholders("delete from t -- why? :x\nwhere id = 1 /* $0 or ? 50% */")
    assert p.param_refs == ()
    assert p.sql == "delete from t -- why? :x\nwhere id = 1 /* $0 or ? 50%% */"


def test_block_comment_spans_lines() -> None:
    p = parse_placeholders("select /* it's\n:skipped */ :kept")
    assert p.param_refs == ("kept",)


def test_dollar_quoted_body_is_not_scanned() -> None:
    p = parse_placeholders("select $$it's ? :x$$, $0, ?")
    assert p.param_refs == (0, 0)
    assert p.param_types == (PlaceholderKind.REFERENCE, PlaceholderKind.POSITIONAL)
    assert p.sql == "select $$it's ? :x$$, %s, %s"
