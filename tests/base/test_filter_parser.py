# tests/base/test_filter_parser.py

import pytest

from async_crud.base.query import (
    FilterClause,
    FilterExpression,
    FilterOperator,
    FilterParseError,
    WhereClause,
    format_filter,
    parse_filter,
    to_filter_expression,
)


@pytest.mark.parametrize("text", [None, "", "   "])
def test_missing_filter_is_none(text):
    assert parse_filter(text) is None


def test_empty_envelope_has_no_clauses():
    expression = parse_filter("$()")
    assert expression is not None
    assert len(expression) == 0


def test_parses_clauses_in_order():
    expression = parse_filter("$(Price>>100;Name%=phone)")
    clauses = list(expression)
    assert clauses == [
        FilterClause("Price", FilterOperator.GREATER_THAN, "100"),
        FilterClause("Name", FilterOperator.CONTAINS, "phone"),
    ]


@pytest.mark.parametrize(
    "clause, operator",
    [
        ("a==1", FilterOperator.EQUAL),
        ("a>=1", FilterOperator.GREATER_THAN_OR_EQUAL),
        ("a<=1", FilterOperator.LESS_THAN_OR_EQUAL),
        ("a>>1", FilterOperator.GREATER_THAN),
        ("a<<1", FilterOperator.LESS_THAN),
        ("a%=1", FilterOperator.CONTAINS),
        ("a%>1", FilterOperator.IN),
    ],
)
def test_operator_tokens(clause, operator):
    (parsed,) = parse_filter(f"$({clause})")
    assert parsed.operator is operator
    assert parsed.property_path == "a"
    assert parsed.value == "1"


def test_value_keeps_everything_after_first_operator():
    (parsed,) = parse_filter("$(Note==a==b)")
    assert parsed.operator is FilterOperator.EQUAL
    assert parsed.value == "a==b"


def test_or_group_paths():
    (parsed,) = parse_filter("$(Name|Code%=abc)")
    assert parsed.property_paths == ("Name", "Code")
    assert parsed.or_siblings == ("Code",)


def test_in_values_stay_raw():
    (parsed,) = parse_filter("$(Color%>red|blue)")
    assert parsed.operator is FilterOperator.IN
    assert parsed.value == "red|blue"


def test_surrounding_whitespace_and_empty_clauses_are_ignored():
    expression = parse_filter("  $( Name==x ; ;Price>>1 )  ")
    assert [c.property_path for c in expression] == ["Name", "Price"]


@pytest.mark.parametrize(
    "text",
    ["Name==x", "$(Name==x", "(Name==x)", "$[Name==x]"],
)
def test_bad_envelope_raises(text):
    with pytest.raises(FilterParseError, match="wrapped"):
        parse_filter(text)


def test_missing_operator_raises():
    with pytest.raises(FilterParseError, match="No recognized operator"):
        parse_filter("$(Name~x)")


@pytest.mark.parametrize("text", ["$(==x)", "$(Name|==x)"])
def test_empty_property_path_raises(text):
    with pytest.raises(FilterParseError, match="Missing property path"):
        parse_filter(text)


def test_parse_error_is_a_value_error():
    with pytest.raises(ValueError):
        parse_filter("garbage")


def test_to_text_round_trips_structure():
    text = "$(Name|Code%=abc;Price>=10)"
    assert parse_filter(text).to_text() == text


def test_format_filter_from_where_clauses():
    where = [
        WhereClause("Price", ">>", 100),
        WhereClause("Color", FilterOperator.IN, ["red", "blue"]),
        WhereClause("Active", "EQUAL", True),
    ]
    assert format_filter(where) == "$(Price>>100;Color%>red|blue;Active==true)"


def test_format_filter_without_clauses_is_none():
    assert format_filter([]) is None


def test_where_clause_unknown_operator():
    with pytest.raises(FilterParseError, match="Unknown filter operator"):
        WhereClause("Price", "~", 1).resolved_operator()


def test_to_filter_expression_accepts_every_input_form():
    parsed = parse_filter("$(Name==x)")
    assert to_filter_expression(None) is None
    assert to_filter_expression(parsed) is parsed
    assert to_filter_expression("$(Name==x)") == parsed
    assert to_filter_expression([WhereClause("Name", "==", "x")]) == parsed
    assert isinstance(to_filter_expression([]), type(None))


def test_expression_is_immutable():
    expression = parse_filter("$(Name==x)")
    assert isinstance(expression, FilterExpression)
    with pytest.raises(AttributeError):
        expression.clauses = ()
