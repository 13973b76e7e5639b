import pytest
import sqlwrap
from sqlwrap.formatting import Conversion, format_value, parse_format, sql_format


def test_quote_escaping():
    assert sql_format("%q", "O'Brien") == "O''Brien"
    assert sql_format("%Q", "O'Brien") == "'O''Brien'"
    assert sql_format("%w", 'say "hi"') == 'say ""hi""'


def test_null_arguments():
    assert sql_format("%Q", None) == "NULL"
    assert sql_format("%q", None) == "(NULL)"
    assert sql_format("%s", None) == ""


def test_dynamic_string():
    assert sql_format("[%z]", "owned") == "[owned]"
    assert sql_format("%z", None) == ""


def test_integers():
    assert sql_format("%d", 42) == "42"
    assert sql_format("%d", -(2**63)) == str(-(2**63))
    assert sql_format("%d", 2**62) == str(2**62)
    assert sql_format("%x", 255) == "ff"
    assert sql_format("%05d", 42) == "00042"
    assert sql_format("%*d", 6, 7) == "     7"


def test_floats():
    assert sql_format("%5.2f", 3.14159) == " 3.14"
    assert sql_format("%.1f", 2) == "2.0"


def test_misc_conversions():
    assert sql_format("100%%") == "100%"
    assert sql_format("%c%c", "o", ord("k")) == "ok"
    assert sql_format("%s and %s", "a", b"b") == "a and b"
    assert sql_format("%s", 12) == "12"


def test_unicode_text():
    assert sql_format("%Q", "café") == "'café'"


def test_format_value():
    assert format_value("Q", "x'y") == "'x''y'"
    assert format_value("d", 9) == "9"
    with pytest.raises(sqlwrap.InvalidFormat):
        format_value("QQ", "x")


def test_argument_count_must_match():
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%d %d", 1)
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%d", 1, 2)
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%*d", 1)


def test_argument_types_are_checked():
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%d", "1")
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%f", "1.0")
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%c", "ab")
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%d", 2**64)
    # %z buffers allocated before the failing argument are released.
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("%z %d", "x", "bad")


def test_bad_directives():
    with pytest.raises(sqlwrap.InvalidFormat):
        sql_format("50%")
    with pytest.raises(ValueError):
        sql_format("%n", 1)
    with pytest.raises(sqlwrap.InvalidFormat):
        parse_format("%p")


def test_parse_format():
    pieces = parse_format("a %-5.2lf b %%")
    assert pieces[0] == "a "
    conv = pieces[1]
    assert isinstance(conv, Conversion)
    assert (conv.flags, conv.width, conv.precision, conv.conversion) == ("-", "5", "2", "f")
    assert conv.consumes == 1
    assert pieces[2] == " b "
    assert pieces[3].conversion == "%"
    assert pieces[3].consumes == 0


def test_integer_directives_are_widened():
    (conv,) = parse_format("%5d")
    assert conv.rewritten() == "%5lld"
    (conv,) = parse_format("%*.*Q")
    assert conv.consumes == 3
    assert conv.rewritten() == "%*.*Q"
