"""SQL-safe string formatting on top of sqlite3_mprintf().

The engine does the formatting, so %q, %Q, %w and %z behave exactly as
documented at https://www.sqlite.org/printf.html. This module only parses the
format string, checks every argument against its conversion and hands the
engine the matching ctypes value:

    %q  text with every ' doubled, for use inside a quoted literal
    %Q  like %q but wrapped in quotes; None renders as NULL
    %w  text with every " doubled, for quoted identifiers
    %z  like %s; the argument is copied into an engine-allocated buffer
        which the engine frees once it has been used

Prefer %q/%Q over %s for anything that ends up inside SQL text.
"""

from __future__ import annotations

import dataclasses
import re
from ctypes import c_char_p, c_double, c_int, c_int64, c_uint64, c_void_p
from typing import Any, Iterator, Sequence

from . import native
from .errors import FormattingFailed, InvalidFormat

# %[flags][width][.precision][length]conversion
_SPEC_RE = re.compile(r"%([-+ #!0,]*)(\*|\d+)?(?:\.(\*|\d+))?(ll|l)?(.?)", re.DOTALL)

INTEGER_CONVERSIONS = frozenset("diuxXo")
FLOAT_CONVERSIONS = frozenset("feEgG")
TEXT_CONVERSIONS = frozenset("sqQw")
DYNAMIC_CONVERSION = "z"
CHAR_CONVERSION = "c"

_INT64_MIN = -(2**63)
_UINT64_MAX = 2**64 - 1


@dataclasses.dataclass(frozen=True)
class Conversion:
    """One % directive of a format string."""

    text: str
    flags: str
    width: str | None
    precision: str | None
    conversion: str

    @property
    def consumes(self) -> int:
        """Number of arguments this directive takes, counting * widths."""
        if self.conversion == "%":
            return 0
        return 1 + (self.width == "*") + (self.precision == "*")

    def rewritten(self) -> str:
        # Integers always travel as 64-bit values.
        if self.conversion == "%":
            return self.text
        out = "%" + self.flags
        if self.width is not None:
            out += self.width
        if self.precision is not None:
            out += "." + self.precision
        if self.conversion in INTEGER_CONVERSIONS:
            out += "ll"
        return out + self.conversion


def parse_format(fmt: str) -> list[str | Conversion]:
    """Split a format string into literal text and Conversion directives."""
    pieces: list[str | Conversion] = []
    pos = 0
    for m in _SPEC_RE.finditer(fmt):
        if m.start() > pos:
            pieces.append(fmt[pos:m.start()])
        flags, width, precision, _length, conv = m.groups()
        if not conv:
            raise InvalidFormat(f"Incomplete format directive at end of {fmt!r}")
        if conv != "%" and conv not in INTEGER_CONVERSIONS | FLOAT_CONVERSIONS | TEXT_CONVERSIONS | {
            DYNAMIC_CONVERSION,
            CHAR_CONVERSION,
        }:
            raise InvalidFormat(f"Unsupported format conversion %{conv} in {fmt!r}")
        pieces.append(Conversion(m.group(0), flags, width, precision, conv))
        pos = m.end()
    if pos < len(fmt):
        pieces.append(fmt[pos:])
    return pieces


def _text_bytes(value: Any) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    return str(value).encode("utf-8")


def _star_arg(value: Any, fmt: str) -> c_int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidFormat(f"* width/precision needs an int, got {type(value).__name__} in {fmt!r}")
    return c_int(value)


def _convert(conv: Conversion, value: Any, fmt: str, lib, owned: list[int]):
    c = conv.conversion
    if c in INTEGER_CONVERSIONS:
        if not isinstance(value, int):
            raise InvalidFormat(f"%{c} needs an int, got {type(value).__name__} in {fmt!r}")
        value = int(value)
        if value < _INT64_MIN or value > _UINT64_MAX:
            raise InvalidFormat(f"%{c} argument {value} does not fit in 64 bits")
        if value > 2**63 - 1:
            return c_uint64(value)
        return c_int64(value)
    if c in FLOAT_CONVERSIONS:
        if not isinstance(value, (int, float)):
            raise InvalidFormat(f"%{c} needs a number, got {type(value).__name__} in {fmt!r}")
        return c_double(float(value))
    if c == CHAR_CONVERSION:
        if isinstance(value, str) and len(value) == 1:
            return c_int(ord(value))
        if isinstance(value, int) and not isinstance(value, bool):
            return c_int(value)
        raise InvalidFormat(f"%c needs a single character, got {value!r}")
    if c in TEXT_CONVERSIONS:
        if value is None:
            return c_char_p(None)
        return c_char_p(_text_bytes(value))
    # %z: hand the engine a buffer it allocated itself, it frees it after use.
    if value is None:
        return c_void_p(None)
    ptr = lib.sqlite3_mprintf(c_char_p(b"%s"), c_char_p(_text_bytes(value)))
    if not ptr:
        raise FormattingFailed("Unable to allocate buffer for %z argument", code=native.SQLITE_NOMEM)
    owned.append(ptr)
    return c_void_p(ptr)


def _iter_args(args: Sequence[Any], fmt: str, needed: int) -> Iterator[Any]:
    if len(args) != needed:
        raise InvalidFormat(f"Format {fmt!r} takes {needed} argument(s), got {len(args)}")
    return iter(args)


def format_args(fmt: str, args: Sequence[Any]) -> str:
    """Format fmt with args using the engine's printf implementation."""
    lib = native.load_library()
    pieces = parse_format(fmt)
    conversions = [p for p in pieces if isinstance(p, Conversion)]
    it = _iter_args(args, fmt, sum(c.consumes for c in conversions))

    out_fmt = []
    cargs = []
    owned: list[int] = []
    try:
        for piece in pieces:
            if isinstance(piece, str):
                out_fmt.append(piece)
                continue
            out_fmt.append(piece.rewritten())
            if piece.conversion == "%":
                continue
            if piece.width == "*":
                cargs.append(_star_arg(next(it), fmt))
            if piece.precision == "*":
                cargs.append(_star_arg(next(it), fmt))
            cargs.append(_convert(piece, next(it), fmt, lib, owned))
    except Exception:
        # The engine never saw these buffers.
        for ptr in owned:
            lib.sqlite3_free(ptr)
        raise

    fmt_bytes = "".join(out_fmt).encode("utf-8")
    ptr = lib.sqlite3_mprintf(c_char_p(fmt_bytes), *cargs)
    if not ptr:
        raise FormattingFailed("Unable to apply format to SQL string", code=native.SQLITE_NOMEM)
    return native.take_string(lib, ptr)


def sql_format(fmt: str, *args: Any) -> str:
    """sqlite3_mprintf() as a Python function: sql_format("%Q", None) == "NULL"."""
    return format_args(fmt, args)


def format_value(kind: str, value: Any) -> str:
    """Format a single value with one conversion character, e.g. format_value("q", "O'Brien")."""
    if len(kind) != 1:
        raise InvalidFormat(f"Format kind must be a single character, got {kind!r}")
    return format_args("%" + kind, (value,))
