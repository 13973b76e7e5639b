from __future__ import annotations

import argparse
import json
import logging
from typing import Any, Sequence

from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.text import Text

import sqlwrap
from sqlwrap import config
from sqlwrap.formatting import Conversion, FLOAT_CONVERSIONS, INTEGER_CONVERSIONS, parse_format

logger = logging.getLogger(__name__)


def _arg_kinds(sql: str) -> list[str]:
    kinds: list[str] = []
    for piece in parse_format(sql):
        if not isinstance(piece, Conversion) or piece.conversion == "%":
            continue
        if piece.width == "*":
            kinds.append("d")
        if piece.precision == "*":
            kinds.append("d")
        kinds.append(piece.conversion)
    return kinds


def coerce_args(sql: str, raw_args: Sequence[str], *, null_token: str | None = None) -> list[Any]:
    """Turn command line strings into the Python types their directives expect."""
    if not raw_args:
        return []
    kinds = _arg_kinds(sql)
    out: list[Any] = []
    for i, raw in enumerate(raw_args):
        kind = kinds[i] if i < len(kinds) else "s"
        if null_token is not None and raw == null_token:
            out.append(None)
        elif kind in INTEGER_CONVERSIONS:
            try:
                out.append(int(raw))
            except ValueError:
                raise sqlwrap.InvalidFormat(f"Argument {i + 1} ({raw!r}) must be an integer for %{kind}") from None
        elif kind in FLOAT_CONVERSIONS:
            try:
                out.append(float(raw))
            except ValueError:
                raise sqlwrap.InvalidFormat(f"Argument {i + 1} ({raw!r}) must be a number for %{kind}") from None
        else:
            out.append(raw)
    return out


def _json_default(value: Any) -> Any:
    if isinstance(value, bytes):
        return {"_type": "bytes", "hex": value.hex(), "len": len(value)}
    raise TypeError(f"Cannot serialise {type(value).__name__}")


def fetch_rows(stmt: sqlwrap.Statement) -> tuple[list[str], list[tuple[Any, ...]]]:
    columns: list[str] = []
    rows: list[tuple[Any, ...]] = []
    if stmt.has_row():
        row = stmt.current_row()
        columns = [row.field_name(i) for i in range(row.num_fields())]
    for row in stmt:
        rows.append(row.values())
    return columns, rows


def _cell(value: Any) -> Text:
    if value is None:
        return Text("NULL", style="dim")
    if isinstance(value, bytes):
        return Text(value.hex(), style="magenta")
    return Text(str(value))


def _render_table(console: Console, columns: list[str], rows: list[tuple[Any, ...]]) -> None:
    table = Table(show_lines=False)
    for i, name in enumerate(columns):
        table.add_column(Text(name), style="cyan" if i == 0 else None)
    for row in rows:
        table.add_row(*(_cell(v) for v in row))
    console.print(table)


def run(
    db_path: str,
    sql: str,
    values: Sequence[Any],
    *,
    batch: bool = False,
    as_json: bool = False,
    exclusive_wal: bool = True,
    busy_timeout: int | None = None,
    trace: bool = False,
    console: Console | None = None,
) -> None:
    console = console or Console()
    db = sqlwrap.connect(db_path, exclusive_wal=exclusive_wal, busy_timeout=busy_timeout)
    try:
        if trace:
            db.trace_to_logger()

        if batch:
            db.exec(sql, *values)
            logger.debug("Batch finished on %s", db_path)
            if as_json:
                print(json.dumps({"changes": db.number_of_rows_changed(), "last_row_id": db.last_row_id()}))
            else:
                console.print("[green]OK[/green]")
            return

        stmt = db.query(sql, *values)
        try:
            columns, rows = fetch_rows(stmt)
        finally:
            stmt.destroy()

        changed = db.number_of_rows_changed()
        last_id = db.last_row_id()
        if as_json:
            payload = {"columns": columns, "rows": [list(r) for r in rows], "changes": changed, "last_row_id": last_id}
            print(json.dumps(payload, ensure_ascii=False, default=_json_default))
        elif columns:
            _render_table(console, columns, rows)
            console.print(f"{len(rows)} row(s)")
        else:
            console.print(f"{changed} row(s) changed, last row id {last_id}")
    finally:
        db.close()


def main(argv: Sequence[str] | None = None) -> int:
    p = argparse.ArgumentParser(description="Run SQL against a SQLite database through sqlwrap")
    p.add_argument("db_path", help="Path to the database file (':memory:' for a scratch database)")
    p.add_argument("sql", help="SQL text; %%q/%%Q/%%d/... directives are filled from ARGS, write %%%% for a literal %%")
    p.add_argument("args", nargs="*", help="Values for the format directives in SQL")
    p.add_argument("--batch", action="store_true", help="Run SQL as a batch of statements, ignoring rows")
    p.add_argument("--json", action="store_true", help="Print the result as JSON instead of a table")
    p.add_argument("--no-wal", action="store_true", help="Do not switch to exclusive locking and WAL journaling")
    p.add_argument("--busy-timeout", type=int, default=None, help="Busy timeout in milliseconds")
    p.add_argument("--null", default=None, help="Argument value to pass as SQL NULL (e.g. '\\N')")
    p.add_argument("--trace", action="store_true", help="Log every statement before it runs")
    args = p.parse_args(argv)

    err_console = Console(stderr=True)
    logging.basicConfig(
        level=config.get_log_level(),
        format="%(message)s",
        handlers=[RichHandler(console=err_console, show_path=False, markup=False)],
    )
    if args.trace:
        logging.getLogger("sqlwrap.trace").setLevel(logging.DEBUG)

    try:
        values = coerce_args(args.sql, args.args, null_token=args.null)
        run(
            args.db_path,
            args.sql,
            values,
            batch=bool(args.batch),
            as_json=bool(args.json),
            exclusive_wal=not bool(args.no_wal),
            busy_timeout=args.busy_timeout,
            trace=bool(args.trace),
        )
    except sqlwrap.Error as e:
        err_console.print(f"error: {e}", style="red", markup=False, highlight=False)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
