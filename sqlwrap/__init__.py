"""A thin object wrapper over the SQLite C library.

    db = sqlwrap.connect("app.db")
    db.execute("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
    db.exec("INSERT INTO t(name) VALUES(%Q)", "Alice")
    q = db.query("SELECT name FROM t WHERE id=%d", db.last_row_id())
    print(q.current_row().get_string_field("name"))
    q.destroy()
    db.close()

Statements own their native handle and must be destroyed (explicitly, with a
``with`` block, or by dropping the last reference) before their database can
be closed. A statement keeps its database object alive until then.

exec() and query() always run the SQL through the engine's printf, so a
literal % is written as %%. execute() and compile() take SQL verbatim.
"""

from .native import (
    load_library, parse_version, take_string,
    SQLITE_OK, SQLITE_ERROR, SQLITE_BUSY, SQLITE_INTERRUPT, SQLITE_RANGE, SQLITE_ROW, SQLITE_DONE,
    SQLITE_INTEGER, SQLITE_FLOAT, SQLITE_TEXT, SQLITE_BLOB, SQLITE_NULL,
    SQLITE_TRANSIENT, SQLITE_TRACE_STMT, TRACE_CALLBACK, TRACE_V2_CALLBACK,
)
from .errors import (
    Error, EngineError, DatabaseBusy, OpenFailed, FormattingFailed,
    InterfaceError, InvalidHandle, InvalidState, IndexOutOfRange, FieldNotFound,
    MultipleStatements, StatementsStillOpen, InvalidFormat, VersionMismatch,
    error_for_status, _raise_error,
)
from .formatting import format_args, format_value, sql_format
from . import config, native
import ctypes
import enum
import logging
import os
import weakref

__version__ = "0.1.0"

logger = logging.getLogger(__name__)

_INT32_MIN, _INT32_MAX = -(2**31), 2**31 - 1
_INT64_MIN, _INT64_MAX = -(2**63), 2**63 - 1


class SqlType(enum.IntEnum):
    """Storage class of a single value, as reported by the engine."""
    INTEGER = SQLITE_INTEGER
    FLOAT = SQLITE_FLOAT
    TEXT = SQLITE_TEXT
    BLOB = SQLITE_BLOB
    NULL = SQLITE_NULL


_version_checked = False


def check_engine_version():
    """Refuse to run against an engine whose reported version is inconsistent,
    too old, or not the release pinned by SQLWRAP_EXPECTED_SQLITE_VERSION."""
    global _version_checked
    if _version_checked:
        return
    number = native.version_number()
    text = native.version()

    if parse_version(text) != number:
        raise VersionMismatch(f"SQLite reports version {text} but version number {number}; incompatible library")
    if number < native.MIN_VERSION_NUMBER:
        raise VersionMismatch(f"SQLite {text} is too old; 3.7.0 or newer is required")

    expected = config.get_expected_sqlite_version()
    if expected is not None:
        expected_number = parse_version(expected)
        if expected_number is None:
            raise VersionMismatch(f"Unrecognised SQLWRAP_EXPECTED_SQLITE_VERSION {expected!r}")
        if expected_number != number:
            raise VersionMismatch(f"SQLite {text} was loaded but {expected} was expected")

    _version_checked = True


class ResultRow:
    """Read-only view of the current row of a Statement.

    The view holds no data of its own. Every call reads through to the parent
    statement, so it is only meaningful while ``statement.has_row()`` is true;
    afterwards (next row, rebind, destroy) it raises instead of returning
    stale values. Fields are addressed by 0-based index or by column name.
    """

    __slots__ = ("_parent_ref",)

    def __init__(self, parent):
        self._parent_ref = weakref.ref(parent)

    def _checked(self):
        parent = self._parent_ref()
        if parent is None or not parent._stmt:
            raise InvalidHandle("Result row belongs to a statement that has been destroyed")
        if parent._end_of_rows:
            raise InvalidState("No current row; call execute() and check has_row() first")
        return parent

    def _column(self, field):
        parent = self._checked()
        if isinstance(field, str):
            index = self.field_index(field)
        else:
            index = field
            if index < 0 or index >= parent._cols_in_result:
                raise IndexOutOfRange(f"Invalid column index {index}; row has {parent._cols_in_result} columns")
        return parent._lib, parent._stmt, index

    def num_fields(self):
        return self._checked()._cols_in_result

    def field_index(self, name):
        parent = self._checked()
        lib = parent._lib
        for index in range(parent._cols_in_result):
            col = lib.sqlite3_column_name(parent._stmt, index)
            if col is not None and col.decode("utf-8") == name:
                return index
        raise FieldNotFound(f"Invalid field name requested: {name!r}")

    def field_name(self, index):
        lib, stmt, index = self._column(index)
        name = lib.sqlite3_column_name(stmt, index)
        return name.decode("utf-8") if name is not None else None

    def field_decl_type(self, index):
        # None for expressions and subqueries.
        lib, stmt, index = self._column(index)
        decl = lib.sqlite3_column_decltype(stmt, index)
        return decl.decode("utf-8") if decl is not None else None

    def field_data_type(self, field):
        lib, stmt, index = self._column(field)
        return SqlType(lib.sqlite3_column_type(stmt, index))

    def field_is_null(self, field):
        return self.field_data_type(field) == SqlType.NULL

    def get_int_field(self, field, null_value=0):
        lib, stmt, index = self._column(field)
        if lib.sqlite3_column_type(stmt, index) == SQLITE_NULL:
            return null_value
        return lib.sqlite3_column_int(stmt, index)

    def get_int64_field(self, field, null_value=0):
        lib, stmt, index = self._column(field)
        if lib.sqlite3_column_type(stmt, index) == SQLITE_NULL:
            return null_value
        return lib.sqlite3_column_int64(stmt, index)

    def get_float_field(self, field, null_value=0.0):
        lib, stmt, index = self._column(field)
        if lib.sqlite3_column_type(stmt, index) == SQLITE_NULL:
            return null_value
        return lib.sqlite3_column_double(stmt, index)

    def get_string_field(self, field, null_value=""):
        lib, stmt, index = self._column(field)
        if lib.sqlite3_column_type(stmt, index) == SQLITE_NULL:
            return null_value
        # Text first, then its byte length (the order the engine documents).
        ptr = lib.sqlite3_column_text(stmt, index)
        length = lib.sqlite3_column_bytes(stmt, index)
        if not ptr:
            return ""
        return ctypes.string_at(ptr, length).decode("utf-8", errors="replace")

    def get_blob_field(self, field):
        """Copy the cell's bytes out of engine memory; NULL reads as b""."""
        lib, stmt, index = self._column(field)
        ptr = lib.sqlite3_column_blob(stmt, index)
        length = lib.sqlite3_column_bytes(stmt, index)
        if not ptr:
            return b""
        return ctypes.string_at(ptr, length)

    def values(self):
        """The whole row as a tuple of Python values, decoded by storage class."""
        n = self.num_fields()
        row = []
        for i in range(n):
            kind = self.field_data_type(i)
            if kind == SqlType.NULL:
                row.append(None)
            elif kind == SqlType.INTEGER:
                row.append(self.get_int64_field(i))
            elif kind == SqlType.FLOAT:
                row.append(self.get_float_field(i))
            elif kind == SqlType.TEXT:
                row.append(self.get_string_field(i))
            else:
                row.append(self.get_blob_field(i))
        return tuple(row)


class Statement:
    """One prepared statement, exclusively owning its native handle.

    Parameters are bound left to right with the bind*() methods, which all
    return the statement so calls chain:

        stmt.bind("a").bind(2).execute()

    Binding parameter 1 starts a new binding sequence: the statement is reset
    and any current row is discarded. execute() rewinds the bind cursor so the
    next bind() replaces parameter 1 again.
    """

    def __init__(self, stmt_ptr=None, database=None):
        self._lib = load_library()
        self._stmt = stmt_ptr or None
        # Keeps the connection open for as long as the statement lives.
        self._database = database
        self._bind_next = 1
        self._end_of_rows = True
        self._cols_in_result = 0
        self._row = ResultRow(self)

    def __copy__(self):
        raise TypeError("Statement owns a native handle and cannot be copied; use take() to move it")

    def __deepcopy__(self, memo):
        raise TypeError("Statement owns a native handle and cannot be copied; use take() to move it")

    def __reduce_ex__(self, protocol):
        raise TypeError("Statement cannot be pickled")

    def take(self):
        """Move the native handle into a new Statement, leaving this one empty."""
        other = Statement(self._stmt, self._database)
        other._bind_next = self._bind_next
        other._end_of_rows = self._end_of_rows
        other._cols_in_result = self._cols_in_result
        self._stmt = None
        self._database = None
        self._bind_next = 1
        self._end_of_rows = True
        self._cols_in_result = 0
        return other

    @property
    def sql(self):
        if not self._stmt:
            return None
        text = self._lib.sqlite3_sql(self._stmt)
        return text.decode("utf-8") if text is not None else None

    def _require_handle(self):
        if not self._stmt:
            raise InvalidHandle("Statement has no native handle (destroyed or moved)")

    def _on_bind(self):
        self._require_handle()
        if self._bind_next == 1:
            # First parameter of a new sequence: drop the previous execution.
            self._lib.sqlite3_reset(self._stmt)
            self._end_of_rows = True
            self._cols_in_result = 0
        return self._bind_next

    def _bound(self, res):
        if res != SQLITE_OK:
            _raise_error(self._lib, self._lib.sqlite3_db_handle(self._stmt), res, sql=self.sql)
        self._bind_next += 1
        return self

    def bind_text(self, value):
        idx = self._on_bind()
        b = value.encode("utf-8")
        return self._bound(self._lib.sqlite3_bind_text(self._stmt, idx, b, len(b), SQLITE_TRANSIENT))

    def bind_int(self, value):
        if value < _INT32_MIN or value > _INT32_MAX:
            raise OverflowError(f"{value} does not fit in a 32-bit integer parameter")
        idx = self._on_bind()
        return self._bound(self._lib.sqlite3_bind_int(self._stmt, idx, int(value)))

    def bind_int64(self, value):
        if value < _INT64_MIN or value > _INT64_MAX:
            raise OverflowError(f"{value} does not fit in a 64-bit integer parameter")
        idx = self._on_bind()
        return self._bound(self._lib.sqlite3_bind_int64(self._stmt, idx, int(value)))

    def bind_double(self, value):
        idx = self._on_bind()
        return self._bound(self._lib.sqlite3_bind_double(self._stmt, idx, float(value)))

    def bind_blob(self, data, length=None):
        b = bytes(data)
        if length is not None:
            if length < 0 or length > len(b):
                raise ValueError(f"Blob length {length} outside 0..{len(b)}")
            b = b[:length]
        idx = self._on_bind()
        return self._bound(self._lib.sqlite3_bind_blob(self._stmt, idx, b, len(b), SQLITE_TRANSIENT))

    def bind_null(self):
        idx = self._on_bind()
        return self._bound(self._lib.sqlite3_bind_null(self._stmt, idx))

    def bind_same(self):
        """Skip a parameter, keeping whatever was bound to it last time."""
        self._on_bind()
        self._bind_next += 1
        return self

    def bind(self, value):
        if value is None:
            return self.bind_null()
        elif isinstance(value, bool):
            return self.bind_int64(1 if value else 0)
        elif isinstance(value, int):
            return self.bind_int64(value)
        elif isinstance(value, float):
            return self.bind_double(value)
        elif isinstance(value, str):
            return self.bind_text(value)
        elif isinstance(value, (bytes, bytearray, memoryview)):
            return self.bind_blob(value)
        else:
            # Unknown types (e.g. dates) go in as their text form
            return self.bind_text(str(value))

    def _stepped(self, res):
        if res == SQLITE_DONE:
            self._end_of_rows = True
        elif res == SQLITE_ROW:
            self._end_of_rows = False
            self._cols_in_result = self._lib.sqlite3_column_count(self._stmt)
        else:
            self._end_of_rows = True
            self._cols_in_result = 0
            _raise_error(self._lib, self._lib.sqlite3_db_handle(self._stmt), res, sql=self.sql)

    def execute(self):
        """Run the statement with the values bound so far and load the first row."""
        self._require_handle()
        self._bind_next = 1
        if not self._end_of_rows:
            # Caller abandoned the previous result set part way through.
            self._lib.sqlite3_reset(self._stmt)

        self._stepped(self._lib.sqlite3_step(self._stmt))
        if self._end_of_rows:
            self._cols_in_result = 0
        return self

    def next_row(self):
        self._require_handle()
        if self._end_of_rows:
            return False
        self._stepped(self._lib.sqlite3_step(self._stmt))
        return not self._end_of_rows

    def has_row(self):
        return not self._end_of_rows

    def current_row(self):
        """The current row. Always go through this call, e.g.

            stmt.current_row().get_string_field("username")

        rather than keeping the returned view around.
        """
        self._require_handle()
        if self._end_of_rows:
            raise InvalidState("called current_row() after reaching end of rows")
        return self._row

    def __iter__(self):
        while self.has_row():
            yield self.current_row()
            self.next_row()

    def destroy(self):
        self._end_of_rows = True
        self._cols_in_result = 0
        if self._stmt:
            self._lib.sqlite3_finalize(self._stmt)
            self._stmt = None
        self._database = None

    close = destroy

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.destroy()

    def __del__(self):
        if getattr(self, "_stmt", None):
            self.destroy()


def _first_int(stmt, default):
    if not stmt.has_row() or stmt.current_row().num_fields() < 1:
        return default
    return stmt.current_row().get_int_field(0)


class Database:
    """An open SQLite database.

    exclusive_wal switches the connection to EXCLUSIVE locking and WAL
    journaling. That is much faster for a single writer, but no other process
    can use the file while it is open and SQLite older than 3.7.0 can no
    longer read it.
    """

    def __init__(self, path, exclusive_wal=True, busy_timeout=None):
        self._lib = load_library()
        self._db = None
        self._trace_callback = None
        self._busy_timeout_ms = config.get_busy_timeout_ms() if busy_timeout is None else int(busy_timeout)
        check_engine_version()

        self.path = os.fspath(path)
        raw_path = self.path.encode("utf-8") if isinstance(self.path, str) else self.path
        handle = ctypes.c_void_p()
        res = self._lib.sqlite3_open(raw_path, ctypes.byref(handle))
        if res != SQLITE_OK:
            msg = self._lib.sqlite3_errmsg(handle.value) if handle.value else None
            msg_str = msg.decode("utf-8", errors="replace") if msg else "unknown error"
            if handle.value:
                self._lib.sqlite3_close(handle.value)
            raise OpenFailed(f"Unable to open/create database file {self.path!r}: {msg_str}", code=res)
        self._db = handle.value

        self.set_busy_timeout(self._busy_timeout_ms)
        if exclusive_wal:
            try:
                self.execute("PRAGMA locking_mode = EXCLUSIVE; PRAGMA journal_mode=WAL;")
            except Error:
                self._lib.sqlite3_close(self._db)
                self._db = None
                raise
        logger.debug("Opened database %s (exclusive_wal=%s)", self.path, exclusive_wal)

    def __copy__(self):
        raise TypeError("Database owns a native handle and cannot be copied; use take() to move it")

    def __deepcopy__(self, memo):
        raise TypeError("Database owns a native handle and cannot be copied; use take() to move it")

    def __reduce_ex__(self, protocol):
        raise TypeError("Database cannot be pickled")

    def take(self):
        """Move the native handle into a new Database, leaving this one closed."""
        other = Database.__new__(Database)
        other._lib = self._lib
        other._db = self._db
        other._trace_callback = self._trace_callback
        other._busy_timeout_ms = self._busy_timeout_ms
        other.path = self.path
        self._db = None
        self._trace_callback = None
        return other

    def _require_handle(self):
        if not self._db:
            raise InvalidHandle("Database is closed")

    def close(self):
        if not self._db:
            return
        # The engine refuses to close while prepared statements are alive.
        if self._lib.sqlite3_next_stmt(self._db, None):
            raise StatementsStillOpen(
                "Tried to close a database before calling destroy() on all statement objects."
            )
        res = self._lib.sqlite3_close(self._db)
        if res != SQLITE_OK:
            _raise_error(self._lib, self._db, res)
        self._db = None
        self._trace_callback = None
        logger.debug("Closed database %s", self.path)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __del__(self):
        if not getattr(self, "_db", None):
            return
        try:
            self.close()
        except Error as e:
            logger.warning("Could not close database %s during garbage collection: %s", self.path, e)

    def _prepare(self, sql, caller):
        self._require_handle()
        data = sql.encode("utf-8")
        buf = ctypes.create_string_buffer(data)
        stmt_ptr = ctypes.c_void_p()
        tail = ctypes.c_void_p()
        res = self._lib.sqlite3_prepare_v2(self._db, buf, -1, ctypes.byref(stmt_ptr), ctypes.byref(tail))
        if res != SQLITE_OK:
            _raise_error(self._lib, self._db, res, sql=sql)

        consumed = tail.value - ctypes.addressof(buf) if tail.value else len(data)
        if data[consumed:].strip():
            if stmt_ptr.value:
                self._lib.sqlite3_finalize(stmt_ptr.value)
            raise MultipleStatements(
                f"{caller} only compiles the first statement; other statements have been ignored."
            )
        if not stmt_ptr.value:
            raise InterfaceError(f"{caller} was given SQL text that contains no statement")
        return Statement(stmt_ptr.value, self)

    def compile(self, sql):
        """Prepare exactly one statement without running it."""
        return self._prepare(sql, "compile()")

    def execute(self, sql):
        """Run one or more statements, discarding any rows they produce."""
        self._require_handle()
        errmsg = ctypes.c_void_p()
        res = self._lib.sqlite3_exec(self._db, sql.encode("utf-8"), None, None, ctypes.byref(errmsg))
        message = take_string(self._lib, errmsg.value)
        if res != SQLITE_OK:
            raise error_for_status(res, message, sql=sql)

    def exec(self, sql, *args):
        """Format sql with args (sqlite3_mprintf rules), then execute() it.

        The SQL is always formatted, so a literal % must be written as %%.
        Use %q or %Q rather than %s for text values.
        """
        self.exec_formatted(sql, args)

    def exec_formatted(self, sql, args):
        self._require_handle()
        self.execute(format_args(sql, args))

    def _run_query(self, sql):
        stmt = self._prepare(sql, "query()")
        try:
            return stmt.execute()
        except Error:
            stmt.destroy()
            raise

    def query(self, sql, *args):
        """Compile and execute a single statement, formatted as for exec().

        The returned statement is positioned on its first row, if any. Use
        execute() or compile() to run SQL without formatting it.
        """
        return self.query_formatted(sql, args)

    def query_formatted(self, sql, args):
        self._require_handle()
        return self._run_query(format_args(sql, args))

    def format(self, fmt, *args):
        return format_args(fmt, args)

    def format_value(self, kind, value):
        return format_value(kind, value)

    def last_row_id(self):
        self._require_handle()
        return self._lib.sqlite3_last_insert_rowid(self._db)

    def number_of_rows_changed(self):
        """Rows changed by the most recent INSERT, UPDATE or DELETE."""
        self._require_handle()
        return self._lib.sqlite3_changes(self._db)

    def table_exists(self, name):
        with self.query("SELECT COUNT(*) FROM sqlite_master WHERE type='table' AND name=%Q", name) as q:
            return _first_int(q, -1) > 0

    def get_scalar(self, sql, error_value=-1):
        """First column of the first row as an int, or error_value if there is none.

        sql is formatted like query() with no arguments.
        """
        with self.query(sql) as q:
            return _first_int(q, error_value)

    def interrupt(self):
        """Ask a statement running on another thread to stop at its next chance."""
        self._require_handle()
        self._lib.sqlite3_interrupt(self._db)

    @property
    def busy_timeout(self):
        return self._busy_timeout_ms

    def set_busy_timeout(self, millis):
        self._require_handle()
        self._busy_timeout_ms = int(millis)
        self._lib.sqlite3_busy_timeout(self._db, self._busy_timeout_ms)

    def set_trace_handler(self, handler, context=None):
        """Call handler(context, sql) with the expanded SQL of every statement
        just before it runs. Pass None to stop tracing."""
        self._require_handle()
        lib = self._lib
        use_v2 = hasattr(lib, "sqlite3_trace_v2")

        if handler is None:
            if use_v2:
                lib.sqlite3_trace_v2(self._db, 0, TRACE_V2_CALLBACK(), None)
            else:
                lib.sqlite3_trace(self._db, TRACE_CALLBACK(), None)
            self._trace_callback = None
            return

        def dispatch(text):
            # Nothing may propagate back into the engine.
            try:
                handler(context, text)
            except Exception:
                logger.exception("SQL trace handler failed")

        if use_v2:
            def trampoline(event, _ctx, p, x):
                if event != SQLITE_TRACE_STMT:
                    return 0
                unexpanded = ctypes.string_at(x) if x else b""
                if unexpanded.startswith(b"--"):
                    # Trigger entry: the engine passes a comment naming it.
                    text = unexpanded.decode("utf-8", errors="replace")
                else:
                    text = take_string(lib, lib.sqlite3_expanded_sql(p))
                    if text is None:
                        text = unexpanded.decode("utf-8", errors="replace")
                dispatch(text)
                return 0

            callback = TRACE_V2_CALLBACK(trampoline)
            lib.sqlite3_trace_v2(self._db, SQLITE_TRACE_STMT, callback, None)
        else:
            def trampoline(_ctx, sql):
                dispatch(sql.decode("utf-8", errors="replace") if sql else "")

            callback = TRACE_CALLBACK(trampoline)
            lib.sqlite3_trace(self._db, callback, None)

        # The engine only holds a raw pointer; keep the thunk alive.
        self._trace_callback = callback

    def trace_to_logger(self, log=None, level=logging.DEBUG):
        """Send every traced statement to a logging logger (default "sqlwrap.trace")."""
        target = log if log is not None else logging.getLogger("sqlwrap.trace")
        self.set_trace_handler(lambda _ctx, sql: target.log(level, "%s", sql))

    @staticmethod
    def sqlite_version():
        return native.version()


def connect(path, **kwargs):
    return Database(path, **kwargs)


__all__ = [
    "Database", "Statement", "ResultRow", "SqlType", "connect",
    "format_args", "format_value", "sql_format", "check_engine_version",
    "Error", "EngineError", "DatabaseBusy", "OpenFailed", "FormattingFailed",
    "InterfaceError", "InvalidHandle", "InvalidState", "IndexOutOfRange", "FieldNotFound",
    "MultipleStatements", "StatementsStillOpen", "InvalidFormat", "VersionMismatch",
    "SQLITE_OK", "SQLITE_ERROR", "SQLITE_BUSY", "SQLITE_INTERRUPT", "SQLITE_RANGE",
    "SQLITE_ROW", "SQLITE_DONE",
]
