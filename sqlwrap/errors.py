import json

from .native import SQLITE_BUSY, SQLITE_ERROR, status_name


class Error(Exception):
    pass


class EngineError(Error):
    """A non-OK status reported by SQLite."""

    def __init__(self, message, code=None, sql=None):
        super().__init__(message)
        self.code = code
        self.sql = sql


class DatabaseBusy(EngineError):
    pass


class OpenFailed(EngineError):
    pass


class FormattingFailed(EngineError):
    pass


class InterfaceError(Error):
    pass


class InvalidHandle(InterfaceError):
    pass


class InvalidState(InterfaceError):
    pass


class IndexOutOfRange(InterfaceError, IndexError):
    pass


class FieldNotFound(InterfaceError, LookupError):
    pass


class MultipleStatements(InterfaceError):
    pass


class StatementsStillOpen(InterfaceError):
    pass


class InvalidFormat(InterfaceError, ValueError):
    pass


class VersionMismatch(Error):
    pass


def describe_status(code):
    name = status_name(code)
    if name is None:
        return f"Result code {code}"
    return f"Result code {code} ({name})"


def error_for_status(code, message=None, sql=None):
    """Build the exception for an engine status.

    SQLITE_BUSY gets its own type so callers can retry. SQLITE_ERROR carries
    the engine's message; every other code leads with its symbolic name.
    """
    if code == SQLITE_BUSY:
        text = "Database busy."
        if message:
            text += f" {message}"
        cls = DatabaseBusy
    elif code == SQLITE_ERROR and message:
        text = message
        cls = EngineError
    else:
        text = describe_status(code)
        if message:
            text += f": {message}"
        cls = EngineError

    if sql is not None:
        ctx = {"native_code": int(code), "sql": sql}
        text = text + "\nContext: " + json.dumps(ctx, ensure_ascii=False)
    return cls(text, code=code, sql=sql)


def _raise_error(lib, db_handle, code, *, sql=None):
    msg = lib.sqlite3_errmsg(db_handle) if db_handle else None
    # Native messages should be UTF-8, but don't crash if not.
    msg_str = msg.decode("utf-8", errors="replace") if msg else None
    raise error_for_status(code, msg_str, sql=sql)
