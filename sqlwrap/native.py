import ctypes
import ctypes.util
import re
from ctypes import c_int, c_int64, c_uint, c_double, c_char_p, c_void_p, POINTER, CFUNCTYPE

from . import config

# Primary result codes (sqlite3.h).
SQLITE_OK = 0
SQLITE_ERROR = 1
SQLITE_INTERNAL = 2
SQLITE_PERM = 3
SQLITE_ABORT = 4
SQLITE_BUSY = 5
SQLITE_LOCKED = 6
SQLITE_NOMEM = 7
SQLITE_READONLY = 8
SQLITE_INTERRUPT = 9
SQLITE_IOERR = 10
SQLITE_CORRUPT = 11
SQLITE_NOTFOUND = 12
SQLITE_FULL = 13
SQLITE_CANTOPEN = 14
SQLITE_PROTOCOL = 15
SQLITE_EMPTY = 16
SQLITE_SCHEMA = 17
SQLITE_TOOBIG = 18
SQLITE_CONSTRAINT = 19
SQLITE_MISMATCH = 20
SQLITE_MISUSE = 21
SQLITE_NOLFS = 22
SQLITE_AUTH = 23
SQLITE_FORMAT = 24
SQLITE_RANGE = 25
SQLITE_NOTADB = 26
SQLITE_ROW = 100
SQLITE_DONE = 101

# Indexed by result code.
STATUS_NAMES = (
    "SQLITE_OK", "SQLITE_ERROR", "SQLITE_INTERNAL", "SQLITE_PERM",
    "SQLITE_ABORT", "SQLITE_BUSY", "SQLITE_LOCKED", "SQLITE_NOMEM", "SQLITE_READONLY", "SQLITE_INTERRUPT",
    "SQLITE_IOERR", "SQLITE_CORRUPT", "SQLITE_NOTFOUND", "SQLITE_FULL", "SQLITE_CANTOPEN",
    "SQLITE_PROTOCOL", "SQLITE_EMPTY", "SQLITE_SCHEMA", "SQLITE_TOOBIG", "SQLITE_CONSTRAINT",
    "SQLITE_MISMATCH", "SQLITE_MISUSE", "SQLITE_NOLFS", "SQLITE_AUTH", "SQLITE_FORMAT", "SQLITE_RANGE",
    "SQLITE_NOTADB",
)

# Fundamental datatypes, as reported by sqlite3_column_type().
SQLITE_INTEGER = 1
SQLITE_FLOAT = 2
SQLITE_TEXT = 3
SQLITE_BLOB = 4
SQLITE_NULL = 5

# sqlite3_trace_v2() event mask
SQLITE_TRACE_STMT = 0x01

# ((sqlite3_destructor_type)-1): the engine takes its own copy of bound text/blobs.
SQLITE_TRANSIENT = c_void_p(-1)

# WAL journaling needs 3.7.0.
MIN_VERSION_NUMBER = 3007000

TRACE_V2_CALLBACK = CFUNCTYPE(c_int, c_uint, c_void_p, c_void_p, c_void_p)
TRACE_CALLBACK = CFUNCTYPE(None, c_void_p, c_char_p)


_lib = None


def _candidate_paths():
    env_path = config.get_native_lib_path()
    if env_path:
        return [env_path]

    candidates = []
    found = ctypes.util.find_library("sqlite3")
    if found:
        candidates.append(found)

    # Common sonames across platforms
    candidates.extend([
        "libsqlite3.so.0",
        "libsqlite3.so",
        "libsqlite3.dylib",
        "sqlite3.dll",
        "winsqlite3.dll",
    ])

    # Last resort: the engine Python's own sqlite3 module is linked against.
    # Symbol lookup through the extension's handle reaches its dependencies.
    try:
        import _sqlite3
        candidates.append(_sqlite3.__file__)
    except ImportError:
        pass
    return candidates


def load_library():
    global _lib
    if _lib is not None:
        return _lib

    errors = []
    lib = None
    for path in _candidate_paths():
        try:
            lib = ctypes.CDLL(path)
            lib.sqlite3_libversion_number
        except (OSError, AttributeError) as e:
            errors.append(f"{path}: {e}")
            lib = None
            continue
        break

    if lib is None:
        raise RuntimeError(
            "Could not load the SQLite native library. Set SQLWRAP_NATIVE_LIB env var. Tried: "
            + "; ".join(errors)
        )

    # Define signatures

    # Version
    lib.sqlite3_libversion.argtypes = []
    lib.sqlite3_libversion.restype = c_char_p

    lib.sqlite3_libversion_number.argtypes = []
    lib.sqlite3_libversion_number.restype = c_int

    # Memory management for engine-allocated buffers
    lib.sqlite3_free.argtypes = [c_void_p]
    lib.sqlite3_free.restype = None

    # Connection
    lib.sqlite3_open.argtypes = [c_char_p, POINTER(c_void_p)]
    lib.sqlite3_open.restype = c_int

    lib.sqlite3_close.argtypes = [c_void_p]
    lib.sqlite3_close.restype = c_int

    lib.sqlite3_errmsg.argtypes = [c_void_p]
    lib.sqlite3_errmsg.restype = c_char_p

    lib.sqlite3_exec.argtypes = [c_void_p, c_char_p, c_void_p, c_void_p, POINTER(c_void_p)]
    lib.sqlite3_exec.restype = c_int

    lib.sqlite3_busy_timeout.argtypes = [c_void_p, c_int]
    lib.sqlite3_busy_timeout.restype = c_int

    lib.sqlite3_interrupt.argtypes = [c_void_p]
    lib.sqlite3_interrupt.restype = None

    lib.sqlite3_last_insert_rowid.argtypes = [c_void_p]
    lib.sqlite3_last_insert_rowid.restype = c_int64

    lib.sqlite3_changes.argtypes = [c_void_p]
    lib.sqlite3_changes.restype = c_int

    lib.sqlite3_next_stmt.argtypes = [c_void_p, c_void_p]
    lib.sqlite3_next_stmt.restype = c_void_p

    # Statements
    lib.sqlite3_prepare_v2.argtypes = [c_void_p, c_void_p, c_int, POINTER(c_void_p), POINTER(c_void_p)]
    lib.sqlite3_prepare_v2.restype = c_int

    lib.sqlite3_step.argtypes = [c_void_p]
    lib.sqlite3_step.restype = c_int

    lib.sqlite3_reset.argtypes = [c_void_p]
    lib.sqlite3_reset.restype = c_int

    lib.sqlite3_finalize.argtypes = [c_void_p]
    lib.sqlite3_finalize.restype = c_int

    lib.sqlite3_db_handle.argtypes = [c_void_p]
    lib.sqlite3_db_handle.restype = c_void_p

    lib.sqlite3_sql.argtypes = [c_void_p]
    lib.sqlite3_sql.restype = c_char_p

    # Bindings
    lib.sqlite3_bind_null.argtypes = [c_void_p, c_int]
    lib.sqlite3_bind_null.restype = c_int

    lib.sqlite3_bind_int.argtypes = [c_void_p, c_int, c_int]
    lib.sqlite3_bind_int.restype = c_int

    lib.sqlite3_bind_int64.argtypes = [c_void_p, c_int, c_int64]
    lib.sqlite3_bind_int64.restype = c_int

    lib.sqlite3_bind_double.argtypes = [c_void_p, c_int, c_double]
    lib.sqlite3_bind_double.restype = c_int

    lib.sqlite3_bind_text.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_text.restype = c_int

    lib.sqlite3_bind_blob.argtypes = [c_void_p, c_int, c_char_p, c_int, c_void_p]
    lib.sqlite3_bind_blob.restype = c_int

    # Columns
    lib.sqlite3_column_count.argtypes = [c_void_p]
    lib.sqlite3_column_count.restype = c_int

    lib.sqlite3_column_name.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_name.restype = c_char_p

    lib.sqlite3_column_decltype.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_decltype.restype = c_char_p

    lib.sqlite3_column_type.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_type.restype = c_int

    lib.sqlite3_column_int.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int.restype = c_int

    lib.sqlite3_column_int64.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_int64.restype = c_int64

    lib.sqlite3_column_double.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_double.restype = c_double

    # Text and blobs come back as raw pointers; length from sqlite3_column_bytes.
    lib.sqlite3_column_text.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_text.restype = c_void_p

    lib.sqlite3_column_blob.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_blob.restype = c_void_p

    lib.sqlite3_column_bytes.argtypes = [c_void_p, c_int]
    lib.sqlite3_column_bytes.restype = c_int

    # Formatting. sqlite3_mprintf is variadic, so argtypes stay unset and
    # callers pass explicit ctypes values.
    lib.sqlite3_mprintf.restype = c_void_p

    # Tracing (trace_v2 on newer libs, legacy trace otherwise)
    if hasattr(lib, "sqlite3_trace_v2"):
        lib.sqlite3_trace_v2.argtypes = [c_void_p, c_uint, TRACE_V2_CALLBACK, c_void_p]
        lib.sqlite3_trace_v2.restype = c_int

        lib.sqlite3_expanded_sql.argtypes = [c_void_p]
        lib.sqlite3_expanded_sql.restype = c_void_p
    else:
        lib.sqlite3_trace.argtypes = [c_void_p, TRACE_CALLBACK, c_void_p]
        lib.sqlite3_trace.restype = c_void_p

    _lib = lib
    return _lib


def parse_version(text):
    """Turn "3.45.1" into 3045001, the encoding of sqlite3_libversion_number()."""
    m = re.match(r"(\d+)\.(\d+)\.(\d+)", text)
    if m is None:
        return None
    major, minor, patch = (int(g) for g in m.groups())
    return major * 1000000 + minor * 1000 + patch


def version():
    return load_library().sqlite3_libversion().decode("ascii")


def version_number():
    return load_library().sqlite3_libversion_number()


def status_name(code):
    if 0 <= code < len(STATUS_NAMES):
        return STATUS_NAMES[code]
    return None


def take_string(lib, ptr):
    """Copy a NUL-terminated engine buffer into a str and sqlite3_free it."""
    if not ptr:
        return None
    try:
        return ctypes.string_at(ptr).decode("utf-8", errors="replace")
    finally:
        lib.sqlite3_free(ptr)
