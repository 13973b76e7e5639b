"""Environment-variable-based configuration."""

import os

DEFAULT_BUSY_TIMEOUT_MS = 60000


def get_native_lib_path() -> str | None:
    """Return an explicit SQLite shared library path from SQLWRAP_NATIVE_LIB."""
    return os.environ.get("SQLWRAP_NATIVE_LIB") or None


def get_busy_timeout_ms() -> int:
    """Return the default busy timeout in milliseconds from SQLWRAP_BUSY_TIMEOUT_MS."""
    return int(os.environ.get("SQLWRAP_BUSY_TIMEOUT_MS", str(DEFAULT_BUSY_TIMEOUT_MS)))


def get_expected_sqlite_version() -> str | None:
    """Return the exact SQLite release required, from SQLWRAP_EXPECTED_SQLITE_VERSION."""
    return os.environ.get("SQLWRAP_EXPECTED_SQLITE_VERSION") or None


def get_log_level() -> str:
    """Return the logging level from SQLWRAP_LOG_LEVEL."""
    return os.environ.get("SQLWRAP_LOG_LEVEL", "WARNING")
