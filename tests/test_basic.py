import pytest
import sqlwrap


def test_connect(db_path):
    conn = sqlwrap.connect(db_path)
    assert conn is not None
    conn.close()


def test_insert_and_read_back():
    db = sqlwrap.connect(":memory:")
    db.execute("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")

    q = db.query("INSERT INTO t(name) VALUES(%Q)", "Alice")
    assert not q.has_row()
    q.destroy()
    assert db.last_row_id() == 1
    assert db.number_of_rows_changed() == 1

    q = db.query("SELECT name FROM t WHERE id=1")
    assert q.current_row().get_string_field("name") == "Alice"
    q.destroy()

    db.close()


def test_get_scalar_count_versus_no_rows(db):
    db.execute("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
    db.exec("INSERT INTO t(name) VALUES(%Q)", "Alice")

    assert db.get_scalar("SELECT COUNT(*) FROM t WHERE id=999", -1) == 0
    assert db.get_scalar("SELECT id FROM t WHERE id=999", -1) == -1
    assert db.get_scalar("SELECT id FROM t WHERE id=999", -5) == -5
    assert db.get_scalar("SELECT COUNT(*) FROM t") == 1


def test_quote_round_trip(db):
    db.execute("CREATE TABLE t(id INTEGER PRIMARY KEY, name TEXT)")
    db.exec("INSERT INTO t(name) VALUES('%q')", "O'Brien")

    with db.query("SELECT name FROM t") as q:
        assert q.current_row().get_string_field(0) == "O'Brien"


def test_reopen_persists(db_path):
    db = sqlwrap.connect(db_path)
    db.execute("CREATE TABLE foo (id INTEGER, name TEXT)")
    db.execute("INSERT INTO foo VALUES (1, 'alice'); INSERT INTO foo VALUES (2, 'bob')")
    db.close()

    db = sqlwrap.connect(db_path)
    with db.query("SELECT id, name FROM foo ORDER BY id") as q:
        rows = [row.values() for row in q]
    assert rows == [(1, "alice"), (2, "bob")]
    db.close()


def test_exclusive_wal_mode(db_path):
    db = sqlwrap.connect(db_path)
    with db.query("PRAGMA journal_mode") as q:
        assert q.current_row().get_string_field(0).lower() == "wal"
    with db.query("PRAGMA locking_mode") as q:
        assert q.current_row().get_string_field(0).lower() == "exclusive"
    db.close()


def test_default_mode_can_be_switched_off(db_path):
    db = sqlwrap.connect(db_path, exclusive_wal=False)
    with db.query("PRAGMA journal_mode") as q:
        assert q.current_row().get_string_field(0).lower() == "delete"
    db.close()


def test_error_includes_sql_and_code(db):
    with pytest.raises(sqlwrap.EngineError) as excinfo:
        db.compile("SELEC 1")

    assert excinfo.value.code == sqlwrap.SQLITE_ERROR
    msg = str(excinfo.value)
    assert "syntax error" in msg
    assert "Context:" in msg
    assert "native_code" in msg
    assert "\"sql\":" in msg
