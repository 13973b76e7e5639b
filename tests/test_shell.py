import json
import logging

import pytest
import sqlwrap
from sqlwrap.tools import shell


@pytest.fixture
def populated(db_path):
    with sqlwrap.connect(db_path, exclusive_wal=False) as db:
        db.execute(
            "CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT, photo BLOB);"
            "INSERT INTO people (name, photo) VALUES ('alice', x'0a0b');"
            "INSERT INTO people (name, photo) VALUES ('bob', NULL);"
        )
    return db_path


def test_json_query(populated, capsys):
    rc = shell.main([populated, "SELECT id, name, photo FROM people ORDER BY id", "--json", "--no-wal"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out["columns"] == ["id", "name", "photo"]
    assert out["rows"] == [
        [1, "alice", {"_type": "bytes", "hex": "0a0b", "len": 2}],
        [2, "bob", None],
    ]


def test_query_with_arguments(populated, capsys):
    rc = shell.main([populated, "SELECT name FROM people WHERE id = %d AND name = %Q", "2", "bob", "--json"])
    assert rc == 0
    assert json.loads(capsys.readouterr().out)["rows"] == [["bob"]]


def test_table_output(populated, capsys):
    rc = shell.main([populated, "SELECT name FROM people ORDER BY id"])
    assert rc == 0
    out = capsys.readouterr().out
    assert "alice" in out
    assert "2 row(s)" in out


def test_batch(populated, capsys):
    rc = shell.main([populated, "INSERT INTO people (name) VALUES (%Q)", "O'Brien", "--batch", "--json"])
    assert rc == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"changes": 1, "last_row_id": 3}

    with sqlwrap.connect(populated) as db:
        with db.query("SELECT name FROM people WHERE id = 3") as q:
            assert q.current_row().get_string_field(0) == "O'Brien"


def test_null_token(populated, capsys):
    rc = shell.main([populated, "INSERT INTO people (name) VALUES (%Q)", "\\N", "--null", "\\N", "--batch"])
    assert rc == 0
    assert "OK" in capsys.readouterr().out
    with sqlwrap.connect(populated) as db:
        assert db.get_scalar("SELECT COUNT(*) FROM people WHERE name IS NULL") == 1


def test_error_exit_code(populated, capsys):
    rc = shell.main([populated, "SELECT * FROM missing"])
    assert rc == 1
    assert "no such table" in capsys.readouterr().err


def test_bad_integer_argument(populated, capsys):
    rc = shell.main([populated, "SELECT %d", "seven"])
    assert rc == 1
    assert "must be an integer" in capsys.readouterr().err


def test_coerce_args():
    assert shell.coerce_args("SELECT %d, %f, %Q", ["007", "1.5", "x"]) == [7, 1.5, "x"]
    assert shell.coerce_args("SELECT %*d", ["4", "2"]) == [4, 2]
    assert shell.coerce_args("SELECT %Q", ["NULL"], null_token="NULL") == [None]
    assert shell.coerce_args("SELECT '100%'", []) == []


def test_trace(populated, caplog):
    with caplog.at_level(logging.DEBUG, logger="sqlwrap.trace"):
        rc = shell.main([populated, "SELECT %d + 1", "41", "--trace", "--json"])
    assert rc == 0
    assert "SELECT 41 + 1" in caplog.text
