import pytest
import sqlwrap


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "test.db")


@pytest.fixture
def db():
    conn = sqlwrap.connect(":memory:")
    yield conn
    conn.close()


@pytest.fixture
def people(db):
    db.execute("CREATE TABLE people (id INTEGER PRIMARY KEY, name TEXT, age INTEGER, score REAL, photo BLOB)")
    db.execute(
        "INSERT INTO people (name, age, score, photo) VALUES ('alice', 30, 1.5, x'0001ff');"
        "INSERT INTO people (name, age, score, photo) VALUES ('bob', NULL, NULL, NULL);"
        "INSERT INTO people (name, age, score, photo) VALUES ('carol', 41, 9.25, x'');"
    )
    return db
