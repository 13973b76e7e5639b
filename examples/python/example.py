"""Example: Basic sqlwrap usage.

Uses the system SQLite library. Point at a different build with:
    SQLWRAP_NATIVE_LIB=/path/to/libsqlite3.so python example.py
"""

import os
import tempfile
import sqlwrap


def main():
    # Create a temporary database file for this example.
    db_path = os.path.join(tempfile.gettempdir(), "sqlwrap_example.db")

    db = sqlwrap.connect(db_path)
    print(f"SQLite {db.sqlite_version()}")

    # Create a table.
    db.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id    INTEGER PRIMARY KEY,
            name  TEXT NOT NULL,
            email TEXT UNIQUE
        )
    """)

    # Insert rows with a compiled statement, rebinding for each row.
    users = [
        ("Alice", "alice@example.com"),
        ("Bob", "bob@example.com"),
        ("Carol", "carol@example.com"),
    ]
    with db.compile("INSERT OR REPLACE INTO users (name, email) VALUES (?, ?)") as insert:
        for name, email in users:
            insert.bind(name).bind(email).execute()

    # Query all users.
    print("All users:")
    with db.query("SELECT id, name, email FROM users ORDER BY id") as q:
        for row in q:
            print(f"  id={row.get_int_field('id')}  name={row.get_string_field('name')}"
                  f"  email={row.get_string_field('email')}")

    # Formatted lookup; %Q quotes and escapes the value.
    with db.query("SELECT name FROM users WHERE email = %Q", "bob@example.com") as q:
        if q.has_row():
            print(f"\nLookup by email: {q.current_row().get_string_field(0)}")

    # Transaction example.
    db.execute("BEGIN")
    db.exec("INSERT OR REPLACE INTO users (name, email) VALUES (%Q, %Q)", "Dave O'Neil", "dave@example.com")
    db.execute("COMMIT")
    print(f"Inserted row {db.last_row_id()}")

    count = db.get_scalar("SELECT count(*) FROM users")
    print(f"\nTotal users after transaction: {count}")
    print(f"users table exists: {db.table_exists('users')}")

    db.close()

    # Clean up.
    for suffix in ("", "-wal", "-shm"):
        try:
            os.unlink(db_path + suffix)
        except FileNotFoundError:
            pass

    print("\nDone.")


if __name__ == "__main__":
    main()
