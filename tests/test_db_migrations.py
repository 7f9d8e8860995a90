import sqlite3

from pocket_ledger.db import CompatRow, to_postgres_sql
from pocket_ledger.db_migrations import apply_migrations, get_db_health, main


def test_apply_migrations_on_empty_db(tmp_path):
    db_path = tmp_path / "empty.sqlite"

    apply_migrations(str(db_path))
    health = get_db_health(str(db_path))

    assert health["ok"] is True
    assert health["schema_version"] == 2
    assert health["missing_tables"] == []
    assert health["missing_indexes"] == []


def test_apply_migrations_is_idempotent(tmp_path):
    db_path = tmp_path / "twice.sqlite"

    apply_migrations(str(db_path))
    apply_migrations(str(db_path))

    conn = sqlite3.connect(db_path)
    versions = [row[0] for row in conn.execute("SELECT version FROM schema_version ORDER BY version")]
    conn.close()
    assert versions == [1, 2]


def test_apply_migrations_adds_lending_columns_to_pre_lending_db(tmp_path):
    db_path = tmp_path / "legacy.sqlite"
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        CREATE TABLE schema_version (version INTEGER PRIMARY KEY, applied_at TEXT NOT NULL);
        INSERT INTO schema_version(version, applied_at) VALUES (1, '2025-01-01T00:00:00Z');

        CREATE TABLE categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            color TEXT NOT NULL DEFAULT '#C9CBCF',
            icon TEXT NOT NULL DEFAULT '📁',
            created_at TEXT NOT NULL
        );
        CREATE TABLE expenses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            description TEXT,
            amount NUMERIC(10, 2) NOT NULL,
            category_id INTEGER NOT NULL,
            date TEXT NOT NULL,
            created_at TEXT NOT NULL
        );
        CREATE INDEX idx_expenses_date ON expenses(date);
        CREATE INDEX idx_expenses_category_id ON expenses(category_id);
        INSERT INTO expenses (description, amount, category_id, date, created_at)
        VALUES ('Old lunch', 9.5, 1, '2025-01-02', '2025-01-02T12:00:00Z');
        """
    )
    conn.commit()
    conn.close()

    before = get_db_health(str(db_path))
    assert before["ok"] is False
    assert before["missing_columns"]["expenses"] == ["person_name", "type"]

    apply_migrations(str(db_path))

    health = get_db_health(str(db_path))
    assert health["ok"] is True
    assert health["schema_version"] == 2

    conn = sqlite3.connect(db_path)
    row = conn.execute("SELECT type, person_name FROM expenses WHERE description = 'Old lunch'").fetchone()
    conn.close()
    assert row == ("expense", None)


def test_postgres_sql_rewrites_placeholders_and_last_insert_id():
    rewritten = to_postgres_sql("SELECT * FROM expenses WHERE id = ? AND type = ?")
    assert rewritten == "SELECT * FROM expenses WHERE id = %s AND type = %s"
    assert to_postgres_sql("SELECT last_insert_rowid()") == "SELECT lastval()"


def test_compat_row_supports_name_and_index_access():
    row = CompatRow(["id", "name"], (3, "Food"))

    assert row["name"] == "Food"
    assert row[0] == 3
    assert row.keys() == ["id", "name"]
    assert list(row) == [3, "Food"]


def test_main_reports_health_and_exit_code(tmp_path, monkeypatch, capsys):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    db_path = str(tmp_path / "cli.sqlite")

    assert main([db_path]) == 1
    assert '"ok": false' in capsys.readouterr().out

    assert main([db_path, "--migrate"]) == 0
    output = capsys.readouterr().out
    assert '"ok": true' in output
    assert '"schema_version": 2' in output
