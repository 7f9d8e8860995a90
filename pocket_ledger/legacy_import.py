"""Import data saved by the JSON-file version of the tracker.

The old files keyed categories by string ids; the relational store assigns
integer ids, so category ids are remapped while importing and expenses that
point at an unknown category are skipped.

Usage: python -m pocket_ledger.legacy_import data/categories.json data/expenses.json --db instance/pocket_ledger.sqlite
"""

import argparse
import json
import sys
from pathlib import Path

from .db import connect_db, parse_database_config, utc_now_text
from .db_migrations import apply_migrations
from .errors import ValidationError
from .expenses import parse_amount, parse_transaction_date


def load_json_list(path):
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a JSON list")
    return data


def import_legacy_data(conn, categories, expenses, clear_existing=True):
    summary = {"categories": 0, "expenses": 0, "skipped": 0, "id_map": {}}
    try:
        if clear_existing:
            conn.execute("DELETE FROM expenses")
            conn.execute("DELETE FROM categories")

        for category in categories:
            new_id = conn.insert(
                "INSERT INTO categories (name, color, icon, created_at) VALUES (?, ?, ?, ?)",
                (
                    category["name"],
                    category.get("color") or "#C9CBCF",
                    category.get("icon") or "📁",
                    category.get("createdAt") or utc_now_text(),
                ),
            )
            summary["id_map"][str(category["id"])] = new_id
            summary["categories"] += 1

        for expense in expenses:
            category_id = summary["id_map"].get(str(expense.get("categoryId")))
            if category_id is None:
                print(f"  Skipping expense {expense.get('description')!r} - category ID {expense.get('categoryId')} not found")
                summary["skipped"] += 1
                continue
            try:
                amount = parse_amount(expense.get("amount"))
                expense_date = parse_transaction_date(expense.get("date"))
            except ValidationError as exc:
                print(f"  Skipping expense {expense.get('description')!r} - {exc.message}")
                summary["skipped"] += 1
                continue
            conn.execute(
                """
                INSERT INTO expenses (description, amount, category_id, date, type, person_name, created_at)
                VALUES (?, ?, ?, ?, 'expense', NULL, ?)
                """,
                (
                    expense.get("description") or None,
                    str(amount),
                    category_id,
                    expense_date,
                    expense.get("createdAt") or utc_now_text(),
                ),
            )
            summary["expenses"] += 1
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    return summary


def main(argv=None):
    parser = argparse.ArgumentParser(description="Import JSON-file tracker data into the ledger database")
    parser.add_argument("categories", help="Path to categories.json")
    parser.add_argument("expenses", help="Path to expenses.json")
    parser.add_argument("--db", default="instance/pocket_ledger.sqlite", help="SQLite path (ignored when DATABASE_URL is postgres)")
    parser.add_argument("--keep-existing", action="store_true", help="Do not clear existing rows first")
    args = parser.parse_args(argv)

    categories = load_json_list(args.categories)
    expenses = load_json_list(args.expenses)
    print(f"Found {len(categories)} categories and {len(expenses)} expenses to import")

    config = parse_database_config(args.db)
    apply_migrations(config)
    conn = connect_db(config)
    try:
        summary = import_legacy_data(conn, categories, expenses, clear_existing=not args.keep_existing)
        category_count = conn.execute("SELECT COUNT(*) FROM categories").fetchone()[0]
        expense_count = conn.execute("SELECT COUNT(*) FROM expenses").fetchone()[0]
    finally:
        conn.close()

    print("========== Import Summary ==========")
    print(f"Categories imported: {summary['categories']}")
    print(f"Expenses imported: {summary['expenses']}")
    print(f"Expenses skipped: {summary['skipped']}")
    print(f"Rows in database: {category_count} categories, {expense_count} expenses")
    return 0


if __name__ == "__main__":
    sys.exit(main())
