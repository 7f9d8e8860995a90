import math
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from .db import row_to_dict, to_money, utc_now_text
from .errors import ValidationError


TRANSACTION_TYPES = ("expense", "lent", "borrowed")
LENDING_TYPES = ("lent", "borrowed")
SORT_COLUMNS = {
    "date": "e.date",
    "amount": "e.amount",
    "category": "c.name",
}
SORT_ORDERS = ("asc", "desc")
DATE_FORMATS = [
    "%Y-%m-%d",
    "%m/%d/%Y",
    "%m/%d/%y",
    "%d/%m/%Y",
    "%d %b %Y",
    "%d %B %Y",
]
MAX_AMOUNT = Decimal("99999999.99")
MAX_ID = 2 ** 63 - 1
PAYLOAD_FIELDS = ("description", "amount", "categoryId", "date", "type", "personName")


def serialize_expense(row):
    data = row_to_dict(row)
    if data is None:
        return None
    return {
        "id": int(data["id"]),
        "description": data["description"],
        "amount": to_money(data["amount"]),
        "categoryId": int(data["category_id"]),
        "date": data["date"],
        "type": data["type"],
        "personName": data["person_name"],
        "createdAt": data["created_at"],
    }


def parse_category_id(value):
    if isinstance(value, bool):
        raise ValidationError("categoryId must be an integer", field="categoryId")
    category_id = None
    if isinstance(value, int):
        category_id = value
    elif isinstance(value, float) and value.is_integer():
        category_id = int(value)
    elif isinstance(value, str):
        try:
            category_id = int(value.strip())
        except ValueError:
            pass
    if category_id is None:
        raise ValidationError("categoryId must be an integer", field="categoryId")
    if not 1 <= category_id <= MAX_ID:
        raise ValidationError("categoryId is out of range", field="categoryId")
    return category_id


def parse_amount(value):
    if value is None or isinstance(value, bool):
        raise ValidationError("amount is required", field="amount")
    if isinstance(value, float) and not math.isfinite(value):
        raise ValidationError("amount must be a finite number", field="amount")
    text = value.strip().replace(",", "") if isinstance(value, str) else str(value)
    try:
        amount = Decimal(text)
    except InvalidOperation:
        raise ValidationError("amount must be a number", field="amount") from None
    if not amount.is_finite():
        raise ValidationError("amount must be a finite number", field="amount")
    if amount < 0:
        raise ValidationError("amount must not be negative", field="amount")
    try:
        amount = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValidationError("amount is too large", field="amount") from None
    if amount > MAX_AMOUNT:
        raise ValidationError(f"amount must not exceed {MAX_AMOUNT}", field="amount")
    return amount


def parse_transaction_date(value):
    if value is None or (isinstance(value, str) and not value.strip()):
        return date.today().isoformat()
    if not isinstance(value, str):
        raise ValidationError("date must be a string", field="date")

    cleaned = value.strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date().isoformat()
        except ValueError:
            continue
    try:
        return datetime.fromisoformat(cleaned.replace("Z", "+00:00")).date().isoformat()
    except ValueError:
        raise ValidationError(f"Unrecognized date: {value}", field="date") from None


def normalize_expense_payload(payload, existing=None):
    """Validate a create payload, or an update payload merged over ``existing``."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    merged = dict(existing or {})
    merged.update({key: payload[key] for key in PAYLOAD_FIELDS if key in payload})

    if "categoryId" not in merged or merged["categoryId"] in (None, ""):
        raise ValidationError("categoryId is required", field="categoryId")

    tx_type = merged.get("type") or "expense"
    if tx_type not in TRANSACTION_TYPES:
        raise ValidationError(
            f"type must be one of {', '.join(TRANSACTION_TYPES)}",
            field="type",
        )

    person_name = merged.get("personName")
    if person_name is not None and not isinstance(person_name, str):
        raise ValidationError("personName must be a string", field="personName")
    person_name = (person_name or "").strip()
    if tx_type in LENDING_TYPES and not person_name:
        raise ValidationError(f"personName is required for {tx_type} transactions", field="personName")

    description = merged.get("description")
    if description is not None and not isinstance(description, str):
        raise ValidationError("description must be a string", field="description")

    return {
        "description": (description or "").strip() or None,
        "amount": parse_amount(merged.get("amount")),
        "category_id": parse_category_id(merged["categoryId"]),
        "date": parse_transaction_date(merged.get("date")),
        "type": tx_type,
        "person_name": person_name if tx_type in LENDING_TYPES else None,
    }


def fetch_expense_rows(db, tx_type=None):
    if tx_type:
        return db.execute("SELECT * FROM expenses WHERE type = ?", (tx_type,)).fetchall()
    return db.execute("SELECT * FROM expenses").fetchall()


def list_expenses(db, sort_by=None, sort_order=None, tx_type=None):
    sort_by = (sort_by or "date").strip().lower()
    sort_order = (sort_order or "desc").strip().lower()
    if sort_by not in SORT_COLUMNS:
        raise ValidationError(f"sortBy must be one of {', '.join(SORT_COLUMNS)}", field="sortBy")
    if sort_order not in SORT_ORDERS:
        raise ValidationError("sortOrder must be asc or desc", field="sortOrder")
    if tx_type and tx_type not in TRANSACTION_TYPES:
        raise ValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}", field="type")

    column = SORT_COLUMNS[sort_by]
    order_by = f"{column} {sort_order}, e.id {sort_order}"
    if sort_by == "category":
        order_by = f"c.name IS NULL, {order_by}"

    sql = "SELECT e.* FROM expenses e LEFT JOIN categories c ON c.id = e.category_id"
    params = []
    if tx_type:
        sql += " WHERE e.type = ?"
        params.append(tx_type)
    rows = db.execute(f"{sql} ORDER BY {order_by}", params).fetchall()
    return [serialize_expense(row) for row in rows]


def get_expense(db, expense_id):
    row = db.execute("SELECT * FROM expenses WHERE id = ?", (expense_id,)).fetchone()
    return serialize_expense(row)


def create_expense(db, payload):
    fields = normalize_expense_payload(payload)
    expense_id = db.insert(
        """
        INSERT INTO expenses (description, amount, category_id, date, type, person_name, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?)
        """,
        (
            fields["description"],
            str(fields["amount"]),
            fields["category_id"],
            fields["date"],
            fields["type"],
            fields["person_name"],
            utc_now_text(),
        ),
    )
    db.commit()
    return get_expense(db, expense_id)


def update_expense(db, expense_id, payload):
    existing = get_expense(db, expense_id)
    if existing is None:
        return None

    fields = normalize_expense_payload(payload, existing=existing)
    db.execute(
        """
        UPDATE expenses
        SET description = ?, amount = ?, category_id = ?, date = ?, type = ?, person_name = ?
        WHERE id = ?
        """,
        (
            fields["description"],
            str(fields["amount"]),
            fields["category_id"],
            fields["date"],
            fields["type"],
            fields["person_name"],
            expense_id,
        ),
    )
    db.commit()
    return get_expense(db, expense_id)


def delete_expense(db, expense_id):
    result = db.execute("DELETE FROM expenses WHERE id = ?", (expense_id,))
    db.commit()
    return result.rowcount > 0
