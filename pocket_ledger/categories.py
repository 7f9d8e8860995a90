import random

from .db import row_to_dict, utc_now_text
from .errors import ValidationError


DEFAULT_ICON = "📁"
COLOR_PALETTE = ["#FF6384", "#36A2EB", "#FFCE56", "#4BC0C0", "#9966FF", "#FF9F40", "#E7E9ED"]
DEFAULT_CATEGORIES = [
    ("Food & Dining", "#FF6384", "🍔"),
    ("Transportation", "#36A2EB", "🚗"),
    ("Shopping", "#FFCE56", "🛒"),
    ("Entertainment", "#4BC0C0", "🎬"),
    ("Bills & Utilities", "#9966FF", "💡"),
    ("Healthcare", "#FF9F40", "🏥"),
    ("Other", "#C9CBCF", "📦"),
]
EDITABLE_FIELDS = ("name", "color", "icon")


def serialize_category(row):
    data = row_to_dict(row)
    if data is None:
        return None
    return {
        "id": int(data["id"]),
        "name": data["name"],
        "color": data["color"],
        "icon": data["icon"],
        "createdAt": data["created_at"],
    }


def generate_color():
    return random.choice(COLOR_PALETTE)


def _clean_text(payload, field):
    value = payload.get(field)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string", field=field)
    return value.strip()


def normalize_category_payload(payload, partial=False):
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    cleaned = {}
    for field in EDITABLE_FIELDS:
        if field not in payload:
            continue
        value = _clean_text(payload, field)
        if field == "name" and not value:
            raise ValidationError("Category name is required.", field="name")
        if value:
            cleaned[field] = value

    if not partial:
        if "name" not in cleaned:
            raise ValidationError("Category name is required.", field="name")
        cleaned.setdefault("color", generate_color())
        cleaned.setdefault("icon", DEFAULT_ICON)
    return cleaned


def list_categories(db):
    rows = db.execute("SELECT * FROM categories ORDER BY id").fetchall()
    return [serialize_category(row) for row in rows]


def get_category(db, category_id):
    row = db.execute("SELECT * FROM categories WHERE id = ?", (category_id,)).fetchone()
    return serialize_category(row)


def create_category(db, payload):
    fields = normalize_category_payload(payload)
    category_id = db.insert(
        "INSERT INTO categories (name, color, icon, created_at) VALUES (?, ?, ?, ?)",
        (fields["name"], fields["color"], fields["icon"], utc_now_text()),
    )
    db.commit()
    return get_category(db, category_id)


def update_category(db, category_id, payload):
    if get_category(db, category_id) is None:
        return None

    fields = normalize_category_payload(payload, partial=True)
    if fields:
        assignments = ", ".join(f"{name} = ?" for name in fields)
        db.execute(
            f"UPDATE categories SET {assignments} WHERE id = ?",
            [*fields.values(), category_id],
        )
        db.commit()
    return get_category(db, category_id)


def delete_category(db, category_id):
    # Expenses keep their category_id; the reference is left dangling.
    result = db.execute("DELETE FROM categories WHERE id = ?", (category_id,))
    db.commit()
    return result.rowcount > 0


def ensure_default_categories(db):
    existing = db.execute("SELECT COUNT(*) FROM categories").fetchone()[0]
    if existing:
        return 0

    created_at = utc_now_text()
    for name, color, icon in DEFAULT_CATEGORIES:
        db.execute(
            "INSERT INTO categories (name, color, icon, created_at) VALUES (?, ?, ?, ?)",
            (name, color, icon, created_at),
        )
    db.commit()
    return len(DEFAULT_CATEGORIES)
