"""Aggregate views computed in memory over the full transaction set."""

from collections import defaultdict
from datetime import date
from decimal import ROUND_HALF_UP, Decimal

from .categories import list_categories
from .errors import ValidationError
from .expenses import fetch_expense_rows


DEFAULT_TREND_MONTHS = 6
CENT = Decimal("0.01")


def _amount(row):
    return Decimal(str(row["amount"]))


def _money(value):
    return float(Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP))


def shift_month(year, month, offset):
    """Return (year, month) moved by ``offset`` months."""
    index = year * 12 + (month - 1) + offset
    return index // 12, index % 12 + 1


def month_key(year, month):
    return f"{year:04d}-{month:02d}"


def get_summary(db, today=None):
    today = today or date.today()
    this_month = month_key(today.year, today.month)
    last_month = month_key(*shift_month(today.year, today.month, -1))

    total = this_total = last_total = Decimal("0")
    rows = fetch_expense_rows(db, "expense")
    for row in rows:
        amount = _amount(row)
        total += amount
        bucket = row["date"][:7]
        if bucket == this_month:
            this_total += amount
        elif bucket == last_month:
            last_total += amount

    monthly_change = Decimal("0")
    if last_total > 0:
        monthly_change = (this_total - last_total) / last_total * 100

    return {
        "totalExpenses": _money(total),
        "thisMonth": _money(this_total),
        "lastMonth": _money(last_total),
        "monthlyChange": _money(monthly_change),
        "totalTransactions": len(rows),
    }


def get_patterns(db):
    totals = defaultdict(Decimal)
    counts = defaultdict(int)
    grand_total = Decimal("0")
    for row in fetch_expense_rows(db, "expense"):
        amount = _amount(row)
        category_id = int(row["category_id"])
        totals[category_id] += amount
        counts[category_id] += 1
        grand_total += amount

    patterns = []
    for category in list_categories(db):
        count = counts.get(category["id"], 0)
        if count == 0:
            continue
        category_total = totals[category["id"]]
        percentage = category_total / grand_total * 100 if grand_total > 0 else Decimal("0")
        patterns.append({
            "categoryId": category["id"],
            "categoryName": category["name"],
            "color": category["color"],
            "icon": category["icon"],
            "totalAmount": _money(category_total),
            "count": count,
            "averageAmount": _money(category_total / count),
            "percentage": _money(percentage),
        })

    patterns.sort(key=lambda item: item["totalAmount"], reverse=True)
    return patterns


def parse_months(value, max_months):
    if value is None or value == "":
        return DEFAULT_TREND_MONTHS
    try:
        months = int(value)
    except (TypeError, ValueError):
        raise ValidationError("months must be an integer", field="months") from None
    if months < 1 or months > max_months:
        raise ValidationError(f"months must be between 1 and {max_months}", field="months")
    return months


def get_trends(db, months=DEFAULT_TREND_MONTHS, today=None):
    today = today or date.today()
    buckets = []
    for offset in range(months - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -offset)
        buckets.append((month_key(year, month), date(year, month, 1).strftime("%b %Y")))

    totals = {key: Decimal("0") for key, _ in buckets}
    by_category = {key: defaultdict(Decimal) for key, _ in buckets}
    for row in fetch_expense_rows(db, "expense"):
        key = row["date"][:7]
        if key not in totals:
            continue
        amount = _amount(row)
        totals[key] += amount
        by_category[key][int(row["category_id"])] += amount

    return [
        {
            "month": key,
            "label": label,
            "total": _money(totals[key]),
            "byCategory": {category_id: _money(value) for category_id, value in by_category[key].items()},
        }
        for key, label in buckets
    ]


def get_lending_summary(db):
    by_person = {"lent": defaultdict(Decimal), "borrowed": defaultdict(Decimal)}
    for tx_type in by_person:
        for row in fetch_expense_rows(db, tx_type):
            by_person[tx_type][row["person_name"]] += _amount(row)

    total_lent = sum(by_person["lent"].values(), Decimal("0"))
    total_borrowed = sum(by_person["borrowed"].values(), Decimal("0"))
    return {
        "totalLent": _money(total_lent),
        "totalBorrowed": _money(total_borrowed),
        "netBalance": _money(total_lent - total_borrowed),
        "lentByPerson": {name: _money(value) for name, value in sorted(by_person["lent"].items())},
        "borrowedByPerson": {name: _money(value) for name, value in sorted(by_person["borrowed"].items())},
    }
