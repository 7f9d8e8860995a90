from datetime import date
from pathlib import Path

from pocket_ledger import create_app
from pocket_ledger.categories import COLOR_PALETTE, DEFAULT_CATEGORIES, DEFAULT_ICON
from pocket_ledger.reports import shift_month


def add_category(client, name, **extra):
    response = client.post("/api/categories", json={"name": name, **extra})
    assert response.status_code == 201
    return response.get_json()


def add_expense(client, amount, category_id, **extra):
    payload = {"amount": amount, "categoryId": category_id, **extra}
    response = client.post("/api/expenses", json=payload)
    assert response.status_code == 201, response.get_json()
    return response.get_json()


def test_category_create_then_get_returns_input_fields(client):
    created = add_category(client, "Food", color="#112233", icon="🍕")

    assert isinstance(created["id"], int)
    assert created["createdAt"]

    fetched = client.get(f"/api/categories/{created['id']}").get_json()
    assert fetched == created
    assert fetched["name"] == "Food"
    assert fetched["color"] == "#112233"
    assert fetched["icon"] == "🍕"


def test_category_defaults_for_color_and_icon(client):
    created = add_category(client, "Misc")

    assert created["color"] in COLOR_PALETTE
    assert created["icon"] == DEFAULT_ICON


def test_category_requires_name(client):
    response = client.post("/api/categories", json={"name": "   "})

    assert response.status_code == 400
    assert response.get_json()["field"] == "name"


def test_category_partial_update(client):
    created = add_category(client, "Food", color="#112233")

    response = client.put(f"/api/categories/{created['id']}", json={"icon": "🥗"})
    updated = response.get_json()

    assert response.status_code == 200
    assert updated["name"] == "Food"
    assert updated["color"] == "#112233"
    assert updated["icon"] == "🥗"


def test_category_missing_returns_not_found(client):
    assert client.get("/api/categories/999").status_code == 404
    response = client.put("/api/categories/999", json={"name": "Ghost"})
    assert response.status_code == 404
    assert response.get_json() == {"error": "Category not found"}


def test_delete_category_keeps_its_expenses(client):
    food = add_category(client, "Food")
    expense = add_expense(client, 10, food["id"], date="2026-01-15")

    response = client.delete(f"/api/categories/{food['id']}")
    assert response.get_json() == {"success": True}

    assert client.get("/api/categories").get_json() == []
    remaining = client.get(f"/api/expenses/{expense['id']}").get_json()
    assert remaining["categoryId"] == food["id"]


def test_delete_missing_ids_report_failure(client):
    assert client.delete("/api/categories/42").get_json() == {"success": False}
    assert client.delete("/api/expenses/42").get_json() == {"success": False}


def test_expense_create_then_get_returns_input_fields(client):
    food = add_category(client, "Food")
    created = add_expense(client, "12.345", str(food["id"]), description=" Lunch ", date="2026-01-15")

    assert created["amount"] == 12.35
    assert created["categoryId"] == food["id"]
    assert created["description"] == "Lunch"
    assert created["date"] == "2026-01-15"
    assert created["type"] == "expense"
    assert created["personName"] is None
    assert created["createdAt"]

    assert client.get(f"/api/expenses/{created['id']}").get_json() == created


def test_expense_date_defaults_to_today_and_accepts_iso_datetime(client):
    food = add_category(client, "Food")

    assert add_expense(client, 5, food["id"])["date"] == date.today().isoformat()
    assert add_expense(client, 5, food["id"], date="2025-03-04T18:30:00.000Z")["date"] == "2025-03-04"


def test_expense_validation_errors(client):
    food = add_category(client, "Food")
    cases = [
        ({"amount": 10, "categoryId": "abc"}, "categoryId"),
        ({"amount": 10}, "categoryId"),
        ({"amount": -1, "categoryId": food["id"]}, "amount"),
        ({"amount": "ten", "categoryId": food["id"]}, "amount"),
        ({"amount": "1e30", "categoryId": food["id"]}, "amount"),
        ({"amount": 100000000, "categoryId": food["id"]}, "amount"),
        ({"amount": 5, "categoryId": 10 ** 20}, "categoryId"),
        ({"amount": 5, "categoryId": 0}, "categoryId"),
        ({"amount": 10, "categoryId": food["id"], "type": "gift"}, "type"),
        ({"amount": 10, "categoryId": food["id"], "type": "lent"}, "personName"),
        ({"amount": 10, "categoryId": food["id"], "type": "borrowed", "personName": "  "}, "personName"),
        ({"amount": 10, "categoryId": food["id"], "date": "not a date"}, "date"),
    ]

    for payload, field in cases:
        response = client.post("/api/expenses", json=payload)
        assert response.status_code == 400, payload
        assert response.get_json()["field"] == field

    assert client.get("/api/expenses").get_json() == []


def test_expense_amount_upper_bound_is_inclusive(client):
    food = add_category(client, "Food")

    assert add_expense(client, "99999999.99", food["id"])["amount"] == 99999999.99

    response = client.put(f"/api/expenses/{add_expense(client, 1, food['id'])['id']}", json={"amount": "1e30"})
    assert response.status_code == 400
    assert response.get_json()["field"] == "amount"


def test_expense_requires_json_object(client):
    response = client.post("/api/expenses", data="nope", content_type="text/plain")

    assert response.status_code == 400
    assert "JSON object" in response.get_json()["error"]


def test_expense_partial_update_revalidates(client):
    food = add_category(client, "Food")
    expense = add_expense(client, 20, food["id"], date="2026-01-15", description="Dinner")

    response = client.put(f"/api/expenses/{expense['id']}", json={"amount": 25.5})
    updated = response.get_json()
    assert updated["amount"] == 25.5
    assert updated["description"] == "Dinner"
    assert updated["date"] == "2026-01-15"

    response = client.put(f"/api/expenses/{expense['id']}", json={"type": "lent"})
    assert response.status_code == 400
    assert response.get_json()["field"] == "personName"

    response = client.put(f"/api/expenses/{expense['id']}", json={"type": "lent", "personName": "Alice"})
    assert response.get_json()["personName"] == "Alice"

    response = client.put(f"/api/expenses/{expense['id']}", json={"type": "expense"})
    assert response.get_json()["personName"] is None


def test_expense_update_missing_returns_not_found(client):
    response = client.put("/api/expenses/404", json={"amount": 1})

    assert response.status_code == 404
    assert response.get_json() == {"error": "Expense not found"}


def test_delete_expense_then_list_excludes_it(client):
    food = add_category(client, "Food")
    keep = add_expense(client, 10, food["id"])
    drop = add_expense(client, 20, food["id"])

    assert client.delete(f"/api/expenses/{drop['id']}").get_json() == {"success": True}

    ids = [item["id"] for item in client.get("/api/expenses").get_json()]
    assert ids == [keep["id"]]


def test_list_expenses_sorting_and_type_filter(client):
    food = add_category(client, "Food")
    bills = add_category(client, "Bills")
    a = add_expense(client, 30, food["id"], date="2026-01-10")
    b = add_expense(client, 10, bills["id"], date="2026-01-20")
    c = add_expense(client, 20, food["id"], date="2026-01-05", type="lent", personName="Alice")

    def ids(query):
        response = client.get(f"/api/expenses{query}")
        assert response.status_code == 200
        return [item["id"] for item in response.get_json()]

    assert ids("") == [b["id"], a["id"], c["id"]]
    assert ids("?sortBy=date&sortOrder=asc") == [c["id"], a["id"], b["id"]]
    assert ids("?sortBy=amount&sortOrder=desc") == [a["id"], c["id"], b["id"]]
    assert ids("?sortBy=category&sortOrder=asc")[0] == b["id"]
    assert ids("?type=lent") == [c["id"]]
    assert ids("?type=expense&sortBy=amount&sortOrder=asc") == [b["id"], a["id"]]


def test_list_expenses_rejects_unknown_sort(client):
    assert client.get("/api/expenses?sortBy=vendor").status_code == 400
    assert client.get("/api/expenses?sortOrder=sideways").status_code == 400
    assert client.get("/api/expenses?type=gift").status_code == 400


def test_patterns_example(client):
    food = add_category(client, "Food")
    transport = add_category(client, "Transport")
    add_category(client, "Unused")
    add_expense(client, 100, food["id"])
    add_expense(client, 50, food["id"])
    add_expense(client, 25, transport["id"])
    add_expense(client, 500, food["id"], type="borrowed", personName="Bob")

    patterns = client.get("/api/expenses/patterns").get_json()

    assert [(p["categoryId"], p["totalAmount"], p["count"], p["percentage"]) for p in patterns] == [
        (food["id"], 150.0, 2, 85.71),
        (transport["id"], 25.0, 1, 14.29),
    ]
    assert patterns[0]["categoryName"] == "Food"
    assert patterns[0]["averageAmount"] == 75.0
    assert abs(sum(p["percentage"] for p in patterns) - 100) < 0.05


def test_summary_compares_this_month_with_last(client):
    food = add_category(client, "Food")
    today = date.today()
    year, month = shift_month(today.year, today.month, -1)
    add_expense(client, 150, food["id"], date=today.isoformat())
    add_expense(client, 100, food["id"], date=date(year, month, 1).isoformat())
    add_expense(client, 40, food["id"], date="2001-01-01")
    add_expense(client, 999, food["id"], date=today.isoformat(), type="lent", personName="Alice")

    summary = client.get("/api/expenses/summary").get_json()

    assert summary == {
        "totalExpenses": 290.0,
        "thisMonth": 150.0,
        "lastMonth": 100.0,
        "monthlyChange": 50.0,
        "totalTransactions": 3,
    }


def test_trends_returns_requested_months_oldest_first(client):
    food = add_category(client, "Food")
    today = date.today()
    add_expense(client, 12.5, food["id"], date=today.isoformat())

    trends = client.get("/api/expenses/trends?months=4").get_json()

    assert len(trends) == 4
    months = [entry["month"] for entry in trends]
    assert months == sorted(months)
    assert len(set(months)) == 4
    assert months[-1] == today.strftime("%Y-%m")
    assert trends[-1]["total"] == 12.5
    assert trends[-1]["byCategory"] == {str(food["id"]): 12.5}


def test_trends_default_and_invalid_months(client):
    assert len(client.get("/api/expenses/trends").get_json()) == 6
    assert client.get("/api/expenses/trends?months=0").status_code == 400
    assert client.get("/api/expenses/trends?months=abc").status_code == 400


def test_lending_summary_accumulates_per_person(client):
    food = add_category(client, "Food")
    add_expense(client, 30, food["id"], type="lent", personName="Alice")
    add_expense(client, 20, food["id"], type="lent", personName="Alice")
    add_expense(client, 15, food["id"], type="borrowed", personName="Bob")
    add_expense(client, 99, food["id"])

    summary = client.get("/api/expenses/lending-summary").get_json()

    assert summary["lentByPerson"] == {"Alice": 50.0}
    assert summary["borrowedByPerson"] == {"Bob": 15.0}
    assert summary["totalLent"] == 50.0
    assert summary["totalBorrowed"] == 15.0
    assert summary["netBalance"] == 35.0


def test_unknown_api_route_returns_json_404(client):
    response = client.get("/api/expenses/not-a-number")

    assert response.status_code == 404
    assert "error" in response.get_json()


def test_health_endpoint_reports_ok(client):
    health = client.get("/health/db").get_json()

    assert health["ok"] is True
    assert health["schema_version"] == 2


def test_default_categories_seeded_once(tmp_path: Path):
    db_path = tmp_path / "seeded.sqlite"
    app = create_app({"TESTING": True, "DATABASE": str(db_path)})
    with app.app_context():
        app.init_db()

    client = app.test_client()
    categories = client.get("/api/categories").get_json()

    assert [c["name"] for c in categories] == [name for name, _, _ in DEFAULT_CATEGORIES]
    assert categories[0]["icon"] == "🍔"


def test_app_auto_initializes_database(tmp_path: Path):
    db_path = tmp_path / "fresh" / "pocket_ledger.sqlite"
    app = create_app({"TESTING": True, "DATABASE": str(db_path), "SEED_DEFAULT_CATEGORIES": False})

    response = app.test_client().get("/api/categories")

    assert response.status_code == 200
    assert db_path.exists()
