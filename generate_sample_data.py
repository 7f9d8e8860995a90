import random
from datetime import date, timedelta

from pocket_ledger import create_app
from pocket_ledger.categories import list_categories
from pocket_ledger.expenses import create_expense


PEOPLE = ["Alice", "Bob", "Chen"]


def main():
    app = create_app()
    with app.app_context():
        app.init_db()
        db = app.get_db()
        category_ids = [category["id"] for category in list_categories(db)]

        start = date.today() - timedelta(days=180)
        for i in range(60):
            tx_type = random.choices(["expense", "lent", "borrowed"], weights=[8, 1, 1])[0]
            payload = {
                "date": (start + timedelta(days=i * 3)).isoformat(),
                "amount": round(random.uniform(5, 200), 2),
                "categoryId": random.choice(category_ids),
                "description": f"Sample {tx_type} {i + 1}",
                "type": tx_type,
            }
            if tx_type != "expense":
                payload["personName"] = random.choice(PEOPLE)
            create_expense(db, payload)

    print(f"Sample data generated in {app.config['DATABASE']}")


if __name__ == "__main__":
    main()
