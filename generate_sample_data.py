import random
from datetime import date, timedelta

from family_finance import create_app
from family_finance.catalog import list_visible
from family_finance.errors import DuplicateError
from family_finance.identity import login_user, register_user, resolve_family_context
from family_finance.ledger import WHO_VALUES, append


def main():
    app = create_app()
    with app.app_context():
        app.init_db()
        db = app.get_db()

        try:
            register_user(db, "demo@example.com", "demo123", "Demo")
        except DuplicateError:
            pass
        user_id = login_user(db, "demo@example.com", "demo123")["id"]
        family_id, account_id = resolve_family_context(db, user_id)

        categories = list_visible(db, family_id)
        income_ids = [row["id"] for row in categories if row["type"] == "income"]
        expense_ids = [row["id"] for row in categories if row["type"] == "expense"]

        start = date.today() - timedelta(days=90)
        for month_offset in range(4):
            payday = (start + timedelta(days=month_offset * 30)).isoformat()
            append(db, family_id, account_id, user_id, random.choice(income_ids), 2500, "income", payday, "Salary")

        for i in range(40):
            entry_date = (start + timedelta(days=i * 2)).isoformat()
            amount = round(random.uniform(5, 200), 2)
            append(
                db,
                family_id,
                account_id,
                user_id,
                random.choice(expense_ids),
                amount,
                "expense",
                entry_date,
                f"Sample expense {i + 1}",
                who=random.choice(WHO_VALUES),
            )

    print("Sample data generated. Login with demo@example.com / demo123")


if __name__ == "__main__":
    main()
