import calendar
import math
from datetime import date

from .catalog import DEFAULT_COLOR, DEFAULT_ICON
from .ledger import parse_iso_date


def current_month_bounds(today=None):
    today = today or date.today()
    first = today.replace(day=1)
    last = today.replace(day=calendar.monthrange(today.year, today.month)[1])
    return first.isoformat(), last.isoformat()


def resolve_period(date_from=None, date_to=None, today=None):
    """Fill missing bounds from the current month; swap reversed bounds."""
    month_start, month_end = current_month_bounds(today)
    start = parse_iso_date(date_from, "Start date") if date_from else month_start
    end = parse_iso_date(date_to, "End date") if date_to else month_end
    if start > end:
        start, end = end, start
    return start, end


def percent_of(part, total):
    # One decimal place, halves rounded up.
    if total <= 0:
        return 0.0
    return math.floor(part / total * 1000 + 0.5) / 10


def _money(value):
    return round(float(value or 0), 2)


def account_balance(db, family_id, account_id):
    row = db.execute(
        """
        SELECT COALESCE(SUM(amount), 0) AS balance
        FROM transactions
        WHERE family_id = ? AND account_id = ?
        """,
        (family_id, account_id),
    ).fetchone()
    return _money(row["balance"])


def period_totals(db, family_id, account_id, date_from, date_to):
    row = db.execute(
        """
        SELECT
            COALESCE(SUM(CASE WHEN amount > 0 THEN amount ELSE 0 END), 0) AS income,
            COALESCE(SUM(CASE WHEN amount < 0 THEN amount ELSE 0 END), 0) AS expense
        FROM transactions
        WHERE family_id = ?
          AND account_id = ?
          AND date BETWEEN ? AND ?
        """,
        (family_id, account_id, date_from, date_to),
    ).fetchone()
    return _money(row["income"]), _money(row["expense"])


def category_breakdown(db, family_id, account_id, date_from, date_to):
    rows = db.execute(
        """
        SELECT
            c.id AS category_id,
            c.name AS category_name,
            c.color,
            c.icon,
            COALESCE(SUM(-t.amount), 0) AS total_spent
        FROM transactions t
        JOIN categories c ON c.id = t.category_id
        WHERE t.family_id = ?
          AND t.account_id = ?
          AND t.amount < 0
          AND t.date BETWEEN ? AND ?
        GROUP BY c.id, c.name, c.color, c.icon
        ORDER BY total_spent DESC, c.id ASC
        """,
        (family_id, account_id, date_from, date_to),
    ).fetchall()

    breakdown = [
        {
            "category_id": row["category_id"],
            "name": row["category_name"],
            "total": _money(row["total_spent"]),
            "color": row["color"] or DEFAULT_COLOR,
            "icon": row["icon"] or DEFAULT_ICON,
        }
        for row in rows
    ]
    total_spent = _money(sum(item["total"] for item in breakdown))
    for item in breakdown:
        item["percent"] = percent_of(item["total"], total_spent)
    return breakdown, total_spent


def summarize(db, family_id, account_id, date_from=None, date_to=None, today=None):
    """Lifetime balance plus income, expense and spend per category for a period.

    The period defaults to the calendar month containing ``today``.
    """
    start, end = resolve_period(date_from, date_to, today)
    income, expense = period_totals(db, family_id, account_id, start, end)
    breakdown, total_spent = category_breakdown(db, family_id, account_id, start, end)
    return {
        "date_from": start,
        "date_to": end,
        "balance": account_balance(db, family_id, account_id),
        "income": income,
        "expense": expense,
        "categories": breakdown,
        "total_spent": total_spent,
    }
