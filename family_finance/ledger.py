"""Append-only transaction records scoped to a family and account.

Amounts are signed: income is stored positive, expense negative. The entry
type is not persisted; the sign carries it.
"""

import math
import re
from datetime import datetime

from .errors import NotFoundError, ValidationError

ENTRY_TYPES = ("income", "expense")
WHO_VALUES = ("me", "girlfriend", "shared")
DEFAULT_WHO = "shared"
ALL_CATEGORIES = "all"
DECIMAL_COMMA_RE = re.compile(r"^[-+]?\d+,\d{1,2}$")
GROUPED_AMOUNT_RE = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d*)?$")


def parse_id(value, label="id"):
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {label}.")
    if isinstance(value, int):
        return value
    try:
        return int(str(value or "").strip())
    except ValueError:
        raise ValidationError(f"Invalid {label}.") from None


def parse_amount(value):
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        amount = float(value)
    else:
        text = str(value or "").strip().replace(" ", "").replace("$", "")
        if DECIMAL_COMMA_RE.match(text):
            text = text.replace(",", ".")
        elif "," in text:
            if not GROUPED_AMOUNT_RE.match(text):
                raise ValidationError("Amount must be a valid number.")
            text = text.replace(",", "")
        if not text:
            raise ValidationError("Amount is required.")
        try:
            amount = float(text)
        except ValueError:
            raise ValidationError("Amount must be a valid number.") from None
    if not math.isfinite(amount):
        raise ValidationError("Amount must be a valid number.")
    return round(amount, 2)


def parse_iso_date(value, label="Date"):
    cleaned = str(value or "").strip()
    if not cleaned:
        raise ValidationError(f"{label} is required.")
    try:
        return datetime.strptime(cleaned, "%Y-%m-%d").date().isoformat()
    except ValueError:
        raise ValidationError(f"{label} must be in YYYY-MM-DD format.") from None


def normalize_entry_type(value):
    cleaned = (value or "").strip().lower()
    if not cleaned:
        return "expense"
    if cleaned not in ENTRY_TYPES:
        raise ValidationError("Type must be income or expense.")
    return cleaned


def normalize_who(value):
    cleaned = (value or "").strip().lower()
    if not cleaned:
        return DEFAULT_WHO
    if cleaned not in WHO_VALUES:
        raise ValidationError("Who must be one of: me, girlfriend, shared.")
    return cleaned


def signed_amount(raw_amount, entry_type):
    """Expense is always stored as -abs(amount), income as abs(amount), whatever sign was typed."""
    amount = parse_amount(raw_amount)
    if normalize_entry_type(entry_type) == "expense":
        return -abs(amount)
    return abs(amount)


def _require_account(db, family_id, account_id):
    row = db.execute(
        "SELECT id FROM accounts WHERE id = ? AND family_id = ?",
        (account_id, family_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Account not found.")


def _require_visible_category(db, family_id, category_id):
    row = db.execute(
        """
        SELECT c.id
        FROM categories c
        WHERE c.id = ?
          AND (c.family_id IS NULL OR c.family_id = ?)
          AND NOT EXISTS (
              SELECT 1 FROM hidden_categories h
              WHERE h.family_id = ? AND h.category_id = c.id
          )
        """,
        (category_id, family_id, family_id),
    ).fetchone()
    if row is None:
        raise NotFoundError("Category not found.")


def get_transaction(db, family_id, transaction_id):
    return db.execute(
        """
        SELECT
            t.*,
            c.name AS category_name,
            c.color AS category_color,
            c.icon AS category_icon
        FROM transactions t
        JOIN categories c ON c.id = t.category_id
        WHERE t.id = ? AND t.family_id = ?
        """,
        (transaction_id, family_id),
    ).fetchone()


def append(db, family_id, account_id, user_id, category_id, raw_amount, entry_type, entry_date, description=None, who=None):
    """Record one transaction and return it joined with its category."""
    category_id = parse_id(category_id, "category")
    amount = signed_amount(raw_amount, entry_type)
    entry_date = parse_iso_date(entry_date)
    who = normalize_who(who)
    description = (description or "").strip() or None

    with db.transaction():
        _require_account(db, family_id, account_id)
        _require_visible_category(db, family_id, category_id)
        db.execute(
            """
            INSERT INTO transactions
                (family_id, account_id, user_id, category_id, amount, date, description, who)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (family_id, account_id, user_id, category_id, amount, entry_date, description, who),
        )
        transaction_id = db.execute("SELECT last_insert_rowid() AS id").fetchone()["id"]
        return get_transaction(db, family_id, transaction_id)


def query(db, family_id, account_id, date_from, date_to, category_id=None):
    """Transactions in ``[date_from, date_to]``, newest first."""
    date_from = parse_iso_date(date_from, "Start date")
    date_to = parse_iso_date(date_to, "End date")

    sql = """
        SELECT
            t.*,
            c.name AS category_name,
            c.color AS category_color,
            c.icon AS category_icon
        FROM transactions t
        JOIN categories c ON c.id = t.category_id
        WHERE t.family_id = ?
          AND t.account_id = ?
          AND t.date BETWEEN ? AND ?
    """
    params = [family_id, account_id, date_from, date_to]

    if category_id not in (None, "", ALL_CATEGORIES):
        sql += " AND t.category_id = ?"
        params.append(parse_id(category_id, "category"))

    sql += " ORDER BY t.date DESC, t.id DESC"
    return db.execute(sql, tuple(params)).fetchall()


def delete_by_category(db, family_id, category_id):
    # Only called as the first step of removing a category from a family's catalog.
    result = db.execute(
        "DELETE FROM transactions WHERE family_id = ? AND category_id = ?",
        (family_id, category_id),
    )
    return result.rowcount


def reset_family(db, family_id):
    """Return a family to its freshly registered state.

    Drops every transaction, every family-owned category and every hidden
    override in one transaction, so global defaults become visible again.
    """
    with db.transaction():
        db.lock_family(family_id)
        transactions = db.execute("DELETE FROM transactions WHERE family_id = ?", (family_id,)).rowcount
        hidden = db.execute("DELETE FROM hidden_categories WHERE family_id = ?", (family_id,)).rowcount
        categories = db.execute("DELETE FROM categories WHERE family_id = ?", (family_id,)).rowcount
    return {"transactions": transactions, "categories": categories, "hidden": hidden}
