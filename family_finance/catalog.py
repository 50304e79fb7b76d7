"""Category catalog: shared default categories plus per-family ones.

A category with ``family_id IS NULL`` is a global default visible to every
family. A family never mutates a global row; deleting one records a row in
``hidden_categories`` that masks it for that family only.
"""

from .errors import DuplicateError, NotFoundError, ValidationError
from .ledger import delete_by_category, parse_id

CATEGORY_TYPES = ("income", "expense")
DEFAULT_CATEGORY_TYPE = "expense"
DEFAULT_COLOR = "#cccccc"
DEFAULT_ICON = "bi-tag"

VISIBLE_ORDERINGS = {
    "id": "c.id ASC",
    "name": "c.name ASC, c.id ASC",
    "type": "c.type ASC, c.name ASC, c.id ASC",
}

VISIBLE_FILTER_SQL = """
    (c.family_id IS NULL OR c.family_id = ?)
    AND NOT EXISTS (
        SELECT 1
        FROM hidden_categories h
        WHERE h.family_id = ? AND h.category_id = c.id
    )
"""


def normalize_category_type(value):
    cleaned = (value or "").strip().lower()
    if not cleaned:
        return DEFAULT_CATEGORY_TYPE
    if cleaned not in CATEGORY_TYPES:
        raise ValidationError("Category type must be income or expense.")
    return cleaned


def normalize_category_fields(name, category_type, color, icon):
    name = (name or "").strip()
    if not name:
        raise ValidationError("Category name is required.")
    return (
        name,
        normalize_category_type(category_type),
        (color or "").strip() or DEFAULT_COLOR,
        (icon or "").strip() or DEFAULT_ICON,
    )


def list_visible(db, family_id, order_by="id"):
    ordering = VISIBLE_ORDERINGS.get(order_by)
    if ordering is None:
        raise ValueError(f"Unknown category ordering: {order_by}")
    return db.execute(
        f"""
        SELECT c.id, c.family_id, c.name, c.type, c.color, c.icon
        FROM categories c
        WHERE {VISIBLE_FILTER_SQL}
        ORDER BY {ordering}
        """,
        (family_id, family_id),
    ).fetchall()


def get_visible_category(db, family_id, category_id):
    return db.execute(
        f"""
        SELECT c.id, c.family_id, c.name, c.type, c.color, c.icon
        FROM categories c
        WHERE c.id = ? AND {VISIBLE_FILTER_SQL}
        """,
        (category_id, family_id, family_id),
    ).fetchone()


def find_visible_duplicate(db, family_id, name, category_type, exclude_id=None):
    sql = f"""
        SELECT c.id
        FROM categories c
        WHERE {VISIBLE_FILTER_SQL}
          AND c.name = ?
          AND c.type = ?
    """
    params = [family_id, family_id, name, category_type]
    if exclude_id is not None:
        sql += " AND c.id <> ?"
        params.append(exclude_id)
    sql += " LIMIT 1"
    return db.execute(sql, tuple(params)).fetchone()


def _get_category(db, category_id):
    return db.execute(
        "SELECT id, family_id, name, type, color, icon FROM categories WHERE id = ?",
        (category_id,),
    ).fetchone()


def create_category(db, family_id, name, category_type=None, color=None, icon=None):
    name, category_type, color, icon = normalize_category_fields(name, category_type, color, icon)

    with db.transaction():
        db.lock_family(family_id)
        if find_visible_duplicate(db, family_id, name, category_type) is not None:
            raise DuplicateError(f'Category "{name}" already exists.')
        db.execute(
            "INSERT INTO categories (family_id, name, type, color, icon) VALUES (?, ?, ?, ?, ?)",
            (family_id, name, category_type, color, icon),
        )
        category_id = db.execute("SELECT last_insert_rowid() AS id").fetchone()["id"]
        return _get_category(db, category_id)


def update_category(db, family_id, category_id, name, category_type=None, color=None, icon=None):
    """Rename or restyle a category owned by ``family_id``.

    Global defaults and other families' categories are reported as not found.
    """
    category_id = parse_id(category_id, "category")
    name, category_type, color, icon = normalize_category_fields(name, category_type, color, icon)

    with db.transaction():
        db.lock_family(family_id)
        category = _get_category(db, category_id)
        if category is None or category["family_id"] != family_id:
            raise NotFoundError("Category not found.")
        if find_visible_duplicate(db, family_id, name, category_type, exclude_id=category_id) is not None:
            raise DuplicateError(f'Category with name "{name}" already exists.')
        db.execute(
            "UPDATE categories SET name = ?, type = ?, color = ?, icon = ? WHERE id = ? AND family_id = ?",
            (name, category_type, color, icon, category_id, family_id),
        )
        return _get_category(db, category_id)


def hide_category(db, family_id, category_id):
    db.execute(
        """
        INSERT INTO hidden_categories (family_id, category_id)
        VALUES (?, ?)
        ON CONFLICT (family_id, category_id) DO NOTHING
        """,
        (family_id, category_id),
    )


def delete_category(db, family_id, category_id):
    """Remove a category from the family's catalog.

    The family's transactions in that category are deleted first. A category the
    family owns is then deleted outright; any other category is hidden for this
    family only. Returns ``"deleted"`` or ``"hidden"``.
    """
    category_id = parse_id(category_id, "category")
    with db.transaction():
        db.lock_family(family_id)
        category = _get_category(db, category_id)
        if category is None:
            raise NotFoundError("Category not found.")

        delete_by_category(db, family_id, category_id)

        if category["family_id"] == family_id:
            db.execute(
                "DELETE FROM categories WHERE id = ? AND family_id = ?",
                (category_id, family_id),
            )
            return "deleted"

        hide_category(db, family_id, category_id)
        return "hidden"
