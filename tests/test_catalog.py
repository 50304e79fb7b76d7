import sqlite3

import pytest

from family_finance.catalog import (
    DEFAULT_COLOR,
    DEFAULT_ICON,
    create_category,
    delete_category,
    list_visible,
    update_category,
)
from family_finance.db_migrations import DEFAULT_GLOBAL_CATEGORIES
from family_finance.errors import DuplicateError, NotFoundError, StorageError, ValidationError
from family_finance.ledger import append, query, reset_family


def visible_names(db, family_id):
    return [row["name"] for row in list_visible(db, family_id)]


def test_new_family_sees_every_global_category_in_id_order(db, make_family):
    family = make_family()

    rows = list_visible(db, family["family_id"])

    assert [row["name"] for row in rows] == [name for name, *_ in DEFAULT_GLOBAL_CATEGORIES]
    assert [row["id"] for row in rows] == sorted(row["id"] for row in rows)
    assert all(row["family_id"] is None for row in rows)


def test_list_visible_supports_name_and_type_ordering(db, make_family):
    family = make_family()

    by_name = [row["name"] for row in list_visible(db, family["family_id"], order_by="name")]
    by_type = [(row["type"], row["name"]) for row in list_visible(db, family["family_id"], order_by="type")]

    assert by_name == sorted(by_name)
    assert by_type == sorted(by_type)
    with pytest.raises(ValueError):
        list_visible(db, family["family_id"], order_by="color")


def test_create_category_trims_and_applies_defaults(db, make_family):
    family = make_family()

    category = create_category(db, family["family_id"], "  Groceries  ", "expense", "", None)

    assert category["name"] == "Groceries"
    assert category["type"] == "expense"
    assert category["color"] == DEFAULT_COLOR
    assert category["icon"] == DEFAULT_ICON
    assert category["family_id"] == family["family_id"]
    assert "Groceries" in visible_names(db, family["family_id"])


def test_create_category_defaults_missing_type_to_expense(db, make_family):
    family = make_family()

    category = create_category(db, family["family_id"], "Pets")

    assert category["type"] == "expense"


@pytest.mark.parametrize("name,category_type", [("", "expense"), ("   ", "income"), ("Pets", "transfer")])
def test_create_category_rejects_invalid_input(db, make_family, name, category_type):
    family = make_family()

    with pytest.raises(ValidationError):
        create_category(db, family["family_id"], name, category_type)


def test_duplicate_name_and_type_is_rejected_but_type_differentiates(db, make_family):
    family = make_family()
    create_category(db, family["family_id"], "Groceries", "expense")

    with pytest.raises(DuplicateError):
        create_category(db, family["family_id"], "Groceries", "expense")

    income = create_category(db, family["family_id"], "Groceries", "income")
    assert income["type"] == "income"


def test_duplicate_check_covers_global_categories(db, make_family):
    family = make_family()

    with pytest.raises(DuplicateError):
        create_category(db, family["family_id"], "Food", "expense")


def test_hidden_global_category_name_can_be_reused(db, make_family, global_category):
    family = make_family()
    delete_category(db, family["family_id"], global_category("Food"))

    own = create_category(db, family["family_id"], "Food", "expense")

    assert own["family_id"] == family["family_id"]
    assert visible_names(db, family["family_id"]).count("Food") == 1


def test_same_name_in_two_families_is_allowed(db, make_family):
    first = make_family("a@example.com")
    second = make_family("b@example.com")

    create_category(db, first["family_id"], "Hobbies", "expense")
    create_category(db, second["family_id"], "Hobbies", "expense")

    assert "Hobbies" in visible_names(db, first["family_id"])
    assert visible_names(db, second["family_id"]).count("Hobbies") == 1


def test_update_own_category(db, make_family):
    family = make_family()
    category = create_category(db, family["family_id"], "Hobbies", "expense")

    updated = update_category(db, family["family_id"], str(category["id"]), "Hobbies", "expense", "#123456", "bi-brush")

    assert updated["name"] == "Hobbies"
    assert updated["color"] == "#123456"
    assert updated["icon"] == "bi-brush"


def test_update_rejects_collision_with_another_visible_category(db, make_family):
    family = make_family()
    category = create_category(db, family["family_id"], "Hobbies", "expense")

    with pytest.raises(DuplicateError):
        update_category(db, family["family_id"], category["id"], "Food", "expense")


def test_update_is_restricted_to_the_owning_family(db, make_family, global_category):
    owner = make_family("a@example.com")
    other = make_family("b@example.com")
    category = create_category(db, owner["family_id"], "Hobbies", "expense")

    with pytest.raises(NotFoundError):
        update_category(db, other["family_id"], category["id"], "Renamed", "expense")
    with pytest.raises(NotFoundError):
        update_category(db, owner["family_id"], global_category("Food"), "Eating", "expense")
    with pytest.raises(NotFoundError):
        update_category(db, owner["family_id"], 99999, "Ghost", "expense")

    name = db.execute("SELECT name FROM categories WHERE id = ?", (global_category("Food"),)).fetchone()["name"]
    assert name == "Food"


def test_deleting_own_category_cascades_its_transactions(db, make_family):
    family = make_family()
    category = create_category(db, family["family_id"], "Hobbies", "expense")
    append(db, family["family_id"], family["account_id"], family["user_id"], category["id"], 20, "expense", "2024-03-05")

    outcome = delete_category(db, family["family_id"], category["id"])

    assert outcome == "deleted"
    assert "Hobbies" not in visible_names(db, family["family_id"])
    assert db.execute("SELECT COUNT(*) AS total FROM transactions").fetchone()["total"] == 0
    assert db.execute("SELECT id FROM categories WHERE id = ?", (category["id"],)).fetchone() is None


def test_deleting_global_category_hides_it_for_one_family_only(db, make_family, global_category):
    first = make_family("a@example.com")
    second = make_family("b@example.com")
    food_id = global_category("Food")
    append(db, first["family_id"], first["account_id"], first["user_id"], food_id, 10, "expense", "2024-03-05")
    append(db, second["family_id"], second["account_id"], second["user_id"], food_id, 15, "expense", "2024-03-06")

    outcome = delete_category(db, first["family_id"], food_id)

    assert outcome == "hidden"
    assert "Food" not in visible_names(db, first["family_id"])
    assert "Food" in visible_names(db, second["family_id"])
    assert query(db, first["family_id"], first["account_id"], "2024-03-01", "2024-03-31") == []
    assert len(query(db, second["family_id"], second["account_id"], "2024-03-01", "2024-03-31")) == 1
    assert db.execute("SELECT id FROM categories WHERE id = ?", (food_id,)).fetchone() is not None


def test_hiding_twice_is_idempotent(db, make_family, global_category):
    family = make_family()
    food_id = global_category("Food")

    assert delete_category(db, family["family_id"], food_id) == "hidden"
    assert delete_category(db, family["family_id"], food_id) == "hidden"

    overrides = db.execute(
        "SELECT COUNT(*) AS total FROM hidden_categories WHERE family_id = ?",
        (family["family_id"],),
    ).fetchone()["total"]
    assert overrides == 1


def test_delete_unknown_category_raises_not_found(db, make_family):
    family = make_family()

    with pytest.raises(NotFoundError):
        delete_category(db, family["family_id"], 99999)
    with pytest.raises(ValidationError):
        delete_category(db, family["family_id"], "not-a-number")


def test_visible_set_excludes_hidden_and_keeps_own(db, make_family, global_category):
    first = make_family("a@example.com")
    second = make_family("b@example.com")
    own = create_category(db, first["family_id"], "Hobbies", "expense")
    foreign = create_category(db, second["family_id"], "Garden", "expense")
    for name in ["Food", "Transport"]:
        delete_category(db, first["family_id"], global_category(name))

    ids = {row["id"] for row in list_visible(db, first["family_id"])}
    hidden = {row["category_id"] for row in db.execute(
        "SELECT category_id FROM hidden_categories WHERE family_id = ?", (first["family_id"],)
    ).fetchall()}

    assert own["id"] in ids
    assert foreign["id"] not in ids
    assert not ids & hidden


def test_reset_restores_hidden_globals_and_drops_private_categories(db, make_family, global_category):
    family = make_family()
    food_id = global_category("Food")
    delete_category(db, family["family_id"], food_id)
    own = create_category(db, family["family_id"], "Hobbies", "expense")

    reset_family(db, family["family_id"])

    names = visible_names(db, family["family_id"])
    assert "Food" in names
    assert "Hobbies" not in names
    assert db.execute("SELECT id FROM categories WHERE id = ?", (own["id"],)).fetchone() is None


def fail_on(db, monkeypatch, fragment):
    original_execute = db.execute

    def failing_execute(sql, params=None):
        if fragment in sql:
            raise sqlite3.OperationalError("database is locked")
        return original_execute(sql, params)

    monkeypatch.setattr(db, "execute", failing_execute)


def test_failed_hide_keeps_the_family_transactions(db, make_family, global_category, monkeypatch):
    family = make_family()
    food_id = global_category("Food")
    append(db, family["family_id"], family["account_id"], family["user_id"], food_id, 10, "expense", "2024-03-05")
    fail_on(db, monkeypatch, "INSERT INTO hidden_categories")

    with pytest.raises(StorageError):
        delete_category(db, family["family_id"], food_id)

    monkeypatch.undo()
    assert len(query(db, family["family_id"], family["account_id"], "2024-03-01", "2024-03-31")) == 1
    assert "Food" in visible_names(db, family["family_id"])


def test_failed_delete_keeps_own_category_and_transactions(db, make_family, monkeypatch):
    family = make_family()
    category = create_category(db, family["family_id"], "Hobbies", "expense")
    append(db, family["family_id"], family["account_id"], family["user_id"], category["id"], 20, "expense", "2024-03-05")
    fail_on(db, monkeypatch, "DELETE FROM categories")

    with pytest.raises(StorageError):
        delete_category(db, family["family_id"], category["id"])

    monkeypatch.undo()
    assert db.execute("SELECT COUNT(*) AS total FROM transactions").fetchone()["total"] == 1
    assert "Hobbies" in visible_names(db, family["family_id"])
