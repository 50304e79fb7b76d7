from pathlib import Path

import pytest

from family_finance import create_app
from family_finance.db import connect_db, parse_database_config
from family_finance.db_migrations import apply_migrations
from family_finance.identity import register_user, resolve_family_context


@pytest.fixture()
def db(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    config = parse_database_config(str(tmp_path / "core.sqlite"))
    apply_migrations(config)
    conn = connect_db(config)
    yield conn
    conn.close()


@pytest.fixture()
def make_family(db):
    def _make_family(email="owner@example.com", password="password", name="Owner"):
        user_id = register_user(db, email, password, name)
        family_id, account_id = resolve_family_context(db, user_id)
        return {"user_id": user_id, "family_id": family_id, "account_id": account_id}

    return _make_family


@pytest.fixture()
def global_category(db):
    def _global_category(name):
        row = db.execute(
            "SELECT id FROM categories WHERE family_id IS NULL AND name = ?",
            (name,),
        ).fetchone()
        assert row is not None, f"missing default category {name}"
        return row["id"]

    return _global_category


@pytest.fixture()
def app(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)
    db_path = tmp_path / "test.sqlite"
    app = create_app({"TESTING": True, "SECRET_KEY": "test", "DATABASE": str(db_path)})

    with app.app_context():
        app.init_db()

    yield app


@pytest.fixture()
def client(app):
    return app.test_client()
