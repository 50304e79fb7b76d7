import argparse
from datetime import datetime

from .db import connect_db, parse_database_config


DEFAULT_GLOBAL_CATEGORIES = [
    ("Salary", "income", "#2e7d32", "bi-cash-stack"),
    ("Gifts received", "income", "#66bb6a", "bi-gift"),
    ("Food", "expense", "#ef6c00", "bi-basket"),
    ("Transport", "expense", "#1565c0", "bi-bus-front"),
    ("Housing", "expense", "#6d4c41", "bi-house"),
    ("Utilities", "expense", "#00838f", "bi-lightning"),
    ("Health", "expense", "#c62828", "bi-heart-pulse"),
    ("Entertainment", "expense", "#8e24aa", "bi-controller"),
    ("Clothing", "expense", "#ad1457", "bi-bag"),
]

REQUIRED_TABLES = {
    "users": {
        "columns": {"id", "email", "password_hash", "name", "created_at"},
        "indexes": set(),
    },
    "families": {
        "columns": {"id", "name", "created_at"},
        "indexes": set(),
    },
    "family_members": {
        "columns": {"id", "family_id", "user_id", "role", "created_at"},
        "indexes": {"idx_family_members_user_id"},
    },
    "accounts": {
        "columns": {"id", "family_id", "name", "is_primary"},
        "indexes": {"idx_accounts_family_id", "uq_accounts_family_primary"},
    },
    "categories": {
        "columns": {"id", "family_id", "name", "type", "color", "icon"},
        "indexes": {"idx_categories_family_id"},
    },
    "hidden_categories": {
        "columns": {"family_id", "category_id"},
        "indexes": set(),
    },
    "transactions": {
        "columns": {
            "id",
            "family_id",
            "account_id",
            "user_id",
            "category_id",
            "amount",
            "date",
            "description",
            "who",
            "created_at",
        },
        "indexes": {
            "idx_transactions_family_account_date",
            "idx_transactions_family_category",
        },
    },
}


def backend_name(conn):
    return getattr(conn, "backend", "sqlite")


def table_exists(conn, name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM information_schema.tables WHERE table_schema = current_schema() AND table_name = ?",
            (name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='table' AND name = ?", (name,)).fetchone()
    return row is not None


def column_exists(conn, table, column):
    if not table_exists(conn, table):
        return False
    return column in get_table_columns(conn, table)


def index_exists(conn, index_name):
    if backend_name(conn) == "postgres":
        row = conn.execute(
            "SELECT 1 FROM pg_indexes WHERE schemaname = current_schema() AND indexname = ?",
            (index_name,),
        ).fetchone()
        return row is not None

    row = conn.execute("SELECT 1 FROM sqlite_master WHERE type='index' AND name = ?", (index_name,)).fetchone()
    return row is not None


def add_column_if_missing(conn, table, col_def_sql):
    column = col_def_sql.split()[0]
    if backend_name(conn) == "postgres":
        conn.execute(f"ALTER TABLE {table} ADD COLUMN IF NOT EXISTS {col_def_sql}")
    elif not column_exists(conn, table, column):
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {col_def_sql}")


def create_index_if_missing(conn, index_name, create_sql):
    if not index_exists(conn, index_name):
        conn.execute(create_sql)


def ensure_table(conn, create_sql):
    if backend_name(conn) == "postgres":
        create_sql = create_sql.replace("INTEGER PRIMARY KEY AUTOINCREMENT", "BIGSERIAL PRIMARY KEY")
    conn.execute(create_sql)


def get_table_columns(conn, table):
    if backend_name(conn) == "postgres":
        rows = conn.execute(
            "SELECT column_name FROM information_schema.columns WHERE table_schema = current_schema() AND table_name = ? ORDER BY ordinal_position",
            (table,),
        ).fetchall()
        return {row[0] for row in rows}

    rows = conn.execute(f"PRAGMA table_info({table})").fetchall()
    return {row[1] for row in rows}


def migration_001(conn):
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT NOT NULL,
            name TEXT,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS families (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS family_members (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            family_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            role TEXT NOT NULL DEFAULT 'owner' CHECK(role IN ('owner')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            UNIQUE(family_id, user_id),
            FOREIGN KEY (family_id) REFERENCES families (id),
            FOREIGN KEY (user_id) REFERENCES users (id)
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS accounts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            family_id INTEGER NOT NULL,
            name TEXT NOT NULL,
            FOREIGN KEY (family_id) REFERENCES families (id)
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS categories (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            family_id INTEGER,
            name TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'expense' CHECK(type IN ('income','expense')),
            color TEXT,
            icon TEXT,
            FOREIGN KEY (family_id) REFERENCES families (id)
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS hidden_categories (
            family_id INTEGER NOT NULL,
            category_id INTEGER NOT NULL,
            PRIMARY KEY (family_id, category_id),
            FOREIGN KEY (family_id) REFERENCES families (id),
            FOREIGN KEY (category_id) REFERENCES categories (id) ON DELETE CASCADE
        )
        """,
    )
    ensure_table(
        conn,
        """
        CREATE TABLE IF NOT EXISTS transactions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            family_id INTEGER NOT NULL,
            account_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            category_id INTEGER NOT NULL,
            amount NUMERIC(12, 2) NOT NULL,
            date TEXT NOT NULL,
            description TEXT,
            who TEXT NOT NULL DEFAULT 'shared' CHECK(who IN ('me','girlfriend','shared')),
            created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
            FOREIGN KEY (family_id) REFERENCES families (id),
            FOREIGN KEY (account_id) REFERENCES accounts (id),
            FOREIGN KEY (user_id) REFERENCES users (id),
            FOREIGN KEY (category_id) REFERENCES categories (id)
        )
        """,
    )


def migration_002(conn):
    # The main account used to be "lowest id per family"; make it an explicit flag.
    add_column_if_missing(conn, "accounts", "is_primary INTEGER NOT NULL DEFAULT 0")
    conn.execute(
        """
        UPDATE accounts
        SET is_primary = 1
        WHERE id IN (SELECT MIN(id) FROM accounts GROUP BY family_id)
          AND family_id NOT IN (SELECT family_id FROM accounts WHERE is_primary = 1)
        """
    )
    create_index_if_missing(
        conn,
        "uq_accounts_family_primary",
        "CREATE UNIQUE INDEX uq_accounts_family_primary ON accounts(family_id) WHERE is_primary = 1",
    )
    create_index_if_missing(
        conn,
        "idx_accounts_family_id",
        "CREATE INDEX idx_accounts_family_id ON accounts(family_id)",
    )
    create_index_if_missing(
        conn,
        "idx_family_members_user_id",
        "CREATE INDEX idx_family_members_user_id ON family_members(user_id)",
    )
    create_index_if_missing(
        conn,
        "idx_categories_family_id",
        "CREATE INDEX idx_categories_family_id ON categories(family_id)",
    )
    create_index_if_missing(
        conn,
        "idx_transactions_family_account_date",
        "CREATE INDEX idx_transactions_family_account_date ON transactions(family_id, account_id, date)",
    )
    create_index_if_missing(
        conn,
        "idx_transactions_family_category",
        "CREATE INDEX idx_transactions_family_category ON transactions(family_id, category_id)",
    )


def migration_003(conn):
    existing = conn.execute("SELECT COUNT(*) AS total FROM categories WHERE family_id IS NULL").fetchone()
    if int(existing[0] or 0) > 0:
        return
    for name, category_type, color, icon in DEFAULT_GLOBAL_CATEGORIES:
        conn.execute(
            "INSERT INTO categories (family_id, name, type, color, icon) VALUES (NULL, ?, ?, ?, ?)",
            (name, category_type, color, icon),
        )


MIGRATIONS = [
    (1, migration_001),
    (2, migration_002),
    (3, migration_003),
]


def _ensure_schema_version_table(conn):
    conn.execute(
        """
        CREATE TABLE IF NOT EXISTS schema_version (
            version INTEGER PRIMARY KEY,
            applied_at TEXT NOT NULL
        )
        """
    )


def current_schema_version(conn):
    _ensure_schema_version_table(conn)
    row = conn.execute("SELECT MAX(version) AS version FROM schema_version").fetchone()
    return int(row[0] or 0)


def validate_required_schema(conn):
    health = inspect_db_health(conn)
    if health["missing_tables"] or any(health["missing_columns"].values()):
        raise RuntimeError(
            "Schema invariants failed after migrations. "
            f"Missing tables={health['missing_tables']}, missing columns={health['missing_columns']}"
        )


def _run_migrations(conn):
    _ensure_schema_version_table(conn)
    conn.commit()

    applied_versions = {
        row[0] for row in conn.execute("SELECT version FROM schema_version").fetchall()
    }

    for version, migration_fn in MIGRATIONS:
        if version in applied_versions:
            continue
        try:
            migration_fn(conn)
            conn.execute(
                "INSERT INTO schema_version(version, applied_at) VALUES (?, ?)",
                (version, datetime.utcnow().isoformat(timespec="seconds") + "Z"),
            )
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    validate_required_schema(conn)
    conn.commit()


def apply_migrations(db_or_config_or_path):
    if hasattr(db_or_config_or_path, "execute"):
        _run_migrations(db_or_config_or_path)
        return

    config = db_or_config_or_path if isinstance(db_or_config_or_path, dict) else parse_database_config(db_or_config_or_path)
    conn = connect_db(config)
    try:
        _run_migrations(conn)
    finally:
        conn.close()


def inspect_db_health(conn):
    _ensure_schema_version_table(conn)
    missing_tables = []
    missing_columns = {}
    missing_indexes = []

    for table_name, table_spec in REQUIRED_TABLES.items():
        if not table_exists(conn, table_name):
            missing_tables.append(table_name)
            missing_columns[table_name] = sorted(table_spec["columns"])
            missing_indexes.extend(sorted(table_spec["indexes"]))
            continue

        table_cols = get_table_columns(conn, table_name)
        absent_cols = sorted(col for col in table_spec["columns"] if col not in table_cols)
        missing_columns[table_name] = absent_cols

        for idx in sorted(table_spec["indexes"]):
            if not index_exists(conn, idx):
                missing_indexes.append(idx)

    return {
        "ok": not missing_tables and not any(missing_columns.values()) and not missing_indexes,
        "schema_version": current_schema_version(conn),
        "missing_tables": missing_tables,
        "missing_columns": missing_columns,
        "missing_indexes": sorted(set(missing_indexes)),
    }


def get_db_health(db_config_or_path):
    config = db_config_or_path if isinstance(db_config_or_path, dict) else parse_database_config(db_config_or_path)
    conn = connect_db(config)
    try:
        return inspect_db_health(conn)
    finally:
        conn.close()


def main():
    parser = argparse.ArgumentParser(description="Check family finance DB schema health")
    parser.add_argument("db_path", help="Path to SQLite DB file")
    args = parser.parse_args()
    print(get_db_health(args.db_path))


if __name__ == "__main__":
    main()
