"""Users, families and the family's main account."""

from werkzeug.security import check_password_hash, generate_password_hash

from .errors import AuthError, DuplicateError, NotFoundError, StorageError, ValidationError

DEFAULT_FAMILY_NAME = "Our family"
DEFAULT_ACCOUNT_NAME = "Main card"


def normalize_email(value):
    return (value or "").strip().lower()


def register_user(db, email, password, name, family_name=DEFAULT_FAMILY_NAME, account_name=DEFAULT_ACCOUNT_NAME):
    """Create a user together with their family, owner membership and primary account.

    All four inserts commit together or not at all. Returns the new user id.
    """
    email = normalize_email(email)
    name = (name or "").strip() or None
    if not email:
        raise ValidationError("Email is required.")
    if not password:
        raise ValidationError("Password is required.")

    existing = db.execute("SELECT id FROM users WHERE email = ?", (email,)).fetchone()
    if existing is not None:
        raise DuplicateError("This email is already registered.")

    password_hash = generate_password_hash(password)
    try:
        with db.transaction():
            db.execute(
                "INSERT INTO users (email, password_hash, name) VALUES (?, ?, ?)",
                (email, password_hash, name),
            )
            user_id = db.execute("SELECT last_insert_rowid() AS id").fetchone()["id"]

            db.execute("INSERT INTO families (name) VALUES (?)", (family_name,))
            family_id = db.execute("SELECT last_insert_rowid() AS id").fetchone()["id"]

            db.execute(
                "INSERT INTO family_members (family_id, user_id, role) VALUES (?, ?, 'owner')",
                (family_id, user_id),
            )
            db.execute(
                "INSERT INTO accounts (family_id, name, is_primary) VALUES (?, ?, 1)",
                (family_id, account_name),
            )
    except StorageError as exc:
        raise StorageError("Registration failed.") from exc
    return user_id


def login_user(db, email, password):
    user = db.execute("SELECT * FROM users WHERE email = ?", (normalize_email(email),)).fetchone()
    if user is None:
        raise AuthError("User not found.")
    if not check_password_hash(user["password_hash"], password or ""):
        raise AuthError("Incorrect password.")
    return user


def get_user_by_id(db, user_id):
    return db.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()


def get_user_family_id(db, user_id):
    # One family per user: the earliest membership wins.
    row = db.execute(
        """
        SELECT f.id
        FROM families f
        JOIN family_members fm ON fm.family_id = f.id
        WHERE fm.user_id = ?
        ORDER BY fm.id ASC
        LIMIT 1
        """,
        (user_id,),
    ).fetchone()
    return row["id"] if row else None


def get_family_main_account_id(db, family_id):
    if family_id is None:
        return None
    row = db.execute(
        """
        SELECT id
        FROM accounts
        WHERE family_id = ?
        ORDER BY is_primary DESC, id ASC
        LIMIT 1
        """,
        (family_id,),
    ).fetchone()
    return row["id"] if row else None


def resolve_family_context(db, user_id):
    family_id = get_user_family_id(db, user_id)
    account_id = get_family_main_account_id(db, family_id)
    if family_id is None or account_id is None:
        raise NotFoundError("Family or account not found.")
    return family_id, account_id
