import os
from functools import wraps

from flask import (
    Flask,
    flash,
    g,
    jsonify,
    redirect,
    render_template,
    request,
    session,
    url_for,
)

from . import aggregator, catalog, identity, ledger
from .db import DATABASE_ERRORS, connect_db, parse_database_config
from .db_migrations import apply_migrations, get_db_health
from .errors import DatabaseInitError, FinanceError, NotFoundError, StorageError, ValidationError


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        SECRET_KEY=os.environ.get("SECRET_KEY", "dev"),
        DATABASE=os.path.join(app.instance_path, "family_finance.sqlite"),
        DEFAULT_FAMILY_NAME=identity.DEFAULT_FAMILY_NAME,
        DEFAULT_ACCOUNT_NAME=identity.DEFAULT_ACCOUNT_NAME,
    )

    if test_config is not None:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)

    def database_config():
        return parse_database_config(app.config["DATABASE"])

    @app.teardown_appcontext
    def close_db(_=None):
        db = g.pop("db", None)
        if db is not None:
            db.close()

    def get_db():
        if "db" not in g:
            try:
                g.db = connect_db(database_config())
            except DATABASE_ERRORS as exc:
                message = f"Unable to open database {app.config['DATABASE']}: {exc}"
                print(f"[DB ERROR] {message}")
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            apply_migrations(database_config())
            app.config["DB_INIT_ERROR"] = None
        except (*DATABASE_ERRORS, OSError, RuntimeError) as exc:
            message = f"Failed to initialize database {app.config['DATABASE']}: {exc}"
            print(f"[DB INIT ERROR] {message}")
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(database_config()))
        except DATABASE_ERRORS as exc:
            return jsonify({
                "ok": False,
                "schema_version": 0,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    def login_required(view):
        @wraps(view)
        def wrapped_view(**kwargs):
            if g.user is None:
                return redirect(url_for("login"))
            return view(**kwargs)

        return wrapped_view

    def render_db_init_error_response():
        message = app.config.get("DB_INIT_ERROR") or "Database initialization failed."
        return f"<h1>Database initialization failed</h1><p>{message}</p>", 500

    @app.before_request
    def load_logged_in_user():
        if app.config.get("DB_INIT_ERROR") and request.endpoint != "db_health":
            return render_db_init_error_response()

        user_id = session.get("user_id")
        g.user = None
        g.family_id = None
        g.account_id = None
        if user_id is None:
            return None

        db = get_db()
        g.user = identity.get_user_by_id(db, user_id)
        if g.user is not None:
            g.family_id = identity.get_user_family_id(db, g.user["id"])
            g.account_id = identity.get_family_main_account_id(db, g.family_id)
        return None

    def require_family_context():
        if g.family_id is None or g.account_id is None:
            raise NotFoundError("Family or account not found.")
        return g.family_id, g.account_id

    @app.errorhandler(NotFoundError)
    def handle_missing_family(exc):
        return exc.message, 404

    @app.route("/")
    @login_required
    def dashboard():
        family_id, account_id = require_family_context()
        summary = aggregator.summarize(get_db(), family_id, account_id)
        return render_template(
            "dashboard.html",
            user=g.user,
            summary=summary,
            active_page="dashboard",
        )

    @app.route("/register", methods=("GET", "POST"))
    def register():
        if request.method == "POST":
            try:
                identity.register_user(
                    get_db(),
                    request.form.get("email", ""),
                    request.form.get("password", ""),
                    request.form.get("name", ""),
                    family_name=app.config["DEFAULT_FAMILY_NAME"],
                    account_name=app.config["DEFAULT_ACCOUNT_NAME"],
                )
            except StorageError as exc:
                app.logger.exception("Registration failed for email=%s", request.form.get("email", ""))
                flash(exc.message)
            except FinanceError as exc:
                flash(exc.message)
            else:
                flash("Registration successful. Please login.")
                return redirect(url_for("login"))

        return render_template("register.html")

    @app.route("/login", methods=("GET", "POST"))
    def login():
        if request.method == "POST":
            try:
                user = identity.login_user(
                    get_db(),
                    request.form.get("email", ""),
                    request.form.get("password", ""),
                )
            except FinanceError as exc:
                flash(exc.message)
            else:
                session.clear()
                session["user_id"] = user["id"]
                return redirect(url_for("dashboard"))

        return render_template("login.html")

    @app.route("/logout")
    def logout():
        session.clear()
        return redirect(url_for("login"))

    @app.get("/transactions")
    @login_required
    def transactions():
        family_id, account_id = require_family_context()
        db = get_db()
        category_filter = (request.args.get("category_id") or ledger.ALL_CATEGORIES).strip()

        try:
            date_from, date_to = aggregator.resolve_period(request.args.get("from"), request.args.get("to"))
            rows = ledger.query(db, family_id, account_id, date_from, date_to, category_filter)
        except ValidationError as exc:
            flash(exc.message)
            date_from, date_to = aggregator.current_month_bounds()
            category_filter = ledger.ALL_CATEGORIES
            rows = ledger.query(db, family_id, account_id, date_from, date_to)

        return render_template(
            "transactions.html",
            user=g.user,
            transactions=rows,
            categories=catalog.list_visible(db, family_id, order_by="name"),
            who_values=ledger.WHO_VALUES,
            filters={"from": date_from, "to": date_to, "category_id": category_filter},
            active_page="transactions",
        )

    @app.post("/transactions")
    @login_required
    def create_transaction():
        family_id, account_id = require_family_context()
        try:
            ledger.append(
                get_db(),
                family_id,
                account_id,
                g.user["id"],
                request.form.get("category_id"),
                request.form.get("amount"),
                request.form.get("type"),
                request.form.get("date"),
                description=request.form.get("description"),
                who=request.form.get("who"),
            )
        except FinanceError as exc:
            flash(exc.message)
        else:
            flash("Transaction added.")
        return redirect(url_for("transactions"))

    @app.get("/categories")
    @login_required
    def categories():
        family_id, _ = require_family_context()
        return render_template(
            "categories.html",
            user=g.user,
            categories=catalog.list_visible(get_db(), family_id),
            active_page="categories",
        )

    @app.post("/categories")
    @login_required
    def create_category():
        family_id, _ = require_family_context()
        try:
            catalog.create_category(
                get_db(),
                family_id,
                request.form.get("name"),
                request.form.get("type"),
                request.form.get("color"),
                request.form.get("icon"),
            )
        except FinanceError as exc:
            flash(exc.message)
        else:
            flash("Category added.")
        return redirect(url_for("categories"))

    @app.post("/categories/update")
    @login_required
    def update_category():
        family_id, _ = require_family_context()
        category_id = request.form.get("id")
        if not category_id:
            return redirect(url_for("categories"))
        try:
            catalog.update_category(
                get_db(),
                family_id,
                category_id,
                request.form.get("name"),
                request.form.get("type"),
                request.form.get("color"),
                request.form.get("icon"),
            )
        except FinanceError as exc:
            flash(exc.message)
        else:
            flash("Category updated.")
        return redirect(url_for("categories"))

    @app.post("/categories/delete")
    @login_required
    def delete_category():
        family_id, _ = require_family_context()
        category_id = request.form.get("id")
        if not category_id:
            return redirect(url_for("categories"))
        try:
            outcome = catalog.delete_category(get_db(), family_id, category_id)
        except StorageError:
            app.logger.exception("Deleting category_id=%s failed for family_id=%s", category_id, family_id)
            return "Failed to delete category.", 500
        except FinanceError as exc:
            flash(exc.message)
            return redirect(url_for("categories"))

        app.logger.info("Category category_id=%s %s for family_id=%s", category_id, outcome, family_id)
        flash("Category deleted." if outcome == "deleted" else "Category hidden.")
        return redirect(url_for("categories"))

    @app.post("/reset-data")
    @login_required
    def reset_data():
        if g.family_id is None:
            return redirect(url_for("dashboard"))
        try:
            removed = ledger.reset_family(get_db(), g.family_id)
        except StorageError:
            app.logger.exception("Reset failed for family_id=%s", g.family_id)
            return "Failed to reset data.", 500

        app.logger.warning("Family family_id=%s reset: %s", g.family_id, removed)
        flash("All family data has been cleared.")
        return redirect(url_for("dashboard"))

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    return app
