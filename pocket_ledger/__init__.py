import os
import sqlite3

from flask import Flask, current_app, g, jsonify, request
from werkzeug.exceptions import HTTPException

from . import categories as category_service
from . import expenses as expense_service
from . import reports
from .db import connect_db, parse_database_config
from .db_migrations import apply_migrations, get_db_health
from .errors import DatabaseInitError, NotFoundError, ValidationError


def json_payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")
    return payload


def found_or_404(record, entity):
    if record is None:
        raise NotFoundError(f"{entity} not found")
    return record


def create_app(test_config=None):
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_mapping(
        DATABASE=os.path.join(app.instance_path, "pocket_ledger.sqlite"),
        SEED_DEFAULT_CATEGORIES=True,
        TRENDS_MAX_MONTHS=120,
    )

    if test_config is not None:
        app.config.update(test_config)

    os.makedirs(app.instance_path, exist_ok=True)
    app.config.setdefault("DB_INIT_ERROR", None)
    app.json.ensure_ascii = False

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
            except (sqlite3.Error, OSError, RuntimeError) as exc:
                message = f"Unable to open database {app.config['DATABASE']}: {exc}"
                app.logger.error(message)
                app.config["DB_INIT_ERROR"] = message
                raise DatabaseInitError(message) from exc
        return g.db

    def init_db():
        try:
            apply_migrations(database_config())
            app.config["DB_INIT_ERROR"] = None
        except (sqlite3.Error, OSError, RuntimeError) as exc:
            message = f"Failed to initialize database {app.config['DATABASE']}: {exc}"
            app.logger.error(message)
            app.config["DB_INIT_ERROR"] = message
            raise DatabaseInitError(message) from exc

        if app.config["SEED_DEFAULT_CATEGORIES"]:
            seeded = category_service.ensure_default_categories(get_db())
            if seeded:
                app.logger.info("Seeded %s default categories", seeded)

    @app.cli.command("init-db")
    def init_db_command():
        init_db()
        print("Initialized the database.")

    @app.errorhandler(ValidationError)
    def handle_validation_error(exc):
        current_app.logger.warning("Rejected %s %s: %s", request.method, request.path, exc.message)
        body = {"error": exc.message}
        if exc.field:
            body["field"] = exc.field
        return jsonify(body), 400

    @app.errorhandler(NotFoundError)
    def handle_not_found(exc):
        return jsonify({"error": str(exc)}), 404

    @app.errorhandler(DatabaseInitError)
    def handle_db_init_error(exc):
        return jsonify({"error": str(exc)}), 503

    @app.errorhandler(HTTPException)
    def handle_http_error(exc):
        if not request.path.startswith("/api/"):
            return exc
        return jsonify({"error": exc.description}), exc.code

    @app.get("/health/db")
    def db_health():
        try:
            return jsonify(get_db_health(database_config()))
        except (sqlite3.Error, RuntimeError) as exc:
            return jsonify({
                "ok": False,
                "schema_version": 0,
                "missing_tables": [],
                "missing_columns": {},
                "missing_indexes": [],
                "error": str(exc),
            }), 500

    @app.get("/api/categories")
    def list_categories():
        return jsonify(category_service.list_categories(get_db()))

    @app.get("/api/categories/<int:category_id>")
    def get_category(category_id):
        category = category_service.get_category(get_db(), category_id)
        return jsonify(found_or_404(category, "Category"))

    @app.post("/api/categories")
    def create_category():
        category = category_service.create_category(get_db(), json_payload())
        app.logger.info("Created category id=%s name=%s", category["id"], category["name"])
        return jsonify(category), 201

    @app.put("/api/categories/<int:category_id>")
    def update_category(category_id):
        category = category_service.update_category(get_db(), category_id, json_payload())
        found_or_404(category, "Category")
        app.logger.info("Updated category id=%s", category_id)
        return jsonify(category)

    @app.delete("/api/categories/<int:category_id>")
    def delete_category(category_id):
        deleted = category_service.delete_category(get_db(), category_id)
        if deleted:
            app.logger.info("Deleted category id=%s", category_id)
        else:
            app.logger.warning("Delete requested for missing category id=%s", category_id)
        return jsonify({"success": deleted})

    @app.get("/api/expenses")
    def list_expenses():
        items = expense_service.list_expenses(
            get_db(),
            sort_by=request.args.get("sortBy"),
            sort_order=request.args.get("sortOrder"),
            tx_type=request.args.get("type") or None,
        )
        return jsonify(items)

    @app.get("/api/expenses/summary")
    def expense_summary():
        return jsonify(reports.get_summary(get_db()))

    @app.get("/api/expenses/patterns")
    def expense_patterns():
        return jsonify(reports.get_patterns(get_db()))

    @app.get("/api/expenses/trends")
    def expense_trends():
        months = reports.parse_months(request.args.get("months"), app.config["TRENDS_MAX_MONTHS"])
        return jsonify(reports.get_trends(get_db(), months=months))

    @app.get("/api/expenses/lending-summary")
    def lending_summary():
        return jsonify(reports.get_lending_summary(get_db()))

    @app.get("/api/expenses/<int:expense_id>")
    def get_expense(expense_id):
        expense = expense_service.get_expense(get_db(), expense_id)
        return jsonify(found_or_404(expense, "Expense"))

    @app.post("/api/expenses")
    def create_expense():
        expense = expense_service.create_expense(get_db(), json_payload())
        app.logger.info(
            "Created %s id=%s amount=%s category_id=%s",
            expense["type"],
            expense["id"],
            expense["amount"],
            expense["categoryId"],
        )
        return jsonify(expense), 201

    @app.put("/api/expenses/<int:expense_id>")
    def update_expense(expense_id):
        expense = expense_service.update_expense(get_db(), expense_id, json_payload())
        found_or_404(expense, "Expense")
        app.logger.info("Updated expense id=%s", expense_id)
        return jsonify(expense)

    @app.delete("/api/expenses/<int:expense_id>")
    def delete_expense(expense_id):
        deleted = expense_service.delete_expense(get_db(), expense_id)
        if deleted:
            app.logger.info("Deleted expense id=%s", expense_id)
        else:
            app.logger.warning("Delete requested for missing expense id=%s", expense_id)
        return jsonify({"success": deleted})

    with app.app_context():
        try:
            init_db()
        except DatabaseInitError:
            pass

    app.get_db = get_db
    app.init_db = init_db
    return app
