import os
import logging
from datetime import datetime, timezone

from flask import Flask, jsonify, request, abort
from flask_cors import CORS

from .config import Config
from .database import connect_database_with
from .domain import CreateCheckout, UpdateReturned, as_utc
from .errors import CheckoutError
from .models import create_schema
from .repository import CheckoutRepository
from .retry import run_with_retry

logger = logging.getLogger(__name__)


def _parse_timestamp(data, key):
    """
    ISO-8601 timestamp from the request body, defaulting to now (UTC).
    Naive values are taken as UTC; offsets are converted to UTC.
    """
    raw = data.get(key)
    if raw is None:
        return datetime.now(timezone.utc)
    try:
        value = datetime.fromisoformat(raw)
    except (TypeError, ValueError):
        abort(400, description=f"{key} must be an ISO-8601 timestamp")
    return as_utc(value)


def _json_body():
    data = request.get_json(force=True, silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        abort(400, description="request body must be a JSON object")
    return data


def _require_user_id(data):
    user_id = data.get("user_id")
    if not user_id:
        abort(400, description="user_id is required")
    return user_id


def create_app(config_object=Config, pool=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    CORS(app)

    # Pool is shared across requests; each transaction owns its own connection
    if pool is None:
        pool = connect_database_with(config_object)
    if app.config["CREATE_SCHEMA"]:
        create_schema(pool.inner_ref())

    repo = CheckoutRepository(pool, isolation_level=app.config["CHECKOUT_ISOLATION_LEVEL"])
    app.extensions["checkout_repository"] = repo

    def with_retry(fn):
        return run_with_retry(
            fn,
            attempts=app.config["CHECKOUT_RETRY_ATTEMPTS"],
            backoff_seconds=app.config["CHECKOUT_RETRY_BACKOFF_SECONDS"],
        )

    # ----------------- errors -----------------

    @app.errorhandler(CheckoutError)
    def handle_checkout_error(e):
        if e.http_status >= 500:
            logger.error("Checkout operation failed: %s", e.message)
        return jsonify({"error": e.message}), e.http_status

    @app.errorhandler(400)
    def handle_bad_request(e):
        return jsonify({"error": e.description}), 400

    # ----------------- health -----------------

    @app.get("/api/health")
    def health():
        return jsonify({"status": "ok", "service": "checkout_service"})

    # ----------------- checkout / return -----------------

    @app.post("/api/books/<book_id>/checkouts")
    def checkout_book(book_id):
        data = _json_body()
        event = CreateCheckout(
            book_id=book_id,
            checked_out_by=_require_user_id(data),
            checked_out_at=_parse_timestamp(data, "checked_out_at"),
        )
        checkout_id = with_retry(lambda: repo.create(event))
        return jsonify({"checkout_id": checkout_id}), 201

    @app.put("/api/books/<book_id>/checkouts/<checkout_id>/returned")
    def return_book(book_id, checkout_id):
        data = _json_body()
        event = UpdateReturned(
            checkout_id=checkout_id,
            book_id=book_id,
            returned_by=_require_user_id(data),
            returned_at=_parse_timestamp(data, "returned_at"),
        )
        with_retry(lambda: repo.update_returned(event))
        return jsonify({"message": "Returned"}), 200

    # ----------------- listings -----------------

    @app.get("/api/books/checkouts")
    def list_checkouts():
        items = repo.find_unreturned_all()
        return jsonify({"items": [c.to_dict() for c in items]})

    @app.get("/api/users/<user_id>/checkouts")
    def list_user_checkouts(user_id):
        items = repo.find_unreturned_by_user_id(user_id)
        return jsonify({"items": [c.to_dict() for c in items]})

    @app.get("/api/books/<book_id>/checkout-history")
    def checkout_history(book_id):
        items = repo.find_history_by_book_id(book_id)
        return jsonify({"items": [c.to_dict() for c in items]})

    return app


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    port = int(os.getenv("PORT", "5010"))
    create_app().run(host="0.0.0.0", port=port, debug=True)
