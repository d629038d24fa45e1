# Overview: Shared JSON error responses for the API blueprints.

from flask import current_app, jsonify

from ..errors import StockError


def error_response(exc: StockError):
    return jsonify(exc.to_dict()), exc.status_code


def internal_error(action: str):
    current_app.logger.exception("Failed to %s", action)
    return jsonify({"error": "Internal server error"}), 500
