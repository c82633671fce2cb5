import logging
import secrets
import string

import sentry_sdk
from flask import Flask, g, jsonify, redirect, request
from flask_cors import CORS
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from sentry_sdk.integrations.flask import FlaskIntegration
from werkzeug.exceptions import HTTPException

from moviehub.common.config import Settings
from moviehub.common.errors import ApiError
from moviehub.common.rate_limit import FixedWindowLimiter

logger = logging.getLogger(__name__)

REQUEST_ID_ALPHABET = string.ascii_lowercase + string.digits
RATE_WINDOW_SECONDS = 60
SENTRY_TRACES_SAMPLE_RATE = 0.1


def client_ip():
    """
    Resolve the caller IP, preferring the first ``X-Forwarded-For`` entry.

    Returns:
        str: Client address or an empty string when unknown.
    """
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    return first or request.remote_addr or ""


def query_args(*names: str):
    """
    Collect non-empty query string parameters.

    Args:
        *names: Parameter names to keep. Keeps every parameter when empty.

    Returns:
        dict: Parameter names mapped to their raw string values.
    """
    collected = {}
    for key, value in request.args.items():
        if names and key not in names:
            continue
        if value is None or not str(value).strip():
            continue
        collected[key] = value.strip()
    return collected


def describe_validation_error(error: ValidationError):
    """
    Turn a pydantic error into a short message naming the first bad field.

    Args:
        error (ValidationError): Raised validation error.

    Returns:
        str: Message such as ``year: Input should be a valid integer``.
    """
    details = error.errors()
    if not details:
        return "Invalid request"
    first = details[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part != "__root__")
    message = first.get("msg", "Invalid value")
    return f"{location}: {message}" if location else message


def init_monitoring(settings: Settings):
    """
    Start Sentry error and performance monitoring when a DSN is configured.

    Args:
        settings (Settings): Runtime configuration.

    Returns:
        bool: True when Sentry was initialised.
    """
    if not settings.sentry_dsn:
        return False
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        integrations=[FlaskIntegration()],
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
    )
    logger.info("Sentry monitoring enabled")
    return True


def is_secure_request():
    return request.is_secure or request.headers.get("X-Forwarded-Proto", "").lower() == "https"


def serve(app: Flask, settings: Settings, service: str):
    """
    Run a service on its configured port, over HTTPS when a certificate and key are configured.

    Args:
        app (Flask): Application to run.
        settings (Settings): Runtime configuration.
        service (str): Key of `settings.ports`.
    """
    ssl_context = settings.ssl_context
    port = settings.ports[service]
    logger.info("%s service listening on %s://0.0.0.0:%s", service, "https" if ssl_context else "http", port)
    app.run(host="0.0.0.0", port=port, threaded=True, ssl_context=ssl_context)


def register_common(app: Flask, settings: Settings, limiter: FixedWindowLimiter | None = None):
    """
    Attach the plumbing shared by all services: Sentry, HTTPS redirect, CORS, request ids,
    per-IP rate limiting and JSON error handlers.

    Args:
        app (Flask): Application being configured.
        settings (Settings): Runtime configuration.
        limiter (FixedWindowLimiter | None): Global request limiter. Built from settings when omitted.
    """
    init_monitoring(settings)
    app.json.sort_keys = False
    CORS(
        app,
        origins="*",
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )
    limiter = limiter or FixedWindowLimiter(settings.rate_limit_per_min, RATE_WINDOW_SECONDS)
    app.extensions["rate_limiter"] = limiter

    @app.before_request
    def assign_request_id():
        g.request_id = "".join(secrets.choice(REQUEST_ID_ALPHABET) for _ in range(8))

    if settings.force_https:

        @app.before_request
        def redirect_to_https():
            if is_secure_request():
                return None
            return redirect(request.url.replace("http://", "https://", 1), code=301)

    @app.before_request
    def enforce_rate_limit():
        if not limiter.hit(client_ip()):
            return jsonify({"error": "Too many requests. Please slow down."}), 429
        return None

    @app.after_request
    def add_request_id(response):
        request_id = getattr(g, "request_id", None)
        if request_id:
            response.headers["x-request-id"] = request_id
        return response

    @app.errorhandler(ApiError)
    def handle_api_error(error: ApiError):
        return jsonify({"error": error.message}), error.status_code

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({"error": describe_validation_error(error)}), 400

    @app.errorhandler(PyMongoError)
    def handle_store_error(error: PyMongoError):
        logger.error("[%s] MongoDB error on %s: %s", getattr(g, "request_id", "-"), request.path, error)
        return jsonify({"error": str(error)}), 500

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"error": error.description}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        logger.exception("[Error][%s] %s", getattr(g, "request_id", "-"), error)
        sentry_sdk.capture_exception(error)
        return jsonify({"error": "Internal server error"}), 500
