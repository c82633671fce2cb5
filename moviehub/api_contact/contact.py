import logging

from flask import Flask, Response, jsonify, request
from pymongo import DESCENDING

from moviehub.api_contact.contact_functions import (
    CONTACT_LIMIT,
    CONTACT_WINDOW,
    ContactMessageIn,
    MessageQuery,
    build_message_filter,
    export_csv,
    send_contact_email,
    stats_boundaries,
)
from moviehub.api_users.users_functions import utc_now
from moviehub.common.app_functions import client_ip, query_args, register_common, serve
from moviehub.common.auth import ADMIN_TOKEN_TTL, admin_required, check_password, issue_token
from moviehub.common.config import Settings, configure_logging
from moviehub.common.errors import (
    ConfigurationError,
    NotFoundError,
    RateLimited,
    ServiceUnavailable,
    Unauthorized,
)
from moviehub.common.mailer import configure_mail
from moviehub.common.mongo import MongoStatus, connect, parse_object_id, serialize_document, try_ensure_indexes
from moviehub.common.rate_limit import FixedWindowLimiter

logger = logging.getLogger(__name__)

MAX_IP_LENGTH = 100
NEWEST_FIRST = [("created_at", DESCENDING), ("_id", DESCENDING)]


def create_app(settings: Settings | None = None, database=None, db_status=None, login_limiter=None):
    """
    Build the contact service: the public contact form and its admin moderation views.

    Args:
        settings (Settings | None): Runtime configuration. Read from the environment when omitted.
        database (Database | None): MongoDB database handle. Opened from settings when omitted.
        db_status: Object exposing `is_connected()`. Pings the MongoDB client when omitted.
        login_limiter (FixedWindowLimiter | None): Admin login throttle. Built from settings when omitted.

    Returns:
        Flask: Configured application.
    """
    settings = settings or Settings.from_env()
    if database is None:
        _, database = connect(settings)
    db_status = db_status or MongoStatus(database.client)
    login_limiter = login_limiter or FixedWindowLimiter(
        settings.admin_login_max_attempts, settings.admin_login_window_seconds
    )
    messages_collection = database["contact_messages"]

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["login_limiter"] = login_limiter
    register_common(app, settings)
    configure_mail(app, settings)

    def require_database():
        if not db_status.is_connected():
            raise ServiceUnavailable("Database not connected")

    @app.route("/contact", methods=["POST"])
    def submit_message():
        """
        Handle POST requests from the contact form.

        Returns:
            Response: Flask response with the stored message id and status code.
        """
        require_database()
        message = ContactMessageIn.model_validate(request.get_json(silent=True) or {})

        ip = client_ip()[:MAX_IP_LENGTH]
        since = utc_now() - CONTACT_WINDOW
        recent_count = messages_collection.count_documents({"ip": ip, "created_at": {"$gte": since}})
        if recent_count >= CONTACT_LIMIT:
            raise RateLimited("Too many messages. Please wait and try again.")

        document = message.model_dump()
        document["ip"] = ip
        document["created_at"] = utc_now()
        result = messages_collection.insert_one(document)
        logger.info("Stored contact message %s from %s", result.inserted_id, ip)

        send_contact_email(settings, message)
        return jsonify({"success": True, "id": str(result.inserted_id)}), 201

    @app.route("/admin/contact/login", methods=["POST"])
    def admin_login():
        """
        Handle POST requests for administrator authentication.

        Returns:
            Response: Flask response with a 12 hour admin token.
        """
        has_password = settings.admin_pass_hash or settings.admin_pass
        if not settings.admin_user or not has_password or not settings.admin_jwt_secret:
            raise ConfigurationError("Admin credentials not configured")

        ip = client_ip()
        if not login_limiter.hit(ip):
            raise RateLimited("Too many login attempts. Please try again later.")

        payload = request.get_json(silent=True) or {}
        username = payload.get("username")
        password = str(payload.get("password") or "")
        if username != settings.admin_user:
            raise Unauthorized("Invalid credentials")
        if settings.admin_pass_hash:
            valid = check_password(password, settings.admin_pass_hash)
        else:
            valid = password == settings.admin_pass
        if not valid:
            logger.warning("Failed admin login from %s", ip)
            raise Unauthorized("Invalid credentials")

        login_limiter.reset(ip)
        token = issue_token({"role": "admin", "username": username}, settings.admin_jwt_secret, ADMIN_TOKEN_TTL)
        return jsonify({"token": token})

    @app.route("/admin/contact/messages", methods=["GET"])
    @admin_required
    def list_messages():
        """
        Handle GET requests for stored contact messages, newest first.

        Returns:
            Response: Flask response with `items`, `total`, `page` and `limit`.
        """
        require_database()
        query = MessageQuery.model_validate(query_args("limit", "page", "q", "from", "to"))
        filter_query = build_message_filter(query)
        cursor = messages_collection.find(filter_query).sort(NEWEST_FIRST).skip(query.skip).limit(query.limit)
        items = [serialize_document(document) for document in cursor]
        total = messages_collection.count_documents(filter_query)
        return jsonify({"items": items, "total": total, "page": query.page, "limit": query.limit})

    @app.route("/admin/contact/messages/export", methods=["GET"])
    @admin_required
    def export_messages():
        """
        Handle GET requests that download the filtered messages as CSV.

        Returns:
            Response: CSV attachment.
        """
        require_database()
        query = MessageQuery.model_validate(query_args("q", "from", "to"))
        cursor = messages_collection.find(build_message_filter(query)).sort(NEWEST_FIRST)
        return Response(
            export_csv(cursor),
            mimetype="text/csv",
            headers={"Content-Disposition": 'attachment; filename="contact-messages.csv"'},
        )

    @app.route("/admin/contact/messages/stats", methods=["GET"])
    @admin_required
    def message_stats():
        """
        Handle GET requests for message counts.

        Returns:
            Response: Flask response with `total`, `today` and `week`.
        """
        require_database()
        start_today, start_week = stats_boundaries(utc_now())
        return jsonify(
            {
                "total": messages_collection.count_documents({}),
                "today": messages_collection.count_documents({"created_at": {"$gte": start_today}}),
                "week": messages_collection.count_documents({"created_at": {"$gte": start_week}}),
            }
        )

    @app.route("/admin/contact/messages/<message_id>", methods=["DELETE"])
    @admin_required
    def delete_message(message_id: str):
        """
        Handle DELETE requests that remove a contact message.

        Args:
            message_id (str): Identifier from the path segment.

        Returns:
            Response: Flask response with delete status payload.
        """
        require_database()
        object_id = parse_object_id(message_id)
        result = messages_collection.delete_one({"_id": object_id}) if object_id else None
        if not result or not result.deleted_count:
            raise NotFoundError("Message not found")
        return jsonify({"success": True})

    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    _, database = connect(settings)
    try_ensure_indexes(database)
    serve(create_app(settings, database), settings, "contact")


if __name__ == "__main__":
    main()
