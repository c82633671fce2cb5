import logging

from flask import Flask, g, jsonify, request
from pymongo.errors import DuplicateKeyError

from moviehub.api_users.users_functions import (
    RESET_TOKEN_TTL,
    build_favorites,
    build_history,
    find_user,
    generate_reset_token,
    hash_reset_token,
    is_valid_email,
    normalize_email,
    public_user,
    push_history_entry,
    send_reset_email,
    utc_now,
)
from moviehub.common.app_functions import register_common, serve
from moviehub.common.auth import USER_TOKEN_TTL, check_password, hash_password, issue_token, user_required
from moviehub.common.config import Settings, configure_logging
from moviehub.common.errors import ConfigurationError, Conflict, NotFoundError, Unauthorized, ValidationFailed
from moviehub.common.mailer import configure_mail
from moviehub.common.mongo import connect, parse_object_id, try_ensure_indexes

logger = logging.getLogger(__name__)

RESET_SENT_MESSAGE = "If that email exists, a reset link was sent."


def create_app(settings: Settings | None = None, database=None):
    """
    Build the users service: accounts, favorites and watch history.

    Args:
        settings (Settings | None): Runtime configuration. Read from the environment when omitted.
        database (Database | None): MongoDB database handle. Opened from settings when omitted.

    Returns:
        Flask: Configured application.
    """
    settings = settings or Settings.from_env()
    if database is None:
        _, database = connect(settings)
    users_collection = database["users"]
    movies_collection = database["movies"]

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    register_common(app, settings)
    configure_mail(app, settings)

    def sign_user_token(user_doc: dict):
        if not settings.user_jwt_secret:
            raise ConfigurationError("USER_JWT_SECRET not configured")
        return issue_token({"id": str(user_doc["_id"]), "email": user_doc["email"]}, settings.user_jwt_secret, USER_TOKEN_TTL)

    def read_credentials():
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        password = payload.get("password") or ""
        if not email or not password:
            raise ValidationFailed("Email and password required")
        return email, str(password)

    def current_user(projection: dict | None = None):
        user = find_user(users_collection, g.user.get("id"), projection)
        if not user:
            raise NotFoundError("User not found")
        return user

    def require_movie(movie_id: object):
        if not movie_id:
            raise ValidationFailed("movie_id required")
        object_id = parse_object_id(movie_id)
        if object_id is None or not movies_collection.find_one({"_id": object_id}, {"_id": 1}):
            raise NotFoundError("Movie not found")
        return object_id

    @app.route("/auth/register", methods=["POST"])
    def register():
        """
        Handle POST requests that create an account.

        Returns:
            Response: Flask response with a token and the account summary.
        """
        if not settings.user_jwt_secret:
            raise ConfigurationError("USER_JWT_SECRET not configured")
        email, password = read_credentials()
        if not is_valid_email(email):
            raise ValidationFailed("Invalid email address")
        if users_collection.find_one({"email": email}, {"_id": 1}):
            raise Conflict("Email already in use")

        new_user = {
            "email": email,
            "password_hash": hash_password(password, settings.bcrypt_rounds),
            "favorites": [],
            "watch_history": [],
            "created_at": utc_now(),
        }
        try:
            result = users_collection.insert_one(new_user)
        except DuplicateKeyError:
            raise Conflict("Email already in use")
        new_user["_id"] = result.inserted_id
        logger.info("Registered user %s", email)
        return jsonify({"token": sign_user_token(new_user), "user": public_user(new_user)}), 201

    @app.route("/auth/login", methods=["POST"])
    def login():
        """
        Handle POST requests for user authentication.

        Returns:
            Response: Flask response with a token and the account summary.
        """
        if not settings.user_jwt_secret:
            raise ConfigurationError("USER_JWT_SECRET not configured")
        email, password = read_credentials()
        user = users_collection.find_one({"email": email})
        if not user or not check_password(password, user.get("password_hash")):
            raise Unauthorized("Invalid credentials")
        return jsonify({"token": sign_user_token(user), "user": public_user(user)})

    @app.route("/auth/forgot", methods=["POST"])
    def forgot_password():
        """
        Handle POST requests that start a password reset.

        The answer is the same whether or not the email belongs to an account.

        Returns:
            Response: Flask response with a neutral message.
        """
        payload = request.get_json(silent=True) or {}
        email = normalize_email(payload.get("email"))
        if not email:
            raise ValidationFailed("Email required")

        user = users_collection.find_one({"email": email}, {"_id": 1, "email": 1})
        if not user:
            return jsonify({"message": RESET_SENT_MESSAGE})

        token, token_hash = generate_reset_token()
        users_collection.update_one(
            {"_id": user["_id"]},
            {"$set": {"reset_token_hash": token_hash, "reset_token_expires": utc_now() + RESET_TOKEN_TTL}},
        )
        send_reset_email(settings, user["email"], token)
        return jsonify({"message": RESET_SENT_MESSAGE})

    @app.route("/auth/reset", methods=["POST"])
    def reset_password():
        """
        Handle POST requests that set a new password from a reset token.

        Returns:
            Response: Flask response with status message.
        """
        payload = request.get_json(silent=True) or {}
        token = payload.get("token")
        password = payload.get("password")
        if not token or not password:
            raise ValidationFailed("Token and new password required")

        user = users_collection.find_one(
            {"reset_token_hash": hash_reset_token(token), "reset_token_expires": {"$gt": utc_now()}},
            {"_id": 1},
        )
        if not user:
            raise ValidationFailed("Invalid or expired token")

        users_collection.update_one(
            {"_id": user["_id"]},
            {
                "$set": {"password_hash": hash_password(str(password), settings.bcrypt_rounds)},
                "$unset": {"reset_token_hash": "", "reset_token_expires": ""},
            },
        )
        return jsonify({"message": "Password reset successful"})

    @app.route("/user/me", methods=["GET"])
    @user_required
    def get_me():
        """
        Handle GET requests for the signed-in account.

        Returns:
            Response: Flask response with counts of favorites and history entries.
        """
        user = current_user({"email": 1, "favorites": 1, "watch_history": 1})
        return jsonify(
            {
                "id": str(user["_id"]),
                "email": user.get("email"),
                "favorites_count": len(user.get("favorites") or []),
                "history_count": len(user.get("watch_history") or []),
            }
        )

    @app.route("/user/favorites", methods=["GET"])
    @user_required
    def get_favorites():
        """
        Handle GET requests for the favorite movies.

        Returns:
            Response: Flask response with `items`.
        """
        user = current_user({"favorites": 1})
        return jsonify({"items": build_favorites(movies_collection, user.get("favorites") or [])})

    @app.route("/user/favorites", methods=["POST"])
    @user_required
    def add_favorite():
        """
        Handle POST requests that add a movie to the favorites.

        Returns:
            Response: Flask response with status message.
        """
        payload = request.get_json(silent=True) or {}
        movie_id = require_movie(payload.get("movie_id"))
        user = current_user({"_id": 1})
        users_collection.update_one({"_id": user["_id"]}, {"$addToSet": {"favorites": movie_id}})
        return jsonify({"message": "Added to favorites"})

    @app.route("/user/favorites/<movie_id>", methods=["DELETE"])
    @user_required
    def remove_favorite(movie_id: str):
        """
        Handle DELETE requests that remove a movie from the favorites.

        Args:
            movie_id (str): Identifier from the path segment.

        Returns:
            Response: Flask response with status message.
        """
        user = current_user({"_id": 1})
        object_id = parse_object_id(movie_id)
        if object_id is not None:
            users_collection.update_one({"_id": user["_id"]}, {"$pull": {"favorites": object_id}})
        return jsonify({"message": "Removed from favorites"})

    @app.route("/user/history", methods=["GET"])
    @user_required
    def get_history():
        """
        Handle GET requests for the watch history, newest first.

        Returns:
            Response: Flask response with `items`.
        """
        user = current_user({"watch_history": 1})
        return jsonify({"items": build_history(movies_collection, user.get("watch_history") or [])})

    @app.route("/user/history", methods=["POST"])
    @user_required
    def add_history():
        """
        Handle POST requests that record a watched movie.

        Returns:
            Response: Flask response with status message and history size.
        """
        payload = request.get_json(silent=True) or {}
        movie_id = require_movie(payload.get("movie_id"))
        user = current_user({"watch_history": 1})
        history = push_history_entry(user.get("watch_history") or [], movie_id, utc_now())
        users_collection.update_one({"_id": user["_id"]}, {"$set": {"watch_history": history}})
        return jsonify({"message": "History updated", "count": len(history)})

    return app


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    _, database = connect(settings)
    try_ensure_indexes(database)
    serve(create_app(settings, database), settings, "users")


if __name__ == "__main__":
    main()
