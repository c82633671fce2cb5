import logging
from pathlib import Path

from flask import Flask, jsonify, request, send_from_directory

from moviehub.api_movies.catalog import Catalog
from moviehub.api_movies.movies_functions import CatalogQuery, GenreQuery, build_movie_payload, save_poster_upload
from moviehub.common.app_functions import query_args, register_common, serve
from moviehub.common.auth import admin_required
from moviehub.common.cache import build_cache
from moviehub.common.config import Settings, configure_logging
from moviehub.common.errors import NotFoundError
from moviehub.common.mongo import MongoStatus, connect, parse_object_id, serialize_document, try_ensure_indexes

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, database=None, cache=None, db_status=None):
    """
    Build the movies service.

    Args:
        settings (Settings | None): Runtime configuration. Read from the environment when omitted.
        database (Database | None): MongoDB database handle. Opened from settings when omitted.
        cache: Cache backend. Selected from `REDIS_URL` when omitted.
        db_status: Object exposing `is_connected()`. Pings the MongoDB client when omitted.

    Returns:
        Flask: Configured application.
    """
    settings = settings or Settings.from_env()
    if database is None:
        _, database = connect(settings)
    db_status = db_status or MongoStatus(database.client)
    cache = cache if cache is not None else build_cache(settings.redis_url, settings.redis_timeout_seconds)
    movies_collection = database["movies"]
    catalog = Catalog(movies_collection, cache, db_status)

    app = Flask(__name__)
    app.config["SETTINGS"] = settings
    app.extensions["catalog"] = catalog
    register_common(app, settings)
    upload_root = Path(settings.upload_dir).resolve()

    @app.route("/", methods=["GET"])
    def index():
        """
        Describe the service and report the MongoDB connection.

        Returns:
            Response: Flask response with JSON payload.
        """
        connected = db_status.is_connected()
        return jsonify(
            {
                "message": "MovieHub API is running!",
                "status": "MongoDB connected" if connected else "MongoDB not connected",
                "endpoints": {
                    "movies": "/movies",
                    "featured": "/movies/featured",
                    "trending": "/movies/trending",
                    "genres": "/movies/genres",
                    "search": "/movies/search/suggestions?q=search_term",
                },
            }
        )

    @app.route("/movies", methods=["GET"])
    def get_movies():
        """
        Handle GET requests for the paginated catalog.

        Returns:
            Response: Flask response with `items`, `total`, `page` and `limit`.
        """
        query = CatalogQuery.model_validate(query_args("genre", "year", "search", "sort", "limit", "page"))
        return jsonify(catalog.list_movies(query))

    @app.route("/movies/featured", methods=["GET"])
    def get_featured_movies():
        """
        Handle GET requests for featured movies.

        Returns:
            Response: Flask response with at most ten movies.
        """
        return jsonify(catalog.featured())

    @app.route("/movies/trending", methods=["GET"])
    def get_trending_movies():
        """
        Handle GET requests for trending movies.

        Returns:
            Response: Flask response with at most ten movies.
        """
        return jsonify(catalog.trending())

    @app.route("/movies/genres", methods=["GET"])
    def get_genres():
        """
        Handle GET requests for genre counts.

        Returns:
            Response: Flask response with `{"name", "count"}` entries.
        """
        query = GenreQuery.model_validate(query_args("min", "sort"))
        return jsonify(catalog.genre_stats(query))

    @app.route("/movies/search/suggestions", methods=["GET"])
    def get_search_suggestions():
        """
        Handle GET requests for title suggestions.

        Returns:
            Response: Flask response with up to ten light movie entries.
        """
        return jsonify(catalog.suggestions(request.args.get("q")))

    @app.route("/movies/<movie_id>", methods=["GET"])
    def get_movie_detail(movie_id: str):
        """
        Handle GET requests for a movie document. Each call counts one view.

        Args:
            movie_id (str): Identifier from the path segment.

        Returns:
            Response: Flask response with JSON payload and status code.
        """
        if not db_status.is_connected():
            raise NotFoundError("MongoDB not connected")
        document = catalog.get_movie(movie_id)
        if not document:
            raise NotFoundError("Movie not found")
        return jsonify(document)

    @app.route("/admin/movies", methods=["GET"])
    @admin_required
    def list_admin_movies():
        """
        Handle GET requests for the full catalog, newest first.

        Returns:
            Response: Flask response with every movie.
        """
        cursor = movies_collection.find().sort([("created_at", -1), ("_id", -1)])
        return jsonify([serialize_document(document) for document in cursor])

    @app.route("/admin/movies", methods=["POST"])
    @admin_required
    def add_movie():
        """
        Handle POST requests that insert a movie, with an optional poster upload.

        Returns:
            Response: Flask response with the created movie and status code.
        """
        payload = build_movie_payload(read_movie_body())
        poster_path = save_poster_upload(request.files.get("poster"), settings.upload_dir)
        if poster_path:
            payload["poster"] = poster_path

        result = movies_collection.insert_one(payload)
        document = movies_collection.find_one({"_id": result.inserted_id})
        logger.info("Added movie: %s", document.get("title"))
        return jsonify(serialize_document(document)), 201

    @app.route("/admin/movies/<movie_id>", methods=["PUT"])
    @admin_required
    def update_movie(movie_id: str):
        """
        Handle PUT requests that update some fields of a movie.

        Args:
            movie_id (str): Identifier from the path segment.

        Returns:
            Response: Flask response with the updated movie.
        """
        object_id = parse_object_id(movie_id)
        if object_id is None or not movies_collection.find_one({"_id": object_id}, {"_id": 1}):
            raise NotFoundError("Movie not found")

        updates = build_movie_payload(read_movie_body(), partial=True)
        poster_path = save_poster_upload(request.files.get("poster"), settings.upload_dir)
        if poster_path:
            updates["poster"] = poster_path

        if updates:
            movies_collection.update_one({"_id": object_id}, {"$set": updates})
        document = movies_collection.find_one({"_id": object_id})
        return jsonify(serialize_document(document))

    @app.route("/admin/movies/<movie_id>", methods=["DELETE"])
    @admin_required
    def delete_movie(movie_id: str):
        """
        Handle DELETE requests that remove a movie.

        Args:
            movie_id (str): Identifier from the path segment.

        Returns:
            Response: Flask response with delete status payload.
        """
        object_id = parse_object_id(movie_id)
        result = movies_collection.delete_one({"_id": object_id}) if object_id else None
        if not result or not result.deleted_count:
            raise NotFoundError("Movie not found")
        return jsonify({"message": "Movie deleted successfully"})

    @app.route("/uploads/<path:filename>", methods=["GET"])
    def get_upload(filename: str):
        return send_from_directory(upload_root, filename)

    return app


def read_movie_body():
    """
    Read the admin movie body from JSON or multipart form data.

    Returns:
        dict: Submitted fields.
    """
    if request.is_json:
        return request.get_json(silent=True) or {}
    return request.form.to_dict()


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    _, database = connect(settings)
    try_ensure_indexes(database)
    serve(create_app(settings, database), settings, "movies")


if __name__ == "__main__":
    main()
