import logging
from datetime import datetime, timezone

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database
from pymongo.errors import PyMongoError

from moviehub.common.config import Settings

logger = logging.getLogger(__name__)


def connect(settings: Settings):
    """
    Open the MongoDB client and select the MovieHub database.

    Args:
        settings (Settings): Runtime configuration.

    Returns:
        tuple[MongoClient, Database]: Client handle and database handle.
    """
    client = MongoClient(settings.mongodb_uri, serverSelectionTimeoutMS=settings.mongo_timeout_ms)
    return client, client[settings.mongo_db_name]


class MongoStatus:
    """Report whether the MongoDB deployment currently answers."""

    def __init__(self, client: MongoClient):
        self.client = client

    def is_connected(self):
        try:
            self.client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB not connected: %s", exc)
            return False
        return True


def ensure_indexes(database: Database):
    """
    Create the indexes the catalog and account queries rely on.

    Args:
        database (Database): MovieHub database handle.
    """
    movies = database["movies"]
    movies.create_index([("title", ASCENDING)])
    movies.create_index([("genre", ASCENDING)])
    movies.create_index([("created_at", DESCENDING)])
    movies.create_index([("rating", DESCENDING)])
    movies.create_index([("year", DESCENDING)])
    movies.create_index([("tmdb_id", ASCENDING)], unique=True, sparse=True)
    database["users"].create_index([("email", ASCENDING)], unique=True)
    database["contact_messages"].create_index([("ip", ASCENDING), ("created_at", DESCENDING)])


def try_ensure_indexes(database: Database):
    """Create the indexes at service start, logging instead of failing when MongoDB is unreachable."""
    try:
        ensure_indexes(database)
    except PyMongoError as exc:
        logger.warning("Could not create indexes: %s", exc)
        return False
    return True


def parse_object_id(value: object):
    """
    Convert a client-supplied identifier into an ObjectId.

    Args:
        value (object): Identifier from a path segment or JSON body.

    Returns:
        ObjectId | None: Parsed identifier, or None when the value is not a valid ObjectId.
    """
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        return None


def to_json_value(value: object):
    """
    Recursively convert BSON values into JSON-friendly ones.

    Args:
        value (object): Value read from MongoDB.

    Returns:
        object: Same structure with ObjectIds as strings and datetimes in ISO 8601.
    """
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value.isoformat(timespec="milliseconds") + "Z"
    if isinstance(value, dict):
        return {key: to_json_value(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_json_value(item) for item in value]
    return value


def serialize_document(document: dict | None, hidden_fields: tuple = ()):
    """
    Convert a MongoDB document into a dict for JSON output.

    Args:
        document (dict | None): Document from the collection.
        hidden_fields (tuple): Keys that must never leave the service.

    Returns:
        dict: Copy with `_id` stored as a string and private fields removed.
    """
    if not document:
        return {}
    return {key: to_json_value(value) for key, value in document.items() if key not in hidden_fields}
