import hashlib
import logging
import re
import secrets
from datetime import datetime, timedelta, timezone

from bson import ObjectId
from pymongo.collection import Collection

from moviehub.common.config import Settings
from moviehub.common.mailer import send_mail
from moviehub.common.mongo import parse_object_id, serialize_document, to_json_value

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
MAX_EMAIL_LENGTH = 254
RESET_TOKEN_TTL = timedelta(minutes=30)
HISTORY_LIMIT = 20


def utc_now():
    """
    Return the current UTC time as a naive datetime, the way MongoDB stores it.

    Returns:
        datetime: Current UTC time without tzinfo.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(value: object):
    """
    Trim and lower-case an email address.

    Args:
        value (object): Raw value from the request body.

    Returns:
        str: Normalized address, empty when missing.
    """
    return str(value or "").strip().lower()


def is_valid_email(email: str):
    return bool(email) and len(email) <= MAX_EMAIL_LENGTH and bool(EMAIL_PATTERN.match(email))


def generate_reset_token():
    """
    Create a password reset token.

    Returns:
        tuple[str, str]: Token sent to the user and the sha256 digest stored in MongoDB.
    """
    token = secrets.token_hex(32)
    return token, hash_reset_token(token)


def hash_reset_token(token: str):
    return hashlib.sha256(str(token).encode("utf-8")).hexdigest()


def public_user(user_doc: dict):
    """
    Build the account summary returned by the auth endpoints.

    Args:
        user_doc (dict): User document.

    Returns:
        dict: `id` and `email` only.
    """
    return {"id": str(user_doc["_id"]), "email": user_doc.get("email")}


def find_user(users_collection: Collection, user_id: object, projection: dict | None = None):
    """
    Locate a user by the identifier stored in a token.

    Args:
        users_collection (Collection): MongoDB collection handle.
        user_id (object): ObjectId or its string form.
        projection (dict | None): Optional projection.

    Returns:
        dict | None: Matching user document.
    """
    object_id = parse_object_id(user_id)
    if object_id is None:
        return None
    return users_collection.find_one({"_id": object_id}, projection)


def movies_by_ids(movies_collection: Collection, movie_ids: list):
    """
    Load movies for a list of ids, keeping the list order and skipping deleted movies.

    Args:
        movies_collection (Collection): Movies collection.
        movie_ids (list): ObjectIds in the order they should be returned.

    Returns:
        dict: Serialized movies keyed by their string id.
    """
    object_ids = [movie_id for movie_id in (parse_object_id(value) for value in movie_ids) if movie_id]
    if not object_ids:
        return {}
    documents = movies_collection.find({"_id": {"$in": object_ids}})
    return {str(document["_id"]): serialize_document(document) for document in documents}


def build_favorites(movies_collection: Collection, favorite_ids: list):
    lookup = movies_by_ids(movies_collection, favorite_ids)
    return [lookup[str(movie_id)] for movie_id in favorite_ids if str(movie_id) in lookup]


def build_history(movies_collection: Collection, history: list):
    """
    Resolve watch history entries into movies, newest first.

    Args:
        movies_collection (Collection): Movies collection.
        history (list): Entries shaped as `{"movie": ObjectId, "watched_at": datetime}`.

    Returns:
        list[dict]: Entries shaped as `{"watched_at": str, "movie": dict | None}`.
    """
    entries = [entry for entry in history if isinstance(entry, dict)]
    entries.sort(key=lambda entry: entry.get("watched_at") or datetime.min, reverse=True)
    lookup = movies_by_ids(movies_collection, [entry.get("movie") for entry in entries])
    return [
        {
            "watched_at": to_json_value(entry.get("watched_at")),
            "movie": lookup.get(str(entry.get("movie"))),
        }
        for entry in entries
    ]


def push_history_entry(history: list, movie_id: ObjectId, watched_at: datetime):
    """
    Move a movie to the front of the watch history.

    Args:
        history (list): Current history entries.
        movie_id (ObjectId): Movie just watched.
        watched_at (datetime): Time of the view.

    Returns:
        list[dict]: New history, one entry per movie, at most twenty entries.
    """
    remaining = [entry for entry in history if isinstance(entry, dict) and str(entry.get("movie")) != str(movie_id)]
    remaining.insert(0, {"movie": movie_id, "watched_at": watched_at})
    return remaining[:HISTORY_LIMIT]


def send_reset_email(settings: Settings, email: str, token: str):
    """
    Email a password reset link, or log it when SMTP is not configured.

    Args:
        settings (Settings): Runtime configuration.
        email (str): Recipient address.
        token (str): Raw reset token.
    """
    reset_link = f"{settings.app_url}/?reset={token}"
    body = f"Reset your password: {reset_link}\n\nThis link expires in 30 minutes."
    sent = send_mail(settings, email, "MovieHub Password Reset", body, sender=settings.reset_email_from)
    if not sent:
        logger.info("[Reset] Email not configured. Reset link: %s", reset_link)
