import json
import re
import time
from datetime import datetime, timezone
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pymongo import ASCENDING, DESCENDING
from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from moviehub.common.errors import ValidationFailed

SORT_FIELDS = {
    "newest": ("created_at", DESCENDING),
    "popular": ("views", DESCENDING),
    "rating": ("rating", DESCENDING),
    "year": ("year", DESCENDING),
}
DEFAULT_SORT = "alphabetical"
DEFAULT_LIST_LIMIT = 20
MAX_LIST_LIMIT = 100
MAX_PAGE = 1_000_000
MAX_YEAR = 9999
MAX_GENRE_MIN = 1_000_000
PROVIDER_TYPES = ("flatrate", "rent", "buy", "ads", "free")

TEXT_FIELDS = ("title", "description", "duration", "director", "poster", "backdrop", "trailer_url", "trailer_key", "watch_link")
LIST_FIELDS = ("genre", "cast")
BOOLEAN_FIELDS = ("featured", "trending")


class CatalogQuery(BaseModel):
    """Validated parameters of a catalog listing request."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    genre: str | None = None
    year: int | None = Field(default=None, ge=0, le=MAX_YEAR)
    search: str | None = Field(default=None, max_length=200)
    sort: str = DEFAULT_SORT
    limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1, le=MAX_LIST_LIMIT)
    page: int = Field(default=1, ge=1, le=MAX_PAGE)

    @field_validator("sort", mode="before")
    @classmethod
    def normalize_sort(cls, value):
        normalized = str(value or "").strip().lower()
        return normalized if normalized in SORT_FIELDS else DEFAULT_SORT

    @property
    def skip(self):
        return (self.page - 1) * self.limit


class GenreQuery(BaseModel):
    """Validated parameters of a genre statistics request."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    min_count: int = Field(default=1, ge=0, le=MAX_GENRE_MIN, alias="min")
    sort: str = "count"

    @field_validator("sort", mode="before")
    @classmethod
    def normalize_sort(cls, value):
        return "alpha" if str(value or "").strip().lower() == "alpha" else "count"


def build_movie_filter(genre: str | None = None, year: int | None = None, search: str | None = None):
    """
    Build the MongoDB filter for a catalog listing.

    Args:
        genre (str | None): Exact genre tag to match against the `genre` list.
        year (int | None): Exact release year.
        search (str | None): Text matched case-insensitively anywhere in the title.

    Returns:
        dict: MongoDB filter document.
    """
    query = {}
    if genre:
        query["genre"] = genre
    if year is not None:
        query["year"] = year
    if search:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}
    return query


def resolve_sort(sort_option: str | None):
    """
    Map a sort mode to a MongoDB sort specification.

    Args:
        sort_option (str | None): One of `newest`, `popular`, `rating`, `year`; anything else sorts by title.

    Returns:
        list[tuple[str, int]]: Sort keys, with `_id` appended so pages stay stable between calls.
    """
    primary = SORT_FIELDS.get(sort_option or "", ("title", ASCENDING))
    return [primary, ("_id", ASCENDING)]


def build_genre_pipeline(min_count: int, sort_option: str):
    """
    Create the aggregation pipeline that counts genre tags.

    Args:
        min_count (int): Minimum number of movies a genre needs to be listed.
        sort_option (str): `alpha` for name order, otherwise count descending then name.

    Returns:
        list[dict]: Pipeline definition for MongoDB.
    """
    sort_stage = {"_id": 1} if sort_option == "alpha" else {"count": -1, "_id": 1}
    return [
        {"$unwind": "$genre"},
        {"$match": {"genre": {"$type": "string"}}},
        {"$group": {"_id": "$genre", "count": {"$sum": 1}}},
        {"$match": {"count": {"$gte": min_count}}},
        {"$sort": sort_stage},
    ]


def safe_int(value, default=None):
    """
    Parse a value into an integer, tolerating numeric strings and floats.

    Args:
        value (Any): Raw value to convert.
        default (Any): Fallback value when parsing fails.

    Returns:
        int | Any: Parsed integer or the default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def safe_float(value, default=None):
    """
    Convert arbitrary values into floats while guarding against failures.

    Args:
        value (Any): Raw value to convert.
        default (Any): Fallback value when parsing is unsuccessful.

    Returns:
        float | Any: Parsed float or the provided default.
    """
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(str(value).replace(",", ".").strip())
    except (TypeError, ValueError):
        return default


def parse_boolean(value, default: bool = False):
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        normalized = value.strip().lower()
        if not normalized:
            return default
        return normalized in {"1", "true", "yes", "on"}
    return default


def parse_json_list(value, field_name: str):
    """
    Accept a list field either as a real list or as JSON text from a form field.

    Args:
        value (Any): Submitted value.
        field_name (str): Field name used in error messages.

    Returns:
        list: Parsed list.
    """
    if isinstance(value, list):
        return value
    if isinstance(value, str):
        try:
            parsed = json.loads(value)
        except ValueError:
            raise ValidationFailed(f"{field_name} must be a JSON array")
        if isinstance(parsed, list):
            return parsed
    raise ValidationFailed(f"{field_name} must be a JSON array")


def normalize_provider_entries(entries: list):
    """
    Keep well-formed watch provider entries and default their availability type.

    Args:
        entries (list): Provider dictionaries from the request.

    Returns:
        list[dict]: Entries with `provider_id`, `name`, `logo_url` and `type`.
    """
    providers = []
    for entry in entries:
        if not isinstance(entry, dict) or not entry.get("name"):
            continue
        provider_type = str(entry.get("type") or "flatrate").lower()
        providers.append(
            {
                "provider_id": safe_int(entry.get("provider_id")),
                "name": str(entry["name"]),
                "logo_url": str(entry.get("logo_url") or ""),
                "type": provider_type if provider_type in PROVIDER_TYPES else "flatrate",
            }
        )
    return providers


def build_movie_payload(data: dict | None, partial: bool = False):
    """
    Prepare an admin movie payload for persistence.

    Args:
        data (dict | None): Submitted form or JSON body.
        partial (bool): True for updates, where only supplied fields are kept.

    Returns:
        dict: Cleaned document fields.
    """
    data = data or {}
    payload = {}

    for field in TEXT_FIELDS:
        if field in data and data[field] is not None:
            payload[field] = str(data[field]).strip()

    for field in LIST_FIELDS:
        if field in data and data[field] not in (None, ""):
            payload[field] = [str(item).strip() for item in parse_json_list(data[field], field) if str(item).strip()]

    if "watch_providers" in data and data["watch_providers"] not in (None, ""):
        payload["watch_providers"] = normalize_provider_entries(parse_json_list(data["watch_providers"], "watch_providers"))

    for field in BOOLEAN_FIELDS:
        if field in data:
            payload[field] = parse_boolean(data[field])

    if "year" in data and data["year"] not in (None, ""):
        year = safe_int(data["year"])
        if year is None:
            raise ValidationFailed("year must be a number")
        payload["year"] = year

    if "rating" in data and data["rating"] not in (None, ""):
        rating = safe_float(data["rating"])
        if rating is None or not 0 <= rating <= 10:
            raise ValidationFailed("rating must be a number between 0 and 10")
        payload["rating"] = rating

    if "views" in data and data["views"] not in (None, ""):
        views = safe_int(data["views"])
        if views is None or views < 0:
            raise ValidationFailed("views must be a non-negative number")
        payload["views"] = views

    if "tmdb_id" in data and data["tmdb_id"] not in (None, ""):
        payload["tmdb_id"] = safe_int(data["tmdb_id"])

    if "title" in payload and not payload["title"]:
        raise ValidationFailed("please provide at least a title")

    if not partial:
        if not payload.get("title"):
            raise ValidationFailed("please provide at least a title")
        payload.setdefault("views", 0)
        payload.setdefault("featured", False)
        payload.setdefault("trending", False)
        payload.setdefault("genre", [])
        payload.setdefault("cast", [])
        payload.setdefault("watch_providers", [])
        payload["created_at"] = datetime.now(timezone.utc).replace(tzinfo=None)

    return payload


def save_poster_upload(upload: FileStorage | None, upload_dir: str):
    """
    Store an uploaded poster and return its public path.

    Args:
        upload (FileStorage | None): File from the `poster` form field.
        upload_dir (str): Root upload directory.

    Returns:
        str | None: Path such as ``/uploads/movies/1700000000000.jpg`` or None when nothing was uploaded.
    """
    if upload is None or not upload.filename:
        return None
    extension = Path(secure_filename(upload.filename)).suffix.lower()
    target_dir = Path(upload_dir) / "movies"
    target_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{int(time.time() * 1000)}{extension}"
    upload.save(target_dir / filename)
    return f"/uploads/movies/{filename}"
