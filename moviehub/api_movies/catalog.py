import logging
import re
from concurrent.futures import ThreadPoolExecutor

from pymongo import ReturnDocument
from pymongo.collection import Collection

from moviehub.api_movies.movies_functions import (
    CatalogQuery,
    GenreQuery,
    build_genre_pipeline,
    build_movie_filter,
    resolve_sort,
)
from moviehub.common.cache import build_cache_key
from moviehub.common.mongo import parse_object_id, serialize_document

logger = logging.getLogger(__name__)

LIST_CACHE_TTL_MS = 60 * 1000
CACHE_TTL_MS = 5 * 60 * 1000
HIGHLIGHT_LIMIT = 10
SUGGESTION_LIMIT = 10
SUGGESTION_FIELDS = {"title": 1, "year": 1, "poster": 1}

QUERY_POOL = ThreadPoolExecutor(max_workers=4, thread_name_prefix="catalog")


class Catalog:
    """
    Read side of the movie collection.

    Every listing consults the cache before touching MongoDB and stores the
    serialized payload on a miss. Cached payloads are returned as they are,
    without checking them against the store again.

    Args:
        collection (Collection): Movies collection.
        cache: Cache backend exposing `get(key)` and `set(key, value, ttl_ms)`.
        db_status: Object exposing `is_connected()`.
        executor (ThreadPoolExecutor | None): Pool used to run the page query and the count together.
            Defaults to the process-wide `QUERY_POOL`.
    """

    def __init__(self, collection: Collection, cache, db_status, executor: ThreadPoolExecutor | None = None):
        self.collection = collection
        self.cache = cache
        self.db_status = db_status
        self.executor = executor or QUERY_POOL

    def list_movies(self, query: CatalogQuery):
        """
        Return one page of the filtered and sorted catalog.

        Args:
            query (CatalogQuery): Validated listing parameters.

        Returns:
            dict: Payload with `items`, `total`, `page` and `limit`.
        """
        cache_key = build_cache_key("list", **query.model_dump())
        cached = self.cache.get(cache_key)
        if cached is not None:
            logger.debug("list cache hit! %s", cache_key)
            return cached

        if not self.db_status.is_connected():
            return {"items": [], "total": 0, "page": query.page, "limit": query.limit}

        filter_query = build_movie_filter(query.genre, query.year, query.search)
        sort = resolve_sort(query.sort)
        page_future = self.executor.submit(self.find_page, filter_query, sort, query.skip, query.limit)
        count_future = self.executor.submit(self.collection.count_documents, filter_query)
        items = page_future.result()
        total = count_future.result()

        logger.info("Found %d movies", len(items))
        payload = {"items": items, "total": total, "page": query.page, "limit": query.limit}
        self.cache.set(cache_key, payload, LIST_CACHE_TTL_MS)
        return payload

    def find_page(self, filter_query: dict, sort: list, skip: int, limit: int):
        cursor = self.collection.find(filter_query).sort(sort).skip(skip).limit(limit)
        return [serialize_document(document) for document in cursor]

    def featured(self):
        return self.highlighted("featured")

    def trending(self):
        return self.highlighted("trending")

    def highlighted(self, flag: str):
        """
        Return up to ten movies carrying a boolean flag.

        Args:
            flag (str): `featured` or `trending`; also used as the cache key.

        Returns:
            list[dict]: Serialized movies.
        """
        cached = self.cache.get(flag)
        if cached is not None:
            logger.debug("%s cache hit!", flag)
            return cached

        if not self.db_status.is_connected():
            return []

        cursor = self.collection.find({flag: True}).limit(HIGHLIGHT_LIMIT)
        movies = [serialize_document(document) for document in cursor]
        self.cache.set(flag, movies, CACHE_TTL_MS)
        logger.info("Found %d %s movies", len(movies), flag)
        return movies

    def genre_stats(self, query: GenreQuery):
        """
        Count movies per genre tag.

        Args:
            query (GenreQuery): Minimum count and sort mode.

        Returns:
            list[dict]: Entries shaped as `{"name": ..., "count": ...}`.
        """
        cache_key = build_cache_key("genres", min=query.min_count, sort=query.sort)
        cached = self.cache.get(cache_key)
        if cached is not None:
            return cached

        if not self.db_status.is_connected():
            return []

        stats = self.collection.aggregate(build_genre_pipeline(query.min_count, query.sort))
        result = [{"name": entry["_id"], "count": entry["count"]} for entry in stats]
        self.cache.set(cache_key, result, CACHE_TTL_MS)
        return result

    def suggestions(self, text: str | None):
        """
        Suggest titles containing the typed text.

        Args:
            text (str | None): Partial title typed by the user.

        Returns:
            list[dict]: Up to ten entries with `_id`, `title`, `year` and `poster`.
        """
        text = (text or "").strip()
        if not text or not self.db_status.is_connected():
            return []
        regex = {"$regex": re.escape(text), "$options": "i"}
        cursor = self.collection.find({"title": regex}, SUGGESTION_FIELDS).limit(SUGGESTION_LIMIT)
        suggestions = [serialize_document(document) for document in cursor]
        logger.info("Found %d search suggestions for: %s", len(suggestions), text)
        return suggestions

    def get_movie(self, movie_id: str):
        """
        Fetch one movie and count the view.

        Args:
            movie_id (str): ObjectId of the movie.

        Returns:
            dict | None: Serialized movie after the increment, or None when it does not exist.
        """
        object_id = parse_object_id(movie_id)
        if object_id is None:
            return None
        document = self.collection.find_one_and_update(
            {"_id": object_id},
            {"$inc": {"views": 1}},
            return_document=ReturnDocument.AFTER,
        )
        if not document:
            return None
        logger.info("Fetched movie: %s", document.get("title"))
        return serialize_document(document)
