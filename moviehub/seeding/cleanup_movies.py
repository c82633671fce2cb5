import logging
import sys

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from moviehub.common.config import Settings, configure_logging
from moviehub.common.mongo import connect

logger = logging.getLogger(__name__)

INVALID_TITLE_QUERY = {"$or": [{"title": {"$exists": False}}, {"title": None}, {"title": ""}]}


def dedupe_providers(providers: list | None):
    """Keep the first provider entry of each name, dropping entries without a name."""
    seen = {}
    for provider in providers or []:
        if not isinstance(provider, dict) or not provider.get("name"):
            continue
        seen.setdefault(provider["name"], provider)
    return list(seen.values())


def cleanup(movies_collection: Collection):
    """
    Delete movies without a title and remove duplicate watch providers.

    Args:
        movies_collection (Collection): Movies collection.

    Returns:
        tuple[int, int]: Deleted movies and movies whose providers were rewritten.
    """
    invalid_count = movies_collection.count_documents(INVALID_TITLE_QUERY)
    logger.info("[CLEANUP] Invalid movies found: %d", invalid_count)
    deleted = 0
    if invalid_count:
        deleted = movies_collection.delete_many(INVALID_TITLE_QUERY).deleted_count
        logger.info("[CLEANUP] Deleted invalid movies: %d", deleted)

    updated = 0
    cursor = movies_collection.find({"watch_providers": {"$exists": True, "$ne": []}}, {"watch_providers": 1})
    for document in cursor:
        providers = document.get("watch_providers") or []
        deduped = dedupe_providers(providers)
        if len(deduped) != len(providers):
            movies_collection.update_one({"_id": document["_id"]}, {"$set": {"watch_providers": deduped}})
            updated += 1
    logger.info("[CLEANUP] Deduped watch_providers on %d movies", updated)
    return deleted, updated


def main():
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    client, database = connect(settings)
    try:
        cleanup(database["movies"])
    except PyMongoError as exc:
        logger.error("[CLEANUP] Error: %s", exc)
        return 1
    finally:
        client.close()
    logger.info("[CLEANUP] Done")
    return 0


if __name__ == "__main__":
    sys.exit(main())
