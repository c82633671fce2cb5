import argparse
import logging
import math
import sys
import time
from functools import partial

import requests
from pymongo.database import Database
from pymongo.errors import PyMongoError

from moviehub.common.config import Settings, configure_logging
from moviehub.common.mongo import connect, ensure_indexes
from moviehub.seeding.tmdb_functions import transform_movie
from moviehub.seeding.tmdb_service import TMDBService

logger = logging.getLogger(__name__)

PAGE_SIZE = 20
PAGE_PAUSE_SECONDS = 0.5
SEED_GENRES = [
    (28, "Action"),
    (35, "Comedy"),
    (18, "Drama"),
    (27, "Horror"),
    (10749, "Romance"),
    (878, "Science Fiction"),
]


def parse_args(argv: list[str] | None = None):
    """
    Parse the command line of the seeding script.

    Args:
        argv (list[str] | None): Arguments without the program name. Read from `sys.argv` when omitted.

    Returns:
        argparse.Namespace: `count` and `reset`.
    """
    parser = argparse.ArgumentParser(prog="moviehub-seed", description="Fill the movies collection from TMDB.")
    parser.add_argument("count", nargs="?", type=int, default=100, help="Target number of movies in the database.")
    parser.add_argument("--reset", action="store_true", help="Delete every movie before seeding.")
    args = parser.parse_args(argv)
    if args.count <= 0:
        parser.error("Please provide a valid number of movies. Example: moviehub-seed 300")
    return args


def movie_sources(service: TMDBService, pages_needed: int):
    """
    Yield the TMDB listings to draw from, in order of preference.

    Args:
        service (TMDBService): TMDB client.
        pages_needed (int): Pages of popular and top rated movies to walk through.

    Yields:
        tuple[str, Callable]: Label for the log and a callable returning TMDB entries.
    """
    for page in range(1, pages_needed + 1):
        yield f"popular movies page {page}", partial(service.popular_movies, page)
    for page in range(1, pages_needed + 1):
        yield f"top-rated movies page {page}", partial(service.top_rated_movies, page)
    yield "trending movies", partial(service.trending_movies, "week")
    for genre_id, genre_name in SEED_GENRES:
        yield f"{genre_name} movies", partial(service.movies_by_genre, genre_id, 1)


def collect_movies(service: TMDBService, genres: list, known_ids: set, needed: int, sleep=time.sleep):
    """
    Gather up to `needed` new movie documents.

    Args:
        service (TMDBService): TMDB client.
        genres (list): TMDB genre list.
        known_ids (set): TMDB ids already stored. Updated with every collected movie.
        needed (int): Number of movies to collect.
        sleep (Callable): Pause between listing pages.

    Returns:
        list[dict]: Movie documents ready to insert.
    """
    movies = []
    pages_needed = math.ceil(needed / PAGE_SIZE)
    for label, fetch in movie_sources(service, pages_needed):
        if len(movies) >= needed:
            break
        logger.info("[SEED] Fetching %s...", label)
        try:
            results = fetch()
        except requests.RequestException as exc:
            logger.warning("[SEED] Error fetching %s: %s", label, exc)
            continue

        for tmdb_movie in results:
            if len(movies) >= needed:
                break
            tmdb_id = tmdb_movie.get("id")
            if tmdb_id is None or tmdb_id in known_ids:
                continue
            movies.append(transform_movie(service, tmdb_movie, genres))
            known_ids.add(tmdb_id)
        sleep(PAGE_PAUSE_SECONDS)
    return movies


def log_statistics(database: Database):
    movies_collection = database["movies"]
    total = movies_collection.count_documents({})
    logger.info("[SEED] Total movies in database: %d", total)

    averages = list(movies_collection.aggregate([{"$group": {"_id": None, "avg_rating": {"$avg": "$rating"}}}]))
    if averages and averages[0].get("avg_rating") is not None:
        logger.info("[SEED] Average rating: %.2f", averages[0]["avg_rating"])

    breakdown = movies_collection.aggregate(
        [{"$unwind": "$genre"}, {"$group": {"_id": "$genre", "count": {"$sum": 1}}}, {"$sort": {"count": -1}}]
    )
    logger.info("[SEED] Movies by genre:")
    for entry in breakdown:
        logger.info("[SEED]   %s: %d movies", entry["_id"], entry["count"])
    return total


def seed(database: Database, service: TMDBService, count: int, reset: bool = False, sleep=time.sleep):
    """
    Top the movies collection up to `count` movies from TMDB.

    Args:
        database (Database): MovieHub database handle.
        service (TMDBService): TMDB client.
        count (int): Target number of movies.
        reset (bool): Delete every movie first.
        sleep (Callable): Pause between listing pages.

    Returns:
        int: Number of movies inserted.
    """
    movies_collection = database["movies"]
    if reset:
        logger.info("[SEED] Reset enabled. Deleting existing movies...")
        movies_collection.delete_many({})

    known_ids = {doc["tmdb_id"] for doc in movies_collection.find({"tmdb_id": {"$ne": None}}, {"tmdb_id": 1})}
    existing = movies_collection.count_documents({})
    logger.info("[SEED] Database already contains %d movies", existing)

    needed = max(0, count - existing)
    if needed == 0:
        logger.info("[SEED] Already have %d movies, which meets the target of %d", existing, count)
        return 0

    logger.info("[SEED] Need to add %d more movies", needed)
    genres = service.genres()
    logger.info("[SEED] Found %d genres", len(genres))

    movies = collect_movies(service, genres, known_ids, needed, sleep=sleep)
    valid_movies = [movie for movie in movies if movie and str(movie.get("title") or "").strip()]
    dropped = len(movies) - len(valid_movies)
    if dropped:
        logger.info("[SEED] Dropped %d invalid movies missing titles", dropped)

    inserted = 0
    if valid_movies:
        result = movies_collection.insert_many(valid_movies)
        inserted = len(result.inserted_ids)
        logger.info("[SEED] Successfully inserted %d movies", inserted)
    else:
        logger.info("[SEED] No new movies to insert.")

    log_statistics(database)
    return inserted


def main(argv: list[str] | None = None):
    args = parse_args(argv)
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    if not settings.tmdb_api_key:
        logger.error("[SEED] TMDB_API_KEY is not set")
        return 1

    client, database = connect(settings)
    service = TMDBService(settings.tmdb_api_key, settings.tmdb_base_url)
    logger.info("[SEED] Target: %d movies in the database", args.count)
    try:
        ensure_indexes(database)
        seed(database, service, args.count, reset=args.reset)
    except (PyMongoError, requests.RequestException) as exc:
        logger.error("[SEED] Error during seeding: %s", exc)
        return 1
    finally:
        client.close()
    logger.info("[SEED] Database seeding completed successfully!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
