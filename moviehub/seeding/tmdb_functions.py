import logging
from datetime import datetime, timezone

import requests

from moviehub.seeding.tmdb_service import TMDBService

logger = logging.getLogger(__name__)

IMAGE_BASE_URL = "https://image.tmdb.org/t/p"
PLACEHOLDER_POSTER = "https://via.placeholder.com/500x750?text=No+Image"
YOUTUBE_WATCH_URL = "https://www.youtube.com/watch?v="
PROVIDER_GROUPS = ("flatrate", "rent", "buy", "ads", "free")
MAX_DIRECTORS = 2
MAX_CAST = 6


def pick_best_trailer(videos: list | None):
    """
    Choose the video to show as the trailer.

    YouTube trailers win, official ones first. Without a trailer the first
    YouTube video is used, then the first video of any site.

    Args:
        videos (list | None): TMDB video entries.

    Returns:
        dict | None: Selected video.
    """
    if not videos:
        return None
    youtube_videos = [video for video in videos if video.get("site") == "YouTube"]
    trailers = [video for video in youtube_videos if video.get("type") == "Trailer"]
    if trailers:
        official = next((video for video in trailers if video.get("official")), None)
        return official or trailers[0]
    return youtube_videos[0] if youtube_videos else videos[0]


def normalize_watch_providers(provider_data: dict | None):
    """
    Flatten the TMDB provider groups of one region.

    Args:
        provider_data (dict | None): Region entry from the watch providers endpoint.

    Returns:
        tuple[list[dict], str]: Providers in flatrate, rent, buy, ads, free order and the TMDB watch link.
    """
    if not provider_data:
        return [], ""
    providers = []
    for provider_type in PROVIDER_GROUPS:
        for provider in provider_data.get(provider_type) or []:
            logo_path = provider.get("logo_path")
            providers.append(
                {
                    "provider_id": provider.get("provider_id"),
                    "name": provider.get("provider_name"),
                    "logo_url": f"{IMAGE_BASE_URL}/w92{logo_path}" if logo_path else "",
                    "type": provider_type,
                }
            )
    return providers, provider_data.get("link") or ""


def format_runtime(runtime: int | None, default: str = "N/A"):
    if not runtime:
        return default
    hours, minutes = divmod(int(runtime), 60)
    return f"{hours}h {minutes}m"


def release_year(release_date: str | None):
    """
    Read the year of a TMDB release date.

    Args:
        release_date (str | None): Date such as ``2010-07-15``.

    Returns:
        int: Release year, or the current year when the date is missing or malformed.
    """
    try:
        return datetime.strptime(str(release_date or ""), "%Y-%m-%d").year
    except ValueError:
        return datetime.now(timezone.utc).year


def genre_names(genre_ids: list | None, genres: list | None):
    lookup = {genre.get("id"): genre.get("name") for genre in genres or []}
    names = [lookup.get(genre_id) or "Unknown" for genre_id in genre_ids or []]
    return names or ["Unknown"]


def image_url(path: str | None, size: str, fallback: str = ""):
    return f"{IMAGE_BASE_URL}/{size}{path}" if path else fallback


def base_fields(tmdb_movie: dict):
    """
    Map the fields shared by every TMDB movie shape.

    Args:
        tmdb_movie (dict): List entry or detailed movie from TMDB.

    Returns:
        dict: Movie document fields.
    """
    vote_average = tmdb_movie.get("vote_average") or 0
    popularity = tmdb_movie.get("popularity") or 0
    return {
        "title": tmdb_movie.get("title"),
        "description": tmdb_movie.get("overview") or "No description available",
        "year": release_year(tmdb_movie.get("release_date")),
        "poster": image_url(tmdb_movie.get("poster_path"), "w500", PLACEHOLDER_POSTER),
        "backdrop": image_url(tmdb_movie.get("backdrop_path"), "w1280"),
        "rating": round(float(vote_average), 1),
        "views": 0,
        "featured": vote_average >= 7.5 or popularity >= 100,
        "trending": popularity >= 50,
        "created_at": datetime.now(timezone.utc).replace(tzinfo=None),
        "tmdb_id": tmdb_movie.get("id"),
        "trailer_url": "",
        "trailer_key": "",
        "watch_providers": [],
        "watch_link": "",
    }


def people_fields(credits: dict | None):
    credits = credits or {}
    directors = [member.get("name") for member in credits.get("crew") or [] if member.get("job") == "Director"]
    cast = [actor.get("name") for actor in (credits.get("cast") or [])[:MAX_CAST]]
    return {
        "director": ", ".join(directors[:MAX_DIRECTORS]) if directors else "Unknown",
        "cast": cast or ["Unknown"],
    }


def transform_basic(tmdb_movie: dict, genres: list | None = None):
    """
    Build a movie document from a TMDB list entry alone.

    Args:
        tmdb_movie (dict): Entry from a TMDB listing endpoint.
        genres (list | None): TMDB genre list used to name `genre_ids`.

    Returns:
        dict: Movie document without credits, trailer or providers.
    """
    movie = base_fields(tmdb_movie)
    movie.update(
        {
            "genre": genre_names(tmdb_movie.get("genre_ids"), genres),
            "duration": "N/A",
            "director": "Unknown",
            "cast": ["Unknown"],
        }
    )
    return movie


def transform_detailed(detailed_movie: dict):
    """
    Build a movie document from a TMDB details response carrying its credits.

    Args:
        detailed_movie (dict): Response of the movie details endpoint.

    Returns:
        dict: Movie document without trailer or providers.
    """
    movie = base_fields(detailed_movie)
    names = [genre.get("name") for genre in detailed_movie.get("genres") or [] if genre.get("name")]
    movie["genre"] = names or ["Unknown"]
    movie["duration"] = format_runtime(detailed_movie.get("runtime"), default="2h 0m")
    movie.update(people_fields(detailed_movie.get("credits")))
    return movie


def transform_movie(service: TMDBService, tmdb_movie: dict, genres: list | None = None):
    """
    Build a complete movie document: details, credits, trailer and US watch providers.

    Falls back to `transform_basic` when any TMDB request fails.

    Args:
        service (TMDBService): TMDB client.
        tmdb_movie (dict): Entry from a TMDB listing endpoint.
        genres (list | None): TMDB genre list.

    Returns:
        dict: Movie document.
    """
    try:
        details = service.movie_details(tmdb_movie["id"])
        trailer = pick_best_trailer(service.movie_videos(tmdb_movie["id"]))
        providers, watch_link = normalize_watch_providers(service.watch_providers(tmdb_movie["id"], "US"))
    except requests.RequestException as exc:
        logger.warning("Error transforming movie %s: %s", tmdb_movie.get("title"), exc)
        return transform_basic(tmdb_movie, genres)

    movie = transform_basic(tmdb_movie, genres)
    movie.update(people_fields(details.get("credits")))
    movie["duration"] = format_runtime(details.get("runtime"))
    if trailer:
        movie["trailer_key"] = trailer.get("key") or ""
        movie["trailer_url"] = f"{YOUTUBE_WATCH_URL}{movie['trailer_key']}" if movie["trailer_key"] else ""
    movie["watch_providers"] = providers
    movie["watch_link"] = watch_link
    return movie
