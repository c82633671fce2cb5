import logging
import time

import requests

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.themoviedb.org/3"
RETRY_STATUSES = {429, 500, 502, 503, 504}


class TMDBService:
    """
    Thin client for the TMDB v3 API.

    Requests share one `requests.Session`. Rate limiting, server errors and
    dropped connections are retried with exponential backoff, honouring the
    `Retry-After` header when TMDB sends one.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        session: requests.Session | None = None,
        timeout: float = 15,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        sleep=time.sleep,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.sleep = sleep

    def retry_delay(self, attempt: int, response: requests.Response | None = None):
        """
        Compute how long to wait before the next attempt.

        Args:
            attempt (int): Zero-based index of the attempt that just failed.
            response (requests.Response | None): Failed response, if any.

        Returns:
            float: Delay in seconds.
        """
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return max(0.0, float(retry_after))
                except ValueError:
                    pass
        return self.backoff_seconds * (2 ** attempt)

    def request(self, path: str, **params):
        """
        Call a TMDB endpoint and decode its JSON body.

        Args:
            path (str): Endpoint path such as ``/movie/popular``.
            **params: Query parameters added to the API key.

        Returns:
            dict: Decoded response body.

        Raises:
            requests.RequestException: When every attempt failed.
        """
        url = f"{self.base_url}{path}"
        query = {"api_key": self.api_key, **params}

        for attempt in range(self.max_attempts):
            last_attempt = attempt == self.max_attempts - 1
            try:
                response = self.session.get(url, params=query, timeout=self.timeout)
            except (requests.ConnectionError, requests.Timeout) as exc:
                if last_attempt:
                    raise
                delay = self.retry_delay(attempt)
                logger.warning("[TMDB] %s failed (%s). Retrying in %.1f seconds.", path, exc, delay)
                self.sleep(delay)
                continue

            if response.status_code in RETRY_STATUSES and not last_attempt:
                delay = self.retry_delay(attempt, response)
                logger.warning("[TMDB] %s returned %s. Retrying in %.1f seconds.", path, response.status_code, delay)
                self.sleep(delay)
                continue

            response.raise_for_status()
            return response.json()

        raise requests.RequestException(f"TMDB request failed: {path}")

    def popular_movies(self, page: int = 1):
        return self.request("/movie/popular", page=page, language="en-US").get("results", [])

    def top_rated_movies(self, page: int = 1):
        return self.request("/movie/top_rated", page=page, language="en-US").get("results", [])

    def trending_movies(self, time_window: str = "week", page: int = 1):
        return self.request(f"/trending/movie/{time_window}", page=page, language="en-US").get("results", [])

    def movies_by_genre(self, genre_id: int, page: int = 1):
        return self.request(
            "/discover/movie", with_genres=genre_id, page=page, language="en-US", sort_by="popularity.desc"
        ).get("results", [])

    def movies_by_year_range(self, start_year: int, end_year: int, page: int = 1):
        """
        Discover popular movies released between two years, both included.

        Args:
            start_year (int): First release year.
            end_year (int): Last release year.
            page (int): Result page.

        Returns:
            list[dict]: TMDB movie entries.
        """
        return self.request(
            "/discover/movie",
            **{
                "primary_release_date.gte": f"{start_year}-01-01",
                "primary_release_date.lte": f"{end_year}-12-31",
                "page": page,
                "language": "en-US",
                "sort_by": "popularity.desc",
            },
        ).get("results", [])

    def search_movies(self, query: str, page: int = 1):
        return self.request("/search/movie", query=query, page=page, language="en-US").get("results", [])

    def genres(self):
        return self.request("/genre/movie/list", language="en-US").get("genres", [])

    def movie_details(self, movie_id: int):
        return self.request(f"/movie/{movie_id}", language="en-US", append_to_response="credits")

    def movie_credits(self, movie_id: int):
        return self.request(f"/movie/{movie_id}/credits", language="en-US")

    def movie_videos(self, movie_id: int):
        return self.request(f"/movie/{movie_id}/videos", language="en-US").get("results") or []

    def watch_providers(self, movie_id: int, region: str = "US"):
        """
        Fetch where a movie can be watched in one region.

        Args:
            movie_id (int): TMDB movie id.
            region (str): ISO country code.

        Returns:
            dict | None: Provider groups and the TMDB watch link, or None when the region has none.
        """
        results = self.request(f"/movie/{movie_id}/watch/providers").get("results") or {}
        return results.get(region)

    def test_connection(self):
        try:
            data = self.request("/movie/popular", page=1, language="en-US")
        except requests.RequestException as exc:
            return {"success": False, "message": "TMDB API connection failed", "error": str(exc)}
        return {
            "success": True,
            "message": "TMDB API connection successful",
            "total_pages": data.get("total_pages"),
            "total_results": data.get("total_results"),
        }
