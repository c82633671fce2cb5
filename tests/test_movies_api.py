"""
Tests for the movies service endpoints and the catalog behind them.
"""

import io
from datetime import datetime, timedelta
from unittest.mock import Mock

from bson import ObjectId
from pymongo.errors import OperationFailure

from moviehub.api_movies.catalog import QUERY_POOL, Catalog
from moviehub.api_movies.movies import create_app
from moviehub.api_movies.movies_functions import CatalogQuery, GenreQuery
from moviehub.common.auth import ADMIN_TOKEN_TTL, issue_token

BASE_TIME = datetime(2024, 1, 1, 12, 0, 0)


def add_movie(database, title, **fields):
    document = {
        "title": title,
        "genre": [],
        "views": 0,
        "rating": 5.0,
        "featured": False,
        "trending": False,
        "created_at": BASE_TIME,
    }
    document.update(fields)
    return database["movies"].insert_one(document).inserted_id


def seed_catalog(database):
    add_movie(database, "Heat", genre=["Crime", "Drama"], year=1995, views=50, rating=8.3,
              created_at=BASE_TIME + timedelta(days=1))
    add_movie(database, "Alien", genre=["Horror", "Science Fiction"], year=1979, views=80, rating=8.5,
              created_at=BASE_TIME + timedelta(days=2))
    add_movie(database, "Casino", genre=["Crime", "Drama"], year=1995, views=20, rating=8.2,
              created_at=BASE_TIME + timedelta(days=3))
    add_movie(database, "Blade Runner", genre=["Science Fiction"], year=1982, views=80, rating=8.1,
              created_at=BASE_TIME + timedelta(days=4))


def titles(payload):
    return [movie["title"] for movie in payload["items"]]


def test_index_reports_connection(movies_client, db_status):
    response = movies_client.get("/")
    assert response.status_code == 200
    assert response.get_json()["status"] == "MongoDB connected"

    db_status.connected = False
    assert movies_client.get("/").get_json()["status"] == "MongoDB not connected"


def test_list_defaults_to_alphabetical_first_page(movies_client, database):
    seed_catalog(database)

    payload = movies_client.get("/movies").get_json()

    assert titles(payload) == ["Alien", "Blade Runner", "Casino", "Heat"]
    assert payload["total"] == 4
    assert payload["page"] == 1
    assert payload["limit"] == 20
    assert isinstance(payload["items"][0]["_id"], str)
    assert payload["items"][0]["created_at"].endswith("Z")


def test_list_filters_by_genre_and_year(movies_client, database):
    seed_catalog(database)

    payload = movies_client.get("/movies?genre=Crime&year=1995&sort=newest").get_json()

    assert titles(payload) == ["Casino", "Heat"]
    assert payload["total"] == 2


def test_search_is_literal_and_case_insensitive(movies_client, database):
    seed_catalog(database)
    add_movie(database, "Mission: Impossible (1996)")

    assert titles(movies_client.get("/movies?search=blade").get_json()) == ["Blade Runner"]
    assert titles(movies_client.get("/movies?search=(1996)").get_json()) == ["Mission: Impossible (1996)"]
    assert movies_client.get("/movies?search=.*").get_json()["total"] == 0


def test_unknown_sort_falls_back_to_alphabetical(movies_client, database):
    seed_catalog(database)
    payload = movies_client.get("/movies?sort=shuffle").get_json()
    assert titles(payload) == ["Alien", "Blade Runner", "Casino", "Heat"]


def test_popular_sort_breaks_ties_by_id(movies_client, database):
    seed_catalog(database)

    payload = movies_client.get("/movies?sort=popular").get_json()

    # Alien and Blade Runner share 80 views; Alien was inserted first.
    assert titles(payload) == ["Alien", "Blade Runner", "Heat", "Casino"]


def test_pages_cover_catalog_without_overlap(movies_client, database):
    for index in range(7):
        add_movie(database, f"Movie {index}", views=10)

    seen = []
    for page in range(1, 5):
        payload = movies_client.get(f"/movies?sort=popular&limit=2&page={page}").get_json()
        assert payload["total"] == 7
        assert len(payload["items"]) <= 2
        seen.extend(movie["_id"] for movie in payload["items"])

    assert len(seen) == 7
    assert len(set(seen)) == 7


def test_page_past_the_end_is_empty(movies_client, database):
    seed_catalog(database)
    payload = movies_client.get("/movies?page=9&limit=2").get_json()
    assert payload["items"] == []
    assert payload["total"] == 4


def test_invalid_numbers_are_rejected(movies_client):
    for query in ("year=abc", "limit=0", "limit=500", "page=0", "page=x"):
        response = movies_client.get(f"/movies?{query}")
        assert response.status_code == 400, query
        assert "error" in response.get_json()


def test_oversized_numbers_are_rejected(movies_client):
    huge = 10**19
    for path in (f"/movies?page={huge}", f"/movies?year={huge}", "/movies?year=-1", f"/movies/genres?min={huge}"):
        response = movies_client.get(path)
        assert response.status_code == 400, path
        assert "error" in response.get_json()


def test_rating_and_year_sorts_are_non_increasing(movies_client, database):
    seed_catalog(database)
    add_movie(database, "Unrated", year=2001, rating=3.0)

    ratings = [movie["rating"] for movie in movies_client.get("/movies?sort=rating").get_json()["items"]]
    years = [movie["year"] for movie in movies_client.get("/movies?sort=year").get_json()["items"]]

    assert ratings == sorted(ratings, reverse=True)
    assert years == sorted(years, reverse=True)
    assert years[0] == 2001


def test_drama_page_sorted_by_year(movies_client, database):
    for year in (2001, 2010, 2015):
        add_movie(database, f"Drama {year}", genre=["Drama"], year=year)
    add_movie(database, "Comedy 2020", genre=["Comedy"], year=2020)

    payload = movies_client.get("/movies?genre=Drama&sort=year&limit=2&page=1").get_json()

    assert [movie["year"] for movie in payload["items"]] == [2015, 2010]
    assert payload["total"] == 3


def test_list_is_served_from_cache_until_expiry(movies_client, database, clock):
    seed_catalog(database)
    first = movies_client.get("/movies").get_json()

    add_movie(database, "Zodiac")
    assert movies_client.get("/movies").get_json() == first

    clock.advance(60)
    refreshed = movies_client.get("/movies").get_json()
    assert refreshed["total"] == 5
    assert titles(refreshed)[-1] == "Zodiac"


def test_cache_hit_does_not_touch_store(database, cache, db_status):
    seed_catalog(database)
    collection = Mock(wraps=database["movies"])
    catalog = Catalog(collection, cache, db_status)
    query = CatalogQuery.model_validate({"genre": "Crime"})

    first = catalog.list_movies(query)
    calls_after_miss = (collection.find.call_count, collection.count_documents.call_count, db_status.calls)
    second = catalog.list_movies(query)

    assert second == first
    assert (collection.find.call_count, collection.count_documents.call_count, db_status.calls) == calls_after_miss


def test_store_down_returns_empty_shapes(movies_client, db_status):
    db_status.connected = False

    assert movies_client.get("/movies?page=2&limit=5").get_json() == {"items": [], "total": 0, "page": 2, "limit": 5}
    assert movies_client.get("/movies/featured").get_json() == []
    assert movies_client.get("/movies/trending").get_json() == []
    assert movies_client.get("/movies/genres").get_json() == []
    assert movies_client.get("/movies/search/suggestions?q=heat").get_json() == []


def test_cached_listing_survives_store_outage(movies_client, database, db_status):
    seed_catalog(database)
    first = movies_client.get("/movies/featured").get_json()

    db_status.connected = False
    assert movies_client.get("/movies/featured").get_json() == first


def test_featured_is_capped_at_ten(movies_client, database):
    for index in range(12):
        add_movie(database, f"Featured {index}", featured=True)
    add_movie(database, "Plain")

    featured = movies_client.get("/movies/featured").get_json()

    assert len(featured) == 10
    assert all(movie["featured"] for movie in featured)


def test_trending_lists_flagged_movies(movies_client, database):
    add_movie(database, "Hot", trending=True)
    add_movie(database, "Cold")
    assert [movie["title"] for movie in movies_client.get("/movies/trending").get_json()] == ["Hot"]


def test_genre_counts_sorted_by_count_then_name(movies_client, database):
    seed_catalog(database)

    stats = movies_client.get("/movies/genres").get_json()

    assert stats == [
        {"name": "Crime", "count": 2},
        {"name": "Drama", "count": 2},
        {"name": "Science Fiction", "count": 2},
        {"name": "Horror", "count": 1},
    ]


def test_genre_counts_with_minimum_and_alpha_sort(movies_client, database):
    seed_catalog(database)

    stats = movies_client.get("/movies/genres?min=2&sort=alpha").get_json()

    assert [entry["name"] for entry in stats] == ["Crime", "Drama", "Science Fiction"]


def test_genre_counts_minimum_example(movies_client, database):
    for index in range(3):
        add_movie(database, f"Action {index}", genre=["Action"])
    add_movie(database, "Drama 0", genre=["Drama"])
    for index in range(2):
        add_movie(database, f"Comedy {index}", genre=["Comedy"])

    stats = movies_client.get("/movies/genres?min=2").get_json()

    assert stats == [{"name": "Action", "count": 3}, {"name": "Comedy", "count": 2}]


def test_genre_counts_skip_malformed_tags(database, cache, db_status):
    add_movie(database, "Mixed", genre=["Drama", 5, None])
    add_movie(database, "No genre field", genre=None)
    database["movies"].update_one({"title": "No genre field"}, {"$unset": {"genre": ""}})
    add_movie(database, "Empty", genre=[])
    catalog = Catalog(database["movies"], cache, db_status)

    stats = catalog.genre_stats(GenreQuery.model_validate({}))

    assert stats == [{"name": "Drama", "count": 1}]


def test_suggestions_match_titles(movies_client, database):
    seed_catalog(database)

    suggestions = movies_client.get("/movies/search/suggestions?q=N").get_json()

    assert sorted(entry["title"] for entry in suggestions) == ["Alien", "Blade Runner", "Casino"]
    assert set(suggestions[0]) <= {"_id", "title", "year", "poster"}
    assert movies_client.get("/movies/search/suggestions?q=").get_json() == []


def test_detail_counts_each_view(movies_client, database):
    movie_id = add_movie(database, "Heat", views=3)

    first = movies_client.get(f"/movies/{movie_id}").get_json()
    second = movies_client.get(f"/movies/{movie_id}").get_json()

    assert first["views"] == 4
    assert second["views"] == 5
    assert database["movies"].find_one({"_id": movie_id})["views"] == 5


def test_detail_not_found_cases(movies_client, db_status):
    response = movies_client.get(f"/movies/{ObjectId()}")
    assert response.status_code == 404
    assert response.get_json() == {"error": "Movie not found"}

    assert movies_client.get("/movies/not-an-id").status_code == 404

    db_status.connected = False
    response = movies_client.get(f"/movies/{ObjectId()}")
    assert response.status_code == 404
    assert response.get_json() == {"error": "MongoDB not connected"}


def test_store_errors_surface_as_500(movies_app, monkeypatch):
    catalog = movies_app.extensions["catalog"]
    monkeypatch.setattr(catalog, "list_movies", Mock(side_effect=OperationFailure("boom")))

    response = movies_app.test_client().get("/movies")

    assert response.status_code == 500
    assert response.get_json() == {"error": "boom"}


def test_responses_carry_request_id_and_cors(movies_client):
    response = movies_client.get("/", headers={"Origin": "https://frontend.test"})
    assert len(response.headers["x-request-id"]) == 8
    assert response.headers["Access-Control-Allow-Origin"] == "*"


def test_unknown_route_is_json_404(movies_client):
    response = movies_client.get("/nowhere")
    assert response.status_code == 404
    assert "error" in response.get_json()


def test_global_rate_limit(settings, database, cache, db_status):
    settings.rate_limit_per_min = 2
    client = create_app(settings, database, cache=cache, db_status=db_status).test_client()

    assert client.get("/").status_code == 200
    assert client.get("/").status_code == 200
    response = client.get("/")
    assert response.status_code == 429
    assert response.get_json() == {"error": "Too many requests. Please slow down."}


def test_admin_routes_require_admin_token(movies_client, settings):
    assert movies_client.get("/admin/movies").status_code == 401

    response = movies_client.get("/admin/movies", headers={"Authorization": "Bearer garbage"})
    assert response.status_code == 401
    assert response.get_json() == {"error": "Invalid token"}

    user_token = issue_token({"role": "user"}, settings.admin_jwt_secret, ADMIN_TOKEN_TTL)
    response = movies_client.get("/admin/movies", headers={"Authorization": f"Bearer {user_token}"})
    assert response.status_code == 401


def test_admin_create_update_delete(movies_client, database, admin_headers):
    response = movies_client.post(
        "/admin/movies",
        json={"title": "Heat", "year": 1995, "genre": ["Crime"], "rating": 8.3},
        headers=admin_headers,
    )
    assert response.status_code == 201
    created = response.get_json()
    assert created["views"] == 0
    assert created["genre"] == ["Crime"]

    response = movies_client.put(f"/admin/movies/{created['_id']}", json={"featured": True}, headers=admin_headers)
    assert response.status_code == 200
    assert response.get_json()["featured"] is True
    assert response.get_json()["title"] == "Heat"

    listing = movies_client.get("/admin/movies", headers=admin_headers).get_json()
    assert [movie["title"] for movie in listing] == ["Heat"]

    assert movies_client.delete(f"/admin/movies/{created['_id']}", headers=admin_headers).status_code == 200
    assert movies_client.delete(f"/admin/movies/{created['_id']}", headers=admin_headers).status_code == 404
    assert database["movies"].count_documents({}) == 0


def test_admin_create_requires_title(movies_client, admin_headers):
    response = movies_client.post("/admin/movies", json={"year": 2000}, headers=admin_headers)
    assert response.status_code == 400
    assert response.get_json() == {"error": "please provide at least a title"}


def test_admin_update_unknown_movie(movies_client, admin_headers):
    response = movies_client.put(f"/admin/movies/{ObjectId()}", json={"title": "X"}, headers=admin_headers)
    assert response.status_code == 404


def test_admin_poster_upload_is_served(movies_client, admin_headers):
    response = movies_client.post(
        "/admin/movies",
        data={"title": "Alien", "genre": '["Horror"]', "poster": (io.BytesIO(b"fake image"), "alien.JPG")},
        content_type="multipart/form-data",
        headers=admin_headers,
    )
    assert response.status_code == 201
    poster = response.get_json()["poster"]
    assert poster.startswith("/uploads/movies/")
    assert poster.endswith(".jpg")

    served = movies_client.get(poster)
    assert served.status_code == 200
    assert served.data == b"fake image"


def test_catalogs_share_one_query_pool(settings, database, cache, db_status):
    first = Catalog(database["movies"], cache, db_status)
    second = create_app(settings, database, cache=cache, db_status=db_status).extensions["catalog"]
    assert first.executor is QUERY_POOL
    assert second.executor is QUERY_POOL
