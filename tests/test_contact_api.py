"""
Tests for the contact form and the admin moderation endpoints.
"""

import csv
import io
from datetime import datetime, timedelta

import pytest
from bson import ObjectId
from pydantic import ValidationError

from moviehub.api_contact.contact import create_app
from moviehub.api_contact.contact_functions import ContactMessageIn, MessageQuery, build_message_filter
from moviehub.api_users.users_functions import utc_now
from moviehub.common.auth import hash_password
from moviehub.common.config import Settings
from moviehub.common.mailer import mail
from moviehub.common.rate_limit import FixedWindowLimiter

VALID_MESSAGE = {
    "name": "Ada Lovelace",
    "email": "Ada@Example.com",
    "subject": "Broken poster",
    "message": "The poster for Heat does not load on the detail page.",
}


def add_message(database, created_at, **fields):
    document = {
        "name": "Grace Hopper",
        "email": "grace@example.com",
        "subject": "Hello there",
        "message": "Just saying hello to the team.",
        "ip": "10.0.0.1",
        "created_at": created_at,
    }
    document.update(fields)
    return database["contact_messages"].insert_one(document).inserted_id


def test_submit_stores_message(contact_client, database):
    response = contact_client.post("/contact", json=VALID_MESSAGE, headers={"X-Forwarded-For": "203.0.113.7, 10.0.0.1"})

    assert response.status_code == 201
    payload = response.get_json()
    assert payload["success"] is True
    stored = database["contact_messages"].find_one({"_id": ObjectId(payload["id"])})
    assert stored["email"] == "ada@example.com"
    assert stored["ip"] == "203.0.113.7"
    assert isinstance(stored["created_at"], datetime)


@pytest.mark.parametrize(
    "field, value",
    [("name", "A"), ("name", "R2-D2"), ("email", "nobody"), ("subject", "Hi"), ("message", "Too short")],
)
def test_submit_rejects_invalid_fields(contact_client, field, value):
    response = contact_client.post("/contact", json={**VALID_MESSAGE, field: value})
    assert response.status_code == 400
    assert response.get_json()["error"].startswith(field)


def test_submit_requires_every_field(contact_client):
    response = contact_client.post("/contact", json={"name": "Ada Lovelace"})
    assert response.status_code == 400


def test_submit_trims_before_validating():
    message = ContactMessageIn.model_validate({**VALID_MESSAGE, "name": "  Ada Lovelace  "})
    assert message.name == "Ada Lovelace"
    with pytest.raises(ValidationError):
        ContactMessageIn.model_validate({**VALID_MESSAGE, "subject": "   Hey   "})


def test_submit_when_store_down(contact_client, db_status):
    db_status.connected = False
    response = contact_client.post("/contact", json=VALID_MESSAGE)
    assert response.status_code == 503
    assert response.get_json() == {"error": "Database not connected"}


def test_submit_limited_per_ip(contact_client, database):
    for _ in range(5):
        assert contact_client.post("/contact", json=VALID_MESSAGE).status_code == 201

    response = contact_client.post("/contact", json=VALID_MESSAGE)
    assert response.status_code == 429
    assert database["contact_messages"].count_documents({}) == 5

    other_ip = contact_client.post("/contact", json=VALID_MESSAGE, headers={"X-Forwarded-For": "198.51.100.2"})
    assert other_ip.status_code == 201


def test_limit_applies_to_long_forwarded_addresses(contact_client, database):
    long_ip = "2001:db8::" + "f" * 120
    headers = {"X-Forwarded-For": long_ip}
    for _ in range(5):
        assert contact_client.post("/contact", json=VALID_MESSAGE, headers=headers).status_code == 201

    assert contact_client.post("/contact", json=VALID_MESSAGE, headers=headers).status_code == 429
    assert database["contact_messages"].find_one()["ip"] == long_ip[:100]


def test_old_messages_do_not_count_toward_limit(contact_client, database):
    for _ in range(5):
        add_message(database, utc_now() - timedelta(minutes=20), ip="127.0.0.1")
    assert contact_client.post("/contact", json=VALID_MESSAGE).status_code == 201


def test_submit_notifies_by_email(contact_client, settings, sent_mail):
    settings.contact_email_to = "owner@moviehub.test"

    contact_client.post("/contact", json=VALID_MESSAGE)

    assert [message.subject for message in sent_mail] == ["[MovieHub] Broken poster"]
    assert sent_mail[0].recipients == ["owner@moviehub.test"]
    assert sent_mail[0].sender == "robot@moviehub.test"
    assert "Ada Lovelace" in sent_mail[0].body


def test_submit_without_smtp_sends_nothing(contact_client, monkeypatch):
    outbox = []
    monkeypatch.setattr(mail, "send", outbox.append)

    assert contact_client.post("/contact", json=VALID_MESSAGE).status_code == 201
    assert outbox == []


def test_admin_login_with_plain_password(contact_client):
    response = contact_client.post("/admin/contact/login", json={"username": "admin", "password": "s3cret-pass"})
    assert response.status_code == 200
    assert response.get_json()["token"]

    wrong = contact_client.post("/admin/contact/login", json={"username": "admin", "password": "nope"})
    assert wrong.status_code == 401
    assert wrong.get_json() == {"error": "Invalid credentials"}


def test_admin_login_prefers_hash(settings, database, db_status):
    settings.admin_pass_hash = hash_password("hashed-pass", rounds=4)
    client = create_app(settings, database, db_status=db_status).test_client()

    assert client.post("/admin/contact/login", json={"username": "admin", "password": "hashed-pass"}).status_code == 200
    assert client.post("/admin/contact/login", json={"username": "admin", "password": "s3cret-pass"}).status_code == 401


def test_admin_login_not_configured(database, db_status):
    client = create_app(Settings(bcrypt_rounds=4), database, db_status=db_status).test_client()
    response = client.post("/admin/contact/login", json={"username": "admin", "password": "x"})
    assert response.status_code == 500
    assert response.get_json() == {"error": "Admin credentials not configured"}


def test_admin_login_is_throttled(settings, database, db_status, clock):
    limiter = FixedWindowLimiter(2, 900, clock=clock)
    client = create_app(settings, database, db_status=db_status, login_limiter=limiter).test_client()
    bad = {"username": "admin", "password": "wrong"}

    assert client.post("/admin/contact/login", json=bad).status_code == 401
    assert client.post("/admin/contact/login", json=bad).status_code == 401
    assert client.post("/admin/contact/login", json=bad).status_code == 429

    clock.advance(901)
    assert client.post("/admin/contact/login", json={"username": "admin", "password": "s3cret-pass"}).status_code == 200


def test_admin_views_require_token(contact_client):
    assert contact_client.get("/admin/contact/messages").status_code == 401
    assert contact_client.get("/admin/contact/messages/stats").status_code == 401


def test_list_messages_newest_first_with_pagination(contact_client, database, admin_headers):
    base = utc_now() - timedelta(hours=5)
    for index in range(3):
        add_message(database, base + timedelta(hours=index), subject=f"Subject {index}")

    payload = contact_client.get("/admin/contact/messages?limit=2", headers=admin_headers).get_json()

    assert [item["subject"] for item in payload["items"]] == ["Subject 2", "Subject 1"]
    assert payload["total"] == 3
    assert payload["page"] == 1
    assert payload["limit"] == 2

    second_page = contact_client.get("/admin/contact/messages?limit=2&page=2", headers=admin_headers).get_json()
    assert [item["subject"] for item in second_page["items"]] == ["Subject 0"]


def test_list_messages_rejects_oversized_page(contact_client, admin_headers):
    response = contact_client.get(f"/admin/contact/messages?page={10**19}", headers=admin_headers)
    assert response.status_code == 400
    assert "error" in response.get_json()


def test_list_messages_search_and_dates(contact_client, database, admin_headers):
    add_message(database, datetime(2024, 3, 1, 9, 0), subject="Refund please")
    add_message(database, datetime(2024, 3, 2, 23, 30), name="Alan Turing")
    add_message(database, datetime(2024, 3, 3, 0, 0, 1), message="Love the TURING collection.")

    by_text = contact_client.get("/admin/contact/messages?q=turing", headers=admin_headers).get_json()
    assert by_text["total"] == 2

    by_dates = contact_client.get("/admin/contact/messages?from=2024-03-01&to=2024-03-02", headers=admin_headers)
    assert by_dates.get_json()["total"] == 2

    bad_date = contact_client.get("/admin/contact/messages?from=yesterday", headers=admin_headers)
    assert bad_date.status_code == 400


def test_message_filter_covers_whole_end_day():
    query = MessageQuery.model_validate({"to": "2024-03-02", "q": "a+b"})
    filter_query = build_message_filter(query)
    assert filter_query["created_at"]["$lte"] == datetime(2024, 3, 2, 23, 59, 59, 999999)
    assert filter_query["$or"][0] == {"subject": {"$regex": r"a\+b", "$options": "i"}}


def test_export_csv(contact_client, database, admin_headers):
    add_message(database, datetime(2024, 3, 1, 9, 0), message='He said "hi", then left.')

    response = contact_client.get("/admin/contact/messages/export", headers=admin_headers)

    assert response.status_code == 200
    assert response.mimetype == "text/csv"
    assert "contact-messages.csv" in response.headers["Content-Disposition"]
    text = response.get_data(as_text=True)
    assert text.splitlines()[0] == '"name","email","subject","message","created_at"'
    rows = list(csv.reader(io.StringIO(text)))
    assert rows[1] == ["Grace Hopper", "grace@example.com", "Hello there", 'He said "hi", then left.', "2024-03-01T09:00:00.000Z"]


def test_stats(contact_client, database, admin_headers):
    now = utc_now()
    add_message(database, now)
    add_message(database, now - timedelta(days=3))
    add_message(database, now - timedelta(days=30))

    stats = contact_client.get("/admin/contact/messages/stats", headers=admin_headers).get_json()

    assert stats == {"total": 3, "today": 1, "week": 2}


def test_delete_message(contact_client, database, admin_headers):
    message_id = add_message(database, utc_now())

    assert contact_client.delete(f"/admin/contact/messages/{message_id}", headers=admin_headers).get_json() == {"success": True}
    missing = contact_client.delete(f"/admin/contact/messages/{message_id}", headers=admin_headers)
    assert missing.status_code == 404
    assert database["contact_messages"].count_documents({}) == 0
