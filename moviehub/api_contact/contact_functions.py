import csv
import io
import logging
import re
from datetime import date, datetime, time, timedelta

from pydantic import BaseModel, ConfigDict, Field, field_validator

from moviehub.api_movies.movies_functions import MAX_PAGE
from moviehub.api_users.users_functions import EMAIL_PATTERN, MAX_EMAIL_LENGTH
from moviehub.common.config import Settings
from moviehub.common.mailer import send_mail
from moviehub.common.mongo import to_json_value

logger = logging.getLogger(__name__)

NAME_PATTERN = r"^[a-zA-Z\s.'-]+$"
CONTACT_LIMIT = 5
CONTACT_WINDOW = timedelta(minutes=15)
EXPORT_COLUMNS = ("name", "email", "subject", "message", "created_at")
SEARCH_FIELDS = ("subject", "name", "email", "message")


class ContactMessageIn(BaseModel):
    """Contact form submission. Text fields are trimmed before their bounds are checked."""

    model_config = ConfigDict(extra="ignore", str_strip_whitespace=True)

    name: str = Field(min_length=2, max_length=60, pattern=NAME_PATTERN)
    email: str = Field(max_length=MAX_EMAIL_LENGTH)
    subject: str = Field(min_length=4, max_length=100)
    message: str = Field(min_length=10, max_length=1500)

    @field_validator("email")
    @classmethod
    def check_email(cls, value: str):
        value = value.lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Invalid email address")
        return value


class MessageQuery(BaseModel):
    """Filters of the admin message list and export."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True, str_strip_whitespace=True)

    limit: int = Field(default=20, ge=1, le=100)
    page: int = Field(default=1, ge=1, le=MAX_PAGE)
    q: str | None = Field(default=None, max_length=200)
    date_from: date | None = Field(default=None, alias="from")
    date_to: date | None = Field(default=None, alias="to")

    @property
    def skip(self):
        return (self.page - 1) * self.limit


def build_message_filter(query: MessageQuery):
    """
    Build the MongoDB filter for the admin message views.

    Args:
        query (MessageQuery): Validated filters.

    Returns:
        dict: MongoDB filter document. `to` covers the whole day it names.
    """
    filter_query = {}
    if query.q:
        regex = {"$regex": re.escape(query.q), "$options": "i"}
        filter_query["$or"] = [{field: regex} for field in SEARCH_FIELDS]
    if query.date_from or query.date_to:
        created_at = {}
        if query.date_from:
            created_at["$gte"] = datetime.combine(query.date_from, time.min)
        if query.date_to:
            created_at["$lte"] = datetime.combine(query.date_to, time.max)
        filter_query["created_at"] = created_at
    return filter_query


def export_csv(documents):
    """
    Render contact messages as CSV with every field quoted.

    Args:
        documents (Iterable[dict]): Contact message documents.

    Returns:
        str: CSV text starting with the header row.
    """
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(EXPORT_COLUMNS)
    for document in documents:
        row = []
        for column in EXPORT_COLUMNS:
            value = to_json_value(document.get(column))
            row.append("" if value is None else value)
        writer.writerow(row)
    return buffer.getvalue()


def stats_boundaries(now: datetime):
    start_today = datetime.combine(now.date(), time.min)
    return start_today, start_today - timedelta(days=7)


def send_contact_email(settings: Settings, message: ContactMessageIn):
    """
    Forward a contact message to the site owner when SMTP is configured.

    Args:
        settings (Settings): Runtime configuration.
        message (ContactMessageIn): Validated submission.

    Returns:
        bool: True when the email was handed to the SMTP server.
    """
    if not settings.smtp_configured:
        return False
    body = f"Name: {message.name}\nEmail: {message.email}\n\n{message.message}"
    recipient = settings.contact_email_to or settings.smtp_user
    sender = settings.contact_email_from or settings.smtp_user
    return send_mail(settings, recipient, f"[MovieHub] {message.subject}", body, sender=sender)
