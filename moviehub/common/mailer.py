import logging

from flask import Flask
from flask_mail import Mail, Message

from moviehub.common.config import Settings

logger = logging.getLogger(__name__)

mail = Mail()


def configure_mail(app: Flask, settings: Settings):
    """
    Copy the SMTP settings into the Flask-Mail configuration and bind `mail` to the app.

    Args:
        app (Flask): Application that will send mail.
        settings (Settings): Runtime configuration holding the SMTP details.
    """
    app.config.update(
        MAIL_SERVER=settings.smtp_host,
        MAIL_PORT=settings.smtp_port,
        MAIL_USE_TLS=not settings.smtp_secure,
        MAIL_USE_SSL=settings.smtp_secure,
        MAIL_USERNAME=settings.smtp_user,
        MAIL_PASSWORD=settings.smtp_pass,
        MAIL_DEFAULT_SENDER=settings.smtp_user,
    )
    mail.init_app(app)


def send_mail(settings: Settings, to: str, subject: str, body: str, sender: str | None = None):
    """
    Send a plain text email through the app's Flask-Mail connection.

    Must run inside an application context of an app passed to `configure_mail`.

    Args:
        settings (Settings): Runtime configuration holding the SMTP details.
        to (str): Recipient address.
        subject (str): Subject line.
        body (str): Plain text body.
        sender (str | None): From address. Defaults to the SMTP user.

    Returns:
        bool: False when SMTP is not configured and nothing was sent.
    """
    if not settings.smtp_configured:
        return False

    message = Message(subject, recipients=[to], body=body, sender=sender or settings.smtp_user)
    mail.send(message)
    logger.info("Sent mail '%s' to %s", subject, to)
    return True
