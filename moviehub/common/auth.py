from datetime import datetime, timedelta, timezone
from functools import wraps

import bcrypt
import jwt
from flask import current_app, g, request

from moviehub.common.errors import ConfigurationError, Unauthorized

JWT_ALGORITHM = "HS256"
USER_TOKEN_TTL = timedelta(days=30)
ADMIN_TOKEN_TTL = timedelta(hours=12)


def hash_password(password: str, rounds: int = 10):
    """
    Hash a password with bcrypt.

    Args:
        password (str): Plain text password.
        rounds (int): bcrypt cost factor.

    Returns:
        str: Encoded bcrypt hash.
    """
    return bcrypt.hashpw(str(password).encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def check_password(password: str, password_hash: str | None):
    """
    Compare a password against a stored bcrypt hash.

    Args:
        password (str): Plain text candidate.
        password_hash (str | None): Stored hash.

    Returns:
        bool: True when the password matches.
    """
    if not password_hash:
        return False
    try:
        return bcrypt.checkpw(str(password).encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def issue_token(payload: dict, secret: str, expires_in: timedelta):
    """
    Sign a JWT carrying the payload and an expiry claim.

    Args:
        payload (dict): Claims to embed.
        secret (str): HMAC secret.
        expires_in (timedelta): Token lifetime.

    Returns:
        str: Encoded token.
    """
    claims = dict(payload)
    claims["exp"] = datetime.now(timezone.utc) + expires_in
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)


def decode_token(token: str, secret: str):
    return jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])


def bearer_token():
    """
    Extract the token from an ``Authorization: Bearer <token>`` header.

    Returns:
        str | None: Token or None when the header is missing or malformed.
    """
    header = request.headers.get("Authorization", "")
    if not header.startswith("Bearer "):
        return None
    return header[len("Bearer "):].strip() or None


def verify_request(secret: str | None, secret_name: str):
    if not secret:
        raise ConfigurationError(f"{secret_name} not configured")
    token = bearer_token()
    if not token:
        raise Unauthorized("Unauthorized")
    try:
        return decode_token(token, secret)
    except jwt.PyJWTError:
        raise Unauthorized("Invalid token")


def user_required(view):
    """Reject requests without a valid user token; claims go to ``g.user``."""

    @wraps(view)
    def decorated(*args, **kwargs):
        settings = current_app.config["SETTINGS"]
        g.user = verify_request(settings.user_jwt_secret, "USER_JWT_SECRET")
        return view(*args, **kwargs)

    return decorated


def admin_required(view):
    """Reject requests without a valid admin token; claims go to ``g.admin``."""

    @wraps(view)
    def decorated(*args, **kwargs):
        settings = current_app.config["SETTINGS"]
        claims = verify_request(settings.admin_jwt_secret, "ADMIN_JWT_SECRET")
        if claims.get("role") != "admin":
            raise Unauthorized("Invalid token")
        g.admin = claims
        return view(*args, **kwargs)

    return decorated
