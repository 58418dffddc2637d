"""Caller identity.

Sign-in happens at the identity provider; this service only verifies the
signed ID tokens it hands out. A valid ``Authorization: Bearer <token>``
header becomes a Caller for Flask-Login's current_user.
"""

import logging
from typing import Optional

from flask import current_app
from flask_login import UserMixin
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer

logger = logging.getLogger(__name__)

ID_TOKEN_SALT = "id-token-v1"
APP_CHECK_SALT = "app-check-v1"
ANONYMOUS_PROVIDER = "anonymous"


class Caller(UserMixin):
    """Authenticated caller resolved from an ID token. Not persisted."""

    def __init__(self, uid: str, sign_in_provider: Optional[str] = None):
        self.uid = uid
        self.sign_in_provider = sign_in_provider

    def get_id(self):
        return self.uid

    @property
    def is_anonymous_account(self) -> bool:
        return self.sign_in_provider == ANONYMOUS_PROVIDER

    def __repr__(self):
        return f"<Caller {self.uid} ({self.sign_in_provider})>"


def _serializer(secret: str, salt: str) -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(secret_key=secret, salt=salt)


def issue_id_token(uid: str, provider: str = "password") -> str:
    """Mint an ID token (identity provider side; used by dev tooling and tests)."""
    return _serializer(current_app.config["SECRET_KEY"], ID_TOKEN_SALT).dumps(
        {"uid": uid, "provider": provider}
    )


def verify_id_token(token: str) -> Optional[Caller]:
    max_age = current_app.config.get("ID_TOKEN_MAX_AGE_SECONDS", 3600)
    try:
        data = _serializer(current_app.config["SECRET_KEY"], ID_TOKEN_SALT).loads(
            token, max_age=max_age
        )
    except SignatureExpired:
        logger.info("Rejected expired ID token")
        return None
    except BadSignature:
        logger.warning("Rejected ID token with bad signature")
        return None
    uid = data.get("uid") if isinstance(data, dict) else None
    if not uid:
        return None
    return Caller(uid=uid, sign_in_provider=data.get("provider"))


def caller_from_request(request) -> Optional[Caller]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return verify_id_token(token.strip())


def issue_app_check_token(app_id: str) -> str:
    return _serializer(current_app.config["APP_CHECK_SECRET"], APP_CHECK_SALT).dumps(
        {"app_id": app_id}
    )


def verify_app_check_token(token: Optional[str]) -> bool:
    """True if the app-attestation token was signed with APP_CHECK_SECRET."""
    secret = current_app.config.get("APP_CHECK_SECRET")
    if not token or not secret:
        return False
    try:
        _serializer(secret, APP_CHECK_SALT).loads(token)
    except BadSignature:
        return False
    return True
