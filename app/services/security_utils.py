from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
from datetime import UTC, datetime, timedelta
from typing import Any

PASSWORD_HASH_SCHEME = "pbkdf2_sha256"
PASSWORD_HASH_ITERATIONS = 390_000
PASSWORD_SALT_BYTES = 16
ACCESS_TOKEN_TYPE = "access"


def hash_password(password: str) -> str:
    salt = os.urandom(PASSWORD_SALT_BYTES)
    digest = _derive_password_digest(password, salt, PASSWORD_HASH_ITERATIONS)
    return "$".join(
        (
            PASSWORD_HASH_SCHEME,
            str(PASSWORD_HASH_ITERATIONS),
            _b64url_encode(salt),
            _b64url_encode(digest),
        ),
    )


def verify_password(password: str, stored_hash: str) -> bool:
    parts = stored_hash.split("$")
    if len(parts) != 4 or parts[0] != PASSWORD_HASH_SCHEME:
        return False

    try:
        iterations = int(parts[1])
        salt = _b64url_decode(parts[2])
        expected_digest = _b64url_decode(parts[3])
    except (ValueError, TypeError):
        return False

    actual_digest = _derive_password_digest(password, salt, iterations)
    return hmac.compare_digest(actual_digest, expected_digest)


def create_access_token(
    *,
    subject: str,
    claims: dict[str, Any],
    secret_key: str,
    ttl_minutes: int,
    now: datetime | None = None,
) -> tuple[str, int]:
    issued_at = now or datetime.now(UTC)
    expires_at = issued_at + timedelta(minutes=ttl_minutes)
    payload = {
        **claims,
        "sub": subject,
        "typ": ACCESS_TOKEN_TYPE,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    payload_segment = _b64url_encode(
        json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8"),
    )
    token = f"{payload_segment}.{_sign(payload_segment, secret_key)}"
    return token, max(int((expires_at - issued_at).total_seconds()), 0)


def decode_access_token(
    token: str,
    secret_key: str,
    *,
    now: datetime | None = None,
) -> dict[str, Any] | None:
    payload_segment, separator, signature_segment = token.partition(".")
    if not separator or not payload_segment or not signature_segment:
        return None

    try:
        signature_matches = hmac.compare_digest(
            _sign(payload_segment, secret_key),
            signature_segment,
        )
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except (ValueError, TypeError, UnicodeDecodeError):
        return None
    if not signature_matches or not isinstance(payload, dict):
        return None
    if payload.get("typ") != ACCESS_TOKEN_TYPE:
        return None

    expiration = payload.get("exp")
    current_timestamp = int((now or datetime.now(UTC)).timestamp())
    if not isinstance(expiration, int) or expiration < current_timestamp:
        return None
    return payload


def _derive_password_digest(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


def _sign(payload_segment: str, secret_key: str) -> str:
    signature = hmac.new(
        secret_key.encode("utf-8"),
        payload_segment.encode("utf-8"),
        hashlib.sha256,
    ).digest()
    return _b64url_encode(signature)


def _b64url_encode(value: bytes) -> str:
    return base64.urlsafe_b64encode(value).decode("ascii").rstrip("=")


def _b64url_decode(value: str) -> bytes:
    padding_size = (-len(value)) % 4
    return base64.urlsafe_b64decode(f"{value}{'=' * padding_size}".encode("ascii"))
