"""
Token generation and validation for one-click unsubscribe links.

Each preference record receives exactly one token when it is created. The
token is a signed payload of the user id plus a random nonce, so it is unique
per record and can be rejected on signature alone before any database lookup.
Tokens never expire; they stay valid for the lifetime of the record.
"""

import hashlib
import os
import secrets
from typing import Optional

from itsdangerous import BadData, URLSafeSerializer

UNSUBSCRIBE_SALT = "email-preferences-unsubscribe"


def _get_serializer() -> URLSafeSerializer:
    """
    Get configured serializer for token generation and validation.

    Raises:
        ValueError: If UNSUBSCRIBE_SECRET_KEY environment variable not set
    """
    secret_key = os.getenv("UNSUBSCRIBE_SECRET_KEY")
    if not secret_key:
        raise ValueError("UNSUBSCRIBE_SECRET_KEY environment variable must be set.")

    return URLSafeSerializer(
        secret_key,
        salt=UNSUBSCRIBE_SALT,
        signer_kwargs={"digest_method": hashlib.sha256},
    )


def generate_unsubscribe_token(user_id: str) -> str:
    """
    Generate a new signed unsubscribe token for a user.

    Two calls for the same user return different tokens; callers must store
    the first one and never regenerate it.

    Args:
        user_id: User's unique identifier

    Returns:
        URL-safe token string (format: payload.signature)

    Raises:
        ValueError: If UNSUBSCRIBE_SECRET_KEY not configured
    """
    serializer = _get_serializer()
    return serializer.dumps({"user_id": user_id, "nonce": secrets.token_urlsafe(16)})


def validate_unsubscribe_token(token: str) -> Optional[str]:
    """
    Verify a token's signature and extract the user_id.

    Never raises exceptions - returns None for any invalid token.

    Examples:
        >>> token = generate_unsubscribe_token("user-123")
        >>> validate_unsubscribe_token(token)
        'user-123'

        >>> validate_unsubscribe_token("invalid-token") is None
        True
    """
    if not token:
        return None
    try:
        payload = _get_serializer().loads(token)
    except (BadData, ValueError, TypeError):
        # Invalid signature, missing secret, or malformed token
        return None

    if not isinstance(payload, dict):
        return None
    user_id = payload.get("user_id")
    return user_id if isinstance(user_id, str) else None
