"""Security utilities for session JWTs and claimer room tokens."""

from datetime import datetime, timedelta, timezone
from uuid import UUID

import jwt

from lostfound.core.config import settings


CLAIMER_TOKEN_PURPOSE = "claimer_room"


# =============================================================================
# Session Token (JWT in cookie / bearer header)
# =============================================================================

def create_session_token(user_id: UUID, token_version: int) -> str:
    """
    Create signed session JWT.

    Always signs with current secret (JWT_SECRET).
    Token contains user identity and revocation version.
    """
    payload = {
        "sub": str(user_id),
        "token_version": token_version,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(hours=settings.JWT_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_session_token(token: str) -> dict:
    """
    Decode and verify a JWT.

    Tries current secret first, then previous (for rotation support).

    Raises:
        jwt.InvalidTokenError: If token invalid with all secrets
    """
    last_error = None
    for secret in settings.jwt_secrets:
        try:
            return jwt.decode(token, secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            last_error = e
            continue
    raise last_error  # type: ignore


# =============================================================================
# Claimer Token (email-verified guest access to one room)
# =============================================================================

def create_claimer_token(email: str, room_id: str) -> str:
    """
    Create a token granting an unauthenticated claimer access to one room.

    Issued once the claimer's email has been verified; the email is stored
    lowercased so comparisons stay case-insensitive.
    """
    payload = {
        "purpose": CLAIMER_TOKEN_PURPOSE,
        "email": email.strip().lower(),
        "room_id": room_id,
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc)
        + timedelta(hours=settings.CLAIMER_TOKEN_EXPIRES_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm="HS256")


def decode_claimer_token(token: str) -> dict:
    """
    Decode a claimer token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid or not a claimer token
    """
    payload = decode_session_token(token)
    if payload.get("purpose") != CLAIMER_TOKEN_PURPOSE:
        raise jwt.InvalidTokenError("Not a claimer token")
    if not payload.get("email") or not payload.get("room_id"):
        raise jwt.InvalidTokenError("Malformed claimer token")
    return payload
