"""FastAPI dependencies for authentication and database access."""

from typing import Generator
from uuid import UUID

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from lostfound.core.security import decode_claimer_token, decode_session_token
from lostfound.db.session import SessionLocal
from lostfound.schemas.auth import CallerSession


# Cookie and header names
COOKIE_NAME = "lf_session"
CLAIMER_TOKEN_HEADER = "X-Claimer-Token"
CSRF_HEADER = "X-Requested-With"
CSRF_HEADER_VALUE = "XMLHttpRequest"


def get_db() -> Generator[Session, None, None]:
    """
    Database session dependency.

    Yields a database session and ensures it's closed after the request.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def _session_token_from_request(request: Request) -> str | None:
    auth = request.headers.get("Authorization", "")
    if auth.lower().startswith("bearer "):
        return auth[7:].strip() or None
    return request.cookies.get(COOKIE_NAME)


def resolve_user_session(db: Session, token: str) -> CallerSession:
    """
    Validate a session token and load the user.

    Raises:
        HTTPException 401: Authentication failed
    """
    from lostfound.db.models import User

    try:
        payload = decode_session_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid session")

    if "sub" not in payload:
        raise HTTPException(status_code=401, detail="Invalid session")

    user = db.get(User, _parse_uuid(payload["sub"]))
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account disabled")

    # Token version check (revocation support)
    if user.token_version != payload.get("token_version"):
        raise HTTPException(status_code=401, detail="Session revoked")

    return CallerSession(
        user_id=user.id,
        email=user.email,
        display_name=user.display_name,
    )


def resolve_claimer_session(token: str) -> CallerSession:
    try:
        payload = decode_claimer_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid claimer token")
    return CallerSession(email=payload["email"], room_scope=payload["room_id"])


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(str(value))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid session")


def get_current_session(
    request: Request,
    db: Session = Depends(get_db),
) -> CallerSession:
    """
    Authenticated user session (cookie or bearer token).

    This is the PRIMARY auth dependency for user-scoped endpoints.

    Raises:
        HTTPException 401: Not authenticated
    """
    token = _session_token_from_request(request)
    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return resolve_user_session(db, token)


def get_caller(
    request: Request,
    db: Session = Depends(get_db),
) -> CallerSession:
    """
    Caller for claim/room endpoints.

    Accepts a user session, or an email-verified claimer token scoped to a
    single room. Routers must check room_scope against the room they serve.

    Raises:
        HTTPException 401: Neither credential present or valid
    """
    token = _session_token_from_request(request)
    if token:
        return resolve_user_session(db, token)

    claimer_token = request.headers.get(CLAIMER_TOKEN_HEADER)
    if claimer_token:
        return resolve_claimer_session(claimer_token)

    raise HTTPException(status_code=401, detail="Not authenticated")


def get_optional_session(
    request: Request,
    db: Session = Depends(get_db),
) -> CallerSession | None:
    """User session if present, else None (public endpoints)."""
    token = _session_token_from_request(request)
    if not token:
        return None
    return resolve_user_session(db, token)


def require_csrf_header(request: Request) -> None:
    """
    Verify CSRF header on cookie-authenticated mutations.

    Raises:
        HTTPException 403: Missing or invalid CSRF header
    """
    if COOKIE_NAME not in request.cookies:
        return
    if request.headers.get(CSRF_HEADER) != CSRF_HEADER_VALUE:
        raise HTTPException(
            status_code=403,
            detail=f"Missing CSRF header. Include '{CSRF_HEADER}: {CSRF_HEADER_VALUE}'"
        )
