"""Authentication helpers and FastAPI security dependency.

`get_current_user` validates the bearer token and returns the
corresponding `User` row. It runs before any route body, so a missing,
malformed or expired token short-circuits with 401 before a service is
ever called.
"""

from typing import Optional

from fastapi import Depends, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from . import models, repositories
from .database import get_session
from .errors import UnauthorizedError
from .services import decode_token

# auto_error=False so a missing header is reported as 401, not FastAPI's default 403
bearer_scheme = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    session: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and looks the user up. Any failure raises `UnauthorizedError`.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError("missing or invalid Authorization header")
    user_id = decode_token(credentials.credentials)
    user = repositories.UserRepository(session).get(user_id)
    if not user:
        raise UnauthorizedError("user not found")
    return user
