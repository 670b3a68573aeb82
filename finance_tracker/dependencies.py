import jwt
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from . import crud, models
from .auth import decode_access_token
from .cache import Cache
from .db import get_db
from .errors import AuthenticationError, AuthorizationError
from .permissions import Action, permits

security = HTTPBearer(auto_error=False)


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    db: Session = Depends(get_db),
) -> models.User:
    """Resolve the principal from the bearer token; the role is read fresh from the store."""
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Access token required")
    try:
        payload = decode_access_token(credentials.credentials)
    except jwt.PyJWTError as exc:
        raise AuthenticationError("Invalid or expired token") from exc

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError("Invalid token subject")
    user = crud.get_user(db, str(user_id))
    if user is None:
        raise AuthenticationError("Invalid token")
    return user


def require_permission(action: Action):
    def dependency(current_user: models.User = Depends(get_current_user)) -> models.User:
        if not permits(current_user.role, action):
            raise AuthorizationError("Insufficient permissions")
        return current_user

    return dependency


def get_cache(request: Request) -> Cache:
    return request.app.state.cache
