from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from .config import JWT_ALGORITHM, JWT_SECRET
from .errors import WorkCallError

bearer_scheme = HTTPBearer(auto_error=False)


class AuthError(WorkCallError):
    code = "unauthorized"
    http_status = 401


class ForbiddenError(WorkCallError):
    code = "forbidden"
    http_status = 403


def decode_token(token: str | None) -> dict:
    if not token:
        raise AuthError("Missing Bearer token")
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except JWTError:
        raise AuthError("Invalid or expired token")
    if not payload.get("sub"):
        raise AuthError("Token has no subject")
    return payload


def get_current_user(
    request: Request,
    creds: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict:
    token = None
    if creds and creds.scheme.lower() == "bearer":
        token = creds.credentials

    payload = decode_token(token)
    request.state.user_sub = payload.get("sub")
    request.state.user_roles = payload.get("roles")
    return payload
