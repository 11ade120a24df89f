from .security import ForbiddenError

CUSTOMER = "customer"
WORKER = "worker"
ADMIN = "admin"


def require_role(payload: dict, allowed_roles: list[str]) -> str:
    """Returns the caller's id (token `sub`) when any of its roles is allowed."""
    token_roles = payload.get("roles")

    if not isinstance(token_roles, list) or not token_roles:
        raise ForbiddenError("Roles missing in token")

    allowed = {r.lower() for r in allowed_roles}
    roles = {str(r).lower() for r in token_roles}

    if roles.isdisjoint(allowed):
        raise ForbiddenError("Access forbidden for this role")
    return payload["sub"]


def has_role(payload: dict, role: str) -> bool:
    roles = payload.get("roles") or []
    return role in {str(r).lower() for r in roles}
