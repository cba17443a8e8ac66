"""Role and ownership authorization.

Two pieces:

- `decide` is the single ownership rule: admins may act on anything,
  everyone else only on what they own.
- `ROUTE_ROLES` says which roles may call which endpoint. `authorize_route`
  is attached once per protected router and checks the table, so handlers
  never repeat role checks themselves.
"""
import enum
import logging
from typing import Iterable

from fastapi import Depends, Request

from auth import get_current_user
from errors import AuthorizationError

logger = logging.getLogger(__name__)

ADMIN = "Admin"
USER = "User"
ALL_ROLES = frozenset({ADMIN, USER})


class Decision(str, enum.Enum):
    ALLOW = "allow"
    DENY = "deny"


def is_admin(roles: Iterable[str]) -> bool:
    return ADMIN in set(roles or [])


def decide(actor_roles: Iterable[str], actor_id, resource_owner_id) -> Decision:
    if is_admin(actor_roles):
        return Decision.ALLOW
    if actor_id is not None and actor_id == resource_owner_id:
        return Decision.ALLOW
    return Decision.DENY


# endpoint function name -> roles allowed to call it.
# An empty set means "any authenticated user".
ROUTE_ROLES = {
    # tasks
    "get_all_tasks": frozenset({ADMIN}),
    "get_my_tasks": frozenset({ADMIN, USER}),
    "get_task_by_id": frozenset({ADMIN, USER}),
    "add_task": frozenset({ADMIN, USER}),
    "update_task": frozenset({ADMIN, USER}),
    "delete_task": frozenset({ADMIN, USER}),
    "get_task_count": frozenset({ADMIN, USER}),
    # users
    "get_role": frozenset(),
    "user_profile": frozenset(),
    "get_all_users": frozenset({ADMIN}),
    "update_user": frozenset({ADMIN, USER}),
    "delete_me": frozenset({USER}),
    "admin_delete_user": frozenset({ADMIN}),
}


def roles_allowed(endpoint_name: str, roles: Iterable[str]) -> bool:
    """Unknown endpoints are closed: they must be listed to be reachable."""
    if endpoint_name not in ROUTE_ROLES:
        return False
    required = ROUTE_ROLES[endpoint_name]
    if not required:
        return True
    return bool(required & set(roles or []))


async def authorize_route(request: Request, current_user=Depends(get_current_user)):
    """Router-level dependency enforcing ROUTE_ROLES for the matched endpoint."""
    endpoint = request.scope.get("endpoint")
    name = getattr(endpoint, "__name__", "")
    if not roles_allowed(name, current_user["roles"]):
        logger.warning("Role check failed for user %s on %s", current_user["id"], name)
        raise AuthorizationError()
    return current_user
