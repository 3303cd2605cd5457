"""
Role and ownership checks for the order lifecycle.

The calling layer resolves the authenticated user into an ``Actor`` and hands
it to the services; every check here raises ``ForbiddenError`` on failure.
"""
from collections import namedtuple

from packchain.exceptions import ForbiddenError
from packchain.models.app_user import UserRole, MANAGING_ROLES


class Actor(namedtuple('Actor', ['actor_id', 'role', 'entity_id'])):
    """
    The current caller: user id, role and the station or supplier it is bound to.

    ``entity_id`` is a Station id for STATION actors, a Supplier id for
    SUPPLIER actors and None for the managing party.
    """

    __slots__ = ()

    def __new__(cls, actor_id, role, entity_id=None):
        if isinstance(role, UserRole):
            role = role.value
        return super().__new__(cls, actor_id, role, entity_id)

    @classmethod
    def from_user(cls, user):
        """Build an actor from an AppUser row."""
        return cls(user.id, user.role, user.entity_id)

    @property
    def is_managing_party(self):
        return self.role in MANAGING_ROLES

    def is_station(self, station_id):
        return self.role == UserRole.STATION.value and self.entity_id == station_id

    def is_supplier(self, supplier_id):
        return self.role == UserRole.SUPPLIER.value and self.entity_id == supplier_id


# Permission map
PERMISSION_MAP = {
    'MANAGER': 'all',
    'COORDINATOR': 'all',
    'STATION': [
        'edit_shopping_list',
        'validate_shopping_list',
        'view_orders',
        'receive_orders',
        'cancel_orders',
        'delete_orders',
        'report_non_conformities',
        'view_master_orders',
    ],
    'SUPPLIER': [
        'view_orders',
        'confirm_orders',
        'ship_orders',
    ],
}


def has_permission(actor, permission_name):
    """Check whether the actor's role grants a permission."""
    role_permissions = PERMISSION_MAP.get(actor.role, [])
    if role_permissions == 'all':
        return True
    return permission_name in role_permissions


def require_permission(actor, permission_name):
    """Raise ForbiddenError unless the actor's role grants the permission."""
    if actor is None or not has_permission(actor, permission_name):
        raise ForbiddenError(
            "Access denied. Insufficient rights.",
            payload={'permission': permission_name},
        )


def require_role(actor, *allowed_roles):
    """
    Raise ForbiddenError unless the actor holds one of the roles.

    Args:
        actor: Current Actor
        *allowed_roles: Role strings or UserRole members
    """
    allowed = {r.value if isinstance(r, UserRole) else r for r in allowed_roles}
    if actor is None or actor.role not in allowed:
        raise ForbiddenError("Access denied. Insufficient rights.")


def require_managing_party(actor):
    require_role(actor, *MANAGING_ROLES)


def require_station_access(actor, station_id):
    """
    Allow the station bound to ``station_id`` or the managing party acting
    on its behalf.
    """
    if actor is None:
        raise ForbiddenError("Access denied. Insufficient rights.")
    if actor.is_managing_party or actor.is_station(station_id):
        return
    raise ForbiddenError("This station's data is not accessible to you.")
