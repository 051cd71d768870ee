"""
Operational role ladder for restaurant staff.

IMPORTANT: This is the single source of truth for role ordering.
Roles form a total order; a higher role inherits every capability of the
roles below it. Callers express requirements as a set of acceptable roles
("managers and above") and the lowest-ranked member of that set is the bar.

Role ladder (rank):
    kitchen (10) < waiter (20) < cashier (30) < manager (50)
        < restaurant_admin (80) < super_admin (100)

The legacy value "owner" is accepted on input and maps to RESTAURANT_ADMIN.

Usage:
    from tenant_access.constants.roles import Role, satisfies, ROLES_MANAGER_UP

    if satisfies(Role.CASHIER, ROLES_MANAGER_UP):
        ...
"""

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union

logger = logging.getLogger(__name__)


class Role(str, Enum):
    """
    Roles a staff account can hold inside a restaurant.

    Declaration order is rank order, lowest first.
    """
    KITCHEN = "kitchen"
    WAITER = "waiter"
    CASHIER = "cashier"
    MANAGER = "manager"
    RESTAURANT_ADMIN = "restaurant_admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, value: Union["Role", str, None]) -> Optional["Role"]:
        """
        Parse a raw role value. Returns None for anything unrecognised.

        Never raises: garbled input from tokens or the database is treated
        as "no role" by callers.
        """
        if value is None:
            return None
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        normalized = value.strip().lower()
        if normalized in _ROLE_ALIASES:
            return _ROLE_ALIASES[normalized]
        try:
            return cls(normalized)
        except ValueError:
            return None


_ROLE_ALIASES: Dict[str, Role] = {
    "owner": Role.RESTAURANT_ADMIN,
}

ROLE_RANK: Dict[Role, int] = {
    Role.KITCHEN: 10,
    Role.WAITER: 20,
    Role.CASHIER: 30,
    Role.MANAGER: 50,
    Role.RESTAURANT_ADMIN: 80,
    Role.SUPER_ADMIN: 100,
}


def rank(role: Role) -> int:
    """Integer rank of a role; strictly increasing along the ladder."""
    return ROLE_RANK[role]


def minimum_rank(required: Iterable[Union[Role, str]]) -> Optional[int]:
    """
    Lowest rank among the recognised roles in a requirement set.

    Unrecognised entries are ignored. Returns None when nothing in the set
    is recognised (including the empty set), which callers treat as deny.
    A bare role or string counts as a one-element set.
    """
    if isinstance(required, str):
        required = (required,)
    ranks = []
    for value in required:
        parsed = Role.parse(value)
        if parsed is None:
            logger.warning(
                "Ignoring unrecognised role in requirement set",
                extra={"role": repr(value)},
            )
            continue
        ranks.append(ROLE_RANK[parsed])
    return min(ranks) if ranks else None


def satisfies(actual: Optional[Role], required: Iterable[Union[Role, str]]) -> bool:
    """True iff rank(actual) >= min(rank(r) for r in required)."""
    if actual is None:
        return False
    bar = minimum_rank(required)
    if bar is None:
        return False
    return ROLE_RANK[actual] >= bar


def roles_at_or_above(role: Role) -> FrozenSet[Role]:
    """Every role whose rank is at least that of the given role."""
    floor = ROLE_RANK[role]
    return frozenset(r for r, value in ROLE_RANK.items() if value >= floor)


# Requirement sets used across the admin surface

# Sensitive restaurant settings
ROLES_ADMIN_ONLY: FrozenSet[Role] = frozenset({Role.RESTAURANT_ADMIN, Role.SUPER_ADMIN})

# Menu, products and day-to-day operations
ROLES_MANAGER_UP: FrozenSet[Role] = roles_at_or_above(Role.MANAGER)

# Viewing and updating orders
ROLES_ORDERS_READ: FrozenSet[Role] = roles_at_or_above(Role.WAITER)

# Cancelling orders
ROLES_CANCEL_ORDER: FrozenSet[Role] = roles_at_or_above(Role.MANAGER)

# Kitchen display; the kitchen role is the bar
ROLES_KITCHEN_ACCESS: FrozenSet[Role] = frozenset({
    Role.KITCHEN, Role.MANAGER, Role.RESTAURANT_ADMIN, Role.SUPER_ADMIN,
})
