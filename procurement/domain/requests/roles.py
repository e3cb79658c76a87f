"""Role based access for workflow actions.

Roles form a closed set. Each role maps to the capabilities it grants and
every workflow action checks exactly one capability.
"""

from __future__ import annotations

from enum import Enum

from procurement.core.errors import AuthorizationError


class Role(str, Enum):
    ADMIN = "admin"
    SUPPLY_CHAIN_MANAGER = "supply_chain_manager"
    GENERAL_MANAGER = "general_manager"
    EMPLOYEE = "employee"


class Capability(str, Enum):
    SUBMIT = "submit"
    DECIDE = "decide"
    MARK_PURCHASED = "mark_purchased"
    RETRY_CART = "retry_cart"
    VIEW_ALL = "view_all"
    VIEW_ORDERS = "view_orders"


ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.ADMIN: frozenset({
        Capability.SUBMIT,
        Capability.DECIDE,
        Capability.MARK_PURCHASED,
        Capability.RETRY_CART,
        Capability.VIEW_ALL,
        Capability.VIEW_ORDERS,
    }),
    Role.GENERAL_MANAGER: frozenset({
        Capability.SUBMIT,
        Capability.DECIDE,
        Capability.VIEW_ALL,
    }),
    Role.SUPPLY_CHAIN_MANAGER: frozenset({
        Capability.SUBMIT,
        Capability.VIEW_ALL,
        Capability.VIEW_ORDERS,
    }),
    Role.EMPLOYEE: frozenset({
        Capability.SUBMIT,
    }),
}


def coerce_role(role: Role | str) -> Role:
    if isinstance(role, Role):
        return role
    try:
        return Role(role)
    except ValueError as exc:
        raise AuthorizationError(f"Unknown role '{role}'") from exc


def has_capability(role: Role | str, capability: Capability) -> bool:
    try:
        resolved = coerce_role(role)
    except AuthorizationError:
        return False
    return capability in ROLE_CAPABILITIES[resolved]


def assert_capability(role: Role | str, capability: Capability, *, action: str) -> Role:
    """Return the resolved role, or raise AuthorizationError if it may not perform ``action``."""
    resolved = coerce_role(role)
    if capability not in ROLE_CAPABILITIES[resolved]:
        raise AuthorizationError(f"Role '{resolved.value}' is not allowed to {action}")
    return resolved
