from __future__ import annotations

import pytest

from procurement.core.errors import AuthorizationError
from procurement.domain.requests.roles import (
    Capability,
    Role,
    assert_capability,
    coerce_role,
    has_capability,
)


@pytest.mark.parametrize(
    "role, allowed",
    [
        (Role.ADMIN, True),
        (Role.GENERAL_MANAGER, True),
        (Role.SUPPLY_CHAIN_MANAGER, False),
        (Role.EMPLOYEE, False),
    ],
)
def test_only_general_managers_and_admins_decide(role, allowed) -> None:
    assert has_capability(role, Capability.DECIDE) is allowed


@pytest.mark.parametrize("role", list(Role))
def test_every_role_may_submit(role) -> None:
    assert assert_capability(role, Capability.SUBMIT, action="submit") == role


def test_employees_only_see_their_own_requests() -> None:
    assert has_capability(Role.EMPLOYEE, Capability.VIEW_ALL) is False
    assert has_capability(Role.SUPPLY_CHAIN_MANAGER, Capability.VIEW_ALL) is True


def test_purchase_completion_is_admin_only() -> None:
    holders = [role for role in Role if has_capability(role, Capability.MARK_PURCHASED)]
    assert holders == [Role.ADMIN]


def test_roles_are_coerced_from_strings() -> None:
    assert coerce_role("general_manager") is Role.GENERAL_MANAGER


def test_unknown_role_is_denied() -> None:
    assert has_capability("intern", Capability.SUBMIT) is False
    with pytest.raises(AuthorizationError):
        coerce_role("intern")


def test_assert_capability_names_the_action() -> None:
    with pytest.raises(AuthorizationError) as exc:
        assert_capability(Role.EMPLOYEE, Capability.DECIDE, action="approve requests")

    assert "approve requests" in str(exc.value)
