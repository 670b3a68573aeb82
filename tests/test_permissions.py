import pytest

from finance_tracker.permissions import Action, Role, allowed_actions, is_admin, permits


@pytest.mark.parametrize(
    "role,action,expected",
    [
        ("admin", "read", True),
        ("admin", "write", True),
        ("admin", "admin", True),
        ("user", "read", True),
        ("user", "write", True),
        ("user", "admin", False),
        ("read-only", "read", True),
        ("read-only", "write", False),
        ("read-only", "admin", False),
    ],
)
def test_permission_table(role, action, expected):
    assert permits(role, action) is expected
    assert permits(Role(role), Action(action)) is expected


@pytest.mark.parametrize("role", ["", "Admin", "superuser", "readonly", None, 3])
def test_unknown_roles_are_denied(role):
    for action in Action:
        assert permits(role, action) is False
    assert allowed_actions(role) == []
    assert is_admin(role) is False


def test_unknown_action_is_denied():
    assert permits("admin", "delete") is False


def test_lattice_is_nested():
    admin = set(allowed_actions("admin"))
    user = set(allowed_actions("user"))
    read_only = set(allowed_actions("read-only"))
    assert read_only < user < admin
