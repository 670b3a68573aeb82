"""Role model: a closed set of roles and the actions each one may perform."""
import enum


class Role(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"
    READ_ONLY = "read-only"


class Action(str, enum.Enum):
    READ = "read"
    WRITE = "write"
    ADMIN = "admin"


PERMISSIONS: dict[Role, frozenset[Action]] = {
    Role.ADMIN: frozenset({Action.READ, Action.WRITE, Action.ADMIN}),
    Role.USER: frozenset({Action.READ, Action.WRITE}),
    Role.READ_ONLY: frozenset({Action.READ}),
}


def parse_role(value) -> Role | None:
    try:
        return Role(value)
    except ValueError:
        return None


def permits(role, action) -> bool:
    """Return True if ``role`` may perform ``action``. Unknown roles or actions are denied."""
    parsed = parse_role(role)
    if parsed is None:
        return False
    try:
        action = Action(action)
    except ValueError:
        return False
    return action in PERMISSIONS[parsed]


def is_admin(role) -> bool:
    return permits(role, Action.ADMIN)


def allowed_actions(role) -> list[str]:
    parsed = parse_role(role)
    if parsed is None:
        return []
    return sorted(a.value for a in PERMISSIONS[parsed])
