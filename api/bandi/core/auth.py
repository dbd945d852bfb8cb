from dataclasses import dataclass
from enum import Enum


class Role(str, Enum):
    STUDENT = "Student"
    PROFESSOR = "Professor"
    DDI = "DDI"
    TEACHING_OFFICE = "Teaching Office"


class AuthenticationError(Exception):
    """Raised when a token cannot be verified."""


@dataclass(slots=True, frozen=True)
class Principal:
    id: str
    role: Role

    def has_role(self, *roles: Role) -> bool:
        return self.role in roles

    def require_roles(self, *roles: Role) -> None:
        if not self.has_role(*roles):
            raise PermissionError("Access denied")


def parse_role(value: object) -> Role | None:
    if isinstance(value, Role):
        return value
    if not isinstance(value, str):
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def extract_token(authorization: str | None) -> str | None:
    """Return the raw token from an ``Authorization`` header.

    Both the ``JWT <token>`` scheme used by the web client and the
    conventional ``Bearer <token>`` scheme are accepted.
    """
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() not in {"jwt", "bearer"}:
        return None
    token = token.strip()
    return token or None
