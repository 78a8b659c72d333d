"""Auth-related enums."""

from enum import Enum


class Role(str, Enum):
    """
    User roles with increasing privilege levels.

    - USER: Customer (requester); sees only their own tickets
    - AGENT: Support staff; triages, replies, merges
    - ADMIN: Agent plus settings, bulk delete, cross-requester merges
    """

    USER = "USER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"

    @classmethod
    def has_value(cls, value: str) -> bool:
        """Check if value is a valid role."""
        return value in cls._value2member_map_


STAFF_ROLES = frozenset({Role.AGENT, Role.ADMIN})
