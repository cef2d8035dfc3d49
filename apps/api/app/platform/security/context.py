from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any


class Role(StrEnum):
    ADMIN = "admin"
    SALES_MANAGER = "sales_manager"
    SALES_EXECUTIVE = "sales_executive"

    @classmethod
    def parse(cls, value: Any) -> Role:
        """Map a stored role string onto the closed role set.

        Only exact role values match. Anything else (including ``None`` and
        differently cased or padded strings) becomes ``SALES_EXECUTIVE``,
        the most restrictive role.
        """

        if isinstance(value, cls):
            return value
        for member in cls:
            if member.value == value:
                return member
        return cls.SALES_EXECUTIVE


MANAGERIAL_ROLES = frozenset({Role.ADMIN, Role.SALES_MANAGER})


@dataclass(slots=True)
class Principal:
    """Authenticated caller used by visibility and assignment decisions."""

    id: int
    role: Role = Role.SALES_EXECUTIVE
    team_id: int | None = None
    manager_id: int | None = None
    full_name: str = ""
    correlation_id: str | None = None
    _cache: dict[str, Any] = field(default_factory=dict, repr=False)

    def __post_init__(self) -> None:
        self.role = Role.parse(self.role)

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def display_name(self) -> str:
        return self.full_name or f"user {self.id}"
