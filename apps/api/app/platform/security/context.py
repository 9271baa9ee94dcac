from __future__ import annotations

from dataclasses import dataclass

from app.platform.security.roles import Role


@dataclass(slots=True, frozen=True)
class Principal:
    """Authenticated caller resolved by the principal provider."""

    id: str
    role: Role
    is_active: bool = True
    first_name: str = ""
    last_name: str = ""
    email: str | None = None

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
