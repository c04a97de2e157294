from __future__ import annotations

from dataclasses import dataclass, field

from task_chat.domain.entities.participant import Participant


@dataclass(frozen=True, slots=True)
class Principal:
    """Caller identity read from the bearer token."""

    user_id: str
    token: str = field(repr=False)
    name: str = "You"
    photo: str = ""
    roles: list[str] = field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return "admin" in self.roles

    @property
    def principal_key(self) -> str:
        """Unique key for WS connection registry."""
        return f"user:{self.user_id}"

    def as_participant(self) -> Participant:
        return Participant(id=self.user_id, name=self.name, photo=self.photo)
