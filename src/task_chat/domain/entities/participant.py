from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Participant:
    id: str
    name: str = "User"
    photo: str = ""


def unknown_participant(participant_id: str) -> Participant:
    """Placeholder identity for a sender whose profile is not loaded."""
    return Participant(id=participant_id)
