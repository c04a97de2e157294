from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class StartConversationDTO:
    task_id: str
    client_id: str
    freelancer_id: str
    message: str = ""
