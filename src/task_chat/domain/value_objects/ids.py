from __future__ import annotations

import uuid
from typing import NewType

MessageId = NewType("MessageId", str)

TEMP_ID_PREFIX = "temp-"


def new_temp_id() -> MessageId:
    return MessageId(f"{TEMP_ID_PREFIX}{uuid.uuid4().hex}")


def is_temp_id(message_id: str) -> bool:
    return message_id.startswith(TEMP_ID_PREFIX)
