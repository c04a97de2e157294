"""Pydantic models of the marketplace backend's JSON documents."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from task_chat.domain.value_objects.enums import MessageStatus


class _Document(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class UserDoc(_Document):
    id: str = Field(alias="_id")
    name: str = "User"
    photo: str | None = ""


class TaskDoc(_Document):
    id: str = Field(alias="_id")
    title: str = ""
    status: str | None = None


class MessageDoc(_Document):
    id: str = Field(alias="_id")
    conversation_id: str | None = Field(default=None, alias="conversationId")
    sender: str | UserDoc
    text: str = ""
    status: MessageStatus = MessageStatus.SENT
    timestamp: datetime
    attachments: list[str] = []
    client_temp_id: str | None = Field(default=None, alias="clientTempId")


class ConversationDoc(_Document):
    id: str = Field(alias="_id")
    participants: list[str | UserDoc] | None = None
    client: str | UserDoc | None = None
    freelancer: str | UserDoc | None = None
    task: str | TaskDoc | None = None
    messages: list[MessageDoc] = []
    unread_count: int | None = Field(default=None, alias="unreadCount")


class AppendResponseDoc(_Document):
    message: MessageDoc | None = None
    conversation: ConversationDoc | None = None
