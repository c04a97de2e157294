from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from task_chat.application.exceptions import MalformedPayloadError
from task_chat.domain.entities.conversation import Conversation, TaskRef
from task_chat.domain.entities.message import Message
from task_chat.domain.entities.participant import Participant
from task_chat.infrastructure.http.documents import (
    AppendResponseDoc,
    ConversationDoc,
    MessageDoc,
    TaskDoc,
    UserDoc,
)


def _user_to_entity(doc: str | UserDoc) -> Participant:
    if isinstance(doc, str):
        return Participant(id=doc)
    return Participant(id=doc.id, name=doc.name or "User", photo=doc.photo or "")


def message_doc_to_entity(doc: MessageDoc, conversation_id: str) -> Message:
    sender_id = doc.sender if isinstance(doc.sender, str) else doc.sender.id
    return Message(
        id=doc.id,
        conversation_id=doc.conversation_id or conversation_id,
        sender_id=sender_id,
        text=doc.text,
        status=doc.status,
        timestamp=doc.timestamp,
        attachments=tuple(doc.attachments),
        client_temp_id=doc.client_temp_id,
    )


def _participants(doc: ConversationDoc) -> tuple[Participant, Participant]:
    raw: list[str | UserDoc]
    if doc.participants:
        raw = list(doc.participants)
    else:
        raw = [p for p in (doc.client, doc.freelancer) if p is not None]
    if len(raw) != 2:
        raise MalformedPayloadError(
            f"Conversation {doc.id} must have exactly two participants, got {len(raw)}"
        )

    # Bare ids pick up names and photos from populated message senders.
    known = {m.sender.id: m.sender for m in doc.messages if isinstance(m.sender, UserDoc)}
    first, second = (
        _user_to_entity(known.get(p, p) if isinstance(p, str) else p) for p in raw
    )
    return first, second


def _task(doc: str | TaskDoc | None) -> TaskRef | None:
    if doc is None:
        return None
    if isinstance(doc, str):
        return TaskRef(id=doc)
    return TaskRef(id=doc.id, title=doc.title, status=doc.status)


def conversation_doc_to_entity(doc: ConversationDoc) -> Conversation:
    return Conversation(
        id=doc.id,
        participants=_participants(doc),
        messages=tuple(message_doc_to_entity(m, doc.id) for m in doc.messages),
        task=_task(doc.task),
    )


def parse_conversation(data: Any) -> tuple[Conversation, int | None]:
    """Return the conversation and the backend's unread count, if it sent one."""
    try:
        doc = ConversationDoc.model_validate(data)
    except PydanticValidationError as exc:
        raise MalformedPayloadError(f"Invalid conversation document: {exc}") from exc
    return conversation_doc_to_entity(doc), doc.unread_count


def parse_message(data: Any, conversation_id: str) -> Message:
    try:
        doc = MessageDoc.model_validate(data)
    except PydanticValidationError as exc:
        raise MalformedPayloadError(f"Invalid message document: {exc}") from exc
    return message_doc_to_entity(doc, conversation_id)


def parse_append_response(
    data: Any,
    conversation_id: str,
    client_temp_id: str | None = None,
) -> Message:
    """Extract the persisted message from an append response.

    The backend answers either ``{"message": {...}}`` or the whole updated
    ``{"conversation": {...}}``; in the latter case the message echoing the
    temp id wins, else the last one.
    """
    try:
        doc = AppendResponseDoc.model_validate(data)
    except PydanticValidationError as exc:
        raise MalformedPayloadError(f"Invalid append response: {exc}") from exc

    if doc.message is not None:
        return message_doc_to_entity(doc.message, conversation_id)
    if doc.conversation is not None and doc.conversation.messages:
        messages = doc.conversation.messages
        chosen = next(
            (m for m in messages if client_temp_id and m.client_temp_id == client_temp_id),
            messages[-1],
        )
        return message_doc_to_entity(chosen, conversation_id)
    raise MalformedPayloadError("Append response carries no message")


def message_to_document(message: Message) -> dict[str, Any]:
    doc = MessageDoc(
        id=message.id,
        conversation_id=message.conversation_id,
        sender=message.sender_id,
        text=message.text,
        status=message.status,
        timestamp=message.timestamp,
        attachments=list(message.attachments),
        client_temp_id=message.client_temp_id,
    )
    return doc.model_dump(mode="json", by_alias=True, exclude_none=True)
