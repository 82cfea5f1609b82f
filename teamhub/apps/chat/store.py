from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from teamhub.core.errors import ForbiddenError, InvalidRequestError, NotFoundError


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class ConversationRecord:
    id: str
    participant1: str
    participant2: str
    createdAt: str = field(default_factory=_now)
    lastMessageAt: str | None = None

    def other_participant(self, user_id: str) -> str:
        return self.participant2 if self.participant1 == user_id else self.participant1

    def includes(self, user_id: str) -> bool:
        return user_id in (self.participant1, self.participant2)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class DirectMessageRecord:
    id: str
    conversationId: str
    senderId: str
    content: str
    read: bool = False
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ChannelMessageRecord:
    # Project or team channel message.
    id: str
    scope: str
    scopeId: str
    userId: str
    content: str
    createdAt: str = field(default_factory=_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class InMemoryChatStore:
    def __init__(self) -> None:
        self._conversations: dict[str, ConversationRecord] = {}
        self._direct: dict[str, list[DirectMessageRecord]] = {}
        self._channels: dict[tuple[str, str], list[ChannelMessageRecord]] = {}

    def start_conversation(self, user_id: str, participant_id: str) -> tuple[ConversationRecord, bool]:
        # Returns (conversation, created); one conversation per unordered pair.
        if user_id == participant_id:
            raise InvalidRequestError("Cannot start a conversation with yourself")
        for conversation in self._conversations.values():
            if conversation.includes(user_id) and conversation.includes(participant_id):
                return conversation, False
        conversation = ConversationRecord(id=str(uuid4()), participant1=user_id, participant2=participant_id)
        self._conversations[conversation.id] = conversation
        self._direct[conversation.id] = []
        return conversation, True

    def conversations_for(self, user_id: str) -> list[ConversationRecord]:
        return [conversation for conversation in self._conversations.values() if conversation.includes(user_id)]

    def require_participant(self, conversation_id: str, user_id: str) -> ConversationRecord:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise NotFoundError("Conversation not found")
        if not conversation.includes(user_id):
            raise ForbiddenError("You are not part of this conversation")
        return conversation

    def add_direct_message(self, conversation: ConversationRecord, sender_id: str, content: str) -> DirectMessageRecord:
        message = DirectMessageRecord(
            id=str(uuid4()),
            conversationId=conversation.id,
            senderId=sender_id,
            content=content,
        )
        self._direct[conversation.id].append(message)
        conversation.lastMessageAt = message.createdAt
        return message

    def direct_messages(self, conversation_id: str) -> list[DirectMessageRecord]:
        return list(self._direct.get(conversation_id, []))

    def mark_read(self, conversation_id: str, reader_id: str) -> int:
        # Marks messages sent by the other participant; returns how many changed.
        changed = 0
        for message in self._direct.get(conversation_id, []):
            if message.senderId != reader_id and not message.read:
                message.read = True
                changed += 1
        return changed

    def unread_count(self, user_id: str) -> int:
        return sum(
            1
            for conversation in self.conversations_for(user_id)
            for message in self._direct.get(conversation.id, [])
            if message.senderId != user_id and not message.read
        )

    def add_channel_message(self, scope: str, scope_id: str, user_id: str, content: str) -> ChannelMessageRecord:
        message = ChannelMessageRecord(
            id=str(uuid4()),
            scope=scope,
            scopeId=scope_id,
            userId=user_id,
            content=content,
        )
        self._channels.setdefault((scope, scope_id), []).append(message)
        return message

    def channel_messages(self, scope: str, scope_id: str) -> list[ChannelMessageRecord]:
        return list(self._channels.get((scope, scope_id), []))
