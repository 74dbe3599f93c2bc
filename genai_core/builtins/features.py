"""Feature-tier modules started once the core modules are up."""

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping

from ..config import KeyValueStore
from ..errors import ServiceNotRegisteredError
from .validation import InputValidator, ValidationResult

CONVERSATIONS_KEY = "conversations"


class ServiceDirectory:
    """Read-only view over started modules and registry services.

    Lookups of absent names return ``None`` instead of raising.
    """

    def __init__(self, registry: Any, orchestrator: Any | None = None) -> None:
        self._registry = registry
        self._orchestrator = orchestrator

    def lookup(self, name: str) -> Any | None:
        if self._orchestrator is None:
            return None
        return self._orchestrator.get_module(name)

    async def resolve(self, name: str) -> Any | None:
        if self._orchestrator is not None and name in {spec.name for spec in self._orchestrator.module_specs()}:
            return self.lookup(name)
        try:
            return await self._registry.get(name)
        except ServiceNotRegisteredError:
            return None

    def available(self) -> tuple[str, ...]:
        if self._orchestrator is None:
            return ()
        return self._orchestrator.get_status().modules


@dataclass
class ChatMessage:
    role: str
    content: str
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


@dataclass
class Conversation:
    id: str
    title: str
    messages: list[ChatMessage] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Conversation":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title", "")),
            messages=[ChatMessage(**message) for message in data.get("messages", [])],
        )


class ChatStore:
    """Conversations kept in memory and written through to a key-value store."""

    def __init__(
        self,
        store: KeyValueStore,
        *,
        validator: InputValidator | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._validator = validator
        self._logger = logger or logging.getLogger(__name__)
        self._conversations: dict[str, Conversation] = {}
        self._load()

    def _load(self) -> None:
        raw = self._store.load(CONVERSATIONS_KEY) or []
        if not isinstance(raw, list):
            self._logger.warning("ignoring malformed conversation history")
            return
        for item in raw:
            conversation = Conversation.from_dict(item)
            self._conversations[conversation.id] = conversation

    def _persist(self) -> None:
        self._store.save(
            CONVERSATIONS_KEY,
            [asdict(conversation) for conversation in self._conversations.values()],
        )

    def create_conversation(self, title: str = "New chat") -> Conversation:
        conversation = Conversation(id=uuid.uuid4().hex, title=title)
        self._conversations[conversation.id] = conversation
        self._persist()
        return conversation

    def add_message(self, conversation_id: str, role: str, content: str) -> ChatMessage:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(conversation_id)
        if self._validator is not None:
            result = self._validator.validate_text(content, required=True)
            if not result.valid:
                raise ValueError("; ".join(result.errors))
            content = result.value
        message = ChatMessage(role=role, content=content)
        conversation.messages.append(message)
        self._persist()
        return message

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    def conversations(self) -> tuple[Conversation, ...]:
        return tuple(self._conversations.values())

    def delete_conversation(self, conversation_id: str) -> bool:
        if self._conversations.pop(conversation_id, None) is None:
            return False
        self._persist()
        return True


class AIIntegration:
    """Holds the configured provider and guards what is sent to it."""

    def __init__(self, provider: str, validator: Any, storage: Any | None = None) -> None:
        self.provider = provider
        self._validator = validator
        self._storage = storage

    @property
    def api_key_name(self) -> str:
        return f"{self.provider}_api_key"

    def configure_api_key(self, api_key: str) -> ValidationResult:
        result = self._validator.validate_api_key(api_key)
        if result.valid and self._storage is not None:
            self._storage.set_item(self.api_key_name, result.value)
        return result

    def has_api_key(self) -> bool:
        return self._storage is not None and bool(self._storage.get_item(self.api_key_name))

    def prepare_prompt(self, text: str) -> str:
        result = self._validator.validate_text(text, required=True)
        if not result.valid:
            raise ValueError("; ".join(result.errors))
        return result.value

    def health_check(self) -> bool:
        return bool(self.provider)


class UIBootstrap:
    def __init__(self, announcer: Any | None = None, *, theme: str = "default", animations: bool = True) -> None:
        self.theme = theme
        self.animations = animations
        self.bootstrapped = False
        self._announcer = announcer

    def bootstrap(self) -> "UIBootstrap":
        self.bootstrapped = True
        if self._announcer is not None:
            self._announcer.announce("Interface loaded")
        return self

    def health_check(self) -> bool:
        return self.bootstrapped
