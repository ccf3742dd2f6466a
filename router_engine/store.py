"""Conversation context persistence.

``ContextStore`` wraps a ``ConversationRepository`` and trades strict
correctness for conversational availability: a failing repository read looks
like "no prior context" and a failing write is logged and dropped, so a
storage outage never blocks the customer's reply.

The store does no locking. Callers must not run two turns for the same
conversation id at once.
"""

import copy
import logging
import uuid
from typing import Any, Protocol

from router_engine.models import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    ConversationContext,
    EscalationRecord,
    utc_now,
)

logger = logging.getLogger(__name__)

# Fields that may never be written through update().
PROTECTED_FIELDS = frozenset({"conversation_id", "escalation_history", "created_at"})


class ConversationRepository(Protocol):
    async def get(self, conversation_id: str) -> ConversationContext | None: ...
    async def find_by_counterpart(self, counterpart_id: str) -> list[ConversationContext]: ...
    async def insert(self, context: ConversationContext) -> None: ...
    async def update(self, conversation_id: str, changes: dict[str, Any]) -> None: ...
    async def append_escalation(self, conversation_id: str, record: EscalationRecord) -> None: ...
    async def resolve_escalations(self, conversation_id: str, notes: str | None) -> None: ...


class InMemoryConversationRepository:
    """Process-local repository. Hands out copies so callers can't alias stored state."""

    def __init__(self) -> None:
        self._data: dict[str, ConversationContext] = {}

    async def get(self, conversation_id: str) -> ConversationContext | None:
        context = self._data.get(conversation_id)
        return copy.deepcopy(context) if context is not None else None

    async def find_by_counterpart(self, counterpart_id: str) -> list[ConversationContext]:
        matches = [
            ctx for ctx in self._data.values()
            if counterpart_id in (ctx.customer_id, ctx.phone_number)
        ]
        matches.sort(key=lambda ctx: ctx.last_activity, reverse=True)
        return [copy.deepcopy(ctx) for ctx in matches]

    async def insert(self, context: ConversationContext) -> None:
        if context.conversation_id in self._data:
            raise KeyError(f"Conversation {context.conversation_id} already exists")
        self._data[context.conversation_id] = copy.deepcopy(context)

    async def update(self, conversation_id: str, changes: dict[str, Any]) -> None:
        context = self._data.get(conversation_id)
        if context is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        for key, value in changes.items():
            setattr(context, key, copy.deepcopy(value))

    async def append_escalation(self, conversation_id: str, record: EscalationRecord) -> None:
        context = self._data.get(conversation_id)
        if context is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        context.escalation_history.append(copy.deepcopy(record))

    async def resolve_escalations(self, conversation_id: str, notes: str | None) -> None:
        context = self._data.get(conversation_id)
        if context is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        for record in context.escalation_history:
            if not record.resolved:
                record.resolved = True
                record.notes = notes or record.notes


class ContextStore:
    def __init__(self, repository: ConversationRepository | None = None):
        self._repository = repository or InMemoryConversationRepository()

    async def get(self, conversation_id: str) -> ConversationContext | None:
        if not conversation_id:
            return None
        try:
            return await self._repository.get(conversation_id)
        except Exception as e:
            logger.warning("Context read failed for %s, starting fresh: %s", conversation_id, e)
            return None

    async def find_active(self, counterpart_id: str) -> ConversationContext | None:
        """Most recently active, non-closed conversation for a counterpart."""
        if not counterpart_id:
            return None
        try:
            candidates = await self._repository.find_by_counterpart(counterpart_id)
        except Exception as e:
            logger.warning("Context lookup failed for counterpart %s: %s", counterpart_id, e)
            return None
        for context in candidates:
            if context.status != STATUS_CLOSED:
                return context
        return None

    async def create(
        self,
        conversation_id: str | None = None,
        customer_id: str | None = None,
        pharmacy_id: str | None = None,
        phone_number: str | None = None,
    ) -> ConversationContext:
        context = ConversationContext(
            conversation_id=conversation_id or f"CONV-{uuid.uuid4().hex[:12]}",
            status=STATUS_ACTIVE,
            customer_id=customer_id,
            pharmacy_id=pharmacy_id,
            phone_number=phone_number,
        )
        try:
            await self._repository.insert(context)
            logger.info("Created conversation %s for customer %s", context.conversation_id, customer_id)
        except Exception as e:
            logger.warning("Could not persist new conversation %s: %s", context.conversation_id, e)
        return context

    async def update(self, conversation_id: str, **changes: Any) -> None:
        """Apply a partial update. Last write wins per field."""
        protected = PROTECTED_FIELDS.intersection(changes)
        if protected:
            raise ValueError(f"Fields cannot be updated directly: {sorted(protected)}")
        unknown = [k for k in changes if k not in ConversationContext.__dataclass_fields__]
        if unknown:
            raise ValueError(f"Unknown conversation fields: {unknown}")
        changes.setdefault("last_activity", utc_now())
        try:
            await self._repository.update(conversation_id, changes)
        except Exception as e:
            logger.warning("Context update failed for %s (fields=%s): %s", conversation_id, sorted(changes), e)

    async def append_escalation(self, conversation_id: str, record: EscalationRecord) -> None:
        try:
            await self._repository.append_escalation(conversation_id, record)
        except Exception as e:
            logger.warning("Could not record escalation for %s: %s", conversation_id, e)

    async def resolve_escalations(self, conversation_id: str, notes: str | None = None) -> None:
        try:
            await self._repository.resolve_escalations(conversation_id, notes)
        except Exception as e:
            logger.warning("Could not mark escalations resolved for %s: %s", conversation_id, e)
