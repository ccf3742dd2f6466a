"""Moves conversations into (and out of) human hands."""

import logging
from collections import OrderedDict

from escalation.base_escalation import BaseEscalation, LogEscalation
from router_engine.models import (
    STATUS_ACTIVE,
    STATUS_ESCALATED,
    ConversationContext,
    EscalationRecord,
    check_transition,
)
from router_engine.store import ContextStore

logger = logging.getLogger(__name__)

_RECENT_TURNS_LIMIT = 1024


class EscalationManager:
    """Records an escalation, flips the conversation to ``escalated`` and pages operators.

    Repeated calls for the same ``(conversation_id, turn_id, reason)`` notify
    operators once. Nothing is deduplicated across turns: a customer who is
    still stuck on the next message gets a fresh escalation record.
    """

    def __init__(self, store: ContextStore, channel: BaseEscalation | None = None):
        self._store = store
        self._channel = channel or LogEscalation(logger)
        self._notified: OrderedDict[tuple, None] = OrderedDict()

    def _already_notified(self, key: tuple) -> bool:
        if key in self._notified:
            return True
        self._notified[key] = None
        while len(self._notified) > _RECENT_TURNS_LIMIT:
            self._notified.popitem(last=False)
        return False

    async def escalate(
        self,
        conversation_id: str,
        reason: str,
        context: ConversationContext | None = None,
        turn_id: str | None = None,
    ) -> None:
        if not conversation_id:
            raise ValueError("Cannot escalate without a conversation id")
        if turn_id is not None and self._already_notified((conversation_id, turn_id, reason)):
            logger.info("Escalation for %s already sent this turn; skipping", conversation_id)
            return

        if context is None:
            context = await self._store.get(conversation_id)
        if context is not None:
            check_transition(context.status, STATUS_ESCALATED)

        record = EscalationRecord(reason=reason)
        logger.info("Escalating conversation %s to a human: %s", conversation_id, reason)
        await self._store.append_escalation(conversation_id, record)
        await self._store.update(conversation_id, status=STATUS_ESCALATED)
        if context is not None:
            context.escalation_history.append(record)
            context.status = STATUS_ESCALATED

        try:
            await self._channel.notify(conversation_id, reason, context)
        except Exception as e:
            logger.exception("Operator notification failed for %s: %s", conversation_id, e)

    async def resolve(self, conversation_id: str, notes: str | None = None) -> ConversationContext | None:
        """Hand a conversation back to the bot after a human has dealt with it."""
        context = await self._store.get(conversation_id)
        if context is None:
            return None
        check_transition(context.status, STATUS_ACTIVE)
        await self._store.resolve_escalations(conversation_id, notes)
        await self._store.update(conversation_id, status=STATUS_ACTIVE)
        logger.info("Escalation resolved for conversation %s", conversation_id)
        return await self._store.get(conversation_id)
