"""Abstract human-notification contract."""

from abc import ABC, abstractmethod

from router_engine.models import ConversationContext


class BaseEscalation(ABC):
    """Contract for operator notification channels.

    A channel tells human operators that a conversation needs them (e.g.
    posting to Discord, paging, sending an email). From the routing core's
    point of view the call is fire-and-forget: the escalation manager logs and
    swallows anything raised here so a broken channel never costs the
    customer their reply.
    """

    @abstractmethod
    async def notify(self, conversation_id: str, reason: str, context: ConversationContext | None) -> None:
        """Deliver the notification.

        ``context`` is the conversation state at the time of escalation and may
        be ``None`` when the caller has no context loaded. Implementations
        should include enough of it (customer, last intent, cart) for an
        operator to pick the conversation up without scrolling back.
        """
        ...


class LogEscalation(BaseEscalation):
    """Records escalations in the application log only. Used when no channel is configured."""

    def __init__(self, logger):
        self._logger = logger

    async def notify(self, conversation_id: str, reason: str, context: ConversationContext | None) -> None:
        self._logger.warning(
            "Human escalation for conversation %s: %s (customer=%s, last_intent=%s)",
            conversation_id,
            reason,
            context.customer_id if context else None,
            context.last_intent if context else None,
        )
