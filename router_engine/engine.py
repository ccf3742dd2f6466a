"""Orchestrator: routes each inbound message to the right domain handler.

Purpose
-------
The orchestrator is the single place that owns "handle this message." Callers
(uagents adapter, terminal chatbot, a future WhatsApp webhook) do one thing:
pass in a conversation id, the sender and the text, and get back a
``DispatchResult``. Classification, context bookkeeping, knowledge fallback
and human escalation all live in here. Callers are not responsible for
branching or retries.

Interface contract
------------------
- **Input:** conversation id + counterpart id + message text (+ optional
  transport metadata such as attachments).
- **Output:** one ``DispatchResult``. The orchestrator always returns a
  well-formed result with a customer-facing reply, even when every
  collaborator fails; in that case the result asks for human review.
- **Ordering:** at most one turn per conversation id may be in flight. The
  transport serialises delivery per sender; nothing in here locks.

Conversation status
-------------------
``active -> escalated`` when a handler asks for human review,
``escalated -> active`` when an operator resolves it (``resolve_escalation``),
``any -> closed`` on ``close_conversation``. A message arriving on a closed
conversation reopens it rather than turning the customer away.
"""

import logging
import uuid
from typing import Any

from escalation.manager import EscalationManager
from router_engine.errors import RouterError
from router_engine.handlers import (
    CatalogHandler,
    ClarificationHandler,
    ComplianceHandler,
    ConversationalHandler,
    DomainHandler,
    FulfillmentHandler,
    GeneralInquiryHandler,
    OrderHandler,
    PaymentHandler,
)
from router_engine.intents import IntentClassifier
from router_engine.knowledge import KnowledgeIndex
from router_engine.logutil import truncate
from router_engine.models import (
    STATUS_ACTIVE,
    STATUS_CLOSED,
    STATUS_ESCALATED,
    STATUS_NOT_FOUND,
    ConversationContext,
    ConversationState,
    DispatchResult,
    check_transition,
)
from router_engine.store import ContextStore

logger = logging.getLogger(__name__)

SYSTEM_ERROR_RESPONSE = (
    "I apologize, but I encountered an error processing your request. "
    "A human agent will assist you shortly."
)
SYSTEM_ERROR_ESCALATION = "System error during message processing"

# Intent label -> handler key. Several labels share one handler.
DISPATCH_TABLE = {
    "product_search": "catalog",
    "catalog_query": "catalog",
    "stock_check": "catalog",
    "price_inquiry": "catalog",
    "place_order": "ordering",
    "add_to_cart": "ordering",
    "modify_order": "ordering",
    "order_status": "ordering",
    "prescription_upload": "compliance",
    "prescription_verification": "compliance",
    "compliance_check": "compliance",
    "delivery_inquiry": "fulfillment",
    "tracking_request": "fulfillment",
    "delivery_update": "fulfillment",
    "payment_inquiry": "payment",
    "payment_method": "payment",
    "payment_status": "payment",
    "general_inquiry": "general_inquiry",
    "help_request": "general_inquiry",
    "complaint": "general_inquiry",
    "greeting": "conversational",
    "goodbye": "conversational",
}
DEFAULT_HANDLER = "clarification"

# Field groups a handler may change during a turn; written back afterwards.
HANDLER_FIELDS = (
    "session_data",
    "cart_items",
    "requires_prescription",
    "prescription_verified",
    "current_order_id",
    "payment_method",
    "delivery_address",
    "agent_notes",
)


def default_handlers(
    index: KnowledgeIndex, catalog_limit: int = 5, knowledge_limit: int = 3
) -> dict[str, DomainHandler]:
    catalog = CatalogHandler(index, limit=catalog_limit)
    ordering = OrderHandler(catalog)
    return {
        "catalog": catalog,
        "ordering": ordering,
        "compliance": ComplianceHandler(),
        "fulfillment": FulfillmentHandler(),
        "payment": PaymentHandler(),
        "general_inquiry": GeneralInquiryHandler(index, limit=knowledge_limit),
        "conversational": ConversationalHandler(),
        "clarification": ClarificationHandler(catalog, ordering),
    }


class Orchestrator:
    """Handles an inbound message and returns a single ``DispatchResult``.

    All collaborators are injected so tests (and alternative deployments)
    can swap any of them for fakes.
    """

    def __init__(
        self,
        classifier: IntentClassifier,
        index: KnowledgeIndex,
        store: ContextStore,
        escalation: EscalationManager,
        handlers: dict[str, DomainHandler] | None = None,
        default_pharmacy_id: str | None = None,
    ):
        self._classifier = classifier
        self._index = index
        self._store = store
        self._escalation = escalation
        self._handlers = handlers or default_handlers(index)
        missing = set(DISPATCH_TABLE.values()) | {DEFAULT_HANDLER}
        missing -= set(self._handlers)
        if missing:
            raise RouterError(f"No handler registered for: {sorted(missing)}")
        self._default_pharmacy_id = default_pharmacy_id

    def handler_for(self, intent_label: str) -> DomainHandler:
        return self._handlers[DISPATCH_TABLE.get(intent_label, DEFAULT_HANDLER)]

    async def process_message(
        self,
        conversation_id: str | None,
        counterpart_id: str,
        text: str,
        metadata: dict[str, Any] | None = None,
    ) -> DispatchResult:
        """Process one inbound message and return the turn's result.

        Implements the orchestrator contract: nothing raised by a collaborator
        escapes; every fault becomes a human escalation with an apologetic
        reply.
        """
        metadata = metadata or {}
        turn_id = uuid.uuid4().hex
        context: ConversationContext | None = None
        logger.info(
            "Processing message conversation=%s counterpart=%s text=%s",
            conversation_id, counterpart_id, truncate(text, 100),
        )
        try:
            context = await self._resolve_context(conversation_id, counterpart_id, metadata)

            intent = await self._classifier.classify(text)
            logger.info(
                "Intent for %s: %s (%.2f, source=%s) entities=%s",
                context.conversation_id, intent.intent, intent.confidence, intent.source, intent.entities,
            )
            context.last_intent = intent.intent
            context.confidence = intent.confidence
            await self._store.update(
                context.conversation_id, last_intent=intent.intent, confidence=intent.confidence
            )

            context.session_data["has_attachment"] = bool(metadata.get("attachments"))
            handler = self.handler_for(intent.intent)
            result = await handler.handle(text, context, intent)
            if result.handler is None:
                result.handler = handler.name
            if result.confidence is None:
                result.confidence = intent.confidence
            result.metadata.setdefault("intent", intent.intent)
            result.metadata.setdefault("conversation_id", context.conversation_id)

            await self._store.update(
                context.conversation_id, **{f: getattr(context, f) for f in HANDLER_FIELDS}
            )

            if result.needs_escalation:
                await self._escalation.escalate(
                    context.conversation_id, result.escalation_reason, context, turn_id=turn_id
                )
            logger.info(
                "Turn done for %s: handler=%s success=%s human_review=%s",
                context.conversation_id, result.handler, result.success, result.requires_human_review,
            )
            return result

        except Exception as e:
            logger.exception("Error processing message for conversation %s: %s", conversation_id, e)
            result = DispatchResult(
                success=False,
                response=SYSTEM_ERROR_RESPONSE,
                requires_human_review=True,
                escalation_reason=SYSTEM_ERROR_ESCALATION,
                handler="orchestrator",
                metadata={"error": str(e) or type(e).__name__},
            )
            escalate_id = context.conversation_id if context is not None else conversation_id
            if escalate_id:
                try:
                    await self._escalation.escalate(
                        escalate_id, SYSTEM_ERROR_ESCALATION, context, turn_id=turn_id
                    )
                except Exception:
                    logger.exception("Escalation after failure also failed for %s", escalate_id)
            return result

    async def _resolve_context(
        self, conversation_id: str | None, counterpart_id: str, metadata: dict[str, Any]
    ) -> ConversationContext:
        context = await self._store.get(conversation_id) if conversation_id else None
        if context is None and not conversation_id:
            context = await self._store.find_active(counterpart_id)
        if context is None:
            context = await self._store.create(
                conversation_id=conversation_id,
                customer_id=metadata.get("customer_id") or counterpart_id,
                pharmacy_id=metadata.get("pharmacy_id") or self._default_pharmacy_id,
                phone_number=metadata.get("phone_number") or counterpart_id,
            )
        elif context.status == STATUS_CLOSED:
            logger.info("Reopening closed conversation %s", context.conversation_id)
            context.status = STATUS_ACTIVE
            await self._store.update(context.conversation_id, status=STATUS_ACTIVE)
        return context

    async def get_conversation_state(self, conversation_id: str) -> ConversationState:
        context = await self._store.get(conversation_id)
        if context is None:
            return ConversationState(status=STATUS_NOT_FOUND)
        return ConversationState(
            status=context.status,
            context=context,
            last_message_at=context.last_activity,
            requires_human_review=context.status == STATUS_ESCALATED,
        )

    async def resolve_escalation(self, conversation_id: str, notes: str | None = None) -> ConversationState:
        await self._escalation.resolve(conversation_id, notes)
        return await self.get_conversation_state(conversation_id)

    async def close_conversation(self, conversation_id: str) -> ConversationState:
        context = await self._store.get(conversation_id)
        if context is None:
            return ConversationState(status=STATUS_NOT_FOUND)
        check_transition(context.status, STATUS_CLOSED)
        await self._store.update(conversation_id, status=STATUS_CLOSED)
        logger.info("Closed conversation %s", conversation_id)
        return await self.get_conversation_state(conversation_id)
