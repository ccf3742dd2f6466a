"""Discord escalation: notifies pharmacy operators via webhook."""

import asyncio
import logging

from clients.discord import DiscordWebhookClient
from escalation.base_escalation import BaseEscalation
from router_engine.models import ConversationContext

logger = logging.getLogger(__name__)


def _summarize_cart(context: ConversationContext) -> str:
    if not context.cart_items:
        return "empty"
    lines = [f"{item.quantity} x {item.product_name} @ {item.unit_price:.2f}" for item in context.cart_items]
    lines.append(f"total {context.cart_total():.2f}")
    return "\n".join(lines)


class DiscordEscalation(BaseEscalation):
    """Escalates by posting a message to a Discord channel via webhook."""

    def __init__(self, client: DiscordWebhookClient, message_prefix: str = ""):
        self._client = client
        self._message_prefix = message_prefix

    async def notify(self, conversation_id: str, reason: str, context: ConversationContext | None) -> None:
        parts = [p for p in [self._message_prefix, f"Conversation {conversation_id} needs a human: {reason}"] if p]
        content = " ".join(parts)
        fields = {"Conversation": conversation_id, "Reason": reason}
        if context is not None:
            fields["Customer"] = context.customer_id or context.phone_number or "unknown"
            fields["Last intent"] = (
                f"{context.last_intent} ({context.confidence:.2f})" if context.last_intent else "none"
            )
            fields["Cart"] = _summarize_cart(context)

        # discord_webhook is blocking; keep it off the event loop.
        response = await asyncio.to_thread(self._client.send, content, fields)
        if response.status_code in (200, 204):
            logger.info("Discord escalation succeeded (status %d)", response.status_code)
        else:
            logger.warning(
                "Discord escalation returned unexpected status %d", response.status_code
            )
