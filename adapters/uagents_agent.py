"""Uagents chat protocol adapter: receives messages, runs one orchestrator turn, replies."""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from uuid import uuid4

from uagents import Agent, Context, Protocol
from uagents_core.contrib.protocols.chat import (
    ChatAcknowledgement,
    ChatMessage,
    EndSessionContent,
    TextContent,
    chat_protocol_spec,
)

from router_engine.engine import SYSTEM_ERROR_RESPONSE, Orchestrator


class SenderLocks:
    """One in-flight turn per sender; the context store does no locking.

    A sender's lock is dropped once nobody holds or waits on it, so the map
    only ever holds senders with a turn in progress.
    """

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, sender: str):
        lock = self._locks.setdefault(sender, asyncio.Lock())
        self._users[sender] = self._users.get(sender, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[sender] -= 1
            if not self._users[sender]:
                del self._users[sender]
                del self._locks[sender]


def _split_content(msg: ChatMessage) -> tuple[str, list]:
    text = ""
    attachments = []
    for item in msg.content:
        if isinstance(item, TextContent):
            text += item.text
        elif getattr(item, "type", None) == "resource":
            attachments.append(item)
    return text, attachments


async def reply_content(orchestrator: Orchestrator, locks: SenderLocks, sender: str, msg: ChatMessage, logger) -> list:
    """Run one turn for ``sender`` and build the reply content.

    A goodbye closes the conversation and ends the chat session.
    """
    text, attachments = _split_content(msg)
    response = SYSTEM_ERROR_RESPONSE
    end_session = False
    async with locks.hold(sender):
        try:
            result = await orchestrator.process_message(
                None, sender, text, {"attachments": attachments, "channel": "uagents"}
            )
            response = result.response
            if result.metadata.get("intent") == "goodbye":
                await orchestrator.close_conversation(result.metadata["conversation_id"])
                end_session = True
        except Exception:
            logger.exception("Error routing message from %s", sender)

    content = [TextContent(type="text", text=response)]
    if end_session:
        content.append(EndSessionContent(type="end-session"))
    return content


def create_agent(
    agent_seed: str,
    orchestrator: Orchestrator,
    *,
    name: str = "pharmacy-router",
    port: int = 8001,
):
    """Build and return a uagents Agent that routes every chat message through ``orchestrator``."""
    agent = Agent(
        name=name,
        seed=agent_seed,
        port=port,
        mailbox=True,
        publish_agent_details=True,
    )
    protocol = Protocol(spec=chat_protocol_spec)
    sender_locks = SenderLocks()

    @protocol.on_message(ChatMessage)
    async def handle_message(ctx: Context, sender: str, msg: ChatMessage):
        await ctx.send(
            sender,
            ChatAcknowledgement(timestamp=datetime.now(timezone.utc), acknowledged_msg_id=msg.msg_id),
        )
        content = await reply_content(orchestrator, sender_locks, sender, msg, ctx.logger)
        await ctx.send(
            sender,
            ChatMessage(
                timestamp=datetime.now(timezone.utc),
                msg_id=uuid4(),
                content=content,
            ),
        )

    @protocol.on_message(ChatAcknowledgement)
    async def handle_ack(ctx: Context, sender: str, msg: ChatAcknowledgement):
        pass

    agent.include(protocol, publish_manifest=True)
    return agent
