"""Local terminal chatbot: type in the terminal, get routed responses."""

import asyncio
import os

from router_engine.catalog import load_catalog
from router_engine.factory import build_orchestrator
from router_engine.logutil import configure_logging
from tenant import load_tenant

LOCAL_COUNTERPART = "local-terminal"


async def chat() -> None:
    tenant = load_tenant(os.environ.get("TENANT_CONFIG", ""))
    orchestrator, index = build_orchestrator(tenant)
    if tenant.catalog_path:
        await load_catalog(index, tenant.catalog_path)

    print(f"{tenant.agent_name}. Type 'quit' or 'exit' to stop.\n")
    conversation_id = None
    while True:
        try:
            user_input = (await asyncio.to_thread(input, "You: ")).strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye.")
            break
        if not user_input:
            continue
        if user_input.lower() in ("quit", "exit", "q"):
            print("Bye.")
            break
        # "/photo <text>" simulates a message with an image attached.
        attachments = []
        if user_input.startswith("/photo"):
            attachments = ["photo.jpg"]
            user_input = user_input.removeprefix("/photo").strip() or "here is my prescription"
        result = await orchestrator.process_message(
            conversation_id, LOCAL_COUNTERPART, user_input, {"attachments": attachments}
        )
        conversation_id = result.metadata.get("conversation_id", conversation_id)
        print(f"Bot: {result.response}\n")
        if result.requires_human_review:
            print(f"[handed to a human: {result.escalation_reason}]\n")


def main() -> None:
    configure_logging("ERROR")
    asyncio.run(chat())


if __name__ == "__main__":
    main()
