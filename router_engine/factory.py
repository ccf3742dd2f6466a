"""Composition root: wires providers, store, index and escalation into an Orchestrator."""

import logging

from clients.base import Embedder, TextGenerator
from clients.discord import DiscordWebhookClient
from clients.openai_llm import OpenAIEmbedder, OpenAITextGenerator
from clients.stub import STUB_SIMILARITY_THRESHOLD, StubEmbedder, StubTextGenerator
from escalation.base_escalation import BaseEscalation, LogEscalation
from escalation.discord_escalation import DiscordEscalation
from escalation.manager import EscalationManager
from router_engine.engine import Orchestrator, default_handlers
from router_engine.intents import IntentClassifier
from router_engine.knowledge import DEFAULT_SIMILARITY_THRESHOLD, KnowledgeIndex
from router_engine.store import ContextStore, ConversationRepository
from tenant import TenantConfig

logger = logging.getLogger(__name__)


def build_providers(tenant: TenantConfig) -> tuple[TextGenerator, Embedder]:
    """Pick real or offline providers once, from whether an OpenAI key is configured."""
    if tenant.openai_api_key:
        return (
            OpenAITextGenerator(tenant.openai_api_key, model=tenant.llm_model),
            OpenAIEmbedder(tenant.openai_api_key, model=tenant.embedding_model),
        )
    logger.warning("No OpenAI API key for tenant %s; using offline stub providers", tenant.tenant_id)
    return StubTextGenerator(), StubEmbedder()


def similarity_threshold_for(tenant: TenantConfig, embedder: Embedder) -> float:
    """The tenant's threshold if set, else one suited to the embedding provider."""
    if tenant.similarity_threshold is not None:
        return tenant.similarity_threshold
    if isinstance(embedder, StubEmbedder):
        return STUB_SIMILARITY_THRESHOLD
    return DEFAULT_SIMILARITY_THRESHOLD


def build_escalation_channel(tenant: TenantConfig) -> BaseEscalation:
    if tenant.discord_webhook_url:
        client = DiscordWebhookClient(tenant.discord_webhook_url, tenant.discord_role_id)
        return DiscordEscalation(client, message_prefix=tenant.escalation_message_prefix)
    logger.warning("No Discord webhook for tenant %s; escalations go to the log only", tenant.tenant_id)
    return LogEscalation(logging.getLogger("escalation"))


def build_orchestrator(
    tenant: TenantConfig, repository: ConversationRepository | None = None
) -> tuple[Orchestrator, KnowledgeIndex]:
    """Build the orchestrator for ``tenant``.

    The knowledge index is returned alongside so the caller can load the
    catalog into it before serving traffic.
    """
    generator, embedder = build_providers(tenant)
    index = KnowledgeIndex(
        embedder,
        similarity_threshold=similarity_threshold_for(tenant, embedder),
        timeout=tenant.llm_timeout,
    )
    store = ContextStore(repository)
    escalation = EscalationManager(store, build_escalation_channel(tenant))
    orchestrator = Orchestrator(
        classifier=IntentClassifier(generator, timeout=tenant.llm_timeout),
        index=index,
        store=store,
        escalation=escalation,
        handlers=default_handlers(index, catalog_limit=tenant.max_results),
        default_pharmacy_id=tenant.tenant_id,
    )
    return orchestrator, index
