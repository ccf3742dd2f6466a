"""Entrypoint: validate env, wire layers, run the uagents adapter."""

from uagents import Context

from adapters.uagents_agent import create_agent
from env import config, require_env
from router_engine.catalog import load_catalog
from router_engine.factory import build_orchestrator
from router_engine.logutil import configure_logging
from tenant import load_tenant


def main() -> None:
    configure_logging()
    require_env()
    tenant = load_tenant(config.TENANT_CONFIG)
    orchestrator, index = build_orchestrator(tenant)
    agent = create_agent(
        agent_seed=tenant.agent_seed or config.AGENT_SEED_PHRASE,
        orchestrator=orchestrator,
        name=tenant.agent_name,
        port=config.AGENT_PORT,
    )

    @agent.on_event("startup")
    async def load_knowledge(ctx: Context):
        if tenant.catalog_path:
            count = await load_catalog(index, tenant.catalog_path)
            ctx.logger.info(f"Knowledge index ready with {count} entries")

    agent.run()


if __name__ == "__main__":
    main()
