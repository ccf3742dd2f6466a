"""Tenant config loader.

Each pharmacy tenant has a YAML file under tenants/ that declares non-secret
config inline and references secret values by env var name. Call
load_tenant() with the path from the TENANT_CONFIG environment variable.

Usage:
    tenant = load_tenant(os.environ.get("TENANT_CONFIG", ""))
"""

import os
import sys
from dataclasses import dataclass
from pathlib import Path

import yaml
from dotenv import load_dotenv

load_dotenv()


@dataclass
class TenantConfig:
    tenant_id: str
    agent_name: str
    catalog_path: Path | None
    llm_model: str
    embedding_model: str
    llm_timeout: float
    similarity_threshold: float | None
    max_results: int
    openai_api_key: str
    agent_seed: str
    discord_webhook_url: str
    discord_role_id: str
    escalation_message_prefix: str


def load_tenant(config_path: str) -> TenantConfig:
    """Load and validate a tenant config from a YAML file.

    Secrets are never stored in the YAML; the YAML holds the env var *name*
    and this function resolves the actual value from the environment. Exits
    with a clear error message if TENANT_CONFIG is unset, the file is missing,
    or a required env var is not set. The OpenAI key is optional: without it
    the router runs on offline stub providers. Leaving out
    ``knowledge.similarity_threshold`` lets the factory pick one to suit the
    embedding provider.
    """
    if not config_path:
        sys.exit("TENANT_CONFIG environment variable is not set.")

    path = Path(config_path)
    if not path.exists():
        sys.exit(f"Tenant config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    if not raw.get("tenant_id"):
        sys.exit(f"Tenant config {path} is missing tenant_id")

    def _env(key_name: str | None, required: bool = True) -> str:
        if not key_name:
            return ""
        val = (os.environ.get(key_name) or "").strip()
        if not val and required:
            sys.exit(f"Missing required env var '{key_name}' (referenced in {path})")
        return val

    env = raw.get("env") or {}
    llm = raw.get("llm") or {}
    knowledge = raw.get("knowledge") or {}
    esc = (raw.get("escalation") or {}).get("discord_webhook") or {}
    catalog_path = knowledge.get("catalog_path")
    threshold = knowledge.get("similarity_threshold")

    return TenantConfig(
        tenant_id=raw["tenant_id"],
        agent_name=(raw.get("agent") or {}).get("name", raw["tenant_id"]),
        catalog_path=Path(catalog_path) if catalog_path else None,
        llm_model=llm.get("model", "gpt-4o-mini"),
        embedding_model=llm.get("embedding_model", "text-embedding-3-small"),
        llm_timeout=float(llm.get("timeout_seconds", 8.0)),
        similarity_threshold=float(threshold) if threshold is not None else None,
        max_results=int(knowledge.get("max_results", 5)),
        openai_api_key=_env(env.get("openai_api_key_env_key"), required=False),
        agent_seed=_env(env.get("agent_seed_env_key"), required=False),
        discord_webhook_url=_env(esc.get("webhook_url_env_key")),
        discord_role_id=str(esc.get("mention_role_id", "") or ""),
        escalation_message_prefix=esc.get("message_prefix", ""),
    )
