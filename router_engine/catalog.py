"""Builds the knowledge index from the product catalog file.

The index is memory-only, so this runs on every start. Catalog file format::

    {
      "products": [{"id": "1", "name": "Paracetamol 500mg", "category": "Pain Relief",
                    "wholesale_price": 5.99, "status": "active", ...}],
      "documents": [{"content": "Orders placed before 2pm ship the same day.",
                     "type": "faq", "metadata": {"topic": "delivery"}}]
    }
"""

import json
import logging
from pathlib import Path
from typing import Any

from router_engine.knowledge import KnowledgeIndex

logger = logging.getLogger(__name__)

# Order matters: the name comes first so it dominates short queries.
CONTENT_FIELDS = (
    "name",
    "brand",
    "generic_name",
    "description",
    "active_ingredients",
    "strength",
    "dosage_form",
    "pack_size",
    "category",
    "indications",
    "manufacturer",
    "country_of_origin",
    "therapeutic_class",
    "atc_code",
)


def product_content(product: dict[str, Any]) -> str:
    parts = [str(product[f]) for f in CONTENT_FIELDS if product.get(f)]
    return " ".join(parts).lower()


def product_metadata(product: dict[str, Any]) -> dict[str, Any]:
    return {
        "name": product.get("name"),
        "brand": product.get("brand"),
        "generic_name": product.get("generic_name"),
        "category": product.get("category"),
        "dosage_form": product.get("dosage_form"),
        "strength": product.get("strength"),
        "pack_size": product.get("pack_size"),
        "prescription_required": bool(product.get("prescription_required", False)),
        "price": product.get("wholesale_price", product.get("price")),
        "in_stock": product.get("status", "active") == "active",
        "source": "product_catalog",
        "type": "product",
    }


async def index_product(index: KnowledgeIndex, product: dict[str, Any]) -> None:
    if not product.get("id"):
        raise ValueError(f"Catalog product without id: {product.get('name')!r}")
    await index.update(str(product["id"]), product_content(product), product_metadata(product))


async def load_catalog(index: KnowledgeIndex, path: str | Path) -> int:
    """Index every product and document in ``path``; returns the number indexed.

    A single bad record is logged and skipped rather than aborting the load.
    """
    with open(path) as f:
        raw = json.load(f)

    loaded = 0
    for product in raw.get("products", []):
        try:
            await index_product(index, product)
            loaded += 1
        except Exception as e:
            logger.warning("Skipping catalog product %r: %s", product.get("id"), e)
    for doc in raw.get("documents", []):
        try:
            await index.add_document(doc["content"], doc.get("metadata"), doc.get("type", "documentation"))
            loaded += 1
        except Exception as e:
            logger.warning("Skipping catalog document: %s", e)
    logger.info("Loaded %d catalog entries from %s", loaded, path)
    return loaded
