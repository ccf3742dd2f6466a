"""Unit tests for building the knowledge index from a catalog file."""

import json

import pytest

from clients.stub import StubEmbedder
from router_engine.catalog import load_catalog, product_content, product_metadata
from router_engine.knowledge import KnowledgeIndex, SearchFilters


@pytest.mark.unit
def test_product_content_joins_searchable_fields_lowercased():
    product = {
        "name": "Paracetamol 500mg",
        "brand": "Panadol",
        "description": "Pain relief",
        "category": "Analgesics",
        "wholesale_price": 5.99,
    }
    assert product_content(product) == "paracetamol 500mg panadol pain relief analgesics"


@pytest.mark.unit
def test_product_metadata_maps_price_and_stock():
    meta = product_metadata({"name": "ORS", "wholesale_price": 3.2, "status": "out_of_stock"})
    assert meta["price"] == 3.2
    assert meta["in_stock"] is False
    assert meta["prescription_required"] is False
    assert meta["type"] == "product"
    assert meta["source"] == "product_catalog"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_load_catalog_indexes_products_and_documents(tmp_path):
    """
    Story: The catalog file has two good products, one without an id and one FAQ.
    Loading it indexes the three good records and skips the broken one.
    """
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({
        "products": [
            {"id": "P-001", "name": "Paracetamol 500mg", "category": "Pain Relief", "wholesale_price": 5.99},
            {"id": "P-002", "name": "Amoxicillin 250mg", "prescription_required": True, "wholesale_price": 12.5},
            {"name": "Mystery tablets"},
        ],
        "documents": [
            {"content": "We accept M-Pesa, Airtel Money and Tigo Pesa.", "type": "faq"},
        ],
    }))
    index = KnowledgeIndex(StubEmbedder(), similarity_threshold=0.3)

    loaded = await load_catalog(index, path)

    assert loaded == 3
    assert len(index) == 3
    assert "P-001" in index and "P-002" in index
    rx_only = await index.search("amoxicillin 250mg", filters=SearchFilters(requires_prescription=True))
    assert [r.id for r in rx_only] == ["P-002"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reloading_a_catalog_replaces_products(tmp_path):
    """Story: Loading the same catalog twice keeps one entry per product id."""
    path = tmp_path / "catalog.json"
    path.write_text(json.dumps({"products": [{"id": "P-001", "name": "Paracetamol 500mg"}]}))
    index = KnowledgeIndex(StubEmbedder())

    await load_catalog(index, path)
    await load_catalog(index, path)

    assert len(index) == 1
