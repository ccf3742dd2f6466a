"""Unit tests for the domain handlers."""

from datetime import datetime

import pytest

from clients.stub import StubEmbedder
from router_engine.catalog import index_product
from router_engine.handlers import (
    GENERAL_INQUIRY_ESCALATION,
    PRESCRIPTION_REVIEW_ESCALATION,
    CatalogHandler,
    ClarificationHandler,
    ComplianceHandler,
    ConversationalHandler,
    FulfillmentHandler,
    GeneralInquiryHandler,
    OrderHandler,
    PaymentHandler,
)
from router_engine.knowledge import KnowledgeIndex
from router_engine.models import CartItem, ConversationContext, DeliveryAddress, IntentClassification

PARACETAMOL = {
    "id": "P-001",
    "name": "Paracetamol 500mg",
    "category": "Pain Relief",
    "wholesale_price": 5.99,
    "status": "active",
}
AMOXICILLIN = {
    "id": "P-002",
    "name": "Amoxicillin 250mg",
    "category": "Antibiotics",
    "wholesale_price": 12.5,
    "prescription_required": True,
    "status": "active",
}


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

async def _catalog_index(*products) -> KnowledgeIndex:
    """Stub-embedded index; the stub scores partial word overlap around 0.3-0.6."""
    index = KnowledgeIndex(StubEmbedder(), similarity_threshold=0.3)
    for product in products:
        await index_product(index, product)
    return index


def _intent(label: str, **entities) -> IntentClassification:
    return IntentClassification(intent=label, confidence=0.8, entities=entities)


def _context(**kwargs) -> ConversationContext:
    return ConversationContext(conversation_id="CONV-1", **kwargs)


# ---------------------------------------------------------------------------
# CatalogHandler
# ---------------------------------------------------------------------------

@pytest.mark.unit
@pytest.mark.asyncio
async def test_price_inquiry_lists_matching_product_prices():
    """
    Story: A customer asks "What's the price of paracetamol?". The catalog handler
    looks up paracetamol (ignoring filler words) and lists its wholesale price.
    """
    handler = CatalogHandler(await _catalog_index(PARACETAMOL, AMOXICILLIN))
    ctx = _context()

    result = await handler.handle("What's the price of paracetamol?", ctx, _intent("price_inquiry"))

    assert result.success is True
    assert result.handler == "catalog"
    assert result.response.startswith("Here are the current wholesale prices:")
    assert "Paracetamol 500mg - 5.99 (in stock)" in result.response
    assert "Amoxicillin" not in result.response
    assert ctx.session_data["last_products"] == ["P-001"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_prescription_products_are_flagged():
    handler = CatalogHandler(await _catalog_index(PARACETAMOL, AMOXICILLIN))
    result = await handler.handle("do you have amoxicillin", _context(), _intent("product_search"))
    assert "Amoxicillin 250mg - 12.50 (in stock) (prescription required)" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_catalog_with_no_hits_asks_for_more_detail():
    """Story: Nothing matches. The customer gets a polite "couldn't find" and no escalation."""
    handler = CatalogHandler(await _catalog_index())
    result = await handler.handle("insulin pens", _context(), _intent("product_search"))
    assert result.success is True
    assert result.requires_human_review is False
    assert "couldn't find" in result.response


# ---------------------------------------------------------------------------
# OrderHandler
# ---------------------------------------------------------------------------

@pytest.mark.unit
@pytest.mark.asyncio
async def test_order_adds_product_with_quantity_to_cart():
    """Story: "I want to order 2 paracetamol" puts two packs in the cart and reports the total."""
    index = await _catalog_index(PARACETAMOL, AMOXICILLIN)
    handler = OrderHandler(CatalogHandler(index))
    ctx = _context()

    result = await handler.handle("I want to order 2 paracetamol", ctx, _intent("place_order", quantity=2))

    assert [(i.product_id, i.quantity) for i in ctx.cart_items] == [("P-001", 2)]
    assert "Cart total: 11.98" in result.response
    assert ctx.requires_prescription is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_ordering_prescription_item_requires_prescription():
    """Story: Adding amoxicillin flags the conversation as needing a prescription and asks for a photo."""
    handler = OrderHandler(CatalogHandler(await _catalog_index(PARACETAMOL, AMOXICILLIN)))
    ctx = _context()

    result = await handler.handle("I want to order amoxicillin", ctx, _intent("place_order"))

    assert ctx.requires_prescription is True
    assert ctx.cart_items[0].requires_prescription is True
    assert result.next_steps[0] == "upload_prescription"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_order_for_unknown_product_asks_what_to_order():
    handler = OrderHandler(CatalogHandler(await _catalog_index(PARACETAMOL)))
    ctx = _context()
    result = await handler.handle("I want to order", ctx, _intent("place_order"))
    assert ctx.cart_items == []
    assert "product name and quantity" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_order_status_uses_order_number_from_message_or_context():
    handler = OrderHandler(CatalogHandler(await _catalog_index()))
    ctx = _context()

    asked = await handler.handle("where is my order?", ctx, _intent("order_status"))
    told = await handler.handle("status of ord-778", ctx, _intent("order_status"))
    again = await handler.handle("any news?", ctx, _intent("order_status"))

    assert "order number" in asked.response
    assert "ORD-778" in told.response
    assert ctx.current_order_id == "ORD-778"
    assert "ORD-778" in again.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_modify_order_summarizes_cart():
    handler = OrderHandler(CatalogHandler(await _catalog_index()))
    ctx = _context(cart_items=[CartItem("P-001", "Paracetamol 500mg", 2, 5.0)])
    result = await handler.handle("change my order", ctx, _intent("modify_order"))
    assert "2 x Paracetamol 500mg - 10.00" in result.response
    assert "Total: 10.00" in result.response


# ---------------------------------------------------------------------------
# ComplianceHandler
# ---------------------------------------------------------------------------

@pytest.mark.unit
@pytest.mark.asyncio
async def test_prescription_photo_goes_to_pharmacist_review():
    """Story: The customer sends a prescription photo. We thank them and hand it to a pharmacist."""
    ctx = _context(session_data={"has_attachment": True})
    result = await ComplianceHandler().handle("here is my prescription", ctx, _intent("prescription_upload"))
    assert result.requires_human_review is True
    assert result.escalation_reason == PRESCRIPTION_REVIEW_ESCALATION
    assert ctx.session_data["prescription_pending"] is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_prescription_upload_without_photo_asks_for_one():
    result = await ComplianceHandler().handle("I have a prescription", _context(), _intent("prescription_upload"))
    assert result.requires_human_review is False
    assert "photo" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_compliance_check_lists_restricted_cart_items():
    ctx = _context(cart_items=[
        CartItem("P-001", "Paracetamol 500mg", 1, 5.99),
        CartItem("P-002", "Amoxicillin 250mg", 1, 12.5, requires_prescription=True),
    ])
    result = await ComplianceHandler().handle("anything restricted?", ctx, _intent("compliance_check"))
    assert "• Amoxicillin 250mg" in result.response
    assert "Paracetamol" not in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_prescription_verification_reports_status():
    handler = ComplianceHandler()
    verified = await handler.handle("is it verified?", _context(prescription_verified=True), _intent("prescription_verification"))
    pending = await handler.handle(
        "is it verified?", _context(session_data={"prescription_pending": True}), _intent("prescription_verification")
    )
    assert "has been verified" in verified.response
    assert "still being reviewed" in pending.response


# ---------------------------------------------------------------------------
# FulfillmentHandler / PaymentHandler
# ---------------------------------------------------------------------------

@pytest.mark.unit
@pytest.mark.asyncio
async def test_delivery_inquiry_reports_order_and_address():
    ctx = _context(
        current_order_id="ORD-1",
        delivery_address=DeliveryAddress(street="1 Moi Ave", city="Nairobi"),
    )
    result = await FulfillmentHandler().handle("when will it arrive?", ctx, _intent("delivery_inquiry"))
    assert "ORD-1" in result.response
    assert "1 Moi Ave, Nairobi" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delivery_inquiry_without_order_asks_for_it():
    result = await FulfillmentHandler().handle("when will it arrive?", _context(), _intent("delivery_inquiry"))
    assert "order number" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_delivery_update_is_stored_for_confirmation():
    ctx = _context()
    result = await FulfillmentHandler().handle("Deliver to 5 Kenyatta Ave", ctx, _intent("delivery_update"))
    assert ctx.session_data["pending_delivery_update"] == "Deliver to 5 Kenyatta Ave"
    assert result.next_steps == ["confirm_delivery_update"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_payment_method_choice_is_recorded_with_amount_due():
    """Story: The customer says they'll pay with M-Pesa. We remember it and quote the cart total."""
    ctx = _context(cart_items=[CartItem("P-001", "Paracetamol 500mg", 2, 5.0)])
    result = await PaymentHandler().handle("I'll pay with M-Pesa", ctx, _intent("payment_method"))
    assert ctx.payment_method == "M-Pesa"
    assert "10.00" in result.response


@pytest.mark.unit
@pytest.mark.asyncio
async def test_payment_inquiry_lists_methods():
    result = await PaymentHandler().handle("how can I pay?", _context(), _intent("payment_inquiry"))
    assert "M-Pesa, Airtel Money, Tigo Pesa" in result.response


# ---------------------------------------------------------------------------
# Conversational / general inquiry / clarification
# ---------------------------------------------------------------------------

@pytest.mark.unit
@pytest.mark.parametrize("hour,expected", [(0, "morning"), (11, "morning"), (12, "afternoon"), (16, "afternoon"), (17, "evening"), (23, "evening")])
def test_time_of_day_boundaries(hour, expected):
    handler = ConversationalHandler(clock=lambda: datetime(2026, 3, 1, hour, 30))
    assert handler.time_of_day() == expected


@pytest.mark.unit
@pytest.mark.asyncio
async def test_greeting_is_time_aware_and_needs_no_review():
    handler = ConversationalHandler(clock=lambda: datetime(2026, 3, 1, 9, 0))
    result = await handler.handle("hello", _context(), _intent("greeting"))
    assert result.response.startswith("Good morning! Welcome to MedSupply.")
    assert result.requires_human_review is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_goodbye():
    result = await ConversationalHandler().handle("bye", _context(), _intent("goodbye"))
    assert result.response.startswith("Thank you for choosing MedSupply!")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_general_inquiry_answers_from_knowledge():
    """Story: A question matching an FAQ entry is answered with that entry, no human needed."""
    index = KnowledgeIndex(StubEmbedder(), similarity_threshold=0.3)
    await index.add_document("Orders confirmed before 2pm are dispatched the same day.", doc_type="faq")

    result = await GeneralInquiryHandler(index).handle("dispatched the same day?", _context(), _intent("general_inquiry"))

    assert result.requires_human_review is False
    assert result.response == (
        "Based on your inquiry, here's what I found:\n\n"
        "Orders confirmed before 2pm are dispatched the same day."
    )


@pytest.mark.unit
@pytest.mark.asyncio
async def test_general_inquiry_without_knowledge_asks_for_a_human():
    index = KnowledgeIndex(StubEmbedder())
    result = await GeneralInquiryHandler(index).handle("Tell me about your return policy", _context(), _intent("general_inquiry"))
    assert result.requires_human_review is True
    assert result.escalation_reason == GENERAL_INQUIRY_ESCALATION


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clarification_routes_on_entities_or_shows_help():
    """Story: For an unrecognised intent, a product entity goes to the catalog; otherwise the customer sees the help menu."""
    catalog = CatalogHandler(await _catalog_index(PARACETAMOL))
    handler = ClarificationHandler(catalog, OrderHandler(catalog))
    unknown = IntentClassification.unknown()

    routed = await handler.handle("paracetamol", _context(), IntentClassification(intent="unknown", confidence=0, entities={"product": "paracetamol"}))
    menu = await handler.handle("???", _context(), unknown)

    assert routed.handler == "catalog"
    assert "Paracetamol 500mg" in routed.response
    assert "• Placing an order" in menu.response
