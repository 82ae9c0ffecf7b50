"""Render order information and extracted data as prompt text.

The negotiation rules and escalation triggers produced here are also the
text the deterministic guardrails parse, so their phrasing is load-bearing:
``format_negotiation_rules`` states the price band as
``Acceptable range is $X - $Y`` and ``format_escalation_triggers`` phrases
numeric limits as ``<subject> exceeds <number>``.
"""

from __future__ import annotations

from typing import Optional

from negotiation.schemas import ExtractedQuoteData, OrderInformation


def _money(value: float) -> str:
    return f"${value:.2f}"


def _num(value: float) -> str:
    """Drop a trailing ``.0`` so whole numbers read naturally."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


# ---------------------------------------------------------------------------
# Order information
# ---------------------------------------------------------------------------


def format_order_information(oi: OrderInformation) -> str:
    """Full markdown rendering of the order for the synthesis prompt."""
    sections: list[str] = []

    product_lines = [
        f"- Name: {oi.product.product_name} ({oi.product.supplier_product_code})",
        f"- Merchant SKU: {oi.product.merchant_sku}",
    ]
    if oi.product.unit_of_measure:
        product_lines.append(f"- Unit of Measure: {oi.product.unit_of_measure}")
    if oi.product.required_certifications:
        product_lines.append(f"- Required Certifications: {', '.join(oi.product.required_certifications)}")
    if oi.product.packaging_requirements:
        product_lines.append(f"- Packaging: {oi.product.packaging_requirements}")
    if oi.product.product_description:
        product_lines.append(f"- Description: {oi.product.product_description}")
    sections.append("### Product\n" + "\n".join(product_lines))

    qty_lines = [f"- Target: {oi.quantity.target_quantity} units"]
    if oi.quantity.minimum_acceptable_quantity is not None:
        qty_lines.append(f"- Minimum Acceptable: {oi.quantity.minimum_acceptable_quantity} units")
    if oi.quantity.maximum_acceptable_quantity is not None:
        qty_lines.append(f"- Maximum Acceptable: {oi.quantity.maximum_acceptable_quantity} units")
    sections.append("### Quantity\n" + "\n".join(qty_lines))

    pricing = oi.pricing
    price_lines = [
        f"- Currency: {pricing.currency}",
        f"- Target Price: {_money(pricing.target_price)}/unit (ideal, happy at this or below)",
        f"- Maximum Acceptable Price: {_money(pricing.maximum_acceptable_price)}/unit (hard ceiling)",
    ]
    if pricing.last_known_price is not None:
        price_lines.append(f"- Last Known Price: {_money(pricing.last_known_price)}/unit (reference only)")
    if pricing.never_counter_above is not None:
        price_lines.append(f"- Never Counter Above: {_money(pricing.never_counter_above)}/unit")
    sections.append("### Pricing Rules\n" + "\n".join(price_lines))

    if oi.lead_time:
        lt_lines: list[str] = []
        if oi.lead_time.maximum_lead_time_days is not None:
            lt_lines.append(f"- Maximum Acceptable: {oi.lead_time.maximum_lead_time_days} days")
        if oi.lead_time.preferred_lead_time_days is not None:
            lt_lines.append(f"- Preferred: {oi.lead_time.preferred_lead_time_days} days")
        if lt_lines:
            sections.append("### Lead Time Rules\n" + "\n".join(lt_lines))

    if oi.payment_terms:
        pt_lines: list[str] = []
        if oi.payment_terms.required_terms:
            pt_lines.append(f"- Required: {oi.payment_terms.required_terms}")
        if oi.payment_terms.acceptable_alternatives:
            pt_lines.append(f"- Acceptable Alternatives: {', '.join(oi.payment_terms.acceptable_alternatives)}")
        if oi.payment_terms.maximum_upfront_percent is not None:
            pt_lines.append(f"- Maximum Upfront: {_num(oi.payment_terms.maximum_upfront_percent)}%")
        if pt_lines:
            sections.append("### Payment Terms\n" + "\n".join(pt_lines))

    if oi.shipping:
        ship_lines: list[str] = []
        if oi.shipping.required_incoterms:
            ship_lines.append(f"- Required Incoterms: {oi.shipping.required_incoterms}")
        if oi.shipping.origin_location or oi.shipping.destination_location:
            ship_lines.append(
                f"- Origin: {oi.shipping.origin_location or 'N/A'} to "
                f"Destination: {oi.shipping.destination_location or 'N/A'}"
            )
        if oi.shipping.preferred_method:
            ship_lines.append(f"- Preferred Method: {oi.shipping.preferred_method}")
        if ship_lines:
            sections.append("### Shipping\n" + "\n".join(ship_lines))

    if oi.negotiation:
        neg_lines: list[str] = [f"- Never Accept First Offer: {str(oi.negotiation.never_accept_first_offer).lower()}"]
        if oi.negotiation.max_negotiation_rounds is not None:
            neg_lines.append(f"- Max Negotiation Rounds: {oi.negotiation.max_negotiation_rounds}")
        if oi.negotiation.counter_price_strategy:
            neg_lines.append(f"- Counter Strategy: {oi.negotiation.counter_price_strategy}")
        if oi.negotiation.priority_order:
            neg_lines.append(f"- Priority Order: {' > '.join(oi.negotiation.priority_order)}")
        sections.append("### Negotiation Behavior\n" + "\n".join(neg_lines))

    sections.append("### Escalation Triggers\n" + format_escalation_triggers(oi))

    merchant_lines = [f"- Company: {oi.merchant.merchant_name}"]
    if oi.merchant.contact_name or oi.merchant.contact_email:
        merchant_lines.append(f"- Contact: {oi.merchant.contact_name} ({oi.merchant.contact_email})")
    if oi.metadata:
        if oi.metadata.po_number:
            merchant_lines.append(f"- PO Number: {oi.metadata.po_number}")
        if oi.metadata.order_type:
            merchant_lines.append(
                f"- Order Type: {oi.metadata.order_type} ({oi.metadata.urgency or 'standard'} urgency)"
            )
        if oi.metadata.order_notes:
            merchant_lines.append(f"- Notes: {oi.metadata.order_notes}")
    sections.append("### Merchant\n" + "\n".join(merchant_lines))

    return "## Order Information\n\n" + "\n\n".join(sections)


def format_escalation_triggers(oi: OrderInformation) -> str:
    """Trigger list derived from structured limits plus free-text triggers.

    No price trigger is derived from the maximum acceptable price: a price
    above the acceptable band is a counter, not an escalation.  Only an
    explicit ``escalate_above_price`` produces one.
    """
    triggers: list[str] = []

    if oi.pricing.escalate_above_price is not None:
        triggers.append(f"- Price exceeds {_money(oi.pricing.escalate_above_price)}/unit")

    if oi.lead_time and oi.lead_time.maximum_lead_time_days is not None:
        triggers.append(f"- Lead time exceeds {oi.lead_time.maximum_lead_time_days} days")

    if oi.payment_terms and oi.payment_terms.maximum_upfront_percent is not None:
        triggers.append(f"- Upfront payment exceeds {_num(oi.payment_terms.maximum_upfront_percent)}%")

    if oi.quantity.minimum_acceptable_quantity is not None or oi.quantity.maximum_acceptable_quantity is not None:
        limit = oi.quantity.maximum_acceptable_quantity or oi.quantity.target_quantity
        triggers.append(f"- Supplier MOQ exceeds {limit} units")

    if oi.escalation:
        triggers.extend(f"- {trigger}" for trigger in oi.escalation.additional_triggers)

    return "\n".join(triggers)


def format_negotiation_rules(oi: OrderInformation) -> str:
    rules: list[str] = []
    pricing = oi.pricing

    rules.append(
        f"Target price {_money(pricing.target_price)}/unit. "
        f"Acceptable range is {_money(pricing.target_price)} - {_money(pricing.maximum_acceptable_price)} per unit."
    )
    if pricing.never_counter_above is not None:
        rules.append(f"Never counter above {_money(pricing.never_counter_above)}/unit.")

    if oi.lead_time and oi.lead_time.maximum_lead_time_days is not None:
        lead_time = f"Maximum lead time {oi.lead_time.maximum_lead_time_days} days."
        if oi.lead_time.preferred_lead_time_days is not None:
            lead_time += f" Prefer {oi.lead_time.preferred_lead_time_days} days."
        rules.append(lead_time)

    if oi.payment_terms and oi.payment_terms.required_terms:
        terms = f"Required payment terms: {oi.payment_terms.required_terms}."
        if oi.payment_terms.acceptable_alternatives:
            terms += f" Accept alternatives: {', '.join(oi.payment_terms.acceptable_alternatives)}."
        rules.append(terms)

    qty = [f"Target {oi.quantity.target_quantity} units."]
    if oi.quantity.minimum_acceptable_quantity is not None or oi.quantity.maximum_acceptable_quantity is not None:
        low = oi.quantity.minimum_acceptable_quantity or 0
        high = oi.quantity.maximum_acceptable_quantity
        qty.append(f"Acceptable quantity: {low} to {high if high is not None else 'unlimited'} units.")
    rules.append(" ".join(qty))

    if oi.negotiation:
        behaviour: list[str] = []
        if oi.negotiation.never_accept_first_offer:
            behaviour.append("Never accept first offer.")
        if oi.negotiation.max_negotiation_rounds is not None:
            behaviour.append(f"Max {oi.negotiation.max_negotiation_rounds} negotiation rounds.")
        if oi.negotiation.counter_price_strategy:
            behaviour.append(f"Strategy: {oi.negotiation.counter_price_strategy}.")
        if behaviour:
            rules.append(" ".join(behaviour))
        rules.extend(oi.negotiation.additional_rules)

    return "\n".join(rules)


# ---------------------------------------------------------------------------
# Extracted data
# ---------------------------------------------------------------------------


def format_extracted_data(data: Optional[ExtractedQuoteData]) -> str:
    if data is None:
        return "No data extracted (extraction failed or no pricing found)"

    if data.quoted_price is not None:
        price = f"{_num(data.quoted_price)} {data.quoted_price_currency}"
    else:
        price = "not provided"
    price_usd = _money(data.quoted_price_usd) if data.quoted_price_usd is not None else "not available"

    if data.lead_time_min_days is not None:
        if data.lead_time_max_days is not None and data.lead_time_max_days != data.lead_time_min_days:
            lead_time = f"{data.lead_time_min_days}-{data.lead_time_max_days} days"
        else:
            lead_time = f"{data.lead_time_min_days} days"
    elif data.lead_time_max_days is not None:
        lead_time = f"{data.lead_time_max_days} days"
    else:
        lead_time = "not specified"

    def _or_unspecified(value: object) -> str:
        return "not specified" if value is None else str(value)

    return "\n".join(
        [
            f"Quoted Price: {price}",
            f"Price (USD): {price_usd}",
            f"Available Quantity: {_or_unspecified(data.available_quantity)}",
            f"MOQ: {_or_unspecified(data.moq)}",
            f"Lead Time: {lead_time}",
            f"Payment Terms: {_or_unspecified(data.payment_terms)}",
            f"Validity Period: {_or_unspecified(data.validity_period)}",
        ]
    )


