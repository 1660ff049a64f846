"""
RFP CRM - Markup rules lookup

Charge les règles actives (db.markup_rules, lecture seule) et
applique le calcul de prix B2B / retail.
"""

import logging
from typing import List

from config import db
from models.product import MarkupRule, ProductPricingInput
from services.pricing import batch_calculate_pricing

logger = logging.getLogger("markup_rules")


async def load_active_rules() -> List[MarkupRule]:
    docs = await db.markup_rules.find(
        {"$or": [{"is_active": True}, {"isActive": True}]},
        {"_id": 0}
    ).sort("priority", -1).to_list(500)
    return [MarkupRule.model_validate(d) for d in docs]


async def price_products(products: List[ProductPricingInput]) -> dict:
    """Prix B2B / retail pour une liste de produits selon les règles actives"""
    rules = await load_active_rules()
    results = batch_calculate_pricing(products, rules)
    unmatched = sum(1 for r in results if r["applied_rule"] is None)
    if unmatched:
        logger.info(f"[MARKUP] {unmatched}/{len(results)} product(s) without applicable rule")
    return {
        "results": results,
        "rules_count": len(rules),
        "count": len(results),
    }
