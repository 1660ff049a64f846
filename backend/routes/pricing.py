"""
RFP CRM - Routes Pricing

- Aperçu des totaux d'une liste d'équipements (rien n'est enregistré)
- Prix B2B / retail selon les markup rules actives
"""

from fastapi import APIRouter
from pydantic import BaseModel
from typing import List

from models.equipment import EquipmentLine
from models.product import ProductPricingRequest
from models.rfp import money
from services.markup_rules import price_products
from services.pricing import compute_totals

router = APIRouter(prefix="/pricing", tags=["Pricing"])


class TotalsPreviewRequest(BaseModel):
    equipment: List[EquipmentLine] = []


@router.post("/totals")
async def preview_totals(data: TotalsPreviewRequest):
    totals = compute_totals(data.equipment)
    return {
        "totals": totals.as_flat_dict(),
        "weightedMargin": {
            "products": money(totals.products.weighted_margin_percent),
            "services": money(totals.services.weighted_margin_percent),
        },
        "lines": [line.to_document() for line in data.equipment],
    }


@router.post("/products")
async def price_product_list(data: ProductPricingRequest):
    return await price_products(data.products)
