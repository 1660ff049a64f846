"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Models Package                                                    ║
║                                                                              ║
║  Exports tous les modèles pour import facile                                 ║
║  from models import EquipmentLine, PricingTotals, RfpStatus, etc.            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Equipment (lignes chiffrées)
from .equipment import (
    LineKind,
    VALID_LINE_KINDS,
    EquipmentLine,
    compose_location,
    clean_text,
    to_decimal,
)

# RFP (snapshot, totaux, statuts)
from .rfp import (
    RfpStatus,
    VALID_RFP_STATUSES,
    CLOSED_RFP_STATUSES,
    DEFAULT_RFP_STAGE,
    EntityKind,
    KindTotals,
    PricingTotals,
    RequirementsSnapshot,
    DocumentHeader,
    GenerateRfpRequest,
    GenerateBomRequest,
    RfpStatusUpdate,
    money,
)

# Products / Markup
from .product import (
    MarkupRuleType,
    MarkupRule,
    ProductPricingInput,
    ProductPricingRequest,
    ProductCodesUpdate,
    BulkErpSyncRequest,
)

__all__ = [
    # Equipment
    "LineKind",
    "VALID_LINE_KINDS",
    "EquipmentLine",
    "compose_location",
    "clean_text",
    "to_decimal",
    # RFP
    "RfpStatus",
    "VALID_RFP_STATUSES",
    "CLOSED_RFP_STATUSES",
    "DEFAULT_RFP_STAGE",
    "EntityKind",
    "KindTotals",
    "PricingTotals",
    "RequirementsSnapshot",
    "DocumentHeader",
    "GenerateRfpRequest",
    "GenerateBomRequest",
    "RfpStatusUpdate",
    "money",
    # Products
    "MarkupRuleType",
    "MarkupRule",
    "ProductPricingInput",
    "ProductPricingRequest",
    "ProductCodesUpdate",
    "BulkErpSyncRequest",
]
