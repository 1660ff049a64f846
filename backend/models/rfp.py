"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Modèle RFP (Request for Proposal)                                 ║
║                                                                              ║
║  Un RFP courant par lead ("latest wins"), le snapshot vit dans               ║
║  rfps.requirements: equipment + totals + generated_at/by                     ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - total == subtotal + margin_amount (par type)                              ║
║  - grand_total == products.total + services.total                            ║
║  - totals TOUJOURS recalculés depuis equipment                               ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .equipment import EquipmentLine, clean_text


class RfpStatus(str, Enum):
    DRAFT = "DRAFT"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    AWARDED = "AWARDED"
    LOST = "LOST"
    CANCELLED = "CANCELLED"


VALID_RFP_STATUSES = [s.value for s in RfpStatus]

# Statuts "fermés": une régénération depuis ces statuts est une régression
CLOSED_RFP_STATUSES = {RfpStatus.AWARDED.value, RfpStatus.LOST.value, RfpStatus.CANCELLED.value}

DEFAULT_RFP_STAGE = "RFP_DRAFTING"


class EntityKind(str, Enum):
    LEAD = "LEAD"
    CUSTOMER = "CUSTOMER"


CENTS = Decimal("0.01")


def money(value: Decimal) -> float:
    """Arrondi de présentation (2 décimales)"""
    return float(value.quantize(CENTS, rounding=ROUND_HALF_UP))


class KindTotals(BaseModel):
    subtotal: Decimal = Decimal("0")
    margin_amount: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    count: int = 0
    quantity: int = 0

    @property
    def weighted_margin_percent(self) -> Decimal:
        if not self.subtotal:
            return Decimal("0")
        return self.margin_amount * Decimal(100) / self.subtotal


class PricingTotals(BaseModel):
    products: KindTotals = Field(default_factory=KindTotals)
    services: KindTotals = Field(default_factory=KindTotals)

    @property
    def grand_total(self) -> Decimal:
        return self.products.total + self.services.total

    @property
    def total_margin(self) -> Decimal:
        return self.products.margin_amount + self.services.margin_amount

    def as_flat_dict(self) -> dict:
        """Forme persistée / renvoyée par l'API (arrondie à 2 décimales)"""
        return {
            "productsSubtotal": money(self.products.subtotal),
            "productsMargin": money(self.products.margin_amount),
            "productsTotal": money(self.products.total),
            "servicesSubtotal": money(self.services.subtotal),
            "servicesMargin": money(self.services.margin_amount),
            "servicesTotal": money(self.services.total),
            "grandTotal": money(self.grand_total),
            "totalMargin": money(self.total_margin),
        }


class RequirementsSnapshot(BaseModel):
    equipment: List[EquipmentLine] = []
    general_notes: Optional[str] = None
    totals: PricingTotals = Field(default_factory=PricingTotals)
    generated_at: str = ""
    generated_by: str = "system"

    @field_validator("general_notes")
    @classmethod
    def _printable_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value)

    @property
    def products(self) -> List[EquipmentLine]:
        return [line for line in self.equipment if line.kind.value == "product"]

    @property
    def services(self) -> List[EquipmentLine]:
        return [line for line in self.equipment if line.kind.value == "service"]


class DocumentHeader(BaseModel):
    """En-tête commun aux documents générés (Excel / Word)"""
    reference_number: str
    customer_name: str = "Customer"
    project_title: str = ""
    document_number: str = "Draft"

    @field_validator("reference_number", "customer_name", "project_title", "document_number")
    @classmethod
    def _printable(cls, value: str) -> str:
        return clean_text(value)


# ==================== REQUESTS ====================

class GenerateRfpRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    equipment: Optional[List[EquipmentLine]] = None
    general_notes: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("general_notes", "generalNotes")
    )

    @field_validator("general_notes")
    @classmethod
    def _printable_notes(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value)


class GenerateBomRequest(BaseModel):
    equipment: Optional[List[EquipmentLine]] = None


class RfpStatusUpdate(BaseModel):
    status: RfpStatus
    stage: Optional[str] = None
