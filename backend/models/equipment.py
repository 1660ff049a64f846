"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Modèle EquipmentLine                                              ║
║                                                                              ║
║  Une ligne = un produit ou un service chiffré d'un site survey               ║
║  - quantity > 0, unit_price >= 0 (validés ici, à la frontière API)           ║
║  - margin_percent NON borné (négatif = remise)                               ║
║  - total_price TOUJOURS recalculé, jamais lu depuis le client                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Optional

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class LineKind(str, Enum):
    PRODUCT = "product"
    SERVICE = "service"


VALID_LINE_KINDS = [k.value for k in LineKind]


def to_decimal(value: Any) -> Decimal:
    """Convertit une valeur numérique en Decimal sans passer par la dérive float."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return Decimal("0")


def clean_text(value: Optional[str]) -> Optional[str]:
    """Retire les caractères de contrôle refusés par xlsx / docx (\\x0b collé depuis Word, etc.)"""
    if not isinstance(value, str):
        return value
    return ILLEGAL_CHARACTERS_RE.sub("", value)


def compose_location(element: Optional[dict]) -> Optional[str]:
    """building - floor - element, pour l'affichage uniquement"""
    if not element or not isinstance(element, dict):
        return None
    parts = [
        element.get("buildingName") or element.get("building_name") or "",
        element.get("floorName") or element.get("floor_name") or "",
        element.get("elementName") or element.get("element_name") or "",
    ]
    parts = [p.strip() for p in parts if p and str(p).strip()]
    return " - ".join(parts) if parts else None


class EquipmentLine(BaseModel):
    """
    Ligne d'équipement chiffrée.

    Accepte aussi l'ancien format du wizard:
    {"type": "product", "price": 100, "margin": 10, "infrastructureElement": {...}}
    """
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    kind: LineKind = Field(validation_alias=AliasChoices("kind", "type"))
    name: str = ""
    brand: Optional[str] = None
    category: Optional[str] = None

    quantity: int = Field(gt=0)
    unit_price: Decimal = Field(ge=0, validation_alias=AliasChoices("unit_price", "unitPrice", "price"))
    margin_percent: Decimal = Field(
        default=Decimal("0"),
        validation_alias=AliasChoices("margin_percent", "marginPercent", "margin"),
    )

    location_ref: Optional[str] = Field(default=None, validation_alias=AliasChoices("location_ref", "locationRef"))
    notes: Optional[str] = None

    # Identifiants externes (ERP / BOM)
    product_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("product_id", "productId"))
    code: Optional[str] = None
    manufacturer_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("manufacturer_code", "manufacturerCode")
    )
    ean_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("ean_code", "eanCode"))

    @model_validator(mode="before")
    @classmethod
    def _legacy_shapes(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        # brand / category peuvent arriver comme {"name": ...}
        for key in ("brand", "category"):
            value = data.get(key)
            if isinstance(value, dict):
                data[key] = value.get("name")
        if not data.get("location_ref") and not data.get("locationRef"):
            location = compose_location(data.get("infrastructureElement"))
            if location:
                data["location_ref"] = location
        return data

    @field_validator("kind", mode="before")
    @classmethod
    def _normalize_kind(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator(
        "name", "brand", "category", "location_ref", "notes", "code", "manufacturer_code", "ean_code"
    )
    @classmethod
    def _printable_text(cls, value: Optional[str]) -> Optional[str]:
        return clean_text(value)

    @field_validator("unit_price", "margin_percent", mode="before")
    @classmethod
    def _exact_decimal(cls, value: Any) -> Any:
        # float -> str -> Decimal: 19.99 reste 19.99
        if value is None:
            return 0
        if isinstance(value, float):
            return to_decimal(value)
        return value

    @property
    def base_amount(self) -> Decimal:
        return Decimal(self.quantity) * self.unit_price

    @property
    def margin_amount(self) -> Decimal:
        return self.base_amount * self.margin_percent / Decimal(100)

    @property
    def total_price(self) -> Decimal:
        """quantity * unit_price * (1 + margin_percent / 100)"""
        return self.base_amount + self.margin_amount

    def to_document(self) -> dict:
        """Forme stockée dans rfps.requirements.equipment (JSON/BSON safe)."""
        return {
            "id": self.id,
            "kind": self.kind.value,
            "name": self.name,
            "brand": self.brand,
            "category": self.category,
            "quantity": self.quantity,
            "unit_price": float(self.unit_price),
            "margin_percent": float(self.margin_percent),
            "total_price": float(round(self.total_price, 2)),
            "location_ref": self.location_ref,
            "notes": self.notes,
            "product_id": self.product_id,
            "code": self.code,
            "manufacturer_code": self.manufacturer_code,
            "ean_code": self.ean_code,
        }
