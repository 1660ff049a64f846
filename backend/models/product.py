"""
RFP CRM - Modèles Product / MarkupRule

Les produits, règles de markup et langues sont lus depuis la base;
ce service ne gère que la mise à jour des codes (EAN / fabricant).
"""

from enum import Enum
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class MarkupRuleType(str, Enum):
    GLOBAL = "global"
    BRAND = "brand"
    MANUFACTURER = "manufacturer"
    CATEGORY = "category"


class MarkupRule(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: Optional[str] = None
    name: Optional[str] = None
    type: MarkupRuleType = MarkupRuleType.GLOBAL
    target_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("target_id", "targetId"))
    priority: int = 0
    b2b_markup_percent: float = Field(
        default=0.0, validation_alias=AliasChoices("b2b_markup_percent", "b2bMarkupPercent")
    )
    retail_markup_percent: float = Field(
        default=0.0, validation_alias=AliasChoices("retail_markup_percent", "retailMarkupPercent")
    )
    min_b2b_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("min_b2b_price", "minB2BPrice"))
    max_b2b_price: Optional[float] = Field(default=None, validation_alias=AliasChoices("max_b2b_price", "maxB2BPrice"))
    min_retail_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("min_retail_price", "minRetailPrice")
    )
    max_retail_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("max_retail_price", "maxRetailPrice")
    )
    is_active: bool = Field(default=True, validation_alias=AliasChoices("is_active", "isActive"))


class ProductPricingInput(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    cost: float = Field(ge=0)
    brand_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("brand_id", "brandId"))
    manufacturer_id: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("manufacturer_id", "manufacturerId")
    )
    category_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("category_id", "categoryId"))
    manual_b2b_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("manual_b2b_price", "manualB2BPrice")
    )
    manual_retail_price: Optional[float] = Field(
        default=None, validation_alias=AliasChoices("manual_retail_price", "manualRetailPrice")
    )


class ProductPricingRequest(BaseModel):
    products: List[ProductPricingInput]


class ProductCodesUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ean_code: Optional[str] = Field(default=None, validation_alias=AliasChoices("ean_code", "eanCode"))
    manufacturer_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("manufacturer_code", "manufacturerCode")
    )

    @field_validator("ean_code", "manufacturer_code", mode="before")
    @classmethod
    def _blank_to_none(cls, value):
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value


class BulkErpSyncRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    product_ids: List[str] = Field(validation_alias=AliasChoices("product_ids", "productIds"))
