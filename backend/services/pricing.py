"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Pricing Calculator                                                ║
║                                                                              ║
║  compute_totals(): totaux produits / services d'un snapshot                  ║
║  - Decimal de bout en bout, aucun arrondi intermédiaire                      ║
║  - liste vide => tous les totaux à 0, jamais d'exception                     ║
║                                                                              ║
║  + helpers markup (prix B2B / retail depuis les markup_rules)                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from decimal import Decimal
from typing import Iterable, List, Optional, Dict, Any

from models.equipment import EquipmentLine, LineKind
from models.product import MarkupRule, MarkupRuleType, ProductPricingInput
from models.rfp import KindTotals, PricingTotals


def _kind_totals(lines: List[EquipmentLine]) -> KindTotals:
    subtotal = Decimal("0")
    margin_amount = Decimal("0")
    quantity = 0
    for line in lines:
        subtotal += line.base_amount
        margin_amount += line.margin_amount
        quantity += line.quantity
    return KindTotals(
        subtotal=subtotal,
        margin_amount=margin_amount,
        total=subtotal + margin_amount,
        count=len(lines),
        quantity=quantity,
    )


def compute_totals(lines: Iterable[EquipmentLine]) -> PricingTotals:
    """
    Partitionne les lignes par type puis calcule:
        subtotal      = Σ qty * unit_price
        margin_amount = Σ qty * unit_price * margin / 100
        total         = subtotal + margin_amount
    grand_total (propriété) = products.total + services.total
    """
    products, services = [], []
    for line in lines:
        if line.kind == LineKind.PRODUCT:
            products.append(line)
        else:
            services.append(line)
    return PricingTotals(products=_kind_totals(products), services=_kind_totals(services))


# ════════════════════════════════════════════════════════════════════════════
# MARKUP / MARGIN HELPERS
# ════════════════════════════════════════════════════════════════════════════

def calculate_price_by_markup(cost: float, markup_percent: float) -> float:
    if cost <= 0:
        return 0.0
    return cost * (1 + markup_percent / 100)


def calculate_markup_percent(cost: float, selling_price: float) -> float:
    if cost <= 0 or selling_price <= 0:
        return 0.0
    return (selling_price - cost) / cost * 100


def calculate_margin_percent(cost: float, selling_price: float) -> float:
    if selling_price <= 0:
        return 0.0
    return (selling_price - cost) / selling_price * 100


def find_applicable_rule(
    rules: List[MarkupRule],
    brand_id: Optional[str] = None,
    manufacturer_id: Optional[str] = None,
    category_id: Optional[str] = None
) -> Optional[MarkupRule]:
    """
    Première règle active (priorité décroissante) qui s'applique au produit.
    Une règle globale s'applique à tout.
    """
    active = sorted((r for r in rules if r.is_active), key=lambda r: r.priority, reverse=True)

    for rule in active:
        if rule.type == MarkupRuleType.GLOBAL:
            return rule
        if rule.type == MarkupRuleType.BRAND and rule.target_id and rule.target_id == brand_id:
            return rule
        if rule.type == MarkupRuleType.MANUFACTURER and rule.target_id and rule.target_id == manufacturer_id:
            return rule
        if rule.type == MarkupRuleType.CATEGORY and rule.target_id and rule.target_id == category_id:
            return rule

    return None


def _clamp(price: float, min_price: Optional[float], max_price: Optional[float]) -> float:
    if min_price and price < min_price:
        price = min_price
    if max_price and price > max_price:
        price = max_price
    return price


def calculate_product_pricing(
    cost: float,
    rule: Optional[MarkupRule],
    manual_b2b_price: Optional[float] = None,
    manual_retail_price: Optional[float] = None
) -> Dict[str, Any]:
    """
    Prix B2B et retail d'un produit.
    Un prix manuel l'emporte sur la règle; les bornes min/max de la règle
    ne s'appliquent qu'aux prix calculés.
    """
    if cost <= 0:
        return {
            "b2b_price": 0.0,
            "retail_price": 0.0,
            "b2b_margin": 0.0,
            "retail_margin": 0.0,
            "b2b_markup": 0.0,
            "retail_markup": 0.0,
            "applied_rule": None,
        }

    b2b_price = 0.0
    retail_price = 0.0
    applied_rule = None

    if manual_b2b_price:
        b2b_price = manual_b2b_price
    elif rule:
        b2b_price = _clamp(
            calculate_price_by_markup(cost, rule.b2b_markup_percent),
            rule.min_b2b_price,
            rule.max_b2b_price,
        )
        applied_rule = rule

    if manual_retail_price:
        retail_price = manual_retail_price
    elif rule:
        retail_price = _clamp(
            calculate_price_by_markup(cost, rule.retail_markup_percent),
            rule.min_retail_price,
            rule.max_retail_price,
        )
        applied_rule = rule

    return {
        "b2b_price": b2b_price,
        "retail_price": retail_price,
        "b2b_margin": calculate_margin_percent(cost, b2b_price),
        "retail_margin": calculate_margin_percent(cost, retail_price),
        "b2b_markup": calculate_markup_percent(cost, b2b_price),
        "retail_markup": calculate_markup_percent(cost, retail_price),
        "applied_rule": applied_rule.model_dump() if applied_rule else None,
    }


def rule_warnings(cost: float, rule: Optional[MarkupRule]) -> List[str]:
    """Contrôle des bornes de la règle appliquée, canal B2B puis retail"""
    if not rule:
        return []
    warnings = []
    for channel, markup, min_price, max_price in (
        ("B2B", rule.b2b_markup_percent, rule.min_b2b_price, rule.max_b2b_price),
        ("Retail", rule.retail_markup_percent, rule.min_retail_price, rule.max_retail_price),
    ):
        check = validate_pricing_constraints(cost, markup, min_price, max_price)
        warnings += [f"{channel}: {message}" for message in check["errors"] + check["warnings"]]
    return warnings


def batch_calculate_pricing(products: List[ProductPricingInput], rules: List[MarkupRule]) -> List[Dict[str, Any]]:
    results = []
    for product in products:
        rule = find_applicable_rule(rules, product.brand_id, product.manufacturer_id, product.category_id)
        pricing = calculate_product_pricing(
            product.cost, rule, product.manual_b2b_price, product.manual_retail_price
        )
        results.append({
            "id": product.id,
            "cost": product.cost,
            **pricing,
            "warnings": rule_warnings(product.cost, rule),
        })
    return results


def validate_pricing_constraints(
    cost: float,
    markup_percent: float,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None
) -> Dict[str, Any]:
    errors = []
    warnings = []

    if cost < 0:
        errors.append("Cost cannot be negative")
    if markup_percent < 0:
        errors.append("Markup percentage cannot be negative")
    if markup_percent > 1000:
        warnings.append("Markup percentage is very high (>1000%)")
    if min_price and max_price and min_price > max_price:
        errors.append("Minimum price cannot be greater than maximum price")
    if min_price and min_price <= cost:
        warnings.append("Minimum price is not higher than cost")

    calculated = calculate_price_by_markup(cost, markup_percent)
    if min_price and calculated < min_price:
        warnings.append(f"Calculated price (€{calculated:.2f}) is below minimum price (€{min_price:.2f})")
    if max_price and calculated > max_price:
        warnings.append(f"Calculated price (€{calculated:.2f}) is above maximum price (€{max_price:.2f})")

    return {"is_valid": not errors, "errors": errors, "warnings": warnings}
