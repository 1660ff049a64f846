"""
RFP CRM - AI product translation (DeepSeek)

Traduit un produit dans toutes les langues actives (sort_order), une
requête par langue, en "collect and report": l'échec d'une langue
n'arrête pas les autres.

La réponse 'en' peut aussi fournir les codes EAN / fabricant manquants;
ils sont enregistrés après la boucle puis synchronisés vers l'ERP.
"""

import asyncio
import json
import logging
import re
from typing import List, Optional

import httpx

import config
from config import db, now_iso, new_id
from services.erp_sync import save_product_codes

logger = logging.getLogger("translation")

SYSTEM_PROMPT = (
    "You are a professional product translator specializing in e-commerce and technical products. "
    "Always respond with valid JSON only, no markdown formatting."
)
CODES_LANGUAGE = "en"
REQUIRED_FIELDS = ("name", "shortDescription", "description")

_FENCE_RE = re.compile(r"```(?:json)?\s*")


class TranslationError(Exception):
    def __init__(self, message: str, status_code: int = 502):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _http_client(timeout: float) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=timeout)


def _name_of(value) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    return value


def product_context(product: dict) -> dict:
    return {
        "name": product.get("name"),
        "brand": _name_of(product.get("brand")),
        "category": _name_of(product.get("category")),
        "manufacturer": _name_of(product.get("manufacturer")),
        "ean_code": product.get("ean_code"),
        "manufacturer_code": product.get("manufacturer_code"),
        "erp_code": product.get("code"),
    }


def build_translation_prompt(context: dict, language_name: str, language_code: str, needs_codes: bool) -> str:
    is_greek = language_code == "el"
    lines = []

    if is_greek:
        lines.append("Generate professional Greek product descriptions for e-commerce:")
    else:
        lines.append(f"Translate the following product information to {language_name}:")

    lines.append(f"\nProduct Name: {context.get('name')}")
    for label, key in (
        ("Brand", "brand"),
        ("Category", "category"),
        ("Manufacturer", "manufacturer"),
        ("EAN Code", "ean_code"),
        ("Manufacturer Code", "manufacturer_code"),
        ("ERP Code", "erp_code"),
    ):
        if context.get(key):
            lines.append(f"{label}: {context[key]}")

    if needs_codes:
        lines.append("\nThis product is missing its EAN and/or manufacturer code.")
        lines.append("Identify the exact product model from the name, brand, category and manufacturer.")
        lines.append('- eanCode: a valid 13-digit EAN barcode, or "" if unknown')
        lines.append("- manufacturerCode: the manufacturer part number")
        lines.append("- The two codes MUST be different")

    lines.append("\nREQUIREMENTS:")
    if is_greek:
        lines.append('- "name" in UPPERCASE Greek without tones/accents')
        lines.append('- "shortDescription" and "description" in normal case, without tones/accents')
    lines.append("- Technical descriptions only (specifications, ports, speeds, power, standards), no marketing copy")
    lines.append("- shortDescription: 100-150 characters, include the EAN code if available")
    lines.append("- description: 250-400 characters, end with the EAN and manufacturer codes if available")

    fields = ['  "name": "..."', '  "shortDescription": "..."', '  "description": "..."']
    if needs_codes:
        fields += ['  "eanCode": "..."', '  "manufacturerCode": "..."']
    lines.append("\nRespond with JSON only, with this structure:")
    lines.append("{\n" + ",\n".join(fields) + "\n}")
    return "\n".join(lines)


def parse_translation(content: str) -> dict:
    """Retire les balises markdown, parse et valide la réponse"""
    if not content:
        raise TranslationError("Empty response from DeepSeek")
    cleaned = _FENCE_RE.sub("", content).strip()
    try:
        data = json.loads(cleaned)
    except ValueError:
        raise TranslationError("Invalid JSON response from AI")
    if not isinstance(data, dict) or not all(data.get(field) for field in REQUIRED_FIELDS):
        raise TranslationError("Incomplete translation data")
    return data


async def request_translation(client: httpx.AsyncClient, prompt: str) -> dict:
    try:
        resp = await client.post(
            config.DEEPSEEK_API_URL,
            json={
                "model": config.DEEPSEEK_MODEL,
                "messages": [
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0.3,
                "max_tokens": 1000,
            },
            headers={
                "Authorization": f"Bearer {config.DEEPSEEK_API_KEY}",
                "Content-Type": "application/json"
            }
        )
    except httpx.TimeoutException:
        raise TranslationError(f"DeepSeek timeout after {config.AI_TIMEOUT_SECONDS}s")
    except httpx.HTTPError as e:
        raise TranslationError(f"DeepSeek connection error: {e}")

    if not resp.is_success:
        raise TranslationError(f"DeepSeek API error: {resp.status_code}")

    try:
        content = resp.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        raise TranslationError("Empty response from DeepSeek")
    return parse_translation(content)


def extract_codes(data: dict, product: dict) -> dict:
    """
    Codes proposés par l'IA, uniquement pour les champs vides du produit.
    EAN identique au code fabricant => réponse rejetée.
    """
    ean = (data.get("eanCode") or "").strip()
    mfr = (data.get("manufacturerCode") or "").strip()

    if ean and mfr and ean == mfr:
        logger.warning(f"[TRANSLATE] AI returned the same EAN and manufacturer code for {product.get('id')}, ignored")
        return {}

    codes = {}
    if ean and not product.get("ean_code"):
        codes["ean_code"] = ean
    if mfr and not product.get("manufacturer_code"):
        codes["manufacturer_code"] = mfr
    return codes


async def upsert_translation(product_id: str, language_code: str, data: dict):
    now = now_iso()
    await db.product_translations.update_one(
        {"product_id": product_id, "language_code": language_code},
        {
            "$set": {
                "name": data["name"],
                "short_description": data["shortDescription"],
                "description": data["description"],
                "updated_at": now,
            },
            "$setOnInsert": {"id": new_id(), "created_at": now},
        },
        upsert=True
    )


async def list_translations(product_id: str) -> List[dict]:
    return await db.product_translations.find(
        {"product_id": product_id}, {"_id": 0}
    ).sort("language_code", 1).to_list(100)


async def translate_product(product_id: str, actor: str = "system") -> dict:
    product = await db.products.find_one({"id": product_id}, {"_id": 0})
    if not product:
        raise TranslationError("Product not found", status_code=404)

    languages = await db.languages.find({"is_active": True}, {"_id": 0}).sort("sort_order", 1).to_list(100)
    if not languages:
        raise TranslationError("No active languages found", status_code=400)

    if not config.DEEPSEEK_API_KEY:
        raise TranslationError("DeepSeek API key not configured", status_code=500)

    context = product_context(product)
    needs_codes = not product.get("ean_code") or not product.get("manufacturer_code")
    fetched_codes = {}
    results = []

    async with _http_client(config.AI_TIMEOUT_SECONDS) as client:
        for language in languages:
            code = language.get("code")
            ask_codes = needs_codes and code == CODES_LANGUAGE
            try:
                prompt = build_translation_prompt(context, language.get("name") or code, code, ask_codes)
                data = await request_translation(client, prompt)
                if ask_codes and not fetched_codes:
                    fetched_codes = extract_codes(data, product)
                await upsert_translation(product_id, code, data)
                results.append({"language_code": code, "language_name": language.get("name"), "success": True})
                await asyncio.sleep(config.AI_REQUEST_DELAY_SECONDS)
            except TranslationError as e:
                logger.warning(f"[TRANSLATE] {product_id} -> {code} failed: {e.message}")
                results.append({
                    "language_code": code,
                    "language_name": language.get("name"),
                    "success": False,
                    "error": e.message,
                })

    erp_sync_status = None
    if fetched_codes:
        saved = await save_product_codes(
            product_id,
            fetched_codes.get("ean_code"),
            fetched_codes.get("manufacturer_code"),
            actor=actor
        )
        if saved and saved["erp_sync_status"] != "skipped":
            erp_sync_status = saved["erp_sync_status"]

    successful = sum(1 for r in results if r["success"])
    failed = len(results) - successful
    logger.info(f"[TRANSLATE] {product_id}: {successful} ok, {failed} failed, codes={list(fetched_codes)}")

    return {
        "success": True,
        "message": f"Translation completed: {successful} successful, {failed} failed",
        "results": results,
        "summary": {"total": len(results), "successful": successful, "failed": failed},
        "codes_updated": bool(fetched_codes),
        "updated_codes": fetched_codes or None,
        "erp_synced": erp_sync_status == "success",
        "erp_sync_status": erp_sync_status,
    }
