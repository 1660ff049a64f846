"""
RFP CRM - Safe filenames

Translittération grec -> latin (greeklish) puis nettoyage pour obtenir
des noms de fichiers sûrs sur disque et sur le CDN:

    build_safe_filename("ΞΕΝΟΔΟΧΕΙΑ ΚΡΗΤΗΣ ΑΕ", "RFP Pricing", 7, ".xlsx")
    -> "XENODOCHEIA KRITIS AE - RFP Pricing - v7.xlsx"
"""

import re
import unicodedata
from typing import Optional

GREEK_TO_LATIN = {
    # Majuscules
    "Α": "A", "Β": "B", "Γ": "G", "Δ": "D", "Ε": "E", "Ζ": "Z", "Η": "I", "Θ": "TH",
    "Ι": "I", "Κ": "K", "Λ": "L", "Μ": "M", "Ν": "N", "Ξ": "X", "Ο": "O", "Π": "P",
    "Ρ": "R", "Σ": "S", "Τ": "T", "Υ": "Y", "Φ": "F", "Χ": "CH", "Ψ": "PS", "Ω": "O",
    # Minuscules
    "α": "a", "β": "b", "γ": "g", "δ": "d", "ε": "e", "ζ": "z", "η": "i", "θ": "th",
    "ι": "i", "κ": "k", "λ": "l", "μ": "m", "ν": "n", "ξ": "x", "ο": "o", "π": "p",
    "ρ": "r", "ς": "s", "σ": "s", "τ": "t", "υ": "y", "φ": "f", "χ": "ch", "ψ": "ps",
    "ω": "o",
    # Accents
    "Ά": "A", "Έ": "E", "Ή": "I", "Ί": "I", "Ό": "O", "Ύ": "Y", "Ώ": "O",
    "ά": "a", "έ": "e", "ή": "i", "ί": "i", "ό": "o", "ύ": "y", "ώ": "o",
    # Dialytika
    "Ϊ": "I", "Ϋ": "Y", "ϊ": "i", "ϋ": "y", "ΐ": "i", "ΰ": "y",
    # Digrammes
    "ΑΥ": "AU", "ΕΥ": "EU", "ΟΥ": "OU", "αυ": "au", "ευ": "eu", "ου": "ou",
    "ΑΎ": "AU", "ΕΎ": "EU", "ΟΎ": "OU", "αύ": "au", "εύ": "eu", "ού": "ou",
    # Consonnes doubles
    "ΜΠ": "B", "μπ": "b", "ΝΤ": "D", "ντ": "d", "ΓΚ": "G", "γκ": "g",
    "ΓΓ": "NG", "γγ": "ng", "ΤΣ": "TS", "τσ": "ts", "ΤΖ": "TZ", "τζ": "tz",
}

# Séquences longues d'abord
_DIGRAPHS = sorted((k for k in GREEK_TO_LATIN if len(k) > 1), key=len, reverse=True)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9 \-_]+")
_WHITESPACE = re.compile(r"\s+")
_UNDERSCORES = re.compile(r"_{2,}")
_EDGES = re.compile(r"^[\s\-_]+|[\s\-_]+$")

MAX_NAME_LENGTH = 120


def to_greeklish(text: Optional[str]) -> str:
    if not text:
        return ""
    text = unicodedata.normalize("NFC", text)
    for greek in _DIGRAPHS:
        text = text.replace(greek, GREEK_TO_LATIN[greek])
    return "".join(GREEK_TO_LATIN.get(ch, ch) for ch in text)


def fold_ascii(text: str) -> str:
    """é -> e, ß -> ss, etc.; ce qui n'a pas d'équivalent ASCII disparaît"""
    decomposed = unicodedata.normalize("NFKD", text)
    return decomposed.encode("ascii", "ignore").decode("ascii")


def sanitize_name(value: Optional[str], max_length: int = MAX_NAME_LENGTH) -> str:
    """
    Nom sûr (sans extension): lettres/chiffres latins, espaces simples,
    tirets et underscores. Jamais vide.
    """
    name = fold_ascii(to_greeklish(value or ""))
    name = _WHITESPACE.sub(" ", name)
    name = _UNSAFE_CHARS.sub("_", name)
    name = _UNDERSCORES.sub("_", name)
    name = _EDGES.sub("", name)
    name = name[:max_length].rstrip(" -_")
    return name or "unnamed"


def normalize_extension(extension: str) -> str:
    extension = (extension or "").strip().lower()
    if extension and not extension.startswith("."):
        extension = "." + extension
    return extension


def family_base_name(reference: str, family_label: str) -> str:
    """Préfixe commun à toutes les versions d'une famille de documents"""
    return f"{sanitize_name(reference)} - {sanitize_name(family_label)}"


def build_safe_filename(reference: str, family_label: str, version: int, extension: str = ".xlsx") -> str:
    return f"{family_base_name(reference, family_label)} - v{int(version)}{normalize_extension(extension)}"
