"""
RFP CRM - Safe filename Tests
"""

import re

from services.filenames import build_safe_filename, family_base_name, sanitize_name, to_greeklish

SAFE_NAME = re.compile(r"^[A-Za-z0-9 _\-]+ - v\d+\.[a-z0-9]+$")


class TestTransliteration:

    def test_greek_company_name(self):
        assert build_safe_filename("ΞΕΝΟΔΟΧΕΙΑ ΚΡΗΤΗΣ ΑΕ", "RFP Pricing", 7, ".xlsx") == \
            "XENODOCHEIA KRITIS AE - RFP Pricing - v7.xlsx"

    def test_digraphs_before_single_letters(self):
        assert to_greeklish("ΝΤΟΜΑΤΑ") == "DOMATA"
        assert to_greeklish("μπύρα") == "byra"
        assert to_greeklish("ΟΥΡΑΝΟΣ") == "OURANOS"

    def test_accents_folded(self):
        assert sanitize_name("Société Générale") == "Societe Generale"


class TestSanitize:

    def test_unsafe_characters_replaced(self):
        name = sanitize_name('A/B\\C:D*E?F"G<H>I|J')
        assert "/" not in name and "\\" not in name and ":" not in name
        assert name == "A_B_C_D_E_F_G_H_I_J"

    def test_never_empty(self):
        assert sanitize_name("") == "unnamed"
        assert sanitize_name("///") == "unnamed"
        assert sanitize_name(None) == "unnamed"

    def test_length_capped(self):
        assert len(sanitize_name("x" * 500)) == 120

    def test_whitespace_collapsed(self):
        assert sanitize_name("  Lead   42 \t ") == "Lead 42"

    def test_all_outputs_safe(self):
        samples = ["Ωραία Θέα ΙΚΕ", "../../etc/passwd", "LEAD-0042", "日本語", "emoji 🚀 corp"]
        for sample in samples:
            filename = build_safe_filename(sample, "BOM", 3, "XLSX")
            assert SAFE_NAME.match(filename), filename
            assert ".." not in filename

    def test_family_prefix(self):
        assert family_base_name("LEAD-1", "RFP Pricing") == "LEAD-1 - RFP Pricing"
        assert build_safe_filename("LEAD-1", "RFP Pricing", 2, "xlsx").startswith(family_base_name("LEAD-1", "RFP Pricing"))
