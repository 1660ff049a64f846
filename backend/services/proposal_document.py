"""
RFP CRM - Proposal document (python-docx)

Proposition commerciale Word générée depuis le snapshot RFP:
titre, en-tête, tableau produits, tableau services, totaux, notes.
"""

from io import BytesIO
from typing import List

from docx import Document
from docx.enum.table import WD_TABLE_ALIGNMENT
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml import OxmlElement
from docx.oxml.ns import qn
from docx.shared import Pt, RGBColor

from models.equipment import EquipmentLine
from models.rfp import DocumentHeader, RequirementsSnapshot, money

HEADING_COLOR = RGBColor(0x1F, 0x4E, 0x78)
HEADER_FILL = "1F4E78"
TOTAL_FILL = "FFD966"

LINE_HEADERS = ["#", "Description", "Brand", "Qty", "Unit Price (€)", "Total (€)"]


def format_eur(value) -> str:
    return f"€{money(value):,.2f}"


def shade_cell(cell, color_hex: str):
    tc_pr = cell._tc.get_or_add_tcPr()
    shd = OxmlElement("w:shd")
    shd.set(qn("w:val"), "clear")
    shd.set(qn("w:color"), "auto")
    shd.set(qn("w:fill"), color_hex)
    tc_pr.append(shd)


def _header_row(table, labels: List[str]):
    for cell, label in zip(table.rows[0].cells, labels):
        cell.text = ""
        run = cell.paragraphs[0].add_run(label)
        run.bold = True
        run.font.color.rgb = RGBColor(0xFF, 0xFF, 0xFF)
        shade_cell(cell, HEADER_FILL)


def _heading(doc, text: str, level: int = 1):
    p = doc.add_heading(text, level=level)
    for run in p.runs:
        run.font.color.rgb = HEADING_COLOR
    return p


def _lines_table(doc, lines: List[EquipmentLine]):
    table = doc.add_table(rows=1, cols=len(LINE_HEADERS))
    table.style = "Table Grid"
    table.alignment = WD_TABLE_ALIGNMENT.CENTER
    _header_row(table, LINE_HEADERS)

    for index, line in enumerate(lines, 1):
        description = line.name or "N/A"
        if line.location_ref:
            description = f"{description}\n{line.location_ref}"
        # Le prix unitaire affiché inclut la marge
        unit_price = line.total_price / line.quantity
        cells = table.add_row().cells
        cells[0].text = str(index)
        cells[1].text = description
        cells[2].text = line.brand or "-"
        cells[3].text = str(line.quantity)
        cells[4].text = format_eur(unit_price)
        cells[5].text = format_eur(line.total_price)
        for cell in cells[3:]:
            cell.paragraphs[0].alignment = WD_ALIGN_PARAGRAPH.RIGHT
    return table


def render_proposal_document(snapshot: RequirementsSnapshot, header: DocumentHeader) -> bytes:
    doc = Document()
    style = doc.styles["Normal"]
    style.font.name = "Calibri"
    style.font.size = Pt(10)

    title = doc.add_heading("COMMERCIAL PROPOSAL", level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER

    info = doc.add_table(rows=0, cols=2)
    info.style = "Table Grid"
    for label, value in (
        ("RFP Number", header.document_number),
        ("Reference", header.reference_number),
        ("Customer", header.customer_name),
        ("Project", header.project_title),
        ("Date", snapshot.generated_at[:10]),
    ):
        cells = info.add_row().cells
        cells[0].text = label
        cells[0].paragraphs[0].runs[0].bold = True
        cells[1].text = value or "-"

    products = snapshot.products
    services = snapshot.services
    totals = snapshot.totals

    if products:
        _heading(doc, "Products")
        _lines_table(doc, products)

    if services:
        _heading(doc, "Services")
        _lines_table(doc, services)

    _heading(doc, "Totals")
    table = doc.add_table(rows=1, cols=2)
    table.style = "Table Grid"
    _header_row(table, ["", "Amount (€)"])
    for label, amount in (
        ("Products", totals.products.total),
        ("Services", totals.services.total),
        ("GRAND TOTAL", totals.grand_total),
    ):
        cells = table.add_row().cells
        cells[0].text = label
        cells[1].text = format_eur(amount)
        cells[1].paragraphs[0].alignment = WD_ALIGN_PARAGRAPH.RIGHT
    for cell in table.rows[-1].cells:
        shade_cell(cell, TOTAL_FILL)
        for run in cell.paragraphs[0].runs:
            run.bold = True

    if snapshot.general_notes:
        _heading(doc, "Notes")
        doc.add_paragraph(snapshot.general_notes)

    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
