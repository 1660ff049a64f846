"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  RFP CRM - Workbook Generator (openpyxl)                                     ║
║                                                                              ║
║  render_pricing_workbook(snapshot, header) -> bytes                          ║
║    PRICING SUMMARY / PRODUCTS & SERVICES / NOTES                             ║
║  render_bom_workbook(equipment, header, generated_at) -> bytes               ║
║    SUMMARY + une feuille par marque                                          ║
║                                                                              ║
║  Fonctions pures: mêmes entrées => mêmes cellules (la date "Generated"      ║
║  vient du snapshot, jamais de l'horloge).                                    ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import re
from collections import OrderedDict
from io import BytesIO
from typing import Dict, List

import openpyxl
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

from models.equipment import EquipmentLine, LineKind
from models.rfp import DocumentHeader, RequirementsSnapshot

# ─── Styles ───────────────────────────────────────────────────────────
TITLE_FILL = PatternFill(start_color="1F4E78", end_color="1F4E78", fill_type="solid")
SECTION_FILL = PatternFill(start_color="2E86AB", end_color="2E86AB", fill_type="solid")
BRAND_HEADER_FILL = PatternFill(start_color="4A90A4", end_color="4A90A4", fill_type="solid")
SUBHEADER_FILL = PatternFill(start_color="E8F4F8", end_color="E8F4F8", fill_type="solid")
TOTAL_FILL = PatternFill(start_color="FFD966", end_color="FFD966", fill_type="solid")
GRAND_TOTAL_FILL = PatternFill(start_color="FF6B6B", end_color="FF6B6B", fill_type="solid")
SERVICES_FILL = PatternFill(start_color="16A085", end_color="16A085", fill_type="solid")
NOTES_FILL = PatternFill(start_color="7F8C8D", end_color="7F8C8D", fill_type="solid")

WHITE_BOLD = Font(bold=True, color="FFFFFF")
BOLD = Font(bold=True)
CENTER = Alignment(horizontal="center", vertical="center")
RIGHT = Alignment(horizontal="right", vertical="center")
WRAP_TOP = Alignment(wrap_text=True, vertical="top")
THIN_BORDER = Border(
    left=Side(style="thin", color="CCCCCC"), right=Side(style="thin", color="CCCCCC"),
    top=Side(style="thin", color="CCCCCC"), bottom=Side(style="thin", color="CCCCCC")
)

CURRENCY_FORMAT = "€#,##0.00"
PERCENT_FORMAT = '0.00"%"'

SUMMARY_SHEET = "PRICING SUMMARY"
ITEMS_SHEET = "PRODUCTS & SERVICES"
NOTES_SHEET = "NOTES"
BOM_SUMMARY_SHEET = "SUMMARY"

ITEM_HEADERS = [
    "#", "Type", "Name", "Brand", "Category", "Qty",
    "Unit Price (€)", "Margin (%)", "Subtotal (€)", "Total (€)", "Location", "Notes",
]
ITEM_WIDTHS = [6, 10, 35, 20, 20, 8, 15, 12, 15, 15, 30, 40]

BOM_HEADERS = [
    "#", "Product Name", "Code", "Category", "Manufacturer Code",
    "EAN Code", "Quantity", "Unit Price (€)", "Value (€)",
]
BOM_WIDTHS = [6, 40, 15, 20, 18, 18, 10, 15, 15]

_ILLEGAL_SHEET_CHARS = re.compile(r"[\\/?*\[\]:']")
MAX_SHEET_NAME = 31


# ─── Helpers ──────────────────────────────────────────────────────────

def _title_row(ws, text: str, last_col: int, fill: PatternFill = TITLE_FILL, size: int = 16, height: int = 30):
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=last_col)
    cell = ws.cell(row=1, column=1, value=text)
    cell.font = Font(size=size, bold=True, color="FFFFFF")
    cell.fill = fill
    cell.alignment = CENTER
    ws.row_dimensions[1].height = height


def _section_row(ws, row: int, text: str, last_col: int, fill: PatternFill = SECTION_FILL):
    ws.merge_cells(start_row=row, start_column=1, end_row=row, end_column=last_col)
    cell = ws.cell(row=row, column=1, value=text)
    cell.font = Font(size=14, bold=True, color="FFFFFF")
    cell.fill = fill
    ws.row_dimensions[row].height = 25


def style_header(ws, row: int, max_col: int, fill: PatternFill = TITLE_FILL):
    for col in range(1, max_col + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = WHITE_BOLD
        cell.fill = fill
        cell.alignment = CENTER
        cell.border = THIN_BORDER
    ws.row_dimensions[row].height = 25


def _border_row(ws, row: int, max_col: int):
    for col in range(1, max_col + 1):
        ws.cell(row=row, column=col).border = THIN_BORDER


def _set_widths(ws, widths: List[int]):
    for col, width in enumerate(widths, 1):
        ws.column_dimensions[get_column_letter(col)].width = width


def _info_block(ws, start_row: int, pairs: List[tuple]):
    for offset, (label, value) in enumerate(pairs):
        ws.cell(row=start_row + offset, column=1, value=label).font = BOLD
        ws.cell(row=start_row + offset, column=2, value=value)


def _sheet_ref(name: str) -> str:
    return "'" + name.replace("'", "''") + "'"


def _to_bytes(wb: openpyxl.Workbook) -> bytes:
    buffer = BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def _display_kind(line: EquipmentLine) -> str:
    return "Product" if line.kind == LineKind.PRODUCT else "Service"


# ════════════════════════════════════════════════════════════════════════════
# PRICING WORKBOOK
# ════════════════════════════════════════════════════════════════════════════

def _write_items_sheet(ws, lines: List[EquipmentLine]) -> int:
    """Feuille détail; retourne le numéro de la dernière ligne de données (2 si aucune)"""
    _title_row(ws, ITEMS_SHEET, len(ITEM_HEADERS), fill=SECTION_FILL)
    for col, header in enumerate(ITEM_HEADERS, 1):
        ws.cell(row=2, column=col, value=header)
    style_header(ws, 2, len(ITEM_HEADERS))
    _set_widths(ws, ITEM_WIDTHS)
    ws.freeze_panes = "A3"

    row = 3
    for index, line in enumerate(lines, 1):
        values = [
            index,
            _display_kind(line),
            line.name or "N/A",
            line.brand or "-",
            line.category or "N/A",
            line.quantity,
            float(line.unit_price),
            float(line.margin_percent),
            f"=F{row}*G{row}",
            f"=I{row}+(I{row}*H{row}/100)",
            line.location_ref or "",
            line.notes or "",
        ]
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value)
        for col in (6, 7, 8, 9, 10):
            ws.cell(row=row, column=col).alignment = RIGHT
        for col in (7, 9, 10):
            ws.cell(row=row, column=col).number_format = CURRENCY_FORMAT
        ws.cell(row=row, column=8).number_format = PERCENT_FORMAT
        _border_row(ws, row, len(ITEM_HEADERS))
        row += 1

    last_data_row = row - 1
    ws.cell(row=row, column=8, value="GRAND TOTAL:")
    if lines:
        ws.cell(row=row, column=9, value=f"=SUM(I3:I{last_data_row})")
        ws.cell(row=row, column=10, value=f"=SUM(J3:J{last_data_row})")
    else:
        ws.cell(row=row, column=9, value=0)
        ws.cell(row=row, column=10, value=0)
    for col in (8, 9, 10):
        cell = ws.cell(row=row, column=col)
        cell.font = Font(bold=True, size=12)
        cell.fill = TOTAL_FILL
        cell.alignment = RIGHT
    ws.cell(row=row, column=9).number_format = CURRENCY_FORMAT
    ws.cell(row=row, column=10).number_format = CURRENCY_FORMAT
    _border_row(ws, row, len(ITEM_HEADERS))
    return last_data_row


def _write_summary_sheet(ws, snapshot: RequirementsSnapshot, header: DocumentHeader, last_data_row: int):
    _title_row(ws, "RFP PRICING DOCUMENT", 8, size=20, height=40)
    _info_block(ws, 3, [
        ("RFP Number:", header.document_number),
        ("Reference:", header.reference_number),
        ("Customer:", header.customer_name),
        ("Project:", header.project_title),
        ("Generated:", snapshot.generated_at),
    ])
    _set_widths(ws, [20, 40, 15, 15, 15, 15, 15, 20])

    _section_row(ws, 9, "PRICING SUMMARY", 8)
    for col, label in enumerate(["Category", "Items Count", "Subtotal (€)", "Margin (€)", "Total (€)", "Margin (%)"], 1):
        cell = ws.cell(row=10, column=col, value=label)
        cell.font = BOLD
        cell.fill = SUBHEADER_FILL

    items = _sheet_ref(ITEMS_SHEET)
    has_rows = last_data_row >= 3
    kind_rows = [(11, "Products", "Product", len(snapshot.products)), (12, "Services", "Service", len(snapshot.services))]

    for row, label, kind, count in kind_rows:
        ws.cell(row=row, column=1, value=label)
        ws.cell(row=row, column=2, value=count)
        if has_rows:
            kind_range = f"{items}!$B$3:$B${last_data_row}"
            ws.cell(row=row, column=3, value=f'=SUMIF({kind_range},"{kind}",{items}!$I$3:$I${last_data_row})')
            ws.cell(row=row, column=5, value=f'=SUMIF({kind_range},"{kind}",{items}!$J$3:$J${last_data_row})')
            ws.cell(row=row, column=4, value=f"=E{row}-C{row}")
            ws.cell(row=row, column=6, value=f"=IF(C{row}=0,0,D{row}/C{row}*100)")
        else:
            for col in (3, 4, 5, 6):
                ws.cell(row=row, column=col, value=0)
        for col in (3, 4, 5):
            ws.cell(row=row, column=col).number_format = CURRENCY_FORMAT
        ws.cell(row=row, column=6).number_format = PERCENT_FORMAT
        _border_row(ws, row, 6)

    ws.cell(row=13, column=1, value="GRAND TOTAL")
    ws.cell(row=13, column=3, value="=C11+C12")
    ws.cell(row=13, column=4, value="=D11+D12")
    ws.cell(row=13, column=5, value="=E11+E12")
    for col in (3, 4, 5):
        ws.cell(row=13, column=col).number_format = CURRENCY_FORMAT
    for col in (1, 5):
        cell = ws.cell(row=13, column=col)
        cell.font = Font(size=14, bold=True, color="FFFFFF")
        cell.fill = GRAND_TOTAL_FILL
    ws.row_dimensions[13].height = 30


def _write_notes_sheet(ws, notes: str):
    _title_row(ws, "ADDITIONAL NOTES", 5, fill=NOTES_FILL)
    ws.merge_cells("A3:E20")
    cell = ws["A3"]
    cell.value = notes
    cell.alignment = WRAP_TOP
    ws.column_dimensions["A"].width = 80


def render_pricing_workbook(snapshot: RequirementsSnapshot, header: DocumentHeader) -> bytes:
    """Classeur de chiffrage; les montants sont des formules Excel sur la feuille détail"""
    wb = openpyxl.Workbook()
    summary = wb.active
    summary.title = SUMMARY_SHEET
    summary.sheet_properties.tabColor = "1F4E78"

    lines = snapshot.products + snapshot.services
    items = wb.create_sheet(ITEMS_SHEET)
    last_data_row = _write_items_sheet(items, lines)
    _write_summary_sheet(summary, snapshot, header, last_data_row)

    if snapshot.general_notes:
        _write_notes_sheet(wb.create_sheet(NOTES_SHEET), snapshot.general_notes)

    return _to_bytes(wb)


# ════════════════════════════════════════════════════════════════════════════
# BOM WORKBOOK
# ════════════════════════════════════════════════════════════════════════════

def brand_key(line: EquipmentLine) -> str:
    return (line.brand or "Generic").strip().upper() or "GENERIC"


def safe_sheet_name(name: str, taken: set) -> str:
    """Règles Excel: pas de \\ / ? * [ ] : ', 31 caractères max, unique (insensible à la casse)"""
    base = _ILLEGAL_SHEET_CHARS.sub("", name).strip()[:MAX_SHEET_NAME] or "GENERIC"
    candidate = base
    counter = 2
    while candidate.upper() in taken:
        suffix = f" ({counter})"
        candidate = base[:MAX_SHEET_NAME - len(suffix)] + suffix
        counter += 1
    taken.add(candidate.upper())
    return candidate


def group_by_brand(products: List[EquipmentLine]) -> Dict[str, List[EquipmentLine]]:
    groups: Dict[str, List[EquipmentLine]] = {}
    for line in products:
        groups.setdefault(brand_key(line), []).append(line)
    return OrderedDict(sorted(groups.items()))


def _write_brand_sheet(ws, brand: str, products: List[EquipmentLine]) -> int:
    """Feuille marque; retourne la ligne du sous-total"""
    _title_row(ws, f"BOM - {brand}", len(BOM_HEADERS), fill=SECTION_FILL)
    for col, header in enumerate(BOM_HEADERS, 1):
        ws.cell(row=2, column=col, value=header)
    style_header(ws, 2, len(BOM_HEADERS), fill=BRAND_HEADER_FILL)
    _set_widths(ws, BOM_WIDTHS)
    ws.freeze_panes = "A3"

    row = 3
    for index, line in enumerate(products, 1):
        values = [
            index,
            line.name or "N/A",
            line.code or "-",
            line.category or "N/A",
            line.manufacturer_code or "-",
            line.ean_code or "-",
            line.quantity,
            float(line.unit_price),
            f"=G{row}*H{row}",
        ]
        for col, value in enumerate(values, 1):
            ws.cell(row=row, column=col, value=value)
        for col in (7, 8, 9):
            ws.cell(row=row, column=col).alignment = RIGHT
        ws.cell(row=row, column=8).number_format = CURRENCY_FORMAT
        ws.cell(row=row, column=9).number_format = CURRENCY_FORMAT
        _border_row(ws, row, len(BOM_HEADERS))
        row += 1

    last = row - 1
    ws.cell(row=row, column=6, value="SUBTOTAL:")
    ws.cell(row=row, column=7, value=f"=SUM(G3:G{last})")
    ws.cell(row=row, column=9, value=f"=SUM(I3:I{last})")
    ws.cell(row=row, column=9).number_format = CURRENCY_FORMAT
    for col in range(1, len(BOM_HEADERS) + 1):
        cell = ws.cell(row=row, column=col)
        cell.font = BOLD
        cell.fill = SUBHEADER_FILL
        cell.border = THIN_BORDER
    return row


def render_bom_workbook(equipment: List[EquipmentLine], header: DocumentHeader, generated_at: str) -> bytes:
    products = [line for line in equipment if line.kind == LineKind.PRODUCT]
    services = [line for line in equipment if line.kind == LineKind.SERVICE]

    wb = openpyxl.Workbook()
    summary = wb.active
    summary.title = BOM_SUMMARY_SHEET
    _title_row(summary, f"BOM SUMMARY - {header.customer_name}", 6, size=18, height=35)
    _info_block(summary, 3, [
        ("Reference:", header.reference_number),
        ("Customer:", header.customer_name),
        ("Generated:", generated_at),
    ])
    _set_widths(summary, [24, 30, 16, 18, 15, 20])

    _section_row(summary, 7, "PRODUCTS BY BRAND", 6)
    for col, label in enumerate(["Brand", "Products Count", "Total Quantity", "Total Value (€)"], 1):
        cell = summary.cell(row=8, column=col, value=label)
        cell.font = BOLD
        cell.fill = SUBHEADER_FILL

    taken = {BOM_SUMMARY_SHEET}
    row = 9
    total_count = 0
    total_quantity = 0
    for brand, lines in group_by_brand(products).items():
        sheet_name = safe_sheet_name(brand, taken)
        subtotal_row = _write_brand_sheet(wb.create_sheet(sheet_name), brand, lines)
        quantity = sum(line.quantity for line in lines)

        summary.cell(row=row, column=1, value=brand)
        summary.cell(row=row, column=2, value=len(lines))
        summary.cell(row=row, column=3, value=quantity)
        summary.cell(row=row, column=4, value=f"={_sheet_ref(sheet_name)}!I{subtotal_row}")
        summary.cell(row=row, column=4).number_format = CURRENCY_FORMAT
        _border_row(summary, row, 4)

        total_count += len(lines)
        total_quantity += quantity
        row += 1

    first_brand_row, last_brand_row = 9, row - 1
    summary.cell(row=row, column=1, value="TOTAL PRODUCTS")
    summary.cell(row=row, column=2, value=total_count)
    summary.cell(row=row, column=3, value=total_quantity)
    summary.cell(
        row=row, column=4,
        value=f"=SUM(D{first_brand_row}:D{last_brand_row})" if last_brand_row >= first_brand_row else 0
    )
    summary.cell(row=row, column=4).number_format = CURRENCY_FORMAT
    for col in range(1, 5):
        cell = summary.cell(row=row, column=col)
        cell.font = BOLD
        cell.fill = TOTAL_FILL
    row += 2

    if services:
        _section_row(summary, row, "SERVICES", 4, fill=SERVICES_FILL)
        row += 1
        _info_block(summary, row, [
            ("Services Count", len(services)),
            ("Total Quantity", sum(line.quantity for line in services)),
            ("Total Value (€)", float(sum((line.base_amount for line in services)))),
        ])
        summary.cell(row=row + 2, column=2).number_format = CURRENCY_FORMAT

    return _to_bytes(wb)
