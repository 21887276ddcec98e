from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from openpyxl import Workbook
from openpyxl.drawing.image import Image as XLImage
from openpyxl.drawing.spreadsheet_drawing import AnchorMarker, TwoCellAnchor
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side

from .errors import GenerationError
from .images import ImageAsset
from .records import MAX_PHOTOS, SubmissionRecord, slot_cell

logger = logging.getLogger(__name__)

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
XLSX_UTI = "org.openxmlformats.spreadsheetml.sheet"

COLUMN_WIDTH = 44
ROW_HEIGHT = 18
PHOTO_BLOCK_ROWS = 12
PHOTO_GRID_ROWS = PHOTO_BLOCK_ROWS * (MAX_PHOTOS // 2)

PRIORITY_COLORS = {
    1: "FFEF4444",  # red
    2: "FFF59E0B",  # amber
    3: "FF22C55E",  # green
}

THIN = Side(style="thin")
BORDER = Border(left=THIN, right=THIN, top=THIN, bottom=THIN)
BOLD = Font(bold=True)
MIDDLE = Alignment(vertical="center")
MIDDLE_LEFT = Alignment(vertical="center", horizontal="left")


@dataclass
class BuiltWorkbook:
    data: bytes
    file_name: str
    mime: str = XLSX_MIME
    image_slots: List[int] = field(default_factory=list)
    photo_top_row: int = 0


def priority_fill(priority) -> Optional[PatternFill]:
    if isinstance(priority, bool):
        return None
    color = PRIORITY_COLORS.get(priority)
    if color is None:
        return None
    return PatternFill(fill_type="solid", start_color=color, end_color=color)


def _write_merged_header(ws, row_idx, text):
    cell = ws.cell(row_idx, 1, text)
    cell.font = BOLD
    cell.alignment = MIDDLE_LEFT
    cell.border = BORDER
    ws.cell(row_idx, 2).border = BORDER
    ws.merge_cells(start_row=row_idx, start_column=1, end_row=row_idx, end_column=2)


def _write_label_row(ws, row_idx, label, value):
    label_cell = ws.cell(row_idx, 1, label.upper())
    label_cell.font = BOLD
    label_cell.alignment = MIDDLE
    label_cell.border = BORDER
    value_cell = ws.cell(row_idx, 2, value)
    value_cell.alignment = MIDDLE
    value_cell.border = BORDER
    return value_cell


def _anchor_image(ws, asset, slot, top_row):
    col_idx, row_block = slot_cell(slot)
    # AnchorMarker rows/cols are 0-based.
    first_row = top_row - 1 + row_block * PHOTO_BLOCK_ROWS
    anchor = TwoCellAnchor()
    anchor._from = AnchorMarker(col=col_idx, row=first_row)
    anchor.to = AnchorMarker(col=col_idx + 1, row=first_row + PHOTO_BLOCK_ROWS)
    image = XLImage(io.BytesIO(asset.data))
    image.anchor = anchor
    ws.add_image(image)


def build_submission_workbook(record: SubmissionRecord, assets: Mapping[int, ImageAsset]) -> BuiltWorkbook:
    """Lay out one submission; ``assets`` maps 0-based slot -> normalized photo."""
    wb = Workbook()
    wb.properties.creator = "Retail Inventory Tracker"
    ws = wb.active
    ws.title = "submission"
    ws.sheet_format.defaultRowHeight = ROW_HEIGHT
    ws.column_dimensions["A"].width = COLUMN_WIDTH
    ws.column_dimensions["B"].width = COLUMN_WIDTH

    row_idx = 1
    _write_merged_header(ws, row_idx, record.title)
    row_idx += 1

    for label, value in record.field_rows():
        value_cell = _write_label_row(ws, row_idx, label, value)
        if label == "PRIORITY LEVEL":
            fill = priority_fill(record.priority_level)
            if fill is not None:
                value_cell.fill = fill
        row_idx += 1

    row_idx += 1  # blank spacer row
    _write_merged_header(ws, row_idx, "PHOTOS")
    row_idx += 1

    top_row = row_idx
    for grid_row in range(top_row, top_row + PHOTO_GRID_ROWS):
        ws.cell(grid_row, 1).border = BORDER
        ws.cell(grid_row, 2).border = BORDER
        ws.row_dimensions[grid_row].height = ROW_HEIGHT

    embedded = []
    for slot in range(MAX_PHOTOS):
        asset = assets.get(slot)
        if asset is None or not asset.data:
            continue
        try:
            _anchor_image(ws, asset, slot, top_row)
        except (OSError, ValueError) as exc:
            logger.warning("photo %d: could not embed image (%s)", slot + 1, exc)
            continue
        embedded.append(slot)

    output = io.BytesIO()
    try:
        wb.save(output)
    except Exception as exc:
        raise GenerationError("Could not serialize workbook: {0}".format(exc)) from exc

    return BuiltWorkbook(
        data=output.getvalue(),
        file_name=record.file_name,
        image_slots=embedded,
        photo_top_row=top_row,
    )

